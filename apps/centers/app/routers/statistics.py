from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import reports_store
from ..auth import Principal, get_db, require_admin
from ..schemas import CenterReportStatisticsOut, ReportStatisticsOut


router = APIRouter(prefix="/api/statistics", tags=["statistics"])


@router.get("/reports", response_model=List[ReportStatisticsOut])
def report_statistics(_: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return [
        ReportStatisticsOut(subject=subject, report_count=count)
        for subject, count in reports_store.subject_statistics(db)
    ]


@router.get("/reports/centers", response_model=List[CenterReportStatisticsOut])
def center_report_statistics(_: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return [
        CenterReportStatisticsOut(center_uuid=center, subject=subject, report_count=count)
        for center, subject, count in reports_store.center_statistics(db)
    ]
