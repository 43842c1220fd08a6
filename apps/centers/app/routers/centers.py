from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from .. import centers_service, centers_store, reports, sampler
from ..auth import Principal, get_current_operator, get_db, get_principal, require_admin
from ..csv_export import centers_csv
from ..csv_import import parse_csv_bytes
from ..domain import Bounds, CenterFilter, Coordinates
from ..errors import BadRequest, NotFound
from ..geocoding import Geocoder, get_geocoder
from ..models import Operator
from ..schemas import (
    BoundsOut,
    BugReportIn,
    CenterOut,
    CenterPageOut,
    CentersOut,
    CoordinatesOut,
    EditCenterIn,
    GeocodeResultOut,
    ImportCentersIn,
    center_out,
    center_summary,
)


router = APIRouter(prefix="/api/centers", tags=["centers"])


@router.get("/", response_model=CentersOut)
def find_centers(
    latne: Optional[float] = None,
    lngne: Optional[float] = None,
    latsw: Optional[float] = None,
    lngsw: Optional[float] = None,
    appointment: Optional[str] = None,
    dcc: Optional[bool] = None,
    kind: Optional[str] = None,
    db: Session = Depends(get_db),
):
    if None in (latne, lngne, latsw, lngsw):
        raise BadRequest("invalid parameters")
    bounds = Bounds(
        north_east=Coordinates(longitude=lngne, latitude=latne),
        south_west=Coordinates(longitude=lngsw, latitude=latsw),
    )
    filters = CenterFilter(appointment=appointment or None, test_kind=kind or None, dcc=dcc)
    centers = sampler.find_by_bounds(db, bounds, filters)
    return CentersOut(centers=[center_summary(c) for c in centers])


@router.get("/bounds", response_model=GeocodeResultOut)
def geocode_address(address: str = "", geocoder: Geocoder = Depends(get_geocoder)):
    if not address.strip():
        raise BadRequest("invalid address")
    result = geocoder.lookup(address)
    ne, sw = result.bounds.north_east, result.bounds.south_west
    return GeocodeResultOut(
        address=result.address,
        bounds=BoundsOut(
            north_east=CoordinatesOut(longitude=ne.longitude, latitude=ne.latitude),
            south_west=CoordinatesOut(longitude=sw.longitude, latitude=sw.latitude),
        ),
    )


@router.post("/{uuid}/report", status_code=status.HTTP_201_CREATED)
def submit_report(uuid: str, body: BugReportIn, db: Session = Depends(get_db)):
    reports.submit(db, uuid, body.subject, body.message)
    return Response(status_code=status.HTTP_201_CREATED)


@router.get("/all", response_model=CenterPageOut)
def list_own_centers(
    search: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(50, ge=1, le=500),
    operator: Operator = Depends(get_current_operator),
    db: Session = Depends(get_db),
):
    total, rows = centers_store.find_by_operator(db, operator.uuid, search, page, size)
    return CenterPageOut(count=total, result=[center_out(c) for c in rows])


@router.post("/csv")
async def preview_csv(request: Request, principal: Principal = Depends(get_principal)):
    results = parse_csv_bytes(await request.body())
    return [r.as_dict() for r in results]


@router.post("/", response_model=List[CenterOut])
def import_centers(
    body: ImportCentersIn,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    operator: Operator = Depends(get_current_operator),
    geocoder: Geocoder = Depends(get_geocoder),
    db: Session = Depends(get_db),
):
    saved = centers_service.import_centers(
        db,
        operator,
        [dto.to_center() for dto in body.centers],
        delete_all=body.delete_all,
        can_issue_dcc=principal.can_issue_dcc,
    )
    background_tasks.add_task(centers_service.perform_geocoding, geocoder, [c.uuid for c in saved])
    return [center_out(c) for c in saved]


@router.get("/admin/csv", response_class=PlainTextResponse)
def export_centers(_: Principal = Depends(require_admin), db: Session = Depends(get_db)):
    return PlainTextResponse(
        centers_csv(centers_store.find_all(db)),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="centers.csv"'},
    )


@router.post("/admin/geocode", status_code=status.HTTP_202_ACCEPTED)
def geocode_all_centers(
    background_tasks: BackgroundTasks,
    _: Principal = Depends(require_admin),
    geocoder: Geocoder = Depends(get_geocoder),
    db: Session = Depends(get_db),
):
    uuids = centers_store.all_uuids(db)
    background_tasks.add_task(centers_service.perform_geocoding, geocoder, uuids)
    return {"scheduled": len(uuids)}


@router.get("/ref/{reference}", response_model=CenterOut)
def get_center_by_reference(
    reference: str,
    operator: Operator = Depends(get_current_operator),
    db: Session = Depends(get_db),
):
    center = centers_store.find_by_operator_and_user_reference(db, operator.uuid, reference)
    if center is None:
        raise NotFound()
    return center_out(center)


@router.delete("/ref/{reference}", status_code=status.HTTP_204_NO_CONTENT)
def delete_center_by_reference(
    reference: str,
    operator: Operator = Depends(get_current_operator),
    db: Session = Depends(get_db),
):
    centers_service.delete_center_by_reference(db, operator, reference)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{uuid}", response_model=CenterOut)
def get_center(
    uuid: str,
    principal: Principal = Depends(get_principal),
    operator: Operator = Depends(get_current_operator),
    db: Session = Depends(get_db),
):
    return center_out(centers_service.get_owned_center(db, operator, uuid, is_admin=principal.is_admin))


@router.put("/{uuid}", response_model=CenterOut)
def update_center(
    uuid: str,
    body: EditCenterIn,
    principal: Principal = Depends(get_principal),
    operator: Operator = Depends(get_current_operator),
    geocoder: Geocoder = Depends(get_geocoder),
    db: Session = Depends(get_db),
):
    center = centers_service.get_owned_center(db, operator, uuid, is_admin=principal.is_admin)
    owner = center.operator or operator
    body.copy_to(center)
    saved = centers_service.save_center(
        db, owner, center, can_issue_dcc=principal.can_issue_dcc, geocoder=geocoder
    )
    return center_out(saved)


@router.delete("/{uuid}", status_code=status.HTTP_204_NO_CONTENT)
def delete_center(
    uuid: str,
    principal: Principal = Depends(get_principal),
    operator: Operator = Depends(get_current_operator),
    db: Session = Depends(get_db),
):
    centers_service.delete_center(db, operator, uuid, is_admin=principal.is_admin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
