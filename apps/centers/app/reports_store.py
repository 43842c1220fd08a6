from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .errors import StoreUnavailable
from .models import BugReport, ReportCenterStatistics, ReportStatistics, utcnow

_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def insert(db: Session, report: BugReport) -> BugReport:
    """Queue ``report`` with a ``created`` strictly after every queued report.

    Digests are ordered by ``created``; only reports inserted concurrently by
    separate transactions can still share a timestamp, and those fall back to
    uuid order.
    """
    latest = db.execute(select(func.max(BugReport.created))).scalar()
    created = report.created or utcnow()
    if latest is not None and created <= latest:
        created = latest + timedelta(microseconds=1)
    report.created = created
    db.add(report)
    db.flush()
    return report


def _increment(db: Session, model, keys: dict) -> None:
    dialect = db.get_bind().dialect.name
    insert_fn = _INSERTS.get(dialect)
    if insert_fn is None:
        raise StoreUnavailable(f"upsert not supported on {dialect}")
    stmt = insert_fn(model).values(count=1, **keys)
    stmt = stmt.on_conflict_do_update(index_elements=list(keys), set_={"count": model.count + 1})
    db.execute(stmt)


def increment_statistics(db: Session, operator_uuid: str, center_uuid: str, subject: str) -> None:
    _increment(db, ReportStatistics, {"operator_uuid": operator_uuid, "subject": subject})
    _increment(
        db,
        ReportCenterStatistics,
        {"operator_uuid": operator_uuid, "center_uuid": center_uuid, "subject": subject},
    )


def claim(db: Session, lease: str) -> int:
    """Mark every unleased report with ``lease``; returns the number claimed."""
    result = db.execute(
        update(BugReport)
        .where(BugReport.lease.is_(None))
        .values(lease=lease, leased_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def find_by_lease(db: Session, lease: str) -> list[BugReport]:
    return (
        db.query(BugReport)
        .filter(BugReport.lease == lease)
        .order_by(BugReport.created.asc(), BugReport.uuid.asc())
        .all()
    )


def release(db: Session, lease: str) -> int:
    result = db.execute(
        update(BugReport)
        .where(BugReport.lease == lease)
        .values(lease=None, leased_at=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def delete_by_lease(db: Session, lease: str) -> int:
    result = db.execute(
        delete(BugReport).where(BugReport.lease == lease).execution_options(synchronize_session=False)
    )
    return result.rowcount


def release_stale(db: Session, leased_before: datetime) -> int:
    result = db.execute(
        update(BugReport)
        .where(BugReport.lease.isnot(None), BugReport.leased_at < leased_before)
        .values(lease=None, leased_at=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def count_pending(db: Session) -> int:
    """Reports waiting for a publish cycle; leased rows are in flight and not counted."""
    return db.execute(select(func.count(BugReport.uuid)).where(BugReport.lease.is_(None))).scalar_one()


def subject_statistics(db: Session, operator_uuid: str | None = None) -> list[tuple[str, int]]:
    q = select(ReportStatistics.subject, func.sum(ReportStatistics.count)).group_by(ReportStatistics.subject)
    if operator_uuid:
        q = q.where(ReportStatistics.operator_uuid == operator_uuid)
    return [(subject, int(total or 0)) for subject, total in db.execute(q.order_by(ReportStatistics.subject))]


def center_statistics(db: Session, operator_uuid: str | None = None) -> list[tuple[str, str, int]]:
    q = select(ReportCenterStatistics.center_uuid, ReportCenterStatistics.subject, ReportCenterStatistics.count)
    if operator_uuid:
        q = q.where(ReportCenterStatistics.operator_uuid == operator_uuid)
    q = q.order_by(ReportCenterStatistics.center_uuid, ReportCenterStatistics.subject)
    return [(center, subject, int(cnt)) for center, subject, cnt in db.execute(q)]
