import random
from datetime import datetime, timedelta

from sqlalchemy import String, and_, case, cast, func, inspect, or_, select
from sqlalchemy.orm import Session

from .domain import Bounds, CenterFilter
from .models import Center, Operator, default_uuid, utcnow

# Columns an upsert never overwrites on an existing row.
_PRESERVED = {"uuid", "ranking", "last_update", "notified"}


def _advance(previous: datetime | None, now: datetime) -> datetime:
    if previous is not None and previous >= now:
        return previous + timedelta(microseconds=1)
    return now


def _copy_fields(src: Center, dst: Center) -> None:
    for attr in inspect(Center).column_attrs:
        if attr.key in _PRESERVED:
            continue
        setattr(dst, attr.key, getattr(src, attr.key))


def save(db: Session, center: Center) -> Center:
    """Create or update a center and return the persistent row.

    A new row receives its ranking here and only here. Updates copy the
    given values onto the stored row, keeping its ranking.
    """
    now = utcnow()
    existing = db.get(Center, center.uuid) if center.uuid else None
    if existing is None:
        center.uuid = center.uuid or default_uuid()
        center.ranking = random.random()
        center.last_update = now
        if center.visible is None:
            center.visible = True
        db.add(center)
        target = center
    else:
        if existing is not center:
            _copy_fields(center, existing)
        existing.last_update = _advance(existing.last_update, now)
        target = existing
    db.flush()
    return target


def delete(db: Session, center: Center) -> None:
    db.delete(center)
    db.flush()


def delete_by_operator(db: Session, operator_uuid: str) -> int:
    return db.query(Center).filter(Center.operator_uuid == operator_uuid).delete(synchronize_session="fetch")


def find_by_uuid(db: Session, uuid: str) -> Center | None:
    return db.get(Center, uuid)


def find_by_operator_and_user_reference(db: Session, operator_uuid: str, reference: str) -> Center | None:
    return (
        db.query(Center)
        .filter(Center.operator_uuid == operator_uuid, Center.user_reference == reference)
        .one_or_none()
    )


def find_by_operator(
    db: Session, operator_uuid: str, search: str | None = None, page: int = 0, size: int = 50
) -> tuple[int, list[Center]]:
    q = db.query(Center).filter(Center.operator_uuid == operator_uuid)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Center.name.ilike(pattern), Center.address.ilike(pattern)))
    total = q.count()
    rows = (
        q.order_by(Center.user_reference.asc(), Center.uuid.asc())
        .offset(max(page, 0) * size)
        .limit(size)
        .all()
    )
    return total, rows


def find_all(db: Session) -> list[Center]:
    return db.query(Center).order_by(Center.operator_uuid.asc(), Center.user_reference.asc()).all()


def all_uuids(db: Session) -> list[str]:
    return list(db.execute(select(Center.uuid).order_by(Center.uuid)).scalars())


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def valid_at(now: datetime):
    return and_(
        or_(Center.enter_date.is_(None), Center.enter_date <= now),
        or_(Center.leave_date.is_(None), Center.leave_date >= now),
    )


def bounds_predicate(bounds: Bounds, filters: CenterFilter, now: datetime, freshness: timedelta):
    """Base predicate of a viewport search: box, validity, visibility, freshness, filters."""
    ne, sw = bounds.north_east, bounds.south_west
    clauses = [
        Center.latitude.between(sw.latitude, ne.latitude),
        Center.longitude.between(sw.longitude, ne.longitude),
        valid_at(now),
        Center.visible.isnot(False),
    ]
    if not filters.include_outdated:
        clauses.append(Center.last_update > now - freshness)
    if filters.dcc:
        clauses.append(Center.dcc.is_(True))
    if filters.appointment:
        clauses.append(Center.appointment == filters.appointment)
    if filters.test_kind:
        kind = _escape_like(filters.test_kind)
        clauses.append(cast(Center.test_kinds, String).like(f'%"{kind}"%', escape="\\"))
    return and_(*clauses)


def count_matching(db: Session, predicate) -> int:
    return db.execute(select(func.count()).select_from(Center).where(predicate)).scalar_one()


def find_matching(db: Session, predicate, max_ranking: float) -> list[Center]:
    return (
        db.query(Center)
        .filter(predicate, Center.ranking <= max_ranking)
        .order_by(Center.uuid.asc())
        .all()
    )


def find_centers_due_for_notification(db: Session, age_weeks: int, renotify_weeks: int) -> list[Center]:
    now = utcnow()
    return (
        db.query(Center)
        .join(Operator, Operator.uuid == Center.operator_uuid)
        .filter(
            Operator.bug_reports_receiver == "center",
            Center.visible.isnot(False),
            valid_at(now),
            Center.last_update < now - timedelta(weeks=age_weeks),
            or_(Center.notified.is_(None), Center.notified < now - timedelta(weeks=renotify_weeks)),
        )
        .order_by(Center.uuid.asc())
        .all()
    )


def find_statistics(db: Session) -> dict[str, int]:
    row = db.execute(
        select(
            func.count(Center.uuid),
            func.sum(case((Center.dcc.is_(True), 1), else_=0)),
            func.sum(case((Center.visible.is_(False), 1), else_=0)),
        )
    ).one()
    return {"total_count": row[0] or 0, "dcc_count": row[1] or 0, "invisible_count": row[2] or 0}
