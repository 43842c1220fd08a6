from datetime import timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from . import centers_store
from .models import Center, Operator, utcnow


def find_by_uuid(db: Session, uuid: str) -> Operator | None:
    return db.get(Operator, uuid)


def find_by_subject(db: Session, subject: str) -> Operator | None:
    return db.query(Operator).filter(Operator.subject == subject).one_or_none()


def find_by_token(db: Session, token: str) -> Operator | None:
    return db.query(Operator).filter(Operator.notification_token == token).one_or_none()


def find_all(db: Session) -> list[Operator]:
    return db.query(Operator).order_by(Operator.name.asc(), Operator.uuid.asc()).all()


def save(db: Session, operator: Operator) -> Operator:
    db.add(operator)
    db.flush()
    return operator


def delete(db: Session, operator: Operator) -> None:
    centers_store.delete_by_operator(db, operator.uuid)
    db.delete(operator)
    db.flush()


def count(db: Session) -> int:
    return db.execute(select(func.count(Operator.uuid))).scalar_one()


def find_operators_due_for_notification(db: Session, age_weeks: int, renotify_weeks: int) -> list[Operator]:
    """Operators with policy ``operator`` whose visible, valid centers all went stale."""
    now = utcnow()
    stale = (
        select(Center.operator_uuid)
        .where(
            Center.visible.isnot(False),
            centers_store.valid_at(now),
        )
        .group_by(Center.operator_uuid)
        .having(func.max(Center.last_update) < now - timedelta(weeks=age_weeks))
    )
    return (
        db.query(Operator)
        .filter(
            Operator.bug_reports_receiver == "operator",
            Operator.uuid.in_(stale),
            or_(Operator.notified.is_(None), Operator.notified < now - timedelta(weeks=renotify_weeks)),
        )
        .order_by(Operator.uuid.asc())
        .all()
    )
