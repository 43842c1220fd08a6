import logging
import secrets
from dataclasses import dataclass, field

from sqlalchemy.orm import Session, sessionmaker

from . import centers_store, operators_store, settings_store
from .errors import ConfigurationError, NotFound
from .mailer import Mailer, render_template
from .models import Center, Operator, utcnow

logger = logging.getLogger("centers.notifications")


def _templates(db: Session, template_key: str, subject_key: str) -> tuple[str, str]:
    template = settings_store.get(db, template_key)
    subject = settings_store.get(db, subject_key)
    if template is None or subject is None:
        raise ConfigurationError(f"{template_key} or {subject_key} not configured")
    return template, subject


def process_operator_notification(db: Session, mailer: Mailer, operator: Operator) -> None:
    if not operator.email:
        raise ConfigurationError("missing email")
    template, subject = _templates(
        db, settings_store.OPERATOR_NOTIFICATION_TEMPLATE, settings_store.OPERATOR_NOTIFICATION_SUBJECT
    )
    if not operator.notification_token:
        operator.notification_token = secrets.token_urlsafe(32)
    body = render_template(template, {"Operator": operator, "Token": operator.notification_token})
    mailer.send(operator.email, subject, "text/html", body)
    operator.notified = utcnow()
    operators_store.save(db, operator)


def process_center_notification(db: Session, mailer: Mailer, center: Center) -> None:
    if not center.email:
        raise ConfigurationError("missing email")
    template, subject = _templates(
        db, settings_store.CENTER_NOTIFICATION_TEMPLATE, settings_store.CENTER_NOTIFICATION_SUBJECT
    )
    body = render_template(template, {"Center": center, "Operator": center.operator})
    mailer.send(center.email, subject, "text/html", body)
    # notified is not a content change; last_update stays untouched
    center.notified = utcnow()
    db.flush()


def confirm_notification(db: Session, token: str) -> Operator:
    operator = operators_store.find_by_token(db, token) if token else None
    if operator is None:
        raise NotFound()
    operator.notification_token = None
    return operators_store.save(db, operator)


@dataclass
class NotificationResult:
    notified: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class StaleCenterNotifier:
    """Reminds operators (or centers, per recipient policy) about stale entries."""

    def __init__(self, session_factory: sessionmaker, mailer: Mailer, age_weeks: int, renotify_weeks: int):
        self.session_factory = session_factory
        self.mailer = mailer
        self.age_weeks = age_weeks
        self.renotify_weeks = renotify_weeks

    def run_cycle(self) -> NotificationResult:
        result = NotificationResult()
        db = self.session_factory()
        try:
            operators = operators_store.find_operators_due_for_notification(db, self.age_weeks, self.renotify_weeks)
            for operator in operators:
                self._one(db, result, operator.uuid, process_operator_notification, operator)
            centers = centers_store.find_centers_due_for_notification(db, self.age_weeks, self.renotify_weeks)
            for center in centers:
                self._one(db, result, center.uuid, process_center_notification, center)
        finally:
            db.close()
        logger.info("notification cycle: %d sent, %d failed", len(result.notified), len(result.failed))
        return result

    def _one(self, db: Session, result: NotificationResult, key: str, fn, item) -> None:
        try:
            fn(db, self.mailer, item)
            db.commit()
            result.notified.append(key)
        except Exception:
            db.rollback()
            logger.exception("notification for %s failed", key)
            result.failed.append(key)
