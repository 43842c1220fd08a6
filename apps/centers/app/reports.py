"""Bug report intake and the lease-based publish cycle.

A cycle claims every unleased report under a fresh lease token, mails one
digest per recipient and deletes the leased rows only after all digests
went out. Any failure releases the lease so the next cycle picks the
reports up again; a report is never mailed twice by successful cycles.
"""
import logging
import uuid as uuidlib
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session, sessionmaker

from . import centers_store, metrics, reports_store, settings_store
from .database import use_transaction
from .errors import ConfigurationError, NotFound
from .mailer import Mailer, render_template
from .models import BugReport, Center, utcnow

logger = logging.getLogger("centers.reports")


def resolve_recipient(db: Session, center: Center) -> str:
    operator = center.operator
    if operator is not None:
        if operator.bug_reports_receiver == "center" and center.email:
            return center.email
        if operator.email:
            return operator.email
    default = settings_store.get(db, settings_store.REPORTS_EMAIL_DEFAULT)
    if default:
        return default
    raise ConfigurationError("no recipient for bug report configured")


def submit(db: Session, center_uuid: str, subject: str, message: str | None = None) -> BugReport:
    center = centers_store.find_by_uuid(db, center_uuid)
    if center is None:
        raise NotFound()
    recipient = resolve_recipient(db, center)

    def _store(tx: Session) -> BugReport:
        report = reports_store.insert(tx, BugReport(
            created=utcnow(),
            email=recipient,
            operator_uuid=center.operator_uuid,
            center_uuid=center.uuid,
            center_name=center.name,
            center_address=center.address,
            subject=subject,
            message=message,
        ))
        reports_store.increment_statistics(tx, center.operator_uuid, center.uuid, subject)
        return report

    report = use_transaction(db, _store)
    metrics.BUG_REPORTS.inc()
    return report


def group_reports(reports: list[BugReport]) -> "OrderedDict[str, OrderedDict[str, list[BugReport]]]":
    """Group by recipient, then by center, keeping first-seen order at both levels."""
    grouped: OrderedDict[str, OrderedDict[str, list[BugReport]]] = OrderedDict()
    for report in reports:
        grouped.setdefault(report.email, OrderedDict()).setdefault(report.center_uuid, []).append(report)
    return grouped


@dataclass
class CycleResult:
    lease: str
    claimed: int = 0
    recipients: int = 0
    delivered: bool = False


class ReportPublisher:
    def __init__(self, session_factory: sessionmaker, mailer: Mailer):
        self.session_factory = session_factory
        self.mailer = mailer

    def _release(self, db: Session, lease: str) -> None:
        db.rollback()
        released = reports_store.release(db, lease)
        db.commit()
        logger.warning("released lease %s on %d reports", lease, released)

    def publish_cycle(self) -> CycleResult:
        result = CycleResult(lease=str(uuidlib.uuid4()))
        lease = result.lease
        db = self.session_factory()
        try:
            result.claimed = reports_store.claim(db, lease)
            db.commit()
            if result.claimed == 0:
                logger.debug("no pending bug reports")
                return result

            try:
                reports = reports_store.find_by_lease(db, lease)
                template = settings_store.get(db, settings_store.REPORTS_EMAIL_TEMPLATE)
                subject = settings_store.get(db, settings_store.REPORTS_EMAIL_SUBJECT)
                if template is None or subject is None:
                    raise ConfigurationError("bug report template or subject not configured")

                grouped = group_reports(reports)
                for recipient, centers in grouped.items():
                    body = render_template(template, {"Centers": centers})
                    self.mailer.send(recipient, subject, "text/html", body)
                    result.recipients += 1
            except Exception:
                self._release(db, lease)
                raise

            deleted = reports_store.delete_by_lease(db, lease)
            db.commit()
            result.delivered = True
            logger.info("delivered %d bug reports to %d recipients", deleted, result.recipients)
            return result
        finally:
            db.close()

    def release_stale_leases(self, older_than_minutes: int) -> int:
        db = self.session_factory()
        try:
            released = reports_store.release_stale(db, utcnow() - timedelta(minutes=older_than_minutes))
            db.commit()
        finally:
            db.close()
        if released:
            logger.warning("released %d bug reports held by stale leases", released)
        return released
