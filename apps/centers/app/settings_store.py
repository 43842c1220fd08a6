from sqlalchemy.orm import Session

from .models import SystemSetting

REPORTS_EMAIL_DEFAULT = "reports.email.default"
REPORTS_EMAIL_TEMPLATE = "reports.email.template"
REPORTS_EMAIL_SUBJECT = "reports.email.subject"
OPERATOR_NOTIFICATION_TEMPLATE = "operator.notification.template"
OPERATOR_NOTIFICATION_SUBJECT = "operator.notification.subject"
CENTER_NOTIFICATION_TEMPLATE = "center.notification.template"
CENTER_NOTIFICATION_SUBJECT = "center.notification.subject"


def get(db: Session, key: str) -> str | None:
    row = db.get(SystemSetting, key)
    if row is None or not (row.config_value or "").strip():
        return None
    return row.config_value


def put(db: Session, key: str, value: str | None) -> None:
    row = db.get(SystemSetting, key)
    if row is None:
        db.add(SystemSetting(config_key=key, config_value=value))
    else:
        row.config_value = value
    db.flush()
