import csv
from io import StringIO
from typing import Iterable

from .geocoding import translate_region
from .models import Center, Operator
from .schemas import format_date

BOM = "\ufeff"

CENTER_COLUMNS = [
    "partner_subject", "partner_uuid", "partner_name", "partner_number", "user_reference",
    "operator_name", "lab_id", "center_uuid", "center_name", "email", "address", "zip",
    "region", "dcc", "enter_date", "leave_date", "testkinds", "appointment", "longitude",
    "latitude", "message", "last_update", "visible",
]

OPERATOR_COLUMNS = ["uuid", "subject", "number", "name", "email", "receiver"]


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _writer(buf: StringIO):
    buf.write(BOM)
    return csv.writer(buf, delimiter=";", lineterminator="\n")


def centers_csv(centers: Iterable[Center]) -> str:
    buf = StringIO()
    w = _writer(buf)
    w.writerow(CENTER_COLUMNS)
    for c in centers:
        op = c.operator
        w.writerow([_text(v) for v in (
            op.subject if op else None,
            c.operator_uuid,
            op.name if op else None,
            op.operator_number if op else None,
            c.user_reference,
            c.operator_name,
            c.lab_id,
            c.uuid,
            c.name,
            c.email,
            c.address,
            c.zip_code,
            translate_region(c.region),
            c.dcc,
            format_date(c.enter_date),
            format_date(c.leave_date),
            ",".join(c.test_kinds or []),
            c.appointment,
            c.longitude,
            c.latitude,
            c.message,
            c.last_update.isoformat(sep=" ", timespec="seconds") if c.last_update else None,
            c.visible,
        )])
    return buf.getvalue()


def operators_csv(operators: Iterable[Operator]) -> str:
    buf = StringIO()
    w = _writer(buf)
    w.writerow(OPERATOR_COLUMNS)
    for op in operators:
        w.writerow([_text(v) for v in (
            op.uuid, op.subject, op.operator_number, op.name, op.email, op.bug_reports_receiver,
        )])
    return buf.getvalue()
