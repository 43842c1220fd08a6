"""Parser for the operator center spreadsheet (semicolon separated, two header rows)."""
import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from pydantic import ValidationError

from .errors import ValidationFailed
from .schemas import DATE_FORMAT, EditCenterIn

logger = logging.getLogger("centers.csv")

COL_PARTNER_ID = "Partner ID"
COL_REFERENCE = "NR."
COL_NAME = "Name der Teststelle"
COL_OPERATOR_NAME = "Name des Betreibers"
COL_LAB_ID = "Lab ID"
COL_STREET = "Straße"
COL_HOUSE_NUMBER = "Hausnr."
COL_POSTAL_CODE = "PLZ"
COL_CITY = "Ort"
COL_ENTER_DATE = "Eintrittsdatum"
COL_LEAVE_DATE = "Austrittsdatum"
COL_EMAIL = "E-Mail"
COL_OPENING_HOURS = "Öffnungszeiten"
COL_APPOINTMENT = "Terminbuchung"
COL_TEST_KINDS = "Testmöglichkeiten"
COL_WEBSITE = "Webseite"
COL_DCC = "Ausstellung eines Dicital Covid Zertifikates (DCC)"
COL_NOTE = "Adresshinweis"
COL_VISIBLE = "Sichtbar"
COL_LATITUDE = "Breitengrad"
COL_LONGITUDE = "Längengrad"

REQUIRED_COLUMNS = (COL_NAME, COL_STREET, COL_EMAIL)
KNOWN_COLUMNS = (
    COL_PARTNER_ID, COL_REFERENCE, COL_NAME, COL_OPERATOR_NAME, COL_LAB_ID, COL_STREET,
    COL_HOUSE_NUMBER, COL_POSTAL_CODE, COL_CITY, COL_ENTER_DATE, COL_LEAVE_DATE, COL_EMAIL,
    COL_OPENING_HOURS, COL_APPOINTMENT, COL_TEST_KINDS, COL_WEBSITE, COL_DCC, COL_NOTE,
    COL_VISIBLE, COL_LATITUDE, COL_LONGITUDE,
)
HEADER_ROWS = 2

APPOINTMENTS = {
    "möglich": "Possible",
    "nicht erforderlich": "NotRequired",
    "nicht notwendig": "NotRequired",
    "erforderlich": "Required",
}

# substring -> kind, checked in order
TEST_KIND_KEYWORDS = (
    ("antigen", "Antigen"),
    ("schnelltest", "Antigen"),
    ("pcr", "PCR"),
    ("impfung", "Vaccination"),
    ("antikörper", "Antibody"),
    ("antibody", "Antibody"),
)


@dataclass
class ImportCenterResult:
    center: dict
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"center": self.center, "errors": self.errors, "warnings": self.warnings}


class _Row:
    def __init__(self, entry: list[str], columns: dict[str, int]):
        self.entry = entry
        self.columns = columns

    def get(self, column: str) -> str:
        idx = self.columns.get(column)
        if idx is None or idx >= len(self.entry):
            return ""
        return (self.entry[idx] or "").strip()

    def optional(self, column: str) -> str | None:
        value = self.get(column)
        if not value or value.lower() == "null":
            return None
        return value


def parse_address(row: _Row) -> str:
    address = row.get(COL_STREET)
    house_number = row.get(COL_HOUSE_NUMBER)
    postal_code = row.get(COL_POSTAL_CODE)
    if len(postal_code) == 4:
        postal_code = "0" + postal_code
    city = row.get(COL_CITY)
    if house_number:
        address = f"{address} {house_number}"
    if postal_code or city:
        address = f"{address}, {(postal_code + ' ' + city).strip()}"
    return address


def parse_opening_hours(value: str) -> list[str]:
    if not value:
        return []
    parts = value.split("|")
    if len(parts) == 1:
        parts = value.split("\n")
    return [p.strip() for p in parts]


def parse_appointment(value: str) -> str | None:
    value = value.strip().lower()
    if not value:
        return None
    if value not in APPOINTMENTS:
        raise ValueError("invalid appointment type")
    return APPOINTMENTS[value]


def parse_test_kinds(value: str) -> tuple[list[str], list[str]]:
    kinds: list[str] = []
    problems: list[str] = []
    for element in value.split(","):
        element = element.strip().lower()
        for keyword, kind in TEST_KIND_KEYWORDS:
            if keyword in element:
                if kind not in kinds:
                    kinds.append(kind)
                break
        else:
            problems.append(f"invalid testkind: {element}")
    return kinds, problems


def parse_csv_date(value: str) -> datetime:
    day, month, year = (int(p) for p in value.split("."))
    return datetime(year, month, day)


def parse_float(value: str) -> float:
    if not value:
        return 0.0
    try:
        return float(value.replace(",", "."))
    except ValueError:
        return 0.0


def parse_row(row: _Row) -> ImportCenterResult:
    result = ImportCenterResult(center={})
    data: dict = {
        "userReference": row.get(COL_REFERENCE) or None,
        "name": row.get(COL_NAME),
        "operatorName": row.optional(COL_OPERATOR_NAME),
        "labId": row.optional(COL_LAB_ID),
        "address": parse_address(row),
        "email": row.optional(COL_EMAIL),
        "website": row.optional(COL_WEBSITE),
        "addressNote": row.get(COL_NOTE) or None,
        "openingHours": parse_opening_hours(row.get(COL_OPENING_HOURS)),
        "appointment": None,
        "testKinds": [],
        "dcc": row.get(COL_DCC).lower() == "ja",
        "visible": row.get(COL_VISIBLE).lower() == "ja" if COL_VISIBLE in row.columns else True,
        "enterDate": None,
        "leaveDate": None,
    }

    if COL_APPOINTMENT in row.columns:
        try:
            data["appointment"] = parse_appointment(row.get(COL_APPOINTMENT))
        except ValueError as exc:
            result.warnings.append(str(exc))

    if COL_TEST_KINDS in row.columns:
        kinds, problems = parse_test_kinds(row.get(COL_TEST_KINDS))
        data["testKinds"] = kinds
        if problems:
            result.warnings.extend(problems)
        elif not kinds:
            result.warnings.append("no valid testkinds found")

    for column, key in ((COL_ENTER_DATE, "enterDate"), (COL_LEAVE_DATE, "leaveDate")):
        raw = row.get(column)
        if not raw:
            continue
        try:
            data[key] = parse_csv_date(raw).strftime(DATE_FORMAT)
        except ValueError:
            result.errors.append(f"invalid date: {raw}")

    latitude = parse_float(row.get(COL_LATITUDE))
    longitude = parse_float(row.get(COL_LONGITUDE))
    if latitude and longitude:
        data["latitude"] = latitude
        data["longitude"] = longitude

    result.center = data
    try:
        EditCenterIn.model_validate(data)
    except ValidationError as exc:
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()))
            result.errors.append(f"'{loc}' failed: {err.get('msg')}")
    return result


def _find_columns(header_rows: list[list[str]]) -> dict[str, int]:
    columns: dict[str, int] = {}
    for header in header_rows:
        for idx, value in enumerate(header):
            name = value.strip().lstrip("\ufeff")
            if name in KNOWN_COLUMNS:
                columns[name] = idx
    missing = [c for c in REQUIRED_COLUMNS if c not in columns]
    if missing:
        raise ValidationFailed(
            [{"field": c, "validation": "required"} for c in missing],
            f"column {missing[0]} not found",
        )
    return columns


def parse_csv(lines: Iterable[str]) -> list[ImportCenterResult]:
    reader = csv.reader(lines, delimiter=";")
    headers: list[list[str]] = []
    columns: dict[str, int] = {}
    results: list[ImportCenterResult] = []
    for entry in reader:
        if len(headers) < HEADER_ROWS:
            headers.append(entry)
            if len(headers) == HEADER_ROWS:
                columns = _find_columns(headers)
            continue
        if not any((v or "").strip() for v in entry):
            continue
        results.append(parse_row(_Row(entry, columns)))
    if len(headers) < HEADER_ROWS:
        raise ValidationFailed([], "missing header rows")
    logger.info("parsed %d center rows", len(results))
    return results


def parse_csv_bytes(data: bytes) -> list[ImportCenterResult]:
    text = data.decode("utf-8-sig", errors="replace")
    return parse_csv(io.StringIO(text, newline=""))
