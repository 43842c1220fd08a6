import re
from datetime import datetime
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from .models import Center, Operator

DATE_FORMAT = "%d.%m.%Y"
_EMAIL_RE = re.compile(r"^[^@\s;]+@[^@\s;]+\.[^@\s;]+$")

AppointmentType = Literal["Required", "NotRequired", "Possible"]
TestKind = Literal["Antigen", "PCR", "Vaccination", "Antibody"]
ReportReceiver = Literal["operator", "center"]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


def format_date(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(DATE_FORMAT) if value else None


def parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value.strip(), DATE_FORMAT)


class CoordinatesOut(BaseModel):
    longitude: float
    latitude: float


class BoundsOut(CamelModel):
    north_east: CoordinatesOut = Field(alias="northEast")
    south_west: CoordinatesOut = Field(alias="southWest")


class GeocodeResultOut(BaseModel):
    address: str
    bounds: BoundsOut


class CenterSummaryOut(CamelModel):
    uuid: str
    name: str
    email: Optional[str] = None
    website: Optional[str] = None
    coordinates: CoordinatesOut
    logo: Optional[str] = None
    marker: Optional[str] = None
    address: str
    opening_hours: List[str] = Field(default_factory=list, alias="openingHours")
    address_note: Optional[str] = Field(None, alias="addressNote")
    appointment: Optional[str] = None
    test_kinds: List[str] = Field(default_factory=list, alias="testKinds")
    dcc: Optional[bool] = None


class CenterOut(CenterSummaryOut):
    user_reference: Optional[str] = Field(None, alias="userReference")
    enter_date: Optional[str] = Field(None, alias="enterDate")
    leave_date: Optional[str] = Field(None, alias="leaveDate")
    message: Optional[str] = None
    visible: Optional[bool] = None


class CentersOut(BaseModel):
    centers: List[CenterSummaryOut]


class CenterPageOut(BaseModel):
    count: int
    result: List[CenterOut]


def operator_image_url(operator: Optional[Operator], kind: str) -> Optional[str]:
    if operator is None:
        return None
    image = operator.logo if kind == "logo" else operator.marker_icon
    if not image:
        return None
    return f"/api/operators/{operator.uuid}/{kind}"


def _summary_fields(center: Center) -> dict:
    return {
        "uuid": center.uuid,
        "name": center.name,
        "email": center.email,
        "website": center.website,
        "coordinates": CoordinatesOut(longitude=center.longitude, latitude=center.latitude),
        "logo": operator_image_url(center.operator, "logo"),
        "marker": operator_image_url(center.operator, "marker"),
        "address": center.address,
        "opening_hours": list(center.opening_hours or []),
        "address_note": center.address_note,
        "appointment": center.appointment,
        "test_kinds": list(center.test_kinds or []),
        "dcc": center.dcc,
    }


def center_summary(center: Center) -> CenterSummaryOut:
    return CenterSummaryOut(**_summary_fields(center))


def center_out(center: Center) -> CenterOut:
    return CenterOut(
        **_summary_fields(center),
        user_reference=center.user_reference,
        enter_date=format_date(center.enter_date),
        leave_date=format_date(center.leave_date),
        message=center.message,
        visible=center.visible,
    )


class EditCenterIn(CamelModel):
    user_reference: Optional[str] = Field(None, alias="userReference", max_length=255)
    name: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    website: Optional[str] = Field(None, max_length=512)
    address: str = Field(min_length=1, max_length=512)
    opening_hours: List[Annotated[str, StringConstraints(max_length=64)]] = Field(
        default_factory=list, alias="openingHours"
    )
    address_note: Optional[str] = Field(None, alias="addressNote")
    appointment: Optional[AppointmentType] = None
    test_kinds: List[TestKind] = Field(default_factory=list, alias="testKinds")
    dcc: Optional[bool] = None
    enter_date: Optional[str] = Field(None, alias="enterDate")
    leave_date: Optional[str] = Field(None, alias="leaveDate")
    visible: Optional[bool] = None
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    operator_name: Optional[str] = Field(None, alias="operatorName", max_length=255)
    lab_id: Optional[str] = Field(None, alias="labId", max_length=64)

    @field_validator("user_reference", "email", "website", "address_note", "appointment", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        if v is not None and not _EMAIL_RE.match(v.strip()):
            raise ValueError("invalid email address")
        return v.strip() if v else v

    @field_validator("enter_date", "leave_date", mode="before")
    @classmethod
    def _date(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return None
        try:
            parse_date(v)
        except (TypeError, ValueError):
            raise ValueError("date must use dd.mm.yyyy") from None
        return v.strip()

    def copy_to(self, center: Center) -> Center:
        center.user_reference = self.user_reference
        center.name = self.name
        center.email = self.email
        center.website = self.website
        center.address = self.address
        center.address_note = self.address_note
        center.opening_hours = list(self.opening_hours)
        center.appointment = self.appointment
        center.test_kinds = list(self.test_kinds)
        center.dcc = self.dcc
        center.enter_date = parse_date(self.enter_date)
        center.leave_date = parse_date(self.leave_date)
        center.visible = True if self.visible is None else self.visible
        if self.operator_name is not None:
            center.operator_name = self.operator_name
        if self.lab_id is not None:
            center.lab_id = self.lab_id
        if self.longitude and self.latitude:
            center.longitude = self.longitude
            center.latitude = self.latitude
            center.coordinates_fixed = True
        return center

    def to_center(self) -> Center:
        return self.copy_to(Center(
            longitude=0.0,
            latitude=0.0,
            coordinates_fixed=False,
        ))


class ImportCentersIn(CamelModel):
    centers: List[EditCenterIn]
    delete_all: bool = Field(False, alias="deleteAll")


class BugReportIn(BaseModel):
    subject: str = Field(min_length=1, max_length=160)
    message: Optional[str] = Field(None, max_length=160)


class OperatorOut(CamelModel):
    uuid: str
    operator_number: Optional[str] = Field(None, alias="operatorNumber")
    name: str
    email: Optional[str] = None
    logo: Optional[str] = None
    marker_icon: Optional[str] = Field(None, alias="markerIcon")
    report_receiver: Optional[str] = Field(None, alias="reportReceiver")


def operator_out(operator: Operator) -> OperatorOut:
    return OperatorOut(
        uuid=operator.uuid,
        operator_number=operator.operator_number,
        name=operator.name,
        email=operator.email,
        logo=operator_image_url(operator, "logo"),
        marker_icon=operator_image_url(operator, "marker"),
        report_receiver=operator.bug_reports_receiver,
    )


class OperatorIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    report_receiver: ReportReceiver = Field("operator", alias="reportReceiver")

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v):
        v = _blank_to_none(v)
        if v is not None and not _EMAIL_RE.match(str(v).strip()):
            raise ValueError("invalid email address")
        return v.strip() if v else v


class ReportStatisticsOut(BaseModel):
    subject: str
    report_count: int


class CenterReportStatisticsOut(BaseModel):
    center_uuid: str
    subject: str
    report_count: int
