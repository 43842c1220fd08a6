import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()

APPOINTMENT_TYPES = ("Required", "NotRequired", "Possible")
TEST_KINDS = ("Antigen", "PCR", "Vaccination", "Antibody")
REPORT_RECEIVERS = ("operator", "center")


def default_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Operator(Base):
    __tablename__ = "operators"

    uuid = Column(String(36), primary_key=True, default=default_uuid)
    subject = Column(String(255), nullable=False, unique=True, index=True)
    operator_number = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    logo = Column(String(512), nullable=True)
    marker_icon = Column(String(512), nullable=True)
    bug_reports_receiver = Column(String(16), nullable=False, default="operator")  # operator|center
    notification_token = Column(String(64), nullable=True, unique=True)
    notified = Column(DateTime, nullable=True)


class Center(Base):
    __tablename__ = "centers"
    __table_args__ = (
        UniqueConstraint("operator_uuid", "user_reference", name="uq_centers_operator_reference"),
        Index("ix_centers_coordinates", "latitude", "longitude"),
        Index("ix_centers_ranking", "ranking"),
    )

    uuid = Column(String(36), primary_key=True, default=default_uuid)
    operator_uuid = Column(String(36), ForeignKey("operators.uuid", ondelete="CASCADE"), nullable=False, index=True)
    user_reference = Column(String(255), nullable=True)
    name = Column(String(255), nullable=False)
    operator_name = Column(String(255), nullable=True)
    lab_id = Column(String(64), nullable=True)
    email = Column(String(255), nullable=True)
    website = Column(String(512), nullable=True)
    address = Column(String(512), nullable=False)
    address_note = Column(Text, nullable=True)
    zip_code = Column("zip", String(16), nullable=True)
    region = Column(String(128), nullable=True)
    longitude = Column(Float, nullable=False, default=0.0)
    latitude = Column(Float, nullable=False, default=0.0)
    coordinates_fixed = Column(Boolean, nullable=False, default=False)
    opening_hours = Column(JSON, nullable=False, default=list)
    appointment = Column(String(16), nullable=True)  # Required|NotRequired|Possible
    test_kinds = Column(JSON, nullable=False, default=list)
    dcc = Column(Boolean, nullable=True)
    enter_date = Column(DateTime, nullable=True)
    leave_date = Column(DateTime, nullable=True)
    visible = Column(Boolean, nullable=True, default=True)
    message = Column(Text, nullable=True)
    ranking = Column(Float, nullable=False)
    last_update = Column(DateTime, nullable=False, default=utcnow)
    notified = Column(DateTime, nullable=True)

    # one-directional; operators never hold their centers in memory
    operator = relationship("Operator", lazy="joined")


class BugReport(Base):
    __tablename__ = "bug_reports"
    __table_args__ = (Index("ix_bug_reports_lease", "lease"),)

    uuid = Column(String(36), primary_key=True, default=default_uuid)
    created = Column(DateTime, nullable=False, default=utcnow)
    email = Column(String(255), nullable=False)
    operator_uuid = Column(String(36), nullable=False)
    center_uuid = Column(String(36), nullable=False)
    center_name = Column(String(255), nullable=False)
    center_address = Column(String(512), nullable=False)
    subject = Column(String(160), nullable=False)
    message = Column(String(160), nullable=True)
    lease = Column(String(36), nullable=True)
    leased_at = Column(DateTime, nullable=True)


class ReportStatistics(Base):
    __tablename__ = "report_statistics"

    operator_uuid = Column(String(36), primary_key=True)
    subject = Column(String(160), primary_key=True)
    count = Column(Integer, nullable=False, default=0)


class ReportCenterStatistics(Base):
    __tablename__ = "report_center_statistics"

    operator_uuid = Column(String(36), primary_key=True)
    center_uuid = Column(String(36), primary_key=True)
    subject = Column(String(160), primary_key=True)
    count = Column(Integer, nullable=False, default=0)


class SystemSetting(Base):
    __tablename__ = "system_settings"

    config_key = Column(String(128), primary_key=True)
    config_value = Column(Text, nullable=True)
