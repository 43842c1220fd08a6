import os
import tempfile
import time
from typing import Optional

_DB_DIR = tempfile.mkdtemp(prefix="centermap-tests-")

os.environ.setdefault("ENV", "dev")
os.environ.setdefault("DB_URL", f"sqlite:///{_DB_DIR}/centermap.db")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "true")
os.environ.setdefault("SCHEDULERS_ENABLED", "false")
os.environ.setdefault("MAIL_BACKEND", "log")
os.environ.setdefault("JWT_SECRET", "centermap-test-secret-0123456789abcdef")
os.environ["JWT_JWKS_URL"] = ""

import jwt  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app import centers_store, settings_store  # noqa: E402
from app.database import session_scope  # noqa: E402
from app.domain import Bounds, Coordinates  # noqa: E402
from app.errors import GeocodeNoResult  # noqa: E402
from app.geocoding import GeocodeResult, get_geocoder  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Base, Center, Operator  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    with session_scope() as db:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def make_token(sub: str, roles: tuple = (), **claims) -> str:
    now = int(time.time())
    payload = {
        "sub": sub,
        "iat": now,
        "exp": now + 3600,
        "realm_access": {"roles": list(roles)},
    }
    payload.update(claims)
    return jwt.encode(payload, os.environ["JWT_SECRET"], algorithm="HS256")


def auth(sub: str, roles: tuple = (), **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, roles, **claims)}"}


@pytest.fixture
def headers():
    return auth


class FakeGeocoder:
    def __init__(self, result: Optional[GeocodeResult] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: list[str] = []

    def lookup(self, address: str) -> GeocodeResult:
        self.calls.append(address)
        if self.error is not None:
            raise self.error
        if self.result is None:
            raise GeocodeNoResult()
        return self.result


def geocode_result(lon: float = 9.0, lat: float = 50.0, zip_code: str = "60311", region: str = "Hessen"):
    return GeocodeResult(
        address="Römerberg 1, 60311 Frankfurt am Main, Germany",
        coordinates=Coordinates(longitude=lon, latitude=lat),
        bounds=Bounds(
            north_east=Coordinates(longitude=lon + 0.01, latitude=lat + 0.01),
            south_west=Coordinates(longitude=lon - 0.01, latitude=lat - 0.01),
        ),
        zip_code=zip_code,
        region=region,
    )


@pytest.fixture
def geocoder():
    fake = FakeGeocoder(result=geocode_result())
    app.dependency_overrides[get_geocoder] = lambda: fake
    return fake


class RecordingMailer:
    def __init__(self, fail_for: tuple = ()):
        self.fail_for = set(fail_for)
        self.sent: list[dict] = []
        self.on_send = None

    def send(self, receiver: str, subject: str, content_type: str, body: str) -> None:
        if self.on_send is not None:
            hook, self.on_send = self.on_send, None
            hook()
        if receiver in self.fail_for:
            raise RuntimeError(f"smtp rejected {receiver}")
        self.sent.append({"receiver": receiver, "subject": subject, "content_type": content_type, "body": body})


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def make_operator():
    def _make(subject: str = "op-1", **fields) -> str:
        with session_scope() as db:
            op = Operator(
                subject=subject,
                name=fields.pop("name", f"Operator {subject}"),
                bug_reports_receiver=fields.pop("bug_reports_receiver", "operator"),
                **fields,
            )
            db.add(op)
            db.flush()
            return op.uuid
    return _make


@pytest.fixture
def make_center():
    def _make(operator_uuid: str, **fields) -> str:
        ranking = fields.pop("ranking", None)
        last_update = fields.pop("last_update", None)
        with session_scope() as db:
            center = centers_store.save(db, Center(
                operator_uuid=operator_uuid,
                name=fields.pop("name", "Teststelle"),
                address=fields.pop("address", "Hauptstraße 1, 10115 Berlin"),
                longitude=fields.pop("longitude", 5.0),
                latitude=fields.pop("latitude", 5.0),
                coordinates_fixed=fields.pop("coordinates_fixed", False),
                opening_hours=fields.pop("opening_hours", []),
                test_kinds=fields.pop("test_kinds", ["Antigen"]),
                **fields,
            ))
            if ranking is not None:
                center.ranking = ranking
            if last_update is not None:
                center.last_update = last_update
            db.flush()
            return center.uuid
    return _make


@pytest.fixture
def put_setting():
    def _put(key: str, value: str) -> None:
        with session_scope() as db:
            settings_store.put(db, key, value)
    return _put
