from dataclasses import replace

import pytest

from app.database import session_scope
from app.errors import GeocodeTooManyResults, GeocoderUnavailable
from app.models import Center, Operator


def _center(**overrides) -> dict:
    body = {
        "userReference": "A-1",
        "name": "Schnelltestzentrum Markt",
        "email": "markt@example.org",
        "address": "Marktplatz 1, 60311 Frankfurt",
        "openingHours": ["Mo-Fr 08:00-18:00"],
        "appointment": "NotRequired",
        "testKinds": ["Antigen"],
        "dcc": True,
        "enterDate": "01.06.2021",
    }
    body.update(overrides)
    return body


def _load(uuid: str) -> Center:
    with session_scope() as db:
        center = db.get(Center, uuid)
        db.expunge(center)
        return center


def test_import_creates_centers_and_geocodes_in_background(client, headers, geocoder):
    h = headers("sub-1", name="Betreiber GmbH", email="ops@example.org", preferred_username="4711")
    r = client.post("/api/centers/", headers=h, json={"centers": [_center(), _center(userReference="A-2")]})
    assert r.status_code == 200, r.text
    created = r.json()
    assert [c["userReference"] for c in created] == ["A-1", "A-2"]
    assert created[0]["enterDate"] == "01.06.2021"
    assert created[0]["visible"] is True
    # dcc requires the dcc role
    assert created[0]["dcc"] is False

    assert len(geocoder.calls) == 2
    stored = _load(created[0]["uuid"])
    assert (stored.longitude, stored.latitude) == (9.0, 50.0)
    assert stored.zip_code == "60311"
    assert stored.region == "Hessen"

    with session_scope() as db:
        op = db.query(Operator).filter(Operator.subject == "sub-1").one()
        assert op.name == "Betreiber GmbH"
        assert op.operator_number == "4711"
        assert op.email == "ops@example.org"
        assert op.bug_reports_receiver == "operator"


def test_import_keeps_dcc_for_dcc_role(client, headers, geocoder):
    r = client.post("/api/centers/", headers=headers("sub-1", roles=("dcc",)), json={"centers": [_center()]})
    assert r.status_code == 200
    assert r.json()[0]["dcc"] is True


def test_import_with_existing_reference_updates_same_center(client, headers, geocoder):
    h = headers("sub-1")
    first = client.post("/api/centers/", headers=h, json={"centers": [_center()]}).json()[0]
    ranking = _load(first["uuid"]).ranking

    r = client.post("/api/centers/", headers=h, json={"centers": [_center(name="Neuer Name")]})
    second = r.json()[0]

    assert second["uuid"] == first["uuid"]
    assert second["name"] == "Neuer Name"
    assert _load(first["uuid"]).ranking == ranking
    with session_scope() as db:
        assert db.query(Center).count() == 1


def test_import_delete_all_replaces_operator_centers(client, headers, geocoder):
    h = headers("sub-1")
    client.post("/api/centers/", headers=h, json={"centers": [_center(), _center(userReference="A-2")]})
    other = client.post("/api/centers/", headers=headers("sub-2"), json={"centers": [_center()]}).json()[0]

    r = client.post("/api/centers/", headers=h, json={"centers": [_center(userReference="B-1")], "deleteAll": True})
    assert r.status_code == 200
    with session_scope() as db:
        refs = sorted(c.user_reference for c in db.query(Center).all())
    assert refs == ["A-1", "B-1"]
    assert _load(other["uuid"]).user_reference == "A-1"


def test_import_rejects_duplicate_references_in_one_batch(client, headers, geocoder):
    r = client.post("/api/centers/", headers=headers("sub-1"), json={"centers": [_center(), _center()]})
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "centers[1].userReference"


def test_import_validation_errors_use_envelope(client, headers, geocoder):
    r = client.post(
        "/api/centers/",
        headers=headers("sub-1"),
        json={"centers": [_center(appointment="Sometimes", openingHours=["x" * 65])]},
    )
    assert r.status_code == 400
    body = r.json()
    assert body["message"] == "validation failed"
    fields = {e["field"] for e in body["errors"]}
    assert "centers.0.appointment" in fields
    assert "centers.0.openingHours.0" in fields
    assert any(e["validation"] == "max_length=64" for e in body["errors"])


def test_update_geocodes_and_advances_last_update(client, headers, geocoder):
    h = headers("sub-1")
    created = client.post("/api/centers/", headers=h, json={"centers": [_center()]}).json()[0]
    before = _load(created["uuid"])

    geocoder.result = replace(geocoder.result, address="Zeil 10, 60313 Frankfurt am Main, Germany", zip_code="60313")
    r = client.put(f"/api/centers/{created['uuid']}", headers=h, json=_center(address="Zeil 10, 60313 Frankfurt"))
    assert r.status_code == 200, r.text
    assert r.json()["coordinates"] == {"longitude": 9.0, "latitude": 50.0}

    after = _load(created["uuid"])
    assert after.address == "Zeil 10, 60313 Frankfurt"
    assert after.zip_code == "60313"
    assert after.region == "Hessen"
    assert after.last_update > before.last_update
    assert after.ranking == before.ranking


def test_update_keeps_fixed_coordinates(client, headers, geocoder):
    h = headers("sub-1")
    created = client.post(
        "/api/centers/", headers=h, json={"centers": [_center(longitude=8.5, latitude=49.5)]}
    ).json()[0]

    client.put(f"/api/centers/{created['uuid']}", headers=h, json=_center())

    stored = _load(created["uuid"])
    assert (stored.longitude, stored.latitude) == (8.5, 49.5)
    assert stored.zip_code == "60311"


def test_update_records_geocoding_diagnostic(client, headers, geocoder):
    h = headers("sub-1")
    created = client.post("/api/centers/", headers=h, json={"centers": [_center()]}).json()[0]

    geocoder.error = GeocodeTooManyResults()
    r = client.put(f"/api/centers/{created['uuid']}", headers=h, json=_center())
    assert r.status_code == 200
    assert r.json()["message"] == "Geocoding: too many results"


def test_geocoder_outage_leaves_message_untouched(client, headers, geocoder):
    h = headers("sub-1")
    created = client.post("/api/centers/", headers=h, json={"centers": [_center()]}).json()[0]
    geocoder.error = GeocodeTooManyResults()
    client.put(f"/api/centers/{created['uuid']}", headers=h, json=_center())

    geocoder.error = GeocoderUnavailable("timeout")
    r = client.put(f"/api/centers/{created['uuid']}", headers=h, json=_center(name="Umbenannt"))
    assert r.status_code == 200
    assert r.json()["name"] == "Umbenannt"
    assert r.json()["message"] == "Geocoding: too many results"


def test_update_with_foreign_reference_is_rejected(client, headers, geocoder):
    h = headers("sub-1")
    created = client.post(
        "/api/centers/", headers=h, json={"centers": [_center(), _center(userReference="A-2")]}
    ).json()
    r = client.put(f"/api/centers/{created[1]['uuid']}", headers=h, json=_center(userReference="A-1"))
    assert r.status_code == 400
    assert r.json()["message"] == "duplicate user reference"


def test_ownership_rules(client, headers, geocoder):
    created = client.post("/api/centers/", headers=headers("sub-1"), json={"centers": [_center()]}).json()[0]
    uuid = created["uuid"]
    stranger = headers("sub-2")
    admin = headers("admin-1", roles=("admin",))

    assert client.get(f"/api/centers/{uuid}", headers=stranger).status_code == 404
    assert client.put(f"/api/centers/{uuid}", headers=stranger, json=_center()).status_code == 404
    assert client.delete(f"/api/centers/{uuid}", headers=stranger).status_code == 403

    assert client.get(f"/api/centers/{uuid}", headers=admin).status_code == 200
    r = client.put(f"/api/centers/{uuid}", headers=admin, json=_center(name="Admin edit"))
    assert r.status_code == 200
    # admin edits do not move the center to the admin's operator
    assert client.get(f"/api/centers/{uuid}", headers=headers("sub-1")).json()["name"] == "Admin edit"

    assert client.delete(f"/api/centers/{uuid}", headers=admin).status_code == 204
    assert client.get(f"/api/centers/{uuid}", headers=admin).status_code == 404


def test_list_search_and_reference_lookup(client, headers, geocoder):
    h = headers("sub-1")
    client.post("/api/centers/", headers=h, json={"centers": [
        _center(userReference="B", name="Teststelle Nord", address="Nordweg 1"),
        _center(userReference="A", name="Teststelle Süd", address="Südweg 2"),
        _center(userReference="C", name="Impfzentrum", address="Nordring 3"),
    ]})

    page = client.get("/api/centers/all", headers=h, params={"size": 2}).json()
    assert page["count"] == 3
    assert [c["userReference"] for c in page["result"]] == ["A", "B"]

    found = client.get("/api/centers/all", headers=h, params={"search": "nord"}).json()
    assert [c["userReference"] for c in found["result"]] == ["B", "C"]

    assert client.get("/api/centers/ref/C", headers=h).json()["name"] == "Impfzentrum"
    assert client.get("/api/centers/ref/C", headers=headers("sub-2")).status_code == 404
    assert client.delete("/api/centers/ref/C", headers=h).status_code == 204
    assert client.get("/api/centers/ref/C", headers=h).status_code == 404


def test_authentication_required(client):
    r = client.get("/api/centers/all")
    assert r.status_code == 401
    assert r.json()["message"] == "missing bearer token"

    r = client.get("/api/centers/all", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_bounds_lookup(client, geocoder):
    r = client.get("/api/centers/bounds", params={"address": "Frankfurt"})
    assert r.status_code == 200
    body = r.json()
    assert body["address"].startswith("Römerberg 1")
    assert body["bounds"]["northEast"] == {"longitude": pytest.approx(9.01), "latitude": pytest.approx(50.01)}

    assert client.get("/api/centers/bounds", params={"address": " "}).json()["message"] == "invalid address"

    geocoder.result = None
    r = client.get("/api/centers/bounds", params={"address": "Nirgendwo"})
    assert r.status_code == 400
    assert r.json()["message"] == "no results"


def test_admin_geocode_all(client, headers, geocoder):
    client.post("/api/centers/", headers=headers("sub-1"), json={"centers": [_center(), _center(userReference="X")]})
    geocoder.calls.clear()

    assert client.post("/api/centers/admin/geocode", headers=headers("sub-1")).status_code == 403
    r = client.post("/api/centers/admin/geocode", headers=headers("admin", roles=("admin",)))
    assert r.status_code == 202
    assert r.json() == {"scheduled": 2}
    assert len(geocoder.calls) == 2


def test_admin_csv_export(client, headers, geocoder):
    client.post("/api/centers/", headers=headers("sub-1", name="Betreiber"), json={"centers": [_center()]})

    r = client.get("/api/centers/admin/csv", headers=headers("admin", roles=("admin",)))
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    text = r.content.decode("utf-8")
    assert text.startswith("\ufeffpartner_subject;partner_uuid;partner_name")
    lines = text.strip().split("\n")
    assert len(lines) == 2
    row = lines[1].split(";")
    assert row[0] == "sub-1"
    assert row[2] == "Betreiber"
    assert row[4] == "A-1"
    assert row[11] == "60311"
    assert row[16] == "Antigen"
