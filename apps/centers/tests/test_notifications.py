from datetime import timedelta

import pytest

from app import settings_store
from app.database import SessionLocal, session_scope
from app.models import Center, Operator, utcnow
from app.notifications import StaleCenterNotifier

STALE = utcnow() - timedelta(weeks=6)


@pytest.fixture
def templates(put_setting):
    put_setting(settings_store.OPERATOR_NOTIFICATION_TEMPLATE, "Hallo {{ Operator.name }}: confirm?token={{ Token }}")
    put_setting(settings_store.OPERATOR_NOTIFICATION_SUBJECT, "Bitte Daten prüfen")
    put_setting(settings_store.CENTER_NOTIFICATION_TEMPLATE, "{{ Center.name }} von {{ Operator.name }}")
    put_setting(settings_store.CENTER_NOTIFICATION_SUBJECT, "Teststelle prüfen")


def _notifier(mailer) -> StaleCenterNotifier:
    return StaleCenterNotifier(SessionLocal, mailer, age_weeks=4, renotify_weeks=4)


def _operator(uuid: str) -> Operator:
    with session_scope() as db:
        op = db.get(Operator, uuid)
        db.expunge(op)
        return op


def test_operator_with_only_stale_centers_is_notified(client, mailer, templates, make_operator, make_center):
    op = make_operator("op-1", name="Betreiber", email="ops@example.org")
    make_center(op, last_update=STALE)
    make_center(op, last_update=STALE - timedelta(days=3))

    result = _notifier(mailer).run_cycle()

    assert result.notified == [op]
    [mail] = mailer.sent
    assert mail["receiver"] == "ops@example.org"
    assert mail["subject"] == "Bitte Daten prüfen"
    stored = _operator(op)
    assert stored.notified is not None
    assert stored.notification_token
    assert mail["body"] == f"Hallo Betreiber: confirm?token={stored.notification_token}"

    r = client.get("/api/operators/notification/confirm", params={"token": stored.notification_token})
    assert r.status_code == 204
    assert _operator(op).notification_token is None

    assert client.get("/api/operators/notification/confirm", params={"token": "unknown"}).status_code == 404


def test_operator_with_fresh_center_is_skipped(mailer, templates, make_operator, make_center):
    op = make_operator("op-1", email="ops@example.org")
    make_center(op, last_update=STALE)
    make_center(op)

    assert _notifier(mailer).run_cycle().notified == []
    assert mailer.sent == []


def test_operator_is_not_notified_twice(mailer, templates, make_operator, make_center):
    op = make_operator("op-1", email="ops@example.org")
    make_center(op, last_update=STALE)

    _notifier(mailer).run_cycle()
    second = _notifier(mailer).run_cycle()

    assert second.notified == []
    assert len(mailer.sent) == 1


def test_center_policy_notifies_stale_centers(mailer, templates, make_operator, make_center):
    op = make_operator("op-1", name="Betreiber", email="ops@example.org", bug_reports_receiver="center")
    stale = make_center(op, name="Alte Teststelle", email="center@example.org", last_update=STALE)
    make_center(op, name="Neue Teststelle", email="new@example.org")

    result = _notifier(mailer).run_cycle()

    assert result.notified == [stale]
    [mail] = mailer.sent
    assert mail["receiver"] == "center@example.org"
    assert mail["body"] == "Alte Teststelle von Betreiber"
    with session_scope() as db:
        center = db.get(Center, stale)
        assert center.notified is not None
        assert center.last_update == STALE


def test_failures_do_not_stop_the_cycle(mailer, templates, make_operator, make_center):
    without_email = make_operator("op-1")
    with_email = make_operator("op-2", email="ops@example.org")
    make_center(without_email, last_update=STALE)
    make_center(with_email, last_update=STALE)

    result = _notifier(mailer).run_cycle()

    assert result.failed == [without_email]
    assert result.notified == [with_email]
    assert _operator(without_email).notified is None


def test_missing_templates_fail_every_notification(mailer, make_operator, make_center):
    op = make_operator("op-1", email="ops@example.org")
    make_center(op, last_update=STALE)

    result = _notifier(mailer).run_cycle()

    assert result.failed == [op]
    assert mailer.sent == []
