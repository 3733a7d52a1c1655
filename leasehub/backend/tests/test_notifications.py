# backend/tests/test_notifications.py
from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select

from conftest import applicant

from app.config import settings
from app.domain.errors import NotFoundError, ValidationError
from app.domain.states import ApplicationStatus
from app.models import Application, NotificationEvent
from app.services import application_service as apps
from app.services import notifications as nf
from app.workers import notification_tasks
from app.workers.notification_tasks import _backoff_seconds, deliver_notification


def _submit(db, world, tenant=None):
    return apps.submit_application(
        db,
        actor=tenant or world.tenant_a,
        property_id=world.property_id,
        applicant_info=applicant(),
        offer_amount="110000",
    )


def _events(db):
    return db.scalars(select(NotificationEvent).order_by(NotificationEvent.id)).all()


def test_submit_notifies_owner_and_tenant_after_commit(db, world):
    _submit(db, world)

    events = _events(db)
    assert [(e.event_type, e.recipient_role) for e in events] == [
        (nf.APPLICATION_SUBMITTED, "owner"),
        (nf.APPLICATION_SUBMITTED, "tenant"),
    ]
    assert all(e.status == "delivered" and e.attempts == 1 for e in events)
    assert events[0].recipient_email == "owner@t.local"
    assert events[0].property_name == "Marina Heights 1204"
    assert "outbox_pending" not in db.info


def test_approval_fans_out_to_every_party(db, world):
    a = _submit(db, world)
    _submit(db, world, world.tenant_b)
    before = len(_events(db))

    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")

    new = _events(db)[before:]
    kinds = [(e.event_type, e.recipient_role, e.action) for e in new]
    assert (nf.APPLICATION_STATUS_UPDATED, "tenant", None) in kinds
    assert (nf.APPLICATION_STATUS_UPDATED, "owner", None) in kinds
    assert (nf.LEASE_NOTIFICATION, "tenant", "created") in kinds
    assert (nf.LEASE_NOTIFICATION, "owner", "created") in kinds

    to_tenants = [e for e in new if e.event_type == nf.APPLICATION_STATUS_UPDATED and e.recipient_role == "tenant"]
    assert {e.recipient_user_id for e in to_tenants} == {world.tenant_a.user_id, world.tenant_b.user_id}

    owner_msg = next(e for e in new if e.event_type == nf.APPLICATION_STATUS_UPDATED and e.recipient_role == "owner")
    assert json.loads(owner_msg.payload_json)["message"] == (
        "You approved the application from Aisha Khan. A lease has been created."
    )


class _QueuedTask:
    def __init__(self):
        self.queued = []

    def delay(self, event_id):
        self.queued.append(event_id)


@pytest.fixture
def webhook(monkeypatch):
    """Webhook target configured, worker queue replaced by a recorder."""
    task = _QueuedTask()
    monkeypatch.setattr(settings, "notification_webhook_url", "http://hooks.test/notify")
    monkeypatch.setattr(notification_tasks, "deliver_notification", task)
    return task


def test_webhook_posts_are_queued_not_made_in_the_request(db, world, webhook, monkeypatch):
    calls = []
    monkeypatch.setattr(nf.httpx, "post", lambda url, **kw: calls.append(url))

    a = _submit(db, world)
    _submit(db, world, world.tenant_b)
    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")

    assert calls == []
    events = _events(db)
    assert webhook.queued == [e.id for e in events]
    assert all(e.status == "pending" and e.attempts == 0 for e in events)


def test_webhook_failure_never_undoes_the_transition(db, world, webhook, monkeypatch):
    calls = []

    def boom(url, **kw):
        calls.append(url)
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(nf.httpx, "post", boom)

    a = _submit(db, world)
    for event_id in webhook.queued:
        nf.redeliver(db, event_id=event_id)

    db.expire_all()
    assert db.get(Application, a.id).status == ApplicationStatus.PENDING
    events = _events(db)
    assert len(events) == 2 and len(calls) == 2
    for e in events:
        assert e.status == "pending"
        assert e.attempts == 1
        assert e.last_error.startswith("ConnectError")


def test_event_gives_up_after_max_attempts(db, world, webhook, monkeypatch):
    monkeypatch.setattr(settings, "notification_max_attempts", 2)

    def slow(url, **kw):
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(nf.httpx, "post", slow)

    _submit(db, world)
    ev = _events(db)[0]
    assert nf.redeliver(db, event_id=ev.id).status == "pending"
    out = nf.redeliver(db, event_id=ev.id)
    assert out.status == "failed"
    assert out.attempts == 2


def test_webhook_receives_rendered_message(db, world, webhook, monkeypatch):
    sent = []

    def fake_post(url, json=None, timeout=None):
        sent.append(json)
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(nf.httpx, "post", fake_post)

    _submit(db, world)
    for event_id in webhook.queued:
        nf.deliver(db, event_id=event_id)

    assert [m["recipient"]["role"] for m in sent] == ["owner", "tenant"]
    assert sent[0]["subject"] == "New application for Marina Heights 1204"
    assert "Offer: 110000.00." in sent[0]["body"]
    assert all(e.status == "delivered" for e in _events(db))


def test_failed_transition_emits_nothing(db, world):
    a = _submit(db, world)
    before = len(_events(db))

    with pytest.raises(ValidationError):
        apps.set_application_status(
            db, actor=world.owner, application_id=a.id, status="approved", lease_end_date="never"
        )

    assert len(_events(db)) == before
    assert "outbox_pending" not in db.info


def test_async_mode_hands_events_to_celery(db, world, monkeypatch):
    task = _QueuedTask()
    monkeypatch.setattr(settings, "notifications_async", True)
    monkeypatch.setattr(notification_tasks, "deliver_notification", task)

    _submit(db, world)

    events = _events(db)
    assert task.queued == [e.id for e in events]
    assert all(e.status == "pending" and e.attempts == 0 for e in events)


def test_worker_task_delivers_and_reports(db, world, monkeypatch):
    monkeypatch.setattr(settings, "notifications_async", True)
    monkeypatch.setattr(notification_tasks, "deliver_notification", _QueuedTask())
    _submit(db, world)
    ev = _events(db)[0]

    assert deliver_notification(ev.id) == {"ok": True, "event_id": ev.id, "status": "delivered"}
    assert deliver_notification(999999) == {"ok": False, "event_id": 999999, "status": "missing"}

    db.expire_all()
    assert db.get(NotificationEvent, ev.id).status == "delivered"


def test_backoff_grows_and_is_capped():
    assert 4 <= _backoff_seconds(0) <= 6
    assert 32 <= _backoff_seconds(3) <= 48
    assert _backoff_seconds(20) <= 360


def test_redeliver_unknown_event(db):
    with pytest.raises(NotFoundError):
        nf.redeliver(db, event_id=12345)


def _event(**kw) -> NotificationEvent:
    kw.setdefault("recipient_role", "tenant")
    kw.setdefault("recipient_name", "Aisha Khan")
    kw.setdefault("property_name", "Marina Heights 1204")
    kw["payload_json"] = json.dumps(kw.pop("payload", {}))
    return NotificationEvent(**kw)


def test_render_status_update_for_tenant():
    msg = nf.render(
        _event(
            event_type=nf.APPLICATION_STATUS_UPDATED,
            payload={"status": "rejected", "rejection_reason": "Lease awarded to another tenant"},
        )
    )
    assert msg.subject == "Application rejected: Marina Heights 1204"
    assert msg.body.endswith("Reason: Lease awarded to another tenant")


def test_render_default_status_text():
    msg = nf.render(_event(event_type=nf.APPLICATION_STATUS_UPDATED, payload={"status": "under_review"}))
    assert "is now under review." in msg.body
    assert "We will update you soon." in msg.body


def test_render_lease_notification():
    msg = nf.render(
        _event(
            event_type=nf.LEASE_NOTIFICATION,
            action="renewed",
            payload={"start_date": "2027-01-01", "end_date": "2028-01-01", "rent_amount": "126000.00"},
        )
    )
    assert msg.subject == "Lease renewed: Marina Heights 1204"
    assert "Term: 2027-01-01 to 2028-01-01." in msg.body


def test_unknown_lease_action_is_a_programming_error(db, world):
    with pytest.raises(ValueError):
        nf.emit(
            db,
            event_type=nf.LEASE_NOTIFICATION,
            recipient_role="tenant",
            recipient_user_id=None,
            recipient_email=None,
            recipient_name=None,
            prop=None,
            action="exploded",
        )
