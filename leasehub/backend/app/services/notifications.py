# backend/app/services/notifications.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.errors import NotFoundError
from ..models import NotificationEvent, Owner, Property, Tenant

log = logging.getLogger("leasehub.notifications")

# -----------------------------------------------------------------------------
# Notification outbox
# -----------------------------------------------------------------------------
# Lifecycle services append NotificationEvent rows inside their transaction.
# unit_of_work() calls dispatch_pending() only after the commit succeeded, so
# delivery latency or failure can never undo or fail a committed transition.
# Failed deliveries stay in the table with status pending/failed.
# -----------------------------------------------------------------------------

_PENDING_KEY = "outbox_pending"

APPLICATION_SUBMITTED = "application.submitted"
APPLICATION_STATUS_UPDATED = "application.statusUpdated"
LEASE_NOTIFICATION = "lease.notification"
LEASE_CONTRACT_UPDATED = "lease.contractUpdated"

LEASE_ACTIONS = frozenset({"created", "updated", "renewed", "terminated"})


def _dumps(v: Any) -> str:
    return json.dumps(v or {}, ensure_ascii=False, sort_keys=True, default=str)


def _loads(s: Optional[str]) -> dict:
    if not s:
        return {}
    try:
        x = json.loads(s)
        return x if isinstance(x, dict) else {}
    except ValueError:
        return {}


def emit(
    db: Session,
    *,
    event_type: str,
    recipient_role: str,
    recipient_user_id: Optional[int],
    recipient_email: Optional[str],
    recipient_name: Optional[str],
    prop: Optional[Property],
    action: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> NotificationEvent:
    """Queue one event in the current transaction. Does NOT commit."""
    if not event_type:
        raise ValueError("event_type required")
    if event_type == LEASE_NOTIFICATION and action not in LEASE_ACTIONS:
        raise ValueError(f"unknown lease notification action: {action}")

    row = NotificationEvent(
        event_type=event_type,
        action=action,
        recipient_role=recipient_role,
        recipient_user_id=recipient_user_id,
        recipient_email=recipient_email,
        recipient_name=recipient_name,
        property_id=prop.id if prop is not None else None,
        property_name=(prop.property_name if prop is not None else None) or "the property",
        payload_json=_dumps(payload),
        status="pending",
        attempts=0,
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.info.setdefault(_PENDING_KEY, []).append(row)
    return row


def notify_tenant(
    db: Session,
    tenant: Tenant,
    *,
    prop: Optional[Property],
    event_type: str,
    action: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> NotificationEvent:
    user = tenant.user
    return emit(
        db,
        event_type=event_type,
        recipient_role="tenant",
        recipient_user_id=tenant.user_id,
        recipient_email=user.email if user else None,
        recipient_name=tenant.display_name,
        prop=prop,
        action=action,
        payload=payload,
    )


def notify_owner(
    db: Session,
    owner: Owner,
    *,
    prop: Optional[Property],
    event_type: str,
    action: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> NotificationEvent:
    user = owner.user
    return emit(
        db,
        event_type=event_type,
        recipient_role="owner",
        recipient_user_id=owner.user_id,
        recipient_email=user.email if user else None,
        recipient_name=owner.display_name,
        prop=prop,
        action=action,
        payload=payload,
    )


def discard_pending(db: Session) -> None:
    db.info.pop(_PENDING_KEY, None)


def queued_delivery() -> bool:
    """Webhook delivery always goes through the worker queue."""
    return bool(settings.notifications_async or settings.notification_webhook_url)


def dispatch_pending(db: Session) -> list[int]:
    """
    Hand committed events to delivery. Never raises.

    webhook configured or notifications_async=True -> Celery task per event
    otherwise (log sink)                            -> inline on this session
    """
    rows = db.info.pop(_PENDING_KEY, [])
    ids = [int(r.id) for r in rows if r.id is not None]

    queued = queued_delivery()
    for event_id in ids:
        try:
            if queued:
                from ..workers.notification_tasks import deliver_notification

                deliver_notification.delay(event_id)
            else:
                deliver(db, event_id=event_id)
        except Exception:
            log.warning("notification dispatch failed", exc_info=True, extra={"event_id": event_id})
    return ids


# -----------------------------
# Rendering
# -----------------------------
@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str


_STATUS_MESSAGES = {
    "approved": "Great news! Your application has been approved.",
    "under_review": "Your application is currently under review. We will update you soon.",
    "pending": "Your application has been moved back to pending status.",
}


def render(event: NotificationEvent) -> RenderedMessage:
    p = _loads(event.payload_json)
    prop = event.property_name or "the property"
    name = event.recipient_name or "there"

    if event.event_type == APPLICATION_SUBMITTED:
        if event.recipient_role == "owner":
            offer = f" Offer: {p['offer_amount']}." if p.get("offer_amount") else ""
            return RenderedMessage(
                subject=f"New application for {prop}",
                body=f"Hi {name}, {p.get('tenant_name') or 'a prospective tenant'} applied for {prop}.{offer}",
            )
        return RenderedMessage(
            subject=f"Application received for {prop}",
            body=f"Hi {name}, we received your application for {prop}.",
        )

    if event.event_type == APPLICATION_STATUS_UPDATED:
        status = str(p.get("status") or "").replace("_", " ")
        lines = [f"Hi {name}, the application for {prop} is now {status}."]
        if p.get("message"):
            lines.append(str(p["message"]))
        elif event.recipient_role == "tenant" and p.get("status") in _STATUS_MESSAGES:
            lines.append(_STATUS_MESSAGES[p["status"]])
        if p.get("rejection_reason"):
            lines.append(f"Reason: {p['rejection_reason']}")
        if p.get("lease_start_date"):
            lines.append(f"Lease: {p['lease_start_date']} to {p.get('lease_end_date')}, rent {p.get('rent_amount')}.")
        return RenderedMessage(subject=f"Application {status}: {prop}", body=" ".join(lines))

    if event.event_type == LEASE_NOTIFICATION:
        action = event.action or "updated"
        lines = [f"Hi {name}, the lease for {prop} has been {action}."]
        if p.get("start_date"):
            lines.append(f"Term: {p['start_date']} to {p.get('end_date')}.")
        if p.get("rent_amount") is not None:
            lines.append(f"Rent: {p['rent_amount']}.")
        if p.get("notes"):
            lines.append(str(p["notes"]))
        return RenderedMessage(subject=f"Lease {action}: {prop}", body=" ".join(lines))

    if event.event_type == LEASE_CONTRACT_UPDATED:
        return RenderedMessage(
            subject=f"Lease updated: {prop}",
            body=str(p.get("message") or "Your lease details have been updated."),
        )

    return RenderedMessage(subject=event.event_type, body=_dumps(p))


# -----------------------------
# Delivery
# -----------------------------
def deliver(db: Session, *, event_id: int) -> NotificationEvent | None:
    """
    Deliver one queued event. Idempotent once delivered.

    Records the failure on the row and re-raises so a Celery worker can retry.
    """
    row = db.get(NotificationEvent, int(event_id))
    if row is None:
        return None
    if row.status == "delivered":
        return row

    msg = render(row)
    try:
        if settings.notification_webhook_url:
            resp = httpx.post(
                settings.notification_webhook_url,
                json={
                    "event_id": row.id,
                    "event_type": row.event_type,
                    "action": row.action,
                    "recipient": {
                        "role": row.recipient_role,
                        "user_id": row.recipient_user_id,
                        "email": row.recipient_email,
                        "name": row.recipient_name,
                    },
                    "property_name": row.property_name,
                    "subject": msg.subject,
                    "body": msg.body,
                    "payload": _loads(row.payload_json),
                },
                timeout=settings.notification_timeout_seconds,
            )
            resp.raise_for_status()
        else:
            log.info(
                "notification %s to %s: %s",
                row.event_type,
                row.recipient_email or row.recipient_role,
                msg.subject,
                extra={"event_id": row.id, "property_id": row.property_id},
            )

        row.status = "delivered"
        row.attempts = int(row.attempts or 0) + 1
        row.delivered_at = datetime.utcnow()
        row.last_error = None
        db.commit()
        return row
    except Exception as e:
        db.rollback()
        row = db.get(NotificationEvent, int(event_id))
        if row is not None:
            row.attempts = int(row.attempts or 0) + 1
            row.last_error = f"{type(e).__name__}: {e}"[:2000]
            row.status = "failed" if row.attempts >= settings.notification_max_attempts else "pending"
            db.commit()
        raise


def redeliver(db: Session, *, event_id: int) -> NotificationEvent:
    row = db.get(NotificationEvent, int(event_id))
    if row is None:
        raise NotFoundError("Notification event not found")
    try:
        deliver(db, event_id=row.id)
    except Exception:
        log.warning("notification redelivery failed", exc_info=True, extra={"event_id": row.id})
    db.refresh(row)
    return row


def list_events(
    db: Session,
    *,
    status: Optional[str] = None,
    property_id: Optional[int] = None,
    limit: int = 200,
) -> list[NotificationEvent]:
    q = select(NotificationEvent).order_by(NotificationEvent.id.desc())
    if status:
        q = q.where(NotificationEvent.status == status)
    if property_id is not None:
        q = q.where(NotificationEvent.property_id == int(property_id))
    return list(db.scalars(q.limit(int(limit))).all())
