# backend/app/workers/notification_tasks.py
from __future__ import annotations

import logging
import random

from ..config import settings
from ..db import SessionLocal
from ..models import NotificationEvent
from ..services.notifications import deliver
from .celery_app import celery_app

log = logging.getLogger("leasehub.workers")


def _backoff_seconds(retries: int, *, base: int = 5, cap: int = 300) -> int:
    """Exponential backoff, +/- 20% jitter."""
    delay = min(cap, base * (2 ** max(0, int(retries))))
    jitter = int(delay * 0.2)
    if jitter > 0:
        delay = max(1, delay + random.randint(-jitter, jitter))
    return delay


@celery_app.task(
    bind=True,
    max_retries=max(0, settings.notification_max_attempts - 1),
    name="app.workers.notification_tasks.deliver_notification",
)
def deliver_notification(self, event_id: int) -> dict:
    """
    Deliver one outbox event. The business transaction is already committed;
    a failure here only affects the event row.
    """
    db = SessionLocal()
    try:
        try:
            row = deliver(db, event_id=int(event_id))
        except Exception as exc:
            current = db.get(NotificationEvent, int(event_id))
            if current is not None and current.status == "failed":
                log.warning("notification gave up", extra={"event_id": event_id})
                return {"ok": False, "event_id": event_id, "status": "failed"}
            raise self.retry(exc=exc, countdown=_backoff_seconds(self.request.retries))

        if row is None:
            return {"ok": False, "event_id": event_id, "status": "missing"}
        return {"ok": True, "event_id": event_id, "status": row.status}
    finally:
        db.close()
