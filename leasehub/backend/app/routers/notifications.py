# backend/app/routers/notifications.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, require_admin
from ..db import get_db
from ..schemas import NotificationEventOut
from ..services import notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationEventOut])
def list_notifications(
    status: Optional[str] = Query(default=None, description="pending | delivered | failed"),
    property_id: Optional[int] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_admin),
):
    return notifications.list_events(db, status=status, property_id=property_id, limit=limit)


@router.post("/{event_id}/redeliver", response_model=NotificationEventOut)
def redeliver_notification(event_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    """Retry one outbox event now. A delivery failure is recorded on the row, not raised."""
    return notifications.redeliver(db, event_id=event_id)
