# backend/app/services/rent_payment_service.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import Principal
from ..domain.audit import audit_write, snapshot
from ..domain.errors import ValidationError
from ..domain.installments import as_date
from ..domain.states import PaymentMethod, PaymentStatus, ensure_payment_transition, parse_status
from ..models import RentPayment
from .locks_service import lock_lease, lock_property, lock_rent_payment, peek_lease, unit_of_work
from .ownership import ensure_can_view_lease, ensure_manages_lease, must_get_rent_payment

log = logging.getLogger("leasehub.rent_payments")


def update_payment_status(
    db: Session,
    *,
    actor: Principal,
    payment_id: int,
    status: Any,
    payment_date: Any = None,
    payment_method: Any = None,
    transaction_reference: Optional[str] = None,
    receipt_url: Optional[str] = None,
    notes: Optional[str] = None,
) -> RentPayment:
    """Owner/admin records what happened to one installment."""
    target = parse_status(PaymentStatus, status, field="payment_status")
    paid_on = as_date(payment_date)
    if payment_date not in (None, "") and paid_on is None:
        raise ValidationError("Invalid payment date")
    method = parse_status(PaymentMethod, payment_method, field="payment_method") if payment_method else None

    peek = must_get_rent_payment(db, payment_id=payment_id)
    with unit_of_work(db):
        lock_property(db, peek.property_id)
        lease = lock_lease(db, peek.lease_id)
        ensure_manages_lease(actor, lease)
        row = lock_rent_payment(db, payment_id)

        ensure_payment_transition(row.payment_status, target)
        before = snapshot(row)

        row.payment_status = target
        if target == PaymentStatus.PAID:
            row.payment_date = paid_on or date.today()
        elif paid_on is not None:
            row.payment_date = paid_on
        if method is not None:
            row.payment_method = method
        if transaction_reference is not None:
            row.transaction_reference = transaction_reference or None
        if receipt_url is not None:
            row.receipt_url = receipt_url or None
        if notes is not None:
            row.notes = notes or None
        row.updated_at = datetime.utcnow()

        audit_write(
            db,
            actor_user_id=actor.user_id,
            action=f"rent_payment.{target.value}",
            entity_type="RentPayment",
            entity_id=row.id,
            before=before,
            after=snapshot(row),
        )
        log.info(
            "installment %s marked %s",
            row.installment_number,
            target.value,
            extra={"lease_id": row.lease_id, "property_id": row.property_id},
        )
    return row


def list_payments(db: Session, *, actor: Principal, lease_id: int) -> list[RentPayment]:
    lease = peek_lease(db, lease_id)
    ensure_can_view_lease(actor, lease)
    q = (
        select(RentPayment)
        .where(RentPayment.lease_id == lease.id)
        .order_by(RentPayment.installment_number)
    )
    return list(db.scalars(q).all())


def payment_summary(db: Session, *, actor: Principal, lease_id: int) -> dict[str, Any]:
    """
    Scheduled vs paid totals for one lease.

    scheduled_total ignores cancelled installments, so on a lease with a live
    schedule it equals the lease rent exactly.
    """
    lease = peek_lease(db, lease_id)
    ensure_can_view_lease(actor, lease)
    rows = list_payments(db, actor=actor, lease_id=lease_id)

    zero = Decimal("0.00")
    live = [r for r in rows if r.payment_status != PaymentStatus.CANCELLED]
    scheduled = sum((r.amount for r in live), zero)
    paid = sum((r.amount for r in live if r.payment_status == PaymentStatus.PAID), zero)

    counts: dict[str, int] = {s.value: 0 for s in PaymentStatus}
    for r in rows:
        counts[r.payment_status.value] += 1

    upcoming = [r for r in live if r.payment_status != PaymentStatus.PAID]
    next_due = min((r.due_date for r in upcoming), default=None)

    return {
        "lease_id": lease.id,
        "rent_amount": str(lease.rent_amount),
        "cheque_count": lease.cheque_count,
        "scheduled_total": str(scheduled),
        "paid_total": str(paid),
        "outstanding_total": str(scheduled - paid),
        "counts": counts,
        "next_due_date": next_due.isoformat() if next_due else None,
    }
