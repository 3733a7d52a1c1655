# backend/app/services/contract_service.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from ..auth import Principal
from ..config import settings
from ..domain.audit import audit_write, snapshot
from ..domain.errors import ConflictError, ValidationError
from ..domain.installments import Installment, as_date, build_schedule, payment_plan_summary
from ..domain.states import LeaseStatus, PaymentMethod, PaymentStatus, parse_status
from ..models import Lease, RentPayment
from . import notifications as nf
from .locks_service import lock_lease, lock_property, lock_rent_payments, peek_lease, unit_of_work
from .ownership import ensure_manages_lease

log = logging.getLogger("leasehub.contracts")

# contract_url=None means "leave alone"; "" clears it.
_UNSET: Any = object()


@dataclass
class ContractUpdateResult:
    lease: Lease
    schedule: list[Installment] = field(default_factory=list)
    rescheduled: bool = False


def _parse_method(v: Any) -> PaymentMethod:
    method = parse_status(PaymentMethod, v, field="payment_method")
    if method.value not in settings.allowed_payment_methods:
        raise ValidationError(
            "Payment method must be one of " + ", ".join(settings.allowed_payment_methods)
        )
    return method


def _plan_message(schedule: list[Installment]) -> str:
    n = len(schedule)
    first = schedule[0].due_date.isoformat()
    return f"Your rent will be paid in {n} cheque{'s' if n != 1 else ''}. First payment due on {first}."


def apply_contract_update(
    db: Session,
    *,
    actor: Principal,
    lease_id: int,
    contract_url: Any = _UNSET,
    cheque_count: Any = None,
    payment_method: Any = None,
    first_due_date: Any = None,
    reminder_lead_days: Optional[int] = None,
) -> ContractUpdateResult:
    """
    Record the contract document and (re)generate the installment schedule.

    The schedule is regenerated when cheque_count or first_due_date is given:
    every existing rent_payments row for the lease is deleted and replaced while
    the lease row lock is held.
    """
    reschedule = cheque_count is not None or first_due_date is not None
    if contract_url is _UNSET and not reschedule and payment_method is None:
        raise ValidationError("No contract fields to update")

    method = _parse_method(payment_method) if payment_method is not None else None
    if first_due_date is not None and as_date(first_due_date) is None:
        raise ValidationError("Invalid first due date")
    lead_days = settings.default_reminder_lead_days if reminder_lead_days is None else int(reminder_lead_days)
    if lead_days < 0:
        raise ValidationError("reminder_lead_days cannot be negative")

    with unit_of_work(db):
        peek = peek_lease(db, lease_id)
        prop = lock_property(db, peek.property_id)
        lease = lock_lease(db, lease_id)
        ensure_manages_lease(actor, lease)

        before = snapshot(lease)
        now = datetime.utcnow()

        if contract_url is not _UNSET:
            url = str(contract_url or "").strip() or None
            if url != lease.contract_document_url:
                lease.contract_document_url = url
                lease.contract_uploaded_at = now if url else None
                lease.contract_uploaded_by = actor.user_id if url else None

        if method is not None:
            lease.payment_method = method

        schedule: list[Installment] = []
        if reschedule:
            if lease.status != LeaseStatus.ACTIVE:
                raise ConflictError("Payment schedule can only be changed on an active lease")
            count = cheque_count if cheque_count is not None else lease.cheque_count
            if count is None:
                raise ValidationError("Cheque count is required to build a payment schedule")

            schedule = build_schedule(
                rent_amount=lease.rent_amount,
                cheque_count=count,
                start_date=first_due_date if first_due_date is not None else lease.start_date,
                lease_end_date=lease.end_date,
                allowed_counts=settings.allowed_cheque_counts,
            )

            lock_rent_payments(db, lease.id)
            db.execute(delete(RentPayment).where(RentPayment.lease_id == lease.id))

            pay_method = lease.payment_method or PaymentMethod(settings.default_payment_method)
            for item in schedule:
                db.add(
                    RentPayment(
                        lease_id=lease.id,
                        tenant_id=lease.tenant_id,
                        property_id=lease.property_id,
                        owner_id=lease.owner_id,
                        installment_number=item.installment_number,
                        amount=item.amount,
                        due_date=item.due_date,
                        payment_method=pay_method,
                        payment_status=PaymentStatus.PENDING,
                        reminder_lead_days=lead_days,
                        created_at=now,
                        updated_at=now,
                    )
                )

            lease.cheque_count = len(schedule)
            lease.payment_method = pay_method
            lease.payment_plan_json = json.dumps(payment_plan_summary(schedule))

        lease.updated_at = now
        db.flush()

        audit_write(
            db,
            actor_user_id=actor.user_id,
            action="lease.contract_update",
            entity_type="Lease",
            entity_id=lease.id,
            before=before,
            after=snapshot(lease),
        )

        message = _plan_message(schedule) if schedule else "Your lease contract details have been updated."
        nf.notify_tenant(
            db,
            lease.tenant,
            prop=prop,
            event_type=nf.LEASE_CONTRACT_UPDATED,
            payload={
                "lease_id": lease.id,
                "message": message,
                "cheque_count": lease.cheque_count,
                "first_due_date": schedule[0].due_date.isoformat() if schedule else None,
                "contract_document_url": lease.contract_document_url,
            },
        )
        if schedule:
            log.info(
                "payment schedule generated (%s installments)",
                len(schedule),
                extra={"lease_id": lease.id, "property_id": prop.id},
            )
    return ContractUpdateResult(lease=lease, schedule=schedule, rescheduled=bool(schedule))
