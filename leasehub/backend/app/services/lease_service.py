# backend/app/services/lease_service.py
from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..auth import Principal
from ..domain.audit import audit_write, snapshot
from ..domain.errors import ConflictError, ValidationError
from ..domain.installments import as_date, as_money
from ..domain.states import (
    ApplicationStatus,
    EjariStatus,
    LeaseStatus,
    PaymentStatus,
    ensure_application_transition,
    ensure_lease_transition,
    parse_status,
)
from ..models import Application, Lease, Property, RentPayment
from . import notifications as nf
from . import occupancy
from .locks_service import (
    lock_active_lease,
    lock_application,
    lock_lease,
    lock_property,
    lock_rent_payments,
    peek_application,
    peek_lease,
    unit_of_work,
)
from .ownership import ensure_can_view_lease, ensure_manages_lease, ensure_manages_property

log = logging.getLogger("leasehub.leases")

VACANCY_REASON = "Lease ended and property set to vacant"


def _utcnow() -> datetime:
    return datetime.utcnow()


def _money_out(v: Optional[Decimal]) -> Optional[str]:
    return str(v) if v is not None else None


def lease_notice(
    db: Session,
    lease: Lease,
    prop: Property,
    *,
    action: str,
    tenant_notes: Optional[str] = None,
    owner_notes: Optional[str] = None,
    with_terms: bool = True,
) -> None:
    """lease.notification(action) to tenant and owner."""
    payload: dict[str, Any] = {"lease_id": lease.id}
    if with_terms:
        payload.update(
            start_date=lease.start_date.isoformat(),
            end_date=lease.end_date.isoformat(),
            rent_amount=_money_out(lease.rent_amount),
        )
    nf.notify_tenant(
        db, lease.tenant, prop=prop, event_type=nf.LEASE_NOTIFICATION, action=action,
        payload={**payload, "notes": tenant_notes},
    )
    nf.notify_owner(
        db, lease.owner, prop=prop, event_type=nf.LEASE_NOTIFICATION, action=action,
        payload={**payload, "notes": owner_notes},
    )


# -----------------------------------------------------------------------------
# Building blocks (caller holds the property lock and the unit of work)
# -----------------------------------------------------------------------------
def open_lease(
    db: Session,
    *,
    actor: Principal,
    prop: Property,
    tenant_id: int,
    start_date: date,
    end_date: date,
    rent_amount: Decimal,
    security_deposit: Decimal,
    application: Optional[Application] = None,
    previous: Optional[Lease] = None,
    ejari_number: Optional[str] = None,
    ejari_status: Optional[EjariStatus] = None,
    terms: Optional[dict[str, Any]] = None,
) -> Lease:
    if end_date <= start_date:
        raise ValidationError("Lease end date must be after the start date")
    if rent_amount <= 0:
        raise ValidationError("Rent amount must be greater than zero")
    if security_deposit < 0:
        raise ValidationError("Security deposit cannot be negative")

    now = _utcnow()
    lease = Lease(
        application_id=application.id if application is not None else None,
        previous_lease_id=previous.id if previous is not None else None,
        property_id=prop.id,
        tenant_id=int(tenant_id),
        owner_id=prop.owner_id,
        start_date=start_date,
        end_date=end_date,
        rent_amount=rent_amount,
        security_deposit=security_deposit,
        status=LeaseStatus.ACTIVE,
        ejari_number=ejari_number,
        ejari_status=ejari_status or (EjariStatus.REGISTERED if ejari_number else EjariStatus.PENDING),
        terms_json=json.dumps(terms, sort_keys=True) if terms is not None else None,
        created_at=now,
        updated_at=now,
    )
    db.add(lease)
    db.flush()

    occupancy.occupy(prop, lease)
    audit_write(
        db,
        actor_user_id=actor.user_id,
        action="lease.create",
        entity_type="Lease",
        entity_id=lease.id,
        after=snapshot(lease),
    )
    log.info("lease opened", extra={"lease_id": lease.id, "property_id": prop.id})
    return lease


def close_lease(
    db: Session,
    lease: Lease,
    *,
    actor: Principal,
    status: LeaseStatus,
    reason: Optional[str] = None,
    move_out_inspection: Optional[dict[str, Any]] = None,
) -> None:
    """active -> terminated|renewed. Flushes so the active-lease slot is free."""
    ensure_lease_transition(lease.status, status)
    before = snapshot(lease)
    lease.status = status
    if reason:
        lease.termination_reason = reason
    if move_out_inspection is not None:
        lease.move_out_inspection_json = json.dumps(move_out_inspection, sort_keys=True, default=str)
    lease.updated_at = _utcnow()
    db.flush()
    audit_write(
        db,
        actor_user_id=actor.user_id,
        action=f"lease.{status.value}",
        entity_type="Lease",
        entity_id=lease.id,
        before=before,
        after=snapshot(lease),
    )
    log.info("lease closed", extra={"lease_id": lease.id, "property_id": lease.property_id})


def originating_application_id(db: Session, lease: Lease) -> Optional[int]:
    """Walk the renewal chain back to the application that spawned it."""
    seen: set[int] = set()
    cur: Optional[Lease] = lease
    while cur is not None and cur.id not in seen:
        if cur.application_id is not None:
            return int(cur.application_id)
        seen.add(cur.id)
        cur = db.get(Lease, cur.previous_lease_id) if cur.previous_lease_id else None
    return None


def cancel_open_payments(db: Session, lease: Lease) -> int:
    """Caller must already hold the lease lock."""
    rows = lock_rent_payments(db, lease.id, open_only=True)
    now = _utcnow()
    for r in rows:
        r.payment_status = PaymentStatus.CANCELLED
        r.updated_at = now
    return len(rows)


# -----------------------------------------------------------------------------
# Use cases
# -----------------------------------------------------------------------------
def create_lease(
    db: Session,
    *,
    actor: Principal,
    application_id: int,
    start_date: Any,
    end_date: Any,
    rent_amount: Any,
    security_deposit: Any,
    ejari_number: Optional[str] = None,
    terms: Optional[dict[str, Any]] = None,
) -> Lease:
    """Open a lease for an approved application that doesn't have one yet."""
    start = as_date(start_date)
    end = as_date(end_date)
    if start is None:
        raise ValidationError("Invalid lease start date")
    if end is None:
        raise ValidationError("Invalid lease end date")
    rent = as_money(rent_amount, field="rent_amount")
    deposit = as_money(security_deposit, field="security_deposit")

    with unit_of_work(db):
        peek = peek_application(db, application_id)
        prop = lock_property(db, peek.property_id)
        ensure_manages_property(actor, prop)
        app = lock_application(db, application_id)

        if app.status != ApplicationStatus.APPROVED:
            raise ConflictError("Application must be approved before creating lease")
        if db.scalar(select(Lease.id).where(Lease.application_id == app.id)) is not None:
            raise ConflictError("Application already has a lease")

        active = lock_active_lease(db, prop.id)
        occupancy.ensure_can_open_lease(prop, active)

        lease = open_lease(
            db,
            actor=actor,
            prop=prop,
            tenant_id=app.tenant_id,
            start_date=start,
            end_date=end,
            rent_amount=rent,
            security_deposit=deposit,
            application=app,
            ejari_number=ejari_number,
            terms=terms,
        )
        lease_notice(db, lease, prop, action="created")
    return lease


def renew_lease(
    db: Session,
    *,
    actor: Principal,
    lease_id: int,
    new_end_date: Any,
    new_rent_amount: Any = None,
) -> Lease:
    """
    Close an active lease as renewed and open its successor starting at the
    old end date. Installments are NOT regenerated here.
    """
    end = as_date(new_end_date)
    if end is None:
        raise ValidationError("End date is required")
    rent = as_money(new_rent_amount, field="rent_amount") if new_rent_amount is not None else None

    with unit_of_work(db):
        peek = peek_lease(db, lease_id)
        prop = lock_property(db, peek.property_id)
        old = lock_lease(db, lease_id)
        ensure_manages_lease(actor, old)

        if old.status != LeaseStatus.ACTIVE:
            raise ConflictError("Can only renew active leases")
        if end <= old.end_date:
            raise ValidationError("New end date must be after the current lease end date")

        close_lease(db, old, actor=actor, status=LeaseStatus.RENEWED)
        new = open_lease(
            db,
            actor=actor,
            prop=prop,
            tenant_id=old.tenant_id,
            start_date=old.end_date,
            end_date=end,
            rent_amount=rent if rent is not None else old.rent_amount,
            security_deposit=old.security_deposit,
            previous=old,
            ejari_number=old.ejari_number,
            ejari_status=old.ejari_status,
            terms=json.loads(old.terms_json) if old.terms_json else None,
        )
        lease_notice(
            db,
            new,
            prop,
            action="renewed",
            tenant_notes="Your lease has been renewed. Please review the updated dates.",
            owner_notes="You renewed this lease. The tenant has been notified.",
        )
    return new


def terminate_lease(
    db: Session,
    *,
    actor: Principal,
    lease_id: int,
    reason: Optional[str] = None,
    move_out_inspection: Optional[dict[str, Any]] = None,
) -> Lease:
    with unit_of_work(db):
        peek = peek_lease(db, lease_id)
        prop = lock_property(db, peek.property_id)
        lease = lock_lease(db, lease_id)
        ensure_manages_lease(actor, lease)

        if lease.status != LeaseStatus.ACTIVE:
            raise ConflictError("Can only terminate active leases")

        close_lease(
            db,
            lease,
            actor=actor,
            status=LeaseStatus.TERMINATED,
            reason=reason,
            move_out_inspection=move_out_inspection,
        )
        occupancy.vacate(prop)
        lease_notice(
            db,
            lease,
            prop,
            action="terminated",
            tenant_notes=reason or "The lease has been terminated.",
            owner_notes=reason or "The lease has been marked as terminated.",
            with_terms=False,
        )
    return lease


def end_lease_for_vacancy(db: Session, *, actor: Principal, prop: Property, lease_id: int) -> Lease:
    """
    Admin override cascade: terminate the active lease, cancel its open
    installments and the approved application behind it.

    Caller holds the property lock and the unit of work.
    """
    peek = peek_lease(db, lease_id)
    app_id = originating_application_id(db, peek)
    app = lock_application(db, app_id) if app_id is not None else None
    lease = lock_lease(db, lease_id)

    close_lease(db, lease, actor=actor, status=LeaseStatus.TERMINATED, reason=VACANCY_REASON)
    cancelled = cancel_open_payments(db, lease)

    if app is not None and app.status == ApplicationStatus.APPROVED:
        ensure_application_transition(app.status, ApplicationStatus.CANCELLED, system=True)
        before = snapshot(app)
        app.status = ApplicationStatus.CANCELLED
        app.rejection_reason = app.rejection_reason or VACANCY_REASON
        app.updated_at = _utcnow()
        audit_write(
            db,
            actor_user_id=actor.user_id,
            action="application.cancel",
            entity_type="Application",
            entity_id=app.id,
            before=before,
            after=snapshot(app),
        )

    lease_notice(
        db,
        lease,
        prop,
        action="terminated",
        tenant_notes=VACANCY_REASON,
        owner_notes=VACANCY_REASON,
        with_terms=False,
    )
    log.info(
        "lease ended by vacancy override (%s installments cancelled)",
        cancelled,
        extra={"lease_id": lease.id, "property_id": prop.id},
    )
    return lease


def update_lease(
    db: Session,
    *,
    actor: Principal,
    lease_id: int,
    rent_amount: Any = None,
    terms: Optional[dict[str, Any]] = None,
    ejari_number: Optional[str] = None,
    ejari_status: Any = None,
) -> Lease:
    if rent_amount is None and terms is None and ejari_number is None and ejari_status is None:
        raise ValidationError("No fields to update")
    rent = as_money(rent_amount, field="rent_amount") if rent_amount is not None else None
    if rent is not None and rent <= 0:
        raise ValidationError("Rent amount must be greater than zero")
    ejari = parse_status(EjariStatus, ejari_status, field="ejari_status") if ejari_status is not None else None

    with unit_of_work(db):
        peek = peek_lease(db, lease_id)
        prop = lock_property(db, peek.property_id)
        lease = lock_lease(db, lease_id)
        ensure_manages_lease(actor, lease)

        if lease.status != LeaseStatus.ACTIVE:
            raise ConflictError("Only active leases can be updated")

        if rent is not None and rent != lease.rent_amount:
            scheduled = db.scalar(
                select(RentPayment.id).where(
                    RentPayment.lease_id == lease.id,
                    RentPayment.payment_status != PaymentStatus.CANCELLED,
                )
            )
            if scheduled is not None:
                raise ConflictError(
                    "Rent amount cannot change while a payment schedule exists; update the contract cheque count instead"
                )

        before = snapshot(lease)
        if rent is not None:
            lease.rent_amount = rent
        if terms is not None:
            lease.terms_json = json.dumps(terms, sort_keys=True)
        if ejari_number is not None:
            lease.ejari_number = ejari_number or None
        if ejari is not None:
            lease.ejari_status = ejari
        lease.updated_at = _utcnow()
        db.flush()

        audit_write(
            db,
            actor_user_id=actor.user_id,
            action="lease.update",
            entity_type="Lease",
            entity_id=lease.id,
            before=before,
            after=snapshot(lease),
        )
        lease_notice(
            db,
            lease,
            prop,
            action="updated",
            tenant_notes="Lease details have been updated by the property owner.",
            owner_notes="You updated the lease details.",
        )
    return lease


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------
def get_lease(db: Session, *, actor: Principal, lease_id: int) -> Lease:
    lease = peek_lease(db, lease_id)
    ensure_can_view_lease(actor, lease)
    return lease


def list_leases(
    db: Session,
    *,
    actor: Principal,
    property_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 200,
) -> list[Lease]:
    q = select(Lease)
    if actor.role == "tenant":
        q = q.where(Lease.tenant_id == (actor.tenant_id or -1))
    elif actor.role == "owner":
        q = q.where(Lease.owner_id == (actor.owner_id or -1))

    if property_id is not None:
        q = q.where(Lease.property_id == int(property_id))
    if status:
        q = q.where(Lease.status == parse_status(LeaseStatus, status))

    return list(db.scalars(q.order_by(desc(Lease.id)).limit(int(limit))).all())
