# backend/app/services/application_service.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..auth import Principal
from ..config import settings
from ..domain.audit import audit_write, snapshot
from ..domain.errors import AuthorizationError, ConflictError, ValidationError
from ..domain.installments import add_months, as_date, as_money
from ..domain.states import (
    CANCELLABLE_STATUSES,
    OPEN_APPLICATION_STATUSES,
    REVIEWABLE_STATUSES,
    ApplicationStatus,
    LeaseStatus,
    PropertyStatus,
    ensure_application_transition,
    parse_status,
)
from ..models import Application, Lease, Property
from . import notifications as nf
from . import occupancy
from .lease_service import close_lease, lease_notice, open_lease
from .locks_service import (
    lock_active_lease,
    lock_application,
    lock_open_applications,
    lock_property,
    peek_application,
    unit_of_work,
)
from .ownership import (
    actor_tenant_id,
    ensure_can_view_application,
    ensure_manages_property,
    must_get_tenant,
)

log = logging.getLogger("leasehub.applications")

SIBLING_REJECTION_REASON = "Lease awarded to another tenant"
SUPERSEDED_REASON = "Superseded by new application"
OTHER_APPROVAL_REASON = "Superseded by approval of another application"


def _utcnow() -> datetime:
    return datetime.utcnow()


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    return json.dumps(v, sort_keys=True, default=str) if v is not None else None


def _clean(v: Any) -> str:
    return str(v or "").strip()


@dataclass
class StatusChangeResult:
    application: Application
    lease: Optional[Lease] = None
    rejected_sibling_ids: tuple[int, ...] = ()


def _write_status(
    db: Session,
    app: Application,
    target: ApplicationStatus,
    *,
    actor: Principal,
    system: bool = False,
    withdraw: bool = False,
    reason: Optional[str] = None,
    keep_reason: bool = False,
) -> None:
    """
    Guarded status write + audit. keep_reason=True keeps an existing
    rejection_reason and only fills it in when empty.
    """
    ensure_application_transition(app.status, target, system=system, withdraw=withdraw)
    before = snapshot(app)
    app.status = target
    if reason is not None:
        if not keep_reason or not app.rejection_reason:
            app.rejection_reason = reason
    app.updated_at = _utcnow()
    audit_write(
        db,
        actor_user_id=actor.user_id,
        action=f"application.{target.value}",
        entity_type="Application",
        entity_id=app.id,
        before=before,
        after=snapshot(app),
    )


def _status_notice(
    db: Session,
    app: Application,
    prop: Property,
    *,
    message: Optional[str] = None,
    lease: Optional[Lease] = None,
) -> None:
    payload: dict[str, Any] = {
        "application_id": app.id,
        "status": app.status.value,
        "rejection_reason": app.rejection_reason if app.status == ApplicationStatus.REJECTED else None,
        "message": message,
    }
    if lease is not None:
        payload.update(
            lease_start_date=lease.start_date.isoformat(),
            lease_end_date=lease.end_date.isoformat(),
            rent_amount=str(lease.rent_amount),
        )
    nf.notify_tenant(db, app.tenant, prop=prop, event_type=nf.APPLICATION_STATUS_UPDATED, payload=payload)


# -----------------------------------------------------------------------------
# submit
# -----------------------------------------------------------------------------
def submit_application(
    db: Session,
    *,
    actor: Principal,
    property_id: int,
    applicant_info: Optional[dict[str, Any]],
    employment_details: Optional[dict[str, Any]] = None,
    move_in_date: Any = None,
    viewing_date: Any = None,
    viewing_time: Optional[str] = None,
    ejari_required: bool = False,
    offer_amount: Any = None,
) -> Application:
    tenant_id = actor_tenant_id(actor)

    if not applicant_info:
        raise ValidationError("Applicant information is required")
    if not _clean(applicant_info.get("emirates_id")):
        raise ValidationError("Emirates ID is required")
    if not _clean(applicant_info.get("passport_number")):
        raise ValidationError("Passport number is required")

    move_in = as_date(move_in_date)
    if move_in_date not in (None, "") and move_in is None:
        raise ValidationError("Invalid move-in date")
    viewing = as_date(viewing_date)
    if viewing_date not in (None, "") and viewing is None:
        raise ValidationError("Invalid viewing date")
    offer = as_money(offer_amount, field="offer_amount") if offer_amount not in (None, "") else None
    if offer is not None and offer <= 0:
        raise ValidationError("Offer amount must be greater than zero")

    with unit_of_work(db):
        prop = lock_property(db, property_id)
        occupancy.ensure_accepting_applications(prop)

        tenant = must_get_tenant(db, tenant_id=tenant_id)

        if lock_open_applications(db, property_id=prop.id, tenant_id=tenant.id):
            raise ConflictError("You have already applied for this property")

        # A fresh application replaces any approval this tenant still holds here.
        stale = lock_open_applications(
            db, property_id=prop.id, tenant_id=tenant.id, statuses=(ApplicationStatus.APPROVED,)
        )
        for old in stale:
            _write_status(
                db,
                old,
                ApplicationStatus.CANCELLED,
                actor=actor,
                system=True,
                reason=SUPERSEDED_REASON,
                keep_reason=True,
            )

        if tenant.owner_id is None:
            tenant.owner_id = prop.owner_id

        now = _utcnow()
        app = Application(
            property_id=prop.id,
            tenant_id=tenant.id,
            status=ApplicationStatus.PENDING,
            applicant_info_json=_dumps(applicant_info),
            employment_details_json=_dumps(employment_details),
            move_in_date=move_in,
            viewing_date=viewing,
            viewing_time=viewing_time,
            ejari_required=bool(ejari_required),
            offer_amount=offer,
            created_at=now,
            updated_at=now,
        )
        db.add(app)
        db.flush()

        audit_write(
            db,
            actor_user_id=actor.user_id,
            action="application.submit",
            entity_type="Application",
            entity_id=app.id,
            after=snapshot(app),
        )
        payload = {
            "application_id": app.id,
            "tenant_name": tenant.display_name,
            "offer_amount": str(offer) if offer is not None else None,
        }
        nf.notify_owner(db, prop.owner, prop=prop, event_type=nf.APPLICATION_SUBMITTED, payload=payload)
        nf.notify_tenant(db, tenant, prop=prop, event_type=nf.APPLICATION_SUBMITTED, payload=payload)
        log.info("application submitted", extra={"application_id": app.id, "property_id": prop.id})
    return app


# -----------------------------------------------------------------------------
# set_status
# -----------------------------------------------------------------------------
def _resolve_lease_dates(app: Application, start_override: Any, end_override: Any) -> tuple[date, date]:
    start = as_date(start_override) if start_override not in (None, "") else None
    if start_override not in (None, "") and start is None:
        raise ValidationError("Invalid lease start date")
    end = as_date(end_override) if end_override not in (None, "") else None
    if end_override not in (None, "") and end is None:
        raise ValidationError("Invalid lease end date")

    start = start or app.move_in_date or date.today()
    end = end or add_months(start, settings.default_lease_term_months)
    if end <= start:
        raise ValidationError("Lease end date must be after the start date")
    return start, end


def _approve(
    db: Session,
    *,
    actor: Principal,
    prop: Property,
    app: Application,
    lease_start_date: Any,
    lease_end_date: Any,
) -> StatusChangeResult:
    if prop.status == PropertyStatus.OCCUPIED:
        raise ConflictError("Property is already occupied")

    start, end = _resolve_lease_dates(app, lease_start_date, lease_end_date)
    rent: Decimal = app.offer_amount if app.offer_amount is not None else prop.price
    if rent is None or rent <= 0:
        raise ValidationError("Cannot approve: no offer amount and the property has no price")

    siblings = [
        s for s in lock_open_applications(db, property_id=prop.id) if s.id != app.id
    ]
    # approvals left behind by ended leases; the new one replaces them
    previous = [
        p
        for p in lock_open_applications(db, property_id=prop.id, statuses=(ApplicationStatus.APPROVED,))
        if p.id != app.id
    ]

    stray = lock_active_lease(db, prop.id)
    if stray is not None:
        log.warning(
            "active lease found on non-occupied property; terminating it",
            extra={"lease_id": stray.id, "property_id": prop.id},
        )
        close_lease(db, stray, actor=actor, status=LeaseStatus.TERMINATED, reason=OTHER_APPROVAL_REASON)

    for p in previous:
        _write_status(
            db,
            p,
            ApplicationStatus.CANCELLED,
            actor=actor,
            system=True,
            reason=OTHER_APPROVAL_REASON,
            keep_reason=True,
        )

    _write_status(db, app, ApplicationStatus.APPROVED, actor=actor)

    lease = open_lease(
        db,
        actor=actor,
        prop=prop,
        tenant_id=app.tenant_id,
        start_date=start,
        end_date=end,
        rent_amount=rent,
        security_deposit=rent,
        application=app,
    )

    for s in siblings:
        _write_status(
            db, s, ApplicationStatus.REJECTED, actor=actor, reason=SIBLING_REJECTION_REASON, keep_reason=True
        )
        _status_notice(db, s, prop)

    _status_notice(db, app, prop, lease=lease)
    nf.notify_owner(
        db,
        prop.owner,
        prop=prop,
        event_type=nf.APPLICATION_STATUS_UPDATED,
        payload={
            "application_id": app.id,
            "status": app.status.value,
            "message": f"You approved the application from {app.tenant.display_name}. A lease has been created.",
        },
    )
    lease_notice(
        db,
        lease,
        prop,
        action="created",
        tenant_notes="A lease was created from your approved application.",
        owner_notes="A lease was created from the approved application.",
    )
    log.info(
        "application approved (%s competing applications rejected, %s earlier approvals cancelled)",
        len(siblings),
        len(previous),
        extra={"application_id": app.id, "lease_id": lease.id, "property_id": prop.id},
    )
    return StatusChangeResult(application=app, lease=lease, rejected_sibling_ids=tuple(s.id for s in siblings))


def set_application_status(
    db: Session,
    *,
    actor: Principal,
    application_id: int,
    status: Any,
    rejection_reason: Optional[str] = None,
    message: Optional[str] = None,
    background_check_status: Optional[str] = None,
    lease_start_date: Any = None,
    lease_end_date: Any = None,
) -> StatusChangeResult:
    """
    Owner/admin review decision.

    approved opens the lease, occupies the property and rejects every other
    open application on it, all in one transaction.
    """
    target = parse_status(ApplicationStatus, status)
    if target not in REVIEWABLE_STATUSES:
        raise ValidationError(f"Invalid status '{target.value}'")

    with unit_of_work(db):
        peek = peek_application(db, application_id)
        prop = lock_property(db, peek.property_id)
        ensure_manages_property(actor, prop)
        app = lock_application(db, application_id)

        ensure_application_transition(app.status, target)

        app.reviewed_by = actor.user_id
        app.reviewed_at = _utcnow()
        if background_check_status is not None:
            app.background_check_status = background_check_status or None

        if target == ApplicationStatus.APPROVED:
            result = _approve(
                db,
                actor=actor,
                prop=prop,
                app=app,
                lease_start_date=lease_start_date,
                lease_end_date=lease_end_date,
            )
        else:
            reason = (rejection_reason or "").strip() or None
            _write_status(
                db,
                app,
                target,
                actor=actor,
                reason=reason if target == ApplicationStatus.REJECTED else None,
            )
            _status_notice(db, app, prop, message=message)
            result = StatusChangeResult(application=app)
            log.info(
                "application status set to %s",
                target.value,
                extra={"application_id": app.id, "property_id": prop.id},
            )
    return result


# -----------------------------------------------------------------------------
# cancel
# -----------------------------------------------------------------------------
def cancel_application(db: Session, *, actor: Principal, application_id: int) -> Application:
    with unit_of_work(db):
        peek = peek_application(db, application_id)
        prop = lock_property(db, peek.property_id)
        app = lock_application(db, application_id)

        if not actor.is_admin:
            if actor.role != "tenant" or actor.tenant_id is None or int(app.tenant_id) != int(actor.tenant_id):
                raise AuthorizationError("Unauthorized")

        if app.status == ApplicationStatus.APPROVED:
            raise ConflictError("Cannot cancel an approved application")
        if app.status not in CANCELLABLE_STATUSES:
            raise ConflictError(f"Cannot cancel a {app.status.value} application")

        if app.status != ApplicationStatus.CANCELLED:
            _write_status(db, app, ApplicationStatus.CANCELLED, actor=actor, withdraw=True)
            nf.notify_owner(
                db,
                prop.owner,
                prop=prop,
                event_type=nf.APPLICATION_STATUS_UPDATED,
                payload={
                    "application_id": app.id,
                    "status": app.status.value,
                    "message": f"{app.tenant.display_name} cancelled their application.",
                },
            )
            log.info("application cancelled", extra={"application_id": app.id, "property_id": prop.id})
    return app


# -----------------------------------------------------------------------------
# update (tenant edits while still open)
# -----------------------------------------------------------------------------
_EDITABLE = (
    "applicant_info",
    "employment_details",
    "move_in_date",
    "viewing_date",
    "viewing_time",
    "ejari_required",
    "offer_amount",
)


def update_application(db: Session, *, actor: Principal, application_id: int, **changes: Any) -> Application:
    unknown = set(changes) - set(_EDITABLE)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes:
        raise ValidationError("No fields to update")

    with unit_of_work(db):
        peek = peek_application(db, application_id)
        lock_property(db, peek.property_id)
        app = lock_application(db, application_id)

        if actor.role != "tenant" or actor.tenant_id is None or int(app.tenant_id) != int(actor.tenant_id):
            raise AuthorizationError("Unauthorized")
        if app.status not in OPEN_APPLICATION_STATUSES:
            raise ConflictError("Only pending or under review applications can be edited")

        before = snapshot(app)
        if "applicant_info" in changes:
            info = changes["applicant_info"]
            if not _clean(info.get("emirates_id")):
                raise ValidationError("Emirates ID is required")
            if not _clean(info.get("passport_number")):
                raise ValidationError("Passport number is required")
            app.applicant_info_json = _dumps(info)
        if "employment_details" in changes:
            app.employment_details_json = _dumps(changes["employment_details"])
        for field in ("move_in_date", "viewing_date"):
            if field in changes:
                d = as_date(changes[field])
                if d is None:
                    raise ValidationError(f"Invalid {field.replace('_', ' ')}")
                setattr(app, field, d)
        if "viewing_time" in changes:
            app.viewing_time = str(changes["viewing_time"])
        if "ejari_required" in changes:
            app.ejari_required = bool(changes["ejari_required"])
        if "offer_amount" in changes:
            offer = as_money(changes["offer_amount"], field="offer_amount")
            if offer <= 0:
                raise ValidationError("Offer amount must be greater than zero")
            app.offer_amount = offer
        app.updated_at = _utcnow()

        audit_write(
            db,
            actor_user_id=actor.user_id,
            action="application.update",
            entity_type="Application",
            entity_id=app.id,
            before=before,
            after=snapshot(app),
        )
    return app


# -----------------------------------------------------------------------------
# reads
# -----------------------------------------------------------------------------
def get_application(db: Session, *, actor: Principal, application_id: int) -> Application:
    app = peek_application(db, application_id)
    ensure_can_view_application(actor, app)
    return app


def list_applications(
    db: Session,
    *,
    actor: Principal,
    property_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 200,
) -> list[Application]:
    q = select(Application)
    if actor.role == "tenant":
        q = q.where(Application.tenant_id == (actor.tenant_id or -1))
    elif actor.role == "owner":
        q = q.join(Property, Property.id == Application.property_id).where(
            Property.owner_id == (actor.owner_id or -1)
        )

    if property_id is not None:
        q = q.where(Application.property_id == int(property_id))
    if status:
        q = q.where(Application.status == parse_status(ApplicationStatus, status))

    return list(db.scalars(q.order_by(desc(Application.id)).limit(int(limit))).all())
