# backend/app/services/locks_service.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.errors import NotFoundError
from ..domain.states import OPEN_APPLICATION_STATUSES, OPEN_PAYMENT_STATUSES, ApplicationStatus, LeaseStatus
from ..models import Application, Lease, Property, RentPayment
from . import notifications

log = logging.getLogger("leasehub.locks")

# -----------------------------------------------------------------------------
# Row-lock plumbing
# -----------------------------------------------------------------------------
# Every lifecycle cascade takes exclusive row locks (SELECT ... FOR UPDATE) in
# this order and never the other way round:
#
#     properties -> applications -> leases -> rent_payments
#
# A use case that starts from an application or lease id reads that row
# unlocked only to learn its property_id, locks the property, then locks and
# re-reads the row it was asked about. Two cascades that touch the same
# property therefore queue on the property row and can't deadlock.
#
# On SQLite FOR UPDATE renders as nothing; the database file lock serializes
# writers instead.
# -----------------------------------------------------------------------------

LOCK_ORDER: tuple[str, ...] = ("properties", "applications", "leases", "rent_payments")

_TRAIL_KEY = "lock_trail"


def _note_lock(db: Session, table: str) -> None:
    rank = LOCK_ORDER.index(table)
    trail: list[int] = db.info.setdefault(_TRAIL_KEY, [])
    if trail and rank < max(trail):
        raise RuntimeError(
            f"lock order violation: {table} requested after {LOCK_ORDER[max(trail)]}"
        )
    trail.append(rank)


def _locked(stmt):
    return stmt.with_for_update().execution_options(populate_existing=True)


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    One explicit transaction per use case.

    Commits on success, rolls back on any exception. Notification events added
    during the transaction are dispatched only after the commit succeeded.
    """
    db.info[_TRAIL_KEY] = []
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        notifications.discard_pending(db)
        raise
    finally:
        db.info.pop(_TRAIL_KEY, None)

    notifications.dispatch_pending(db)


# -----------------------------
# Unlocked lookups
# -----------------------------
def peek_application(db: Session, application_id: int) -> Application:
    row = db.get(Application, int(application_id))
    if row is None:
        raise NotFoundError("Application not found")
    return row


def peek_lease(db: Session, lease_id: int) -> Lease:
    row = db.get(Lease, int(lease_id))
    if row is None:
        raise NotFoundError("Lease not found")
    return row


# -----------------------------
# Locked lookups (call in LOCK_ORDER)
# -----------------------------
def lock_property(db: Session, property_id: int) -> Property:
    _note_lock(db, "properties")
    row = db.scalar(_locked(select(Property).where(Property.id == int(property_id))))
    if row is None:
        raise NotFoundError("Property not found")
    return row


def lock_application(db: Session, application_id: int) -> Application:
    _note_lock(db, "applications")
    row = db.scalar(_locked(select(Application).where(Application.id == int(application_id))))
    if row is None:
        raise NotFoundError("Application not found")
    return row


def lock_open_applications(
    db: Session,
    *,
    property_id: int,
    tenant_id: int | None = None,
    statuses: Iterable[ApplicationStatus] = OPEN_APPLICATION_STATUSES,
) -> Sequence[Application]:
    """Pending / under_review applications for a property (optionally one tenant)."""
    _note_lock(db, "applications")
    q = select(Application).where(
        Application.property_id == int(property_id),
        Application.status.in_(list(statuses)),
    )
    if tenant_id is not None:
        q = q.where(Application.tenant_id == int(tenant_id))
    return db.scalars(_locked(q.order_by(Application.id))).all()


def lock_lease(db: Session, lease_id: int) -> Lease:
    _note_lock(db, "leases")
    row = db.scalar(_locked(select(Lease).where(Lease.id == int(lease_id))))
    if row is None:
        raise NotFoundError("Lease not found")
    return row


def lock_active_lease(db: Session, property_id: int) -> Lease | None:
    _note_lock(db, "leases")
    return db.scalar(
        _locked(
            select(Lease).where(
                Lease.property_id == int(property_id),
                Lease.status == LeaseStatus.ACTIVE,
            )
        )
    )


def lock_rent_payments(db: Session, lease_id: int, *, open_only: bool = False) -> Sequence[RentPayment]:
    _note_lock(db, "rent_payments")
    q = select(RentPayment).where(RentPayment.lease_id == int(lease_id))
    if open_only:
        q = q.where(RentPayment.payment_status.in_(list(OPEN_PAYMENT_STATUSES)))
    return db.scalars(_locked(q.order_by(RentPayment.installment_number))).all()


def lock_rent_payment(db: Session, payment_id: int) -> RentPayment:
    _note_lock(db, "rent_payments")
    row = db.scalar(_locked(select(RentPayment).where(RentPayment.id == int(payment_id))))
    if row is None:
        raise NotFoundError("Rent payment not found")
    return row
