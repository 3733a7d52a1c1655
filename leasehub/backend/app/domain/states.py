# backend/app/domain/states.py
from __future__ import annotations

from enum import Enum
from typing import Type

from .errors import ConflictError, ValidationError


# -----------------------------------------------------------------------------
# Closed status enumerations
# -----------------------------------------------------------------------------
# Every lifecycle column is one of these. Transitions are only legal if they
# appear in the tables below; anything else is a ConflictError.
# -----------------------------------------------------------------------------


class PropertyStatus(str, Enum):
    VACANT = "vacant"
    OCCUPIED = "occupied"
    UNDER_MAINTENANCE = "under_maintenance"
    UNAVAILABLE = "unavailable"
    SOLD = "sold"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class LeaseStatus(str, Enum):
    ACTIVE = "active"
    TERMINATED = "terminated"
    RENEWED = "renewed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CHEQUE = "cheque"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    OTHER = "other"


class EjariStatus(str, Enum):
    PENDING = "pending"
    REGISTERED = "registered"


A = ApplicationStatus

# Statuses a reviewer may request through set_status.
REVIEWABLE_STATUSES = frozenset({A.PENDING, A.UNDER_REVIEW, A.APPROVED, A.REJECTED})

# Applications still competing for a property.
OPEN_APPLICATION_STATUSES = frozenset({A.PENDING, A.UNDER_REVIEW})

APPLICATION_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    A.PENDING: frozenset({A.PENDING, A.UNDER_REVIEW, A.APPROVED, A.REJECTED, A.CANCELLED}),
    A.UNDER_REVIEW: frozenset({A.UNDER_REVIEW, A.PENDING, A.APPROVED, A.REJECTED, A.CANCELLED}),
    A.APPROVED: frozenset(),
    A.REJECTED: frozenset(),
    A.CANCELLED: frozenset(),
}

# Only the engine itself may take these (supersede, force-vacate).
SYSTEM_APPLICATION_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    A.APPROVED: frozenset({A.CANCELLED}),
}

# A tenant may withdraw an application the owner already turned down.
WITHDRAW_APPLICATION_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    A.REJECTED: frozenset({A.CANCELLED}),
}

# cancel() is also a no-op on already closed applications.
CANCELLABLE_STATUSES = frozenset({A.PENDING, A.UNDER_REVIEW, A.REJECTED, A.CANCELLED})

LEASE_TRANSITIONS: dict[LeaseStatus, frozenset[LeaseStatus]] = {
    LeaseStatus.ACTIVE: frozenset({LeaseStatus.TERMINATED, LeaseStatus.RENEWED}),
    LeaseStatus.TERMINATED: frozenset(),
    LeaseStatus.RENEWED: frozenset(),
}

P = PaymentStatus

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    P.PENDING: frozenset({P.PENDING, P.PAID, P.OVERDUE, P.PARTIAL, P.CANCELLED}),
    P.OVERDUE: frozenset({P.OVERDUE, P.PAID, P.PARTIAL, P.CANCELLED}),
    P.PARTIAL: frozenset({P.PARTIAL, P.PAID, P.OVERDUE, P.CANCELLED}),
    P.PAID: frozenset(),
    P.CANCELLED: frozenset(),
}

# Installments still owed; these get cancelled when the lease is force-ended.
OPEN_PAYMENT_STATUSES = frozenset({P.PENDING, P.OVERDUE, P.PARTIAL})


def parse_status(enum_cls: Type[Enum], value, *, field: str = "status"):
    """Coerce a raw string into enum_cls or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value or "").strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}' (allowed: {allowed})")


def _ensure(table: dict, current, target, *, label: str, extra: tuple[dict, ...] = ()) -> None:
    allowed = set(table.get(current, frozenset()))
    for more in extra:
        allowed |= set(more.get(current, frozenset()))
    if target not in allowed:
        raise ConflictError(f"{label} cannot move from '{current.value}' to '{target.value}'")


def ensure_application_transition(
    current: ApplicationStatus,
    target: ApplicationStatus,
    *,
    system: bool = False,
    withdraw: bool = False,
) -> None:
    """system adds the engine-only moves, withdraw the tenant withdrawal."""
    extra: tuple[dict, ...] = ()
    if system:
        extra += (SYSTEM_APPLICATION_TRANSITIONS,)
    if withdraw:
        extra += (WITHDRAW_APPLICATION_TRANSITIONS,)
    _ensure(APPLICATION_TRANSITIONS, current, target, label="Application", extra=extra)


def ensure_lease_transition(current: LeaseStatus, target: LeaseStatus) -> None:
    _ensure(LEASE_TRANSITIONS, current, target, label="Lease")


def ensure_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    _ensure(PAYMENT_TRANSITIONS, current, target, label="Rent payment")
