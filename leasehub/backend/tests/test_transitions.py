# backend/tests/test_transitions.py
from __future__ import annotations

import pytest

from app.domain.errors import ConflictError, ValidationError
from app.domain.states import (
    ApplicationStatus as A,
    LeaseStatus as L,
    PaymentStatus as P,
    PropertyStatus,
    ensure_application_transition,
    ensure_lease_transition,
    ensure_payment_transition,
    parse_status,
)


@pytest.mark.parametrize(
    "cur,tgt",
    [
        (A.PENDING, A.UNDER_REVIEW),
        (A.PENDING, A.APPROVED),
        (A.PENDING, A.REJECTED),
        (A.UNDER_REVIEW, A.PENDING),
        (A.UNDER_REVIEW, A.APPROVED),
        (A.UNDER_REVIEW, A.REJECTED),
        (A.UNDER_REVIEW, A.CANCELLED),
        (A.PENDING, A.PENDING),
    ],
)
def test_allowed_application_transitions(cur, tgt):
    ensure_application_transition(cur, tgt)


@pytest.mark.parametrize(
    "cur,tgt",
    [
        (A.APPROVED, A.REJECTED),
        (A.APPROVED, A.APPROVED),
        (A.REJECTED, A.APPROVED),
        (A.REJECTED, A.PENDING),
        (A.CANCELLED, A.PENDING),
        (A.APPROVED, A.CANCELLED),
    ],
)
def test_blocked_application_transitions(cur, tgt):
    with pytest.raises(ConflictError):
        ensure_application_transition(cur, tgt)


def test_superseding_an_approval_is_system_only():
    with pytest.raises(ConflictError):
        ensure_application_transition(A.APPROVED, A.CANCELLED)
    ensure_application_transition(A.APPROVED, A.CANCELLED, system=True)


def test_withdrawing_a_rejected_application_is_its_own_move():
    with pytest.raises(ConflictError):
        ensure_application_transition(A.REJECTED, A.CANCELLED)
    with pytest.raises(ConflictError):
        ensure_application_transition(A.REJECTED, A.CANCELLED, system=True)
    ensure_application_transition(A.REJECTED, A.CANCELLED, withdraw=True)
    ensure_application_transition(A.PENDING, A.CANCELLED, withdraw=True)
    with pytest.raises(ConflictError):
        ensure_application_transition(A.APPROVED, A.CANCELLED, withdraw=True)


def test_lease_transitions():
    ensure_lease_transition(L.ACTIVE, L.TERMINATED)
    ensure_lease_transition(L.ACTIVE, L.RENEWED)
    for terminal in (L.TERMINATED, L.RENEWED):
        with pytest.raises(ConflictError):
            ensure_lease_transition(terminal, L.TERMINATED)
    with pytest.raises(ConflictError):
        ensure_lease_transition(L.ACTIVE, L.ACTIVE)


def test_payment_transitions():
    ensure_payment_transition(P.PENDING, P.PAID)
    ensure_payment_transition(P.OVERDUE, P.PARTIAL)
    ensure_payment_transition(P.PARTIAL, P.CANCELLED)
    with pytest.raises(ConflictError):
        ensure_payment_transition(P.PAID, P.PENDING)
    with pytest.raises(ConflictError):
        ensure_payment_transition(P.CANCELLED, P.PAID)


def test_parse_status_is_case_insensitive_and_closed():
    assert parse_status(PropertyStatus, " Occupied ") is PropertyStatus.OCCUPIED
    with pytest.raises(ValidationError) as exc:
        parse_status(PropertyStatus, "occupid")
    assert "vacant" in str(exc.value)
