# backend/tests/test_application_lifecycle.py
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import applicant

from app.db import SessionLocal
from app.domain.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.domain.states import ApplicationStatus, LeaseStatus, PropertyStatus
from app.models import Application, AuditEvent, Lease, Property, Tenant
from app.services import application_service as apps
from app.services import occupancy


def _submit(db, world, tenant, **kw):
    kw.setdefault("applicant_info", applicant())
    return apps.submit_application(db, actor=tenant, property_id=world.property_id, **kw)


def test_submit_creates_pending_application_and_links_tenant_to_owner(db, world):
    app = _submit(db, world, world.tenant_a, offer_amount="110000", move_in_date="2026-02-01")

    assert app.status == ApplicationStatus.PENDING
    assert app.offer_amount == Decimal("110000.00")
    assert app.move_in_date == date(2026, 2, 1)

    tenant = db.get(Tenant, world.tenant_a.tenant_id)
    assert tenant.owner_id == world.owner.owner_id


@pytest.mark.parametrize(
    "info,msg",
    [
        (None, "Applicant information"),
        ({"full_name": "X", "passport_number": "P1"}, "Emirates ID"),
        ({"full_name": "X", "emirates_id": "784"}, "Passport"),
        ({"full_name": "X", "emirates_id": "  ", "passport_number": "P1"}, "Emirates ID"),
    ],
)
def test_submit_requires_identity_documents(db, world, info, msg):
    with pytest.raises(ValidationError, match=msg):
        _submit(db, world, world.tenant_a, applicant_info=info)
    assert db.scalar(select(Application.id)) is None


def test_submit_only_for_tenants(db, world):
    with pytest.raises(AuthorizationError):
        _submit(db, world, world.owner)


def test_submit_unknown_property(db, world):
    with pytest.raises(NotFoundError):
        apps.submit_application(db, actor=world.tenant_a, property_id=9999, applicant_info=applicant())


def test_duplicate_open_application_conflicts(db, world):
    _submit(db, world, world.tenant_a)
    with pytest.raises(ConflictError, match="already applied"):
        _submit(db, world, world.tenant_a)


def test_approve_opens_lease_occupies_property_and_rejects_siblings(db, world):
    a = _submit(db, world, world.tenant_a, move_in_date="2026-03-01", offer_amount="115000")
    b = _submit(db, world, world.tenant_b)

    result = apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")

    lease = result.lease
    assert result.application.status == ApplicationStatus.APPROVED
    assert lease.status == LeaseStatus.ACTIVE
    assert lease.application_id == a.id
    assert lease.start_date == date(2026, 3, 1)
    assert lease.end_date == date(2027, 3, 1)
    assert lease.rent_amount == Decimal("115000.00")
    assert lease.security_deposit == Decimal("115000.00")
    assert result.rejected_sibling_ids == (b.id,)

    db.expire_all()
    prop = db.get(Property, world.property_id)
    assert prop.status == PropertyStatus.OCCUPIED
    assert prop.current_lease_id == lease.id

    b_row = db.get(Application, b.id)
    assert b_row.status == ApplicationStatus.REJECTED
    assert b_row.rejection_reason == "Lease awarded to another tenant"

    assert occupancy.check_occupancy(db) == []


def test_approve_defaults_rent_to_list_price_and_start_to_today(db, world):
    a = _submit(db, world, world.tenant_a)
    lease = apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved").lease

    assert lease.rent_amount == Decimal("120000.00")
    assert lease.start_date == date.today()


def test_approve_with_explicit_dates(db, world):
    a = _submit(db, world, world.tenant_a, move_in_date="2026-03-01")
    lease = apps.set_application_status(
        db,
        actor=world.owner,
        application_id=a.id,
        status="approved",
        lease_start_date="2026-04-01",
        lease_end_date="2026-09-30",
    ).lease
    assert (lease.start_date, lease.end_date) == (date(2026, 4, 1), date(2026, 9, 30))


def test_approve_with_bad_date_rolls_back_everything(db, world):
    a = _submit(db, world, world.tenant_a)
    b = _submit(db, world, world.tenant_b)

    with pytest.raises(ValidationError):
        apps.set_application_status(
            db, actor=world.owner, application_id=a.id, status="approved", lease_start_date="01/04/2026"
        )

    db.expire_all()
    assert db.get(Application, a.id).status == ApplicationStatus.PENDING
    assert db.get(Application, b.id).status == ApplicationStatus.PENDING
    assert db.get(Property, world.property_id).status == PropertyStatus.VACANT
    assert db.scalar(select(Lease.id)) is None


def test_second_approval_of_competing_application_conflicts(db, world):
    a = _submit(db, world, world.tenant_a)
    b = _submit(db, world, world.tenant_b)
    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")

    with pytest.raises(ConflictError):
        apps.set_application_status(db, actor=world.admin, application_id=b.id, status="approved")

    active = db.scalars(select(Lease).where(Lease.status == LeaseStatus.ACTIVE)).all()
    assert len(active) == 1
    assert active[0].application_id == a.id


def test_approval_from_a_stale_session_loses_the_race(db, world):
    a = _submit(db, world, world.tenant_a)
    b = _submit(db, world, world.tenant_b)

    other = SessionLocal()
    try:
        stale = other.get(Application, b.id)
        assert stale.status == ApplicationStatus.PENDING

        apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")

        # `other` still holds b as pending in its identity map
        with pytest.raises(ConflictError):
            apps.set_application_status(other, actor=world.admin, application_id=b.id, status="approved")
    finally:
        other.close()

    db.expire_all()
    loser = db.get(Application, b.id)
    assert loser.status == ApplicationStatus.REJECTED
    assert loser.rejection_reason == apps.SIBLING_REJECTION_REASON
    active = db.scalars(select(Lease).where(Lease.status == LeaseStatus.ACTIVE)).all()
    assert [x.application_id for x in active] == [a.id]


def test_approving_on_occupied_property_conflicts(db, world):
    a = _submit(db, world, world.tenant_a)

    db.get(Property, world.property_id).status = PropertyStatus.OCCUPIED
    db.commit()

    with pytest.raises(ConflictError, match="occupied"):
        apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")
    db.expire_all()
    assert db.get(Application, a.id).status == ApplicationStatus.PENDING


def test_stray_active_lease_is_terminated_on_approval(db, world):
    a = _submit(db, world, world.tenant_a)
    stray = Lease(
        property_id=world.property_id,
        tenant_id=world.tenant_b.tenant_id,
        owner_id=world.owner.owner_id,
        start_date=date(2025, 1, 1),
        end_date=date(2025, 12, 31),
        rent_amount=Decimal("100000.00"),
        security_deposit=Decimal("0.00"),
        status=LeaseStatus.ACTIVE,
    )
    db.add(stray)
    db.commit()

    lease = apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved").lease

    db.expire_all()
    assert db.get(Lease, stray.id).status == LeaseStatus.TERMINATED
    assert db.get(Property, world.property_id).current_lease_id == lease.id
    assert occupancy.check_occupancy(db) == []


def test_reject_records_reason_and_reviewer(db, world):
    a = _submit(db, world, world.tenant_a)
    result = apps.set_application_status(
        db,
        actor=world.owner,
        application_id=a.id,
        status="rejected",
        rejection_reason="Income below requirement",
        background_check_status="failed",
    )
    app = result.application
    assert result.lease is None
    assert app.status == ApplicationStatus.REJECTED
    assert app.rejection_reason == "Income below requirement"
    assert app.reviewed_by == world.owner.user_id
    assert app.background_check_status == "failed"


def test_set_status_rejects_unknown_and_cancel_targets(db, world):
    a = _submit(db, world, world.tenant_a)
    with pytest.raises(ValidationError):
        apps.set_application_status(db, actor=world.owner, application_id=a.id, status="archived")
    with pytest.raises(ValidationError):
        apps.set_application_status(db, actor=world.owner, application_id=a.id, status="cancelled")


def test_only_the_property_owner_can_review(db, world):
    a = _submit(db, world, world.tenant_a)
    with pytest.raises(AuthorizationError):
        apps.set_application_status(db, actor=world.other_owner, application_id=a.id, status="under_review")


def test_review_then_back_to_pending(db, world):
    a = _submit(db, world, world.tenant_a)
    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="under_review")
    app = apps.set_application_status(db, actor=world.owner, application_id=a.id, status="pending").application
    assert app.status == ApplicationStatus.PENDING


def test_cancel_rules(db, world):
    a = _submit(db, world, world.tenant_a)

    with pytest.raises(AuthorizationError):
        apps.cancel_application(db, actor=world.tenant_b, application_id=a.id)
    with pytest.raises(AuthorizationError):
        apps.cancel_application(db, actor=world.owner, application_id=a.id)

    app = apps.cancel_application(db, actor=world.tenant_a, application_id=a.id)
    assert app.status == ApplicationStatus.CANCELLED

    # idempotent on an already cancelled application
    assert apps.cancel_application(db, actor=world.tenant_a, application_id=a.id).status == ApplicationStatus.CANCELLED


def test_cancel_rejected_application_is_allowed(db, world):
    a = _submit(db, world, world.tenant_a)
    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="rejected")
    assert apps.cancel_application(db, actor=world.admin, application_id=a.id).status == ApplicationStatus.CANCELLED

    actions = db.scalars(
        select(AuditEvent.action).where(AuditEvent.entity_type == "Application", AuditEvent.entity_id == str(a.id))
        .order_by(AuditEvent.id)
    ).all()
    assert actions[-1] == "application.cancelled"


def test_cannot_cancel_approved_application(db, world):
    a = _submit(db, world, world.tenant_a)
    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")
    with pytest.raises(ConflictError, match="approved"):
        apps.cancel_application(db, actor=world.tenant_a, application_id=a.id)


def test_cancelled_tenant_can_apply_again(db, world):
    a = _submit(db, world, world.tenant_a)
    apps.cancel_application(db, actor=world.tenant_a, application_id=a.id)
    again = _submit(db, world, world.tenant_a)
    assert again.id != a.id
    assert again.status == ApplicationStatus.PENDING


def test_occupied_property_refuses_new_applications(db, world):
    a = _submit(db, world, world.tenant_a)
    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")

    with pytest.raises(ConflictError, match="Property is already leased and not accepting new applications"):
        _submit(db, world, world.tenant_b)


def test_update_application_while_open(db, world):
    a = _submit(db, world, world.tenant_a)
    app = apps.update_application(
        db,
        actor=world.tenant_a,
        application_id=a.id,
        viewing_date="2026-01-20",
        viewing_time="15:30",
        offer_amount="118000",
    )
    assert app.viewing_date == date(2026, 1, 20)
    assert app.offer_amount == Decimal("118000.00")

    with pytest.raises(ValidationError):
        apps.update_application(db, actor=world.tenant_a, application_id=a.id)
    with pytest.raises(AuthorizationError):
        apps.update_application(db, actor=world.tenant_b, application_id=a.id, viewing_time="10:00")

    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="rejected")
    with pytest.raises(ConflictError):
        apps.update_application(db, actor=world.tenant_a, application_id=a.id, viewing_time="10:00")


def test_transitions_are_audited(db, world):
    a = _submit(db, world, world.tenant_a)
    apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved")

    actions = set(db.scalars(select(AuditEvent.action)).all())
    assert {"application.submit", "application.approved", "lease.create"} <= actions


def test_list_applications_is_scoped_to_caller(db, world):
    a = _submit(db, world, world.tenant_a)
    apps.submit_application(
        db, actor=world.tenant_b, property_id=world.other_property_id, applicant_info=applicant("Bilal Ahmed")
    )

    assert [x.id for x in apps.list_applications(db, actor=world.tenant_a)] == [a.id]
    assert [x.id for x in apps.list_applications(db, actor=world.owner)] == [a.id]
    assert len(apps.list_applications(db, actor=world.admin)) == 2

    with pytest.raises(AuthorizationError):
        apps.get_application(db, actor=world.other_owner, application_id=a.id)
