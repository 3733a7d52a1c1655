# backend/tests/test_property_override.py
from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from conftest import applicant

from app.cli.__main__ import main as cli_main
from app.domain.errors import AuthorizationError, ConflictError, ValidationError
from app.domain.states import ApplicationStatus, LeaseStatus, PaymentStatus, PropertyStatus
from app.models import Application, AuditEvent, Lease, Property, RentPayment
from app.services import application_service as apps
from app.services import contract_service, lease_service, occupancy, property_service, rent_payment_service
from app.services.lease_service import VACANCY_REASON


def _occupy(db, world):
    a = apps.submit_application(
        db,
        actor=world.tenant_a,
        property_id=world.property_id,
        applicant_info=applicant(),
        move_in_date="2026-01-01",
    )
    lease = apps.set_application_status(db, actor=world.owner, application_id=a.id, status="approved").lease
    return a, lease


def test_force_vacant_ends_the_whole_tenancy(db, world):
    app, lease = _occupy(db, world)
    contract_service.apply_contract_update(db, actor=world.owner, lease_id=lease.id, cheque_count=4)
    rows = db.scalars(select(RentPayment).where(RentPayment.lease_id == lease.id).order_by(RentPayment.id)).all()
    rent_payment_service.update_payment_status(db, actor=world.owner, payment_id=rows[0].id, status="paid")

    prop = property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="vacant")

    assert prop.status == PropertyStatus.VACANT
    assert prop.current_lease_id is None

    db.expire_all()
    ended = db.get(Lease, lease.id)
    assert ended.status == LeaseStatus.TERMINATED
    assert ended.termination_reason == VACANCY_REASON

    statuses = [
        r.payment_status
        for r in db.scalars(select(RentPayment).where(RentPayment.lease_id == lease.id).order_by(RentPayment.id))
    ]
    assert statuses == [PaymentStatus.PAID] + [PaymentStatus.CANCELLED] * 3

    cancelled = db.get(Application, app.id)
    assert cancelled.status == ApplicationStatus.CANCELLED
    assert cancelled.rejection_reason == VACANCY_REASON

    assert occupancy.check_occupancy(db) == []
    assert "property.status_override" in set(db.scalars(select(AuditEvent.action)).all())


def test_force_vacant_reaches_application_through_renewals(db, world):
    app, lease = _occupy(db, world)

    lease_service.renew_lease(db, actor=world.owner, lease_id=lease.id, new_end_date="2028-01-01")
    property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="vacant")

    db.expire_all()
    assert db.get(Application, app.id).status == ApplicationStatus.CANCELLED
    assert db.scalar(select(Lease.id).where(Lease.status == LeaseStatus.ACTIVE)) is None


def test_tenant_can_apply_again_after_force_vacant(db, world):
    _occupy(db, world)
    property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="vacant")

    again = apps.submit_application(
        db, actor=world.tenant_a, property_id=world.property_id, applicant_info=applicant()
    )
    assert again.status == ApplicationStatus.PENDING


def test_sold_to_vacant_also_cascades(db, world):
    _occupy(db, world)
    # sold while the lease runs is a manual edit outside the guard
    prop = db.get(Property, world.property_id)
    prop.status = PropertyStatus.SOLD
    db.commit()

    property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="vacant")
    db.expire_all()
    assert db.scalar(select(Lease.id).where(Lease.status == LeaseStatus.ACTIVE)) is None


def test_occupied_requires_an_active_lease(db, world):
    with pytest.raises(ConflictError):
        property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="occupied")
    db.expire_all()
    assert db.get(Property, world.property_id).status == PropertyStatus.VACANT


def test_cannot_park_a_leased_property_in_maintenance(db, world):
    _occupy(db, world)
    with pytest.raises(ConflictError):
        property_service.set_property_status(
            db, actor=world.admin, property_id=world.property_id, status="under_maintenance"
        )
    db.expire_all()
    assert db.get(Property, world.property_id).status == PropertyStatus.OCCUPIED


def test_vacant_property_can_go_to_maintenance_and_back(db, world):
    property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="under_maintenance")
    prop = property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="vacant")
    assert prop.status == PropertyStatus.VACANT


def test_same_status_is_a_no_op(db, world):
    prop = property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="Vacant")
    assert prop.status == PropertyStatus.VACANT
    assert db.scalar(select(AuditEvent.id)) is None


def test_only_admins_override(db, world):
    with pytest.raises(AuthorizationError):
        property_service.set_property_status(db, actor=world.owner, property_id=world.property_id, status="sold")
    with pytest.raises(ValidationError):
        property_service.set_property_status(db, actor=world.admin, property_id=world.property_id, status="demolished")


def test_check_occupancy_reports_manual_corruption(db, world):
    _occupy(db, world)

    prop = db.get(Property, world.property_id)
    prop.current_lease_id = None
    other = db.get(Property, world.other_property_id)
    other.status = PropertyStatus.OCCUPIED
    db.commit()

    issues = {i.property_id: i.problem for i in occupancy.check_occupancy(db)}
    assert issues == {
        world.property_id: "current_lease_mismatch",
        world.other_property_id: "occupied_without_active_lease",
    }

    only = occupancy.check_occupancy(db, property_id=world.other_property_id)
    assert [i.property_id for i in only] == [world.other_property_id]


def test_cli_exit_code_follows_issues(db, world, capsys):
    _occupy(db, world)
    assert cli_main(["check-occupancy"]) == 0
    assert json.loads(capsys.readouterr().out) == {"ok": True, "issues": []}

    prop = db.get(Property, world.other_property_id)
    prop.status = PropertyStatus.OCCUPIED
    db.commit()

    assert cli_main(["check-occupancy", "--property-id", str(world.other_property_id)]) == 1
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is False
    assert out["issues"][0]["problem"] == "occupied_without_active_lease"
