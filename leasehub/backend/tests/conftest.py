# backend/tests/conftest.py
from __future__ import annotations

import os
import tempfile

# settings are read at import time; point them at a throwaway database first
_DB_DIR = tempfile.mkdtemp(prefix="leasehub-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_DB_DIR, "test.db")
os.environ["APP_ENV"] = "test"
os.environ["AUTH_MODE"] = "dev"
os.environ["NOTIFICATIONS_ASYNC"] = "false"
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)

from dataclasses import dataclass
from decimal import Decimal

import pytest

from app import models  # noqa: F401
from app.auth import Principal, principal_for_user
from app.db import Base, SessionLocal, engine
from app.domain.states import PropertyStatus
from app.models import AppUser, Owner, Property, Tenant


@dataclass
class World:
    owner: Principal
    other_owner: Principal
    admin: Principal
    tenant_a: Principal
    tenant_b: Principal
    property_id: int
    other_property_id: int


def applicant(name: str = "Aisha Khan", **extra) -> dict:
    info = {"full_name": name, "emirates_id": "784-1990-1234567-1", "passport_number": "P1234567"}
    info.update(extra)
    return info


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


def _user(db, email: str, role: str) -> AppUser:
    u = AppUser(email=email, role=role, display_name=email.split("@")[0])
    db.add(u)
    db.flush()
    return u


@pytest.fixture
def world(db) -> World:
    owner_user = _user(db, "owner@t.local", "owner")
    other_owner_user = _user(db, "owner2@t.local", "owner")
    admin_user = _user(db, "admin@t.local", "admin")
    ta_user = _user(db, "aisha@t.local", "tenant")
    tb_user = _user(db, "bilal@t.local", "tenant")

    owner = Owner(user_id=owner_user.id, first_name="Omar", last_name="Haddad")
    other_owner = Owner(user_id=other_owner_user.id, company_name="Creek Estates")
    db.add_all([owner, other_owner])
    db.flush()

    db.add_all(
        [
            Tenant(user_id=ta_user.id, full_name="Aisha Khan", emirates_id="784-1990-1234567-1", passport_number="P1234567"),
            Tenant(user_id=tb_user.id, full_name="Bilal Ahmed", emirates_id="784-1988-7654321-2", passport_number="P7654321"),
        ]
    )

    prop = Property(
        owner_id=owner.id,
        property_name="Marina Heights 1204",
        price=Decimal("120000.00"),
        status=PropertyStatus.VACANT,
    )
    other = Property(
        owner_id=other_owner.id,
        property_name="Creek View 301",
        price=Decimal("90000.00"),
        status=PropertyStatus.VACANT,
    )
    db.add_all([prop, other])
    db.commit()

    return World(
        owner=principal_for_user(db, owner_user),
        other_owner=principal_for_user(db, other_owner_user),
        admin=principal_for_user(db, admin_user),
        tenant_a=principal_for_user(db, ta_user),
        tenant_b=principal_for_user(db, tb_user),
        property_id=prop.id,
        other_property_id=other.id,
    )
