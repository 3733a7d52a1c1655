# backend/app/services/property_service.py
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..auth import Principal
from ..domain.audit import audit_write, snapshot
from ..domain.errors import AuthorizationError
from ..domain.states import LeaseStatus, PropertyStatus, parse_status
from ..models import Lease, Property
from . import occupancy
from .lease_service import end_lease_for_vacancy
from .locks_service import lock_active_lease, lock_property, unit_of_work
from .ownership import ensure_manages_property, must_get_property

log = logging.getLogger("leasehub.properties")

_CASCADE_FROM = frozenset({PropertyStatus.OCCUPIED, PropertyStatus.SOLD})


def set_property_status(db: Session, *, actor: Principal, property_id: int, status: Any) -> Property:
    """
    Admin override of properties.status.

    occupied|sold -> vacant ends the active lease, cancels its open installments
    and the approved application behind it, all in the same transaction.
    Any other write must leave the occupancy invariant intact.
    """
    if not actor.is_admin:
        raise AuthorizationError("Only admins can override property status")
    target = parse_status(PropertyStatus, status)

    with unit_of_work(db):
        prop = lock_property(db, property_id)
        if prop.status == target:
            return prop

        before = snapshot(prop)
        ended_lease_id: Optional[int] = None

        if target == PropertyStatus.VACANT and prop.status in _CASCADE_FROM:
            active_id = db.scalar(
                select(Lease.id).where(Lease.property_id == prop.id, Lease.status == LeaseStatus.ACTIVE)
            )
            if active_id is not None:
                end_lease_for_vacancy(db, actor=actor, prop=prop, lease_id=active_id)
                ended_lease_id = active_id
            occupancy.vacate(prop)
        else:
            active = lock_active_lease(db, prop.id)
            occupancy.ensure_status_change_allowed(prop, target, active)
            if target == PropertyStatus.OCCUPIED:
                occupancy.occupy(prop, active)
            else:
                occupancy.vacate(prop, status=target)

        audit_write(
            db,
            actor_user_id=actor.user_id,
            action="property.status_override",
            entity_type="Property",
            entity_id=prop.id,
            before=before,
            after=snapshot(prop),
        )
        log.info(
            "property status %s -> %s",
            before["status"].value if before.get("status") else None,
            target.value,
            extra={"property_id": prop.id, "lease_id": ended_lease_id},
        )
    return prop


def get_property(db: Session, *, actor: Principal, property_id: int) -> Property:
    prop = must_get_property(db, property_id=property_id)
    ensure_manages_property(actor, prop)
    return prop


def list_properties(
    db: Session,
    *,
    actor: Principal,
    status: Optional[str] = None,
    limit: int = 200,
) -> list[Property]:
    q = select(Property)
    if not actor.is_admin:
        q = q.where(Property.owner_id == (actor.owner_id or -1))
    if status:
        q = q.where(Property.status == parse_status(PropertyStatus, status))
    return list(db.scalars(q.order_by(desc(Property.id)).limit(int(limit))).all())
