# backend/app/services/occupancy.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.errors import ConflictError
from ..domain.states import LeaseStatus, PropertyStatus
from ..models import Lease, Property

# -----------------------------------------------------------------------------
# Property Occupancy Guard
# -----------------------------------------------------------------------------
# Invariant:
#   property.status == occupied
#     <=> exactly one lease with (property_id, status=active) exists
#     and property.current_lease_id points at it.
#
# The helpers below are the only code that writes properties.status or
# properties.current_lease_id. Callers must already hold the property row lock.
# -----------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.utcnow()


def ensure_accepting_applications(prop: Property) -> None:
    if prop.status == PropertyStatus.OCCUPIED:
        raise ConflictError("Property is already leased and not accepting new applications")


def ensure_can_open_lease(prop: Property, active_lease: Optional[Lease]) -> None:
    if prop.status == PropertyStatus.OCCUPIED:
        raise ConflictError("Property is already occupied")
    if active_lease is not None:
        raise ConflictError("Property already has an active lease")


def occupy(prop: Property, lease: Lease) -> None:
    """Point the property at its (new) active lease."""
    if lease.id is None:
        raise RuntimeError("lease must be flushed before it can occupy a property")
    if lease.status != LeaseStatus.ACTIVE:
        raise ConflictError("Only an active lease can occupy a property")
    prop.status = PropertyStatus.OCCUPIED
    prop.current_lease_id = lease.id
    prop.updated_at = _utcnow()


def vacate(prop: Property, *, status: PropertyStatus = PropertyStatus.VACANT) -> None:
    prop.status = status
    prop.current_lease_id = None
    prop.updated_at = _utcnow()


def ensure_status_change_allowed(prop: Property, target: PropertyStatus, active_lease: Optional[Lease]) -> None:
    """
    Manual status writes that would break the invariant.

    occupied/sold -> vacant is handled by the caller (it ends the lease).
    """
    if target == PropertyStatus.OCCUPIED and active_lease is None:
        raise ConflictError("Property cannot be marked occupied without an active lease")
    if target != PropertyStatus.OCCUPIED and active_lease is not None:
        raise ConflictError(
            f"Property has an active lease; terminate it or set the property vacant before marking it {target.value}"
        )


# -----------------------------------------------------------------------------
# Derived truth (audit)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class OccupancyIssue:
    property_id: int
    status: str
    current_lease_id: Optional[int]
    active_lease_ids: tuple[int, ...]
    problem: str

    def as_dict(self) -> dict:
        return {
            "property_id": self.property_id,
            "status": self.status,
            "current_lease_id": self.current_lease_id,
            "active_lease_ids": list(self.active_lease_ids),
            "problem": self.problem,
        }


def _problem(prop: Property, active_ids: list[int]) -> Optional[str]:
    if len(active_ids) > 1:
        return "multiple_active_leases"
    if prop.status == PropertyStatus.OCCUPIED:
        if not active_ids:
            return "occupied_without_active_lease"
        if prop.current_lease_id != active_ids[0]:
            return "current_lease_mismatch"
        return None
    if active_ids:
        return "active_lease_on_unoccupied_property"
    if prop.current_lease_id is not None:
        return "dangling_current_lease"
    return None


def check_occupancy(db: Session, *, property_id: Optional[int] = None) -> list[OccupancyIssue]:
    """Report every property whose status / current_lease_id disagree with its leases."""
    q = select(Property).order_by(Property.id)
    if property_id is not None:
        q = q.where(Property.id == int(property_id))
    props = db.scalars(q).all()

    lq = select(Lease.property_id, Lease.id).where(Lease.status == LeaseStatus.ACTIVE)
    if property_id is not None:
        lq = lq.where(Lease.property_id == int(property_id))
    active: dict[int, list[int]] = {}
    for pid, lid in db.execute(lq.order_by(Lease.id)).all():
        active.setdefault(int(pid), []).append(int(lid))

    out: list[OccupancyIssue] = []
    for prop in props:
        ids = active.get(int(prop.id), [])
        problem = _problem(prop, ids)
        if problem:
            out.append(
                OccupancyIssue(
                    property_id=int(prop.id),
                    status=prop.status.value if prop.status else "",
                    current_lease_id=prop.current_lease_id,
                    active_lease_ids=tuple(ids),
                    problem=problem,
                )
            )
    return out
