# backend/app/services/ownership.py
from __future__ import annotations

from sqlalchemy.orm import Session

from ..auth import Principal
from ..domain.errors import AuthorizationError, NotFoundError
from ..models import Application, Lease, Property, RentPayment, Tenant


def must_get_property(db: Session, *, property_id: int) -> Property:
    row = db.get(Property, int(property_id))
    if row is None:
        raise NotFoundError("Property not found")
    return row


def must_get_tenant(db: Session, *, tenant_id: int) -> Tenant:
    row = db.get(Tenant, int(tenant_id))
    if row is None:
        raise NotFoundError("Tenant profile not found")
    return row


def must_get_rent_payment(db: Session, *, payment_id: int) -> RentPayment:
    row = db.get(RentPayment, int(payment_id))
    if row is None:
        raise NotFoundError("Rent payment not found")
    return row


def ensure_manages_property(actor: Principal, prop: Property) -> None:
    """Admins manage everything; owners only their own properties."""
    if actor.is_admin:
        return
    if actor.role != "owner" or actor.owner_id is None or int(prop.owner_id) != int(actor.owner_id):
        raise AuthorizationError("Unauthorized")


def ensure_manages_lease(actor: Principal, lease: Lease) -> None:
    if actor.is_admin:
        return
    if actor.role != "owner" or actor.owner_id is None or int(lease.owner_id) != int(actor.owner_id):
        raise AuthorizationError("Unauthorized")


def ensure_can_view_application(actor: Principal, app: Application) -> None:
    if actor.is_admin:
        return
    if actor.role == "tenant" and actor.tenant_id is not None and int(app.tenant_id) == int(actor.tenant_id):
        return
    if actor.role == "owner" and actor.owner_id is not None and int(app.property.owner_id) == int(actor.owner_id):
        return
    raise AuthorizationError("Unauthorized")


def ensure_can_view_lease(actor: Principal, lease: Lease) -> None:
    if actor.is_admin:
        return
    if actor.role == "tenant" and actor.tenant_id is not None and int(lease.tenant_id) == int(actor.tenant_id):
        return
    ensure_manages_lease(actor, lease)


def actor_tenant_id(actor: Principal) -> int:
    if actor.role != "tenant":
        raise AuthorizationError("Only tenants can do this")
    if actor.tenant_id is None:
        raise NotFoundError("Tenant profile not found")
    return int(actor.tenant_id)
