# backend/app/models.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .domain.states import (
    ApplicationStatus,
    EjariStatus,
    LeaseStatus,
    PaymentMethod,
    PaymentStatus,
    PropertyStatus,
)


def _enum(enum_cls, name: str) -> SQLEnum:
    # store .value strings; no native PG enum so new states are a plain migration
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=30,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )


def Money() -> Numeric:
    return Numeric(12, 2, asdecimal=True)


# -----------------------------
# Identities
# -----------------------------
class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    mobile: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="tenant")  # tenant|owner|admin
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Owner(Base):
    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, unique=True, index=True)

    company_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    user: Mapped["AppUser"] = relationship()
    properties: Mapped[List["Property"]] = relationship(back_populates="owner")

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return self.company_name or full or (self.user.email if self.user else "") or "Owner"


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, unique=True, index=True)
    # set on first application to one of the owner's properties
    owner_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("owners.id"), nullable=True, index=True)

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    emirates_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    passport_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    user: Mapped["AppUser"] = relationship()

    @property
    def display_name(self) -> str:
        return self.full_name or (self.user.email if self.user else "") or "Tenant"


# -----------------------------
# Core domain: Properties / Applications / Leases
# -----------------------------
class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.id"), nullable=False, index=True)

    property_name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0.00"))

    status: Mapped[PropertyStatus] = mapped_column(
        _enum(PropertyStatus, "property_status"), nullable=False, default=PropertyStatus.VACANT, index=True
    )
    current_lease_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("leases.id", use_alter=True, name="fk_properties_current_lease_id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    owner: Mapped["Owner"] = relationship(back_populates="properties")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        # at most one open application per (property, tenant)
        Index(
            "uq_applications_open_per_tenant",
            "property_id",
            "tenant_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'under_review')"),
            sqlite_where=text("status IN ('pending', 'under_review')"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)

    status: Mapped[ApplicationStatus] = mapped_column(
        _enum(ApplicationStatus, "application_status"),
        nullable=False,
        default=ApplicationStatus.PENDING,
        index=True,
    )

    applicant_info_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    employment_details_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    move_in_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    viewing_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    viewing_time: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ejari_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offer_amount: Mapped[Optional[Decimal]] = mapped_column(Money(), nullable=True)

    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    background_check_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    reviewed_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship()
    tenant: Mapped["Tenant"] = relationship()


class Lease(Base):
    __tablename__ = "leases"
    __table_args__ = (
        # at most one active lease per property
        Index(
            "uq_leases_one_active_per_property",
            "property_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    application_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("applications.id"), nullable=True, index=True
    )
    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.id"), nullable=False, index=True)
    # renewal chain
    previous_lease_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("leases.id"), nullable=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    rent_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    security_deposit: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0.00"))

    status: Mapped[LeaseStatus] = mapped_column(
        _enum(LeaseStatus, "lease_status"), nullable=False, default=LeaseStatus.ACTIVE, index=True
    )

    ejari_number: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    ejari_status: Mapped[EjariStatus] = mapped_column(
        _enum(EjariStatus, "ejari_status"), nullable=False, default=EjariStatus.PENDING
    )
    terms_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    contract_document_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contract_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    contract_uploaded_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    cheque_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        _enum(PaymentMethod, "payment_method"), nullable=True
    )
    payment_plan_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    termination_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    move_out_inspection_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(foreign_keys=[property_id])
    tenant: Mapped["Tenant"] = relationship()
    owner: Mapped["Owner"] = relationship()
    rent_payments: Mapped[List["RentPayment"]] = relationship(
        back_populates="lease", order_by="RentPayment.installment_number"
    )


class RentPayment(Base):
    __tablename__ = "rent_payments"
    __table_args__ = (UniqueConstraint("lease_id", "installment_number", name="uq_rent_payments_lease_installment"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lease_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.id"), nullable=False, index=True)

    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        _enum(PaymentMethod, "rent_payment_method"), nullable=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING, index=True
    )

    transaction_reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    receipt_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reminder_lead_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    lease: Mapped["Lease"] = relationship(back_populates="rent_payments")


# -----------------------------
# Outbox + audit
# -----------------------------
class NotificationEvent(Base):
    __tablename__ = "notification_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    event_type: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    action: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    recipient_role: Mapped[str] = mapped_column(String(20), nullable=False)  # tenant|owner
    recipient_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)
    recipient_email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    property_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("properties.id"), nullable=True, index=True)
    property_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payload_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)  # pending|delivered|failed
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
