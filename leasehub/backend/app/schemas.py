# backend/app/schemas.py
from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain.states import (
    ApplicationStatus,
    EjariStatus,
    LeaseStatus,
    PaymentMethod,
    PaymentStatus,
    PropertyStatus,
)


def _json_obj(v: Any) -> Any:
    """Text JSON column -> python value; dict/list pass through."""
    if v is None or isinstance(v, (dict, list)):
        return v
    if isinstance(v, str):
        if not v.strip():
            return None
        try:
            return json.loads(v)
        except ValueError:
            return {"raw": v}
    return v


# -------------------- Properties --------------------

class PropertyOut(BaseModel):
    id: int
    owner_id: int
    property_name: str
    price: Decimal
    status: PropertyStatus
    current_lease_id: Optional[int] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PropertyStatusIn(BaseModel):
    status: str


class OccupancyIssueOut(BaseModel):
    property_id: int
    status: str
    current_lease_id: Optional[int] = None
    active_lease_ids: List[int] = Field(default_factory=list)
    problem: str


class OccupancyReportOut(BaseModel):
    checked_property_id: Optional[int] = None
    ok: bool
    issues: List[OccupancyIssueOut] = Field(default_factory=list)


# -------------------- Applications --------------------

class ApplicantInfo(BaseModel):
    full_name: Optional[str] = None
    emirates_id: Optional[str] = None
    passport_number: Optional[str] = None
    nationality: Optional[str] = None
    mobile: Optional[str] = None
    email: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class ApplicationCreate(BaseModel):
    property_id: int
    applicant_info: Optional[ApplicantInfo] = None
    employment_details: Optional[dict[str, Any]] = None
    move_in_date: Optional[date] = None
    viewing_date: Optional[date] = None
    viewing_time: Optional[str] = None
    ejari_required: bool = False
    offer_amount: Optional[Decimal] = None


class ApplicationUpdate(BaseModel):
    applicant_info: Optional[ApplicantInfo] = None
    employment_details: Optional[dict[str, Any]] = None
    move_in_date: Optional[date] = None
    viewing_date: Optional[date] = None
    viewing_time: Optional[str] = None
    ejari_required: Optional[bool] = None
    offer_amount: Optional[Decimal] = None


class ApplicationStatusIn(BaseModel):
    status: str
    rejection_reason: Optional[str] = None
    message: Optional[str] = None
    background_check_status: Optional[str] = None

    # approval only
    lease_start_date: Optional[str] = None
    lease_end_date: Optional[str] = None


class ApplicationOut(BaseModel):
    id: int
    property_id: int
    tenant_id: int
    status: ApplicationStatus

    applicant_info: Optional[dict[str, Any]] = Field(default=None, validation_alias="applicant_info_json")
    employment_details: Optional[dict[str, Any]] = Field(default=None, validation_alias="employment_details_json")

    move_in_date: Optional[date] = None
    viewing_date: Optional[date] = None
    viewing_time: Optional[str] = None
    ejari_required: bool = False
    offer_amount: Optional[Decimal] = None

    rejection_reason: Optional[str] = None
    background_check_status: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("applicant_info", "employment_details", mode="before")
    @classmethod
    def _parse_json(cls, v: Any) -> Any:
        return _json_obj(v)


# -------------------- Leases --------------------

class LeaseCreate(BaseModel):
    application_id: int
    start_date: str
    end_date: str
    rent_amount: Decimal
    security_deposit: Decimal = Decimal("0.00")
    ejari_number: Optional[str] = None
    terms: Optional[dict[str, Any]] = None


class LeaseRenewIn(BaseModel):
    new_end_date: str
    new_rent_amount: Optional[Decimal] = None


class LeaseTerminateIn(BaseModel):
    reason: Optional[str] = None
    move_out_inspection: Optional[dict[str, Any]] = None


class LeaseUpdate(BaseModel):
    rent_amount: Optional[Decimal] = None
    terms: Optional[dict[str, Any]] = None
    ejari_number: Optional[str] = None
    ejari_status: Optional[str] = None


class ContractUpdateIn(BaseModel):
    """contract_url: omitted = unchanged, "" = remove."""

    contract_url: Optional[str] = None
    cheque_count: Optional[int] = None
    payment_method: Optional[str] = None
    first_due_date: Optional[str] = None
    reminder_lead_days: Optional[int] = None


class LeaseOut(BaseModel):
    id: int
    application_id: Optional[int] = None
    previous_lease_id: Optional[int] = None
    property_id: int
    tenant_id: int
    owner_id: int

    start_date: date
    end_date: date
    rent_amount: Decimal
    security_deposit: Decimal
    status: LeaseStatus

    ejari_number: Optional[str] = None
    ejari_status: Optional[EjariStatus] = None
    terms: Optional[dict[str, Any]] = Field(default=None, validation_alias="terms_json")

    contract_document_url: Optional[str] = None
    contract_uploaded_at: Optional[datetime] = None
    contract_uploaded_by: Optional[int] = None

    cheque_count: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    payment_plan: Optional[List[dict[str, Any]]] = Field(default=None, validation_alias="payment_plan_json")

    termination_reason: Optional[str] = None
    move_out_inspection: Optional[dict[str, Any]] = Field(default=None, validation_alias="move_out_inspection_json")

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("terms", "payment_plan", "move_out_inspection", mode="before")
    @classmethod
    def _parse_json(cls, v: Any) -> Any:
        return _json_obj(v)


class ApprovalOut(BaseModel):
    application: ApplicationOut
    lease: Optional[LeaseOut] = None
    rejected_application_ids: List[int] = Field(default_factory=list)


# -------------------- Rent payments --------------------

class InstallmentOut(BaseModel):
    installment: int
    due_date: date
    amount: Decimal


class RentPaymentOut(BaseModel):
    id: int
    lease_id: int
    installment_number: int
    amount: Decimal
    due_date: date
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    payment_status: PaymentStatus
    transaction_reference: Optional[str] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None
    reminder_lead_days: int = 3

    model_config = ConfigDict(from_attributes=True)


class RentPaymentStatusIn(BaseModel):
    status: str
    payment_date: Optional[str] = None
    payment_method: Optional[str] = None
    transaction_reference: Optional[str] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None


class RentPaymentSummaryOut(BaseModel):
    lease_id: int
    rent_amount: Decimal
    cheque_count: Optional[int] = None
    scheduled_total: Decimal
    paid_total: Decimal
    outstanding_total: Decimal
    counts: dict[str, int]
    next_due_date: Optional[date] = None


class ContractUpdateOut(BaseModel):
    lease: LeaseOut
    rescheduled: bool = False
    schedule: List[InstallmentOut] = Field(default_factory=list)


# -------------------- Notifications --------------------

class NotificationEventOut(BaseModel):
    id: int
    event_type: str
    action: Optional[str] = None
    recipient_role: str
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None
    property_id: Optional[int] = None
    property_name: Optional[str] = None
    payload: Optional[dict[str, Any]] = Field(default=None, validation_alias="payload_json")
    status: str
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("payload", mode="before")
    @classmethod
    def _parse_json(cls, v: Any) -> Any:
        return _json_obj(v)
