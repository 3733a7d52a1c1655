# backend/app/routers/leases.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_manager
from ..db import get_db
from ..schemas import (
    ContractUpdateIn,
    ContractUpdateOut,
    InstallmentOut,
    LeaseCreate,
    LeaseOut,
    LeaseRenewIn,
    LeaseTerminateIn,
    LeaseUpdate,
)
from ..services import contract_service, lease_service

router = APIRouter(prefix="/leases", tags=["leases"])


@router.post("", response_model=LeaseOut, status_code=201)
def create_lease(payload: LeaseCreate, db: Session = Depends(get_db), p: Principal = Depends(require_manager)):
    return lease_service.create_lease(
        db,
        actor=p,
        application_id=payload.application_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        rent_amount=payload.rent_amount,
        security_deposit=payload.security_deposit,
        ejari_number=payload.ejari_number,
        terms=payload.terms,
    )


@router.get("", response_model=list[LeaseOut])
def list_leases(
    property_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return lease_service.list_leases(db, actor=p, property_id=property_id, status=status, limit=limit)


@router.get("/{lease_id}", response_model=LeaseOut)
def get_lease(lease_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return lease_service.get_lease(db, actor=p, lease_id=lease_id)


@router.patch("/{lease_id}", response_model=LeaseOut)
def update_lease(
    lease_id: int,
    payload: LeaseUpdate,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_manager),
):
    return lease_service.update_lease(
        db,
        actor=p,
        lease_id=lease_id,
        rent_amount=payload.rent_amount,
        terms=payload.terms,
        ejari_number=payload.ejari_number,
        ejari_status=payload.ejari_status,
    )


@router.post("/{lease_id}/renew", response_model=LeaseOut, status_code=201)
def renew_lease(
    lease_id: int,
    payload: LeaseRenewIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_manager),
):
    return lease_service.renew_lease(
        db,
        actor=p,
        lease_id=lease_id,
        new_end_date=payload.new_end_date,
        new_rent_amount=payload.new_rent_amount,
    )


@router.post("/{lease_id}/terminate", response_model=LeaseOut)
def terminate_lease(
    lease_id: int,
    payload: LeaseTerminateIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_manager),
):
    return lease_service.terminate_lease(
        db,
        actor=p,
        lease_id=lease_id,
        reason=payload.reason,
        move_out_inspection=payload.move_out_inspection,
    )


@router.put("/{lease_id}/contract", response_model=ContractUpdateOut)
def update_contract(
    lease_id: int,
    payload: ContractUpdateIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_manager),
):
    kwargs = {}
    if "contract_url" in payload.model_fields_set:
        kwargs["contract_url"] = payload.contract_url

    result = contract_service.apply_contract_update(
        db,
        actor=p,
        lease_id=lease_id,
        cheque_count=payload.cheque_count,
        payment_method=payload.payment_method,
        first_due_date=payload.first_due_date,
        reminder_lead_days=payload.reminder_lead_days,
        **kwargs,
    )
    return ContractUpdateOut(
        lease=LeaseOut.model_validate(result.lease),
        rescheduled=result.rescheduled,
        schedule=[InstallmentOut(**x.as_dict()) for x in result.schedule],
    )
