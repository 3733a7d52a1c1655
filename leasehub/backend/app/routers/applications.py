# backend/app/routers/applications.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_manager, require_tenant
from ..db import get_db
from ..schemas import (
    ApplicationCreate,
    ApplicationOut,
    ApplicationStatusIn,
    ApplicationUpdate,
    ApprovalOut,
    LeaseOut,
)
from ..services import application_service as apps

router = APIRouter(prefix="/applications", tags=["applications"])


@router.post("", response_model=ApplicationOut, status_code=201)
def submit_application(
    payload: ApplicationCreate,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_tenant),
):
    row = apps.submit_application(
        db,
        actor=p,
        property_id=payload.property_id,
        applicant_info=payload.applicant_info.model_dump(exclude_none=True) if payload.applicant_info else None,
        employment_details=payload.employment_details,
        move_in_date=payload.move_in_date,
        viewing_date=payload.viewing_date,
        viewing_time=payload.viewing_time,
        ejari_required=payload.ejari_required,
        offer_amount=payload.offer_amount,
    )
    return row


@router.get("", response_model=list[ApplicationOut])
def list_applications(
    property_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return apps.list_applications(db, actor=p, property_id=property_id, status=status, limit=limit)


@router.get("/{application_id}", response_model=ApplicationOut)
def get_application(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return apps.get_application(db, actor=p, application_id=application_id)


@router.patch("/{application_id}", response_model=ApplicationOut)
def update_application(
    application_id: int,
    payload: ApplicationUpdate,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_tenant),
):
    changes = payload.model_dump(exclude_none=True)
    return apps.update_application(db, actor=p, application_id=application_id, **changes)


@router.put("/{application_id}/status", response_model=ApprovalOut)
def set_application_status(
    application_id: int,
    payload: ApplicationStatusIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_manager),
):
    result = apps.set_application_status(
        db,
        actor=p,
        application_id=application_id,
        status=payload.status,
        rejection_reason=payload.rejection_reason,
        message=payload.message,
        background_check_status=payload.background_check_status,
        lease_start_date=payload.lease_start_date,
        lease_end_date=payload.lease_end_date,
    )
    return ApprovalOut(
        application=ApplicationOut.model_validate(result.application),
        lease=LeaseOut.model_validate(result.lease) if result.lease is not None else None,
        rejected_application_ids=list(result.rejected_sibling_ids),
    )


@router.post("/{application_id}/cancel", response_model=ApplicationOut)
def cancel_application(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return apps.cancel_application(db, actor=p, application_id=application_id)
