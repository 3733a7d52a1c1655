# backend/app/routers/rent_payments.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_manager
from ..db import get_db
from ..schemas import RentPaymentOut, RentPaymentStatusIn, RentPaymentSummaryOut
from ..services import rent_payment_service as payments

router = APIRouter(tags=["rent_payments"])


@router.get("/leases/{lease_id}/rent-payments", response_model=list[RentPaymentOut])
def list_rent_payments(lease_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return payments.list_payments(db, actor=p, lease_id=lease_id)


@router.get("/leases/{lease_id}/rent-payments/summary", response_model=RentPaymentSummaryOut)
def rent_payment_summary(lease_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return payments.payment_summary(db, actor=p, lease_id=lease_id)


@router.put("/rent-payments/{payment_id}/status", response_model=RentPaymentOut)
def update_rent_payment_status(
    payment_id: int,
    payload: RentPaymentStatusIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_manager),
):
    return payments.update_payment_status(
        db,
        actor=p,
        payment_id=payment_id,
        status=payload.status,
        payment_date=payload.payment_date,
        payment_method=payload.payment_method,
        transaction_reference=payload.transaction_reference,
        receipt_url=payload.receipt_url,
        notes=payload.notes,
    )
