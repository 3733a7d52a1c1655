# backend/app/routers/properties.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, require_admin, require_manager
from ..db import get_db
from ..schemas import OccupancyIssueOut, OccupancyReportOut, PropertyOut, PropertyStatusIn
from ..services import occupancy, property_service

router = APIRouter(prefix="/properties", tags=["properties"])


@router.get("", response_model=list[PropertyOut])
def list_properties(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_manager),
):
    return property_service.list_properties(db, actor=p, status=status, limit=limit)


@router.get("/occupancy-check", response_model=OccupancyReportOut)
def occupancy_check(
    property_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_admin),
):
    issues = occupancy.check_occupancy(db, property_id=property_id)
    return OccupancyReportOut(
        checked_property_id=property_id,
        ok=not issues,
        issues=[OccupancyIssueOut(**i.as_dict()) for i in issues],
    )


@router.get("/{property_id}", response_model=PropertyOut)
def get_property(property_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_manager)):
    return property_service.get_property(db, actor=p, property_id=property_id)


@router.put("/{property_id}/status", response_model=PropertyOut)
def set_property_status(
    property_id: int,
    payload: PropertyStatusIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_admin),
):
    return property_service.set_property_status(db, actor=p, property_id=property_id, status=payload.status)
