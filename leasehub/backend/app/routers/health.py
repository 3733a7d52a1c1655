# backend/app/routers/health.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=dict)
def health():
    return {"ok": True, "env": settings.app_env}


@router.get("/db", response_model=dict)
def health_db(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True}
