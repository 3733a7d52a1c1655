# backend/app/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import AppUser, Owner, Tenant

ROLES = ("tenant", "owner", "admin")


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str  # tenant | owner | admin
    email: str = ""
    owner_id: Optional[int] = None
    tenant_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# -------------------------
# JWT helpers
# -------------------------
def create_access_token(*, user_id: int, role: str, minutes: int = 60 * 24) -> str:
    now = datetime.utcnow()
    payload: dict[str, Any] = {
        "sub": str(int(user_id)),
        "role": str(role),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=int(minutes))).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


# -------------------------
# Principal resolution
# -------------------------
def principal_for_user(db: Session, user: AppUser, *, role: Optional[str] = None) -> Principal:
    eff_role = (role or user.role or "tenant").strip().lower()
    if eff_role not in ROLES:
        raise HTTPException(status_code=401, detail=f"Unknown role '{eff_role}'")

    owner_id = db.scalar(select(Owner.id).where(Owner.user_id == user.id))
    tenant_id = db.scalar(select(Tenant.id).where(Tenant.user_id == user.id))
    return Principal(
        user_id=int(user.id),
        role=eff_role,
        email=str(user.email),
        owner_id=int(owner_id) if owner_id is not None else None,
        tenant_id=int(tenant_id) if tenant_id is not None else None,
    )


def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Principal:
    """
    Auth modes supported (in priority order):
      1) Authorization: Bearer <token> (HS256, claims sub + role)
      2) dev headers X-User-Id / X-User-Role (ONLY if settings.auth_mode == "dev")
    """
    if authorization and str(authorization).lower().startswith("bearer "):
        claims = decode_access_token(str(authorization).split(" ", 1)[1].strip())
        sub = str(claims.get("sub") or "")
        if not sub.isdigit():
            raise HTTPException(status_code=401, detail="Token missing sub")
        user = db.get(AppUser, int(sub))
        if user is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        return principal_for_user(db, user, role=claims.get("role"))

    if settings.auth_mode == "dev":
        raw_id = (request.headers.get(settings.dev_header_user_id) or "").strip()
        if not raw_id.isdigit():
            raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_id} for dev auth")
        user = db.get(AppUser, int(raw_id))
        if user is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        role_hint = (request.headers.get(settings.dev_header_user_role) or "").strip().lower() or None
        return principal_for_user(db, user, role=role_hint)

    raise HTTPException(status_code=401, detail="Not authenticated")


def _require_role(principal: Principal, *roles: str) -> None:
    if principal.role not in roles:
        raise HTTPException(status_code=403, detail=f"Requires role in {', '.join(roles)}")


def require_tenant(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, "tenant")
    return p


def require_manager(p: Principal = Depends(get_principal)) -> Principal:
    """Owner or admin."""
    _require_role(p, "owner", "admin")
    return p


def require_admin(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, "admin")
    return p
