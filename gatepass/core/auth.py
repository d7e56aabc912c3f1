"""
Identity helpers for role checks.

Authentication happens upstream; this module only turns the caller's
identity claims ``(principal_id, role, department)`` into a ``UserContext``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Depends
from .security import decode_access_token

ROLES = {"student", "mentor", "hod", "security", "admin"}


@dataclass
class UserContext:
    user_id: str
    role: str
    department: Optional[str] = None


def _auth_disabled() -> bool:
    return os.getenv("GATEPASS_AUTH_DISABLED", "true").lower() in {"1", "true", "yes"}


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def _normalize_role(raw: Optional[str]) -> str:
    role = (raw or "").strip().lower()
    if role not in ROLES:
        raise HTTPException(status_code=401, detail="Unknown role")
    return role


def get_current_user(
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
    x_user_department: Optional[str] = Header(None, alias="X-User-Department"),
) -> UserContext:
    if _auth_disabled():
        # Dev mode: the gateway in front of us forwards identity as headers.
        if not x_user_id or not x_user_role:
            raise HTTPException(status_code=401, detail="Missing identity headers")
        return UserContext(
            user_id=x_user_id.strip(),
            role=_normalize_role(x_user_role),
            department=(x_user_department or "").strip() or None,
        )
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_access_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token claims")
    department = claims.get("department")
    return UserContext(
        user_id=user_id,
        role=_normalize_role(claims.get("role")),
        department=str(department).strip() if department else None,
    )


def require_roles(*roles: str):
    def _dep(user: UserContext = Depends(get_current_user)):
        allowed = {r.strip().lower() for r in roles if r and r.strip()}
        if allowed and user.role not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep
