"""
Security codes and signed verification tokens for approved passes.

Both are pure functions of the pass data and a secret. The security code
is short enough to read out at the gate; the verification token is what
the QR image encodes. ``verify_token`` reports routine failures (expired,
tampered, malformed) as a ``TokenCheck`` result instead of raising.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..core.security import sign_payload, unsign_payload

SECURITY_CODE_LENGTH = 8
DEFAULT_TOKEN_TTL_HOURS = 24


@dataclass(frozen=True)
class PassWindow:
    departure_time: datetime
    return_time: datetime


@dataclass(frozen=True)
class TokenClaims:
    pass_id: str
    student_id: str
    category: str
    window: PassWindow
    status: str
    security_code: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenCheck:
    valid: bool
    reason: Optional[str] = None  # malformed | invalid_signature | expired | code_mismatch
    claims: Optional[TokenClaims] = None


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def derive_security_code(pass_id: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), str(pass_id).encode("utf-8"), hashlib.sha256).hexdigest()
    return digest[:SECURITY_CODE_LENGTH].upper()


def build_verification_token(
    *,
    pass_id: str,
    student_id: str,
    category: str,
    window: PassWindow,
    status: str,
    code: str,
    secret: str,
    now: Optional[datetime] = None,
    ttl_hours: int = DEFAULT_TOKEN_TTL_HOURS,
) -> str:
    issued = _ensure_utc(now or datetime.now(timezone.utc))
    payload = {
        "pass_id": pass_id,
        "student_id": student_id,
        "category": category,
        "valid_from": _ensure_utc(window.departure_time).isoformat(),
        "valid_until": _ensure_utc(window.return_time).isoformat(),
        "status": status,
        "security_code": code,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(hours=ttl_hours)).timestamp()),
    }
    return sign_payload(payload, secret)


def _claims_from_payload(payload: dict) -> TokenClaims:
    return TokenClaims(
        pass_id=str(payload["pass_id"]),
        student_id=str(payload["student_id"]),
        category=str(payload["category"]),
        window=PassWindow(
            departure_time=datetime.fromisoformat(payload["valid_from"]),
            return_time=datetime.fromisoformat(payload["valid_until"]),
        ),
        status=str(payload["status"]),
        security_code=str(payload["security_code"]),
        issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
    )


def verify_token(token: str, secret: str, *, now: Optional[datetime] = None) -> TokenCheck:
    try:
        payload = unsign_payload(token, secret)
    except ValueError as exc:
        reason = "invalid_signature" if str(exc) == "Invalid signature" else "malformed"
        return TokenCheck(valid=False, reason=reason)
    try:
        claims = _claims_from_payload(payload)
    except (KeyError, TypeError, ValueError):
        return TokenCheck(valid=False, reason="malformed")

    current = _ensure_utc(now or datetime.now(timezone.utc))
    if current >= claims.expires_at:
        return TokenCheck(valid=False, reason="expired", claims=claims)

    expected = derive_security_code(claims.pass_id, secret)
    if not secrets.compare_digest(expected.encode("utf-8"), claims.security_code.encode("utf-8")):
        return TokenCheck(valid=False, reason="code_mismatch", claims=claims)
    return TokenCheck(valid=True, claims=claims)
