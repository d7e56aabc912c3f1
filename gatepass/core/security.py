"""
Signing helpers shared by access tokens and pass verification tokens.

Tokens are compact ``header.payload.signature`` strings signed with
HMAC-SHA256 and base64url encoded without padding.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def sign_payload(payload: dict[str, Any], secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    signing_input = (
        f"{b64url_encode(json.dumps(header, separators=(',', ':')).encode('utf-8'))}."
        f"{b64url_encode(json.dumps(payload, separators=(',', ':'), default=str).encode('utf-8'))}"
    )
    signature = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()
    return f"{signing_input}.{b64url_encode(signature)}"


def unsign_payload(token: str, secret: str) -> dict[str, Any]:
    """Return the payload of a signed token; raise ``ValueError`` when it is not authentic."""
    parts = (token or "").split(".")
    if len(parts) != 3:
        raise ValueError("Malformed token")
    header_b64, payload_b64, signature_b64 = parts
    signing_input = f"{header_b64}.{payload_b64}"
    expected_sig = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()
    try:
        provided_sig = b64url_decode(signature_b64)
    except Exception as exc:
        raise ValueError("Malformed signature") from exc
    if not secrets.compare_digest(expected_sig, provided_sig):
        raise ValueError("Invalid signature")
    try:
        payload = json.loads(b64url_decode(payload_b64).decode("utf-8"))
    except Exception as exc:
        raise ValueError("Malformed payload") from exc
    if not isinstance(payload, dict):
        raise ValueError("Invalid payload")
    return payload


def _jwt_secret() -> str:
    secret = (os.getenv("GATEPASS_JWT_SECRET") or "").strip()
    if secret:
        return secret
    env = (os.getenv("GATEPASS_ENV") or os.getenv("APP_ENV") or "dev").strip().lower()
    if env == "prod":
        return ""
    return "dev-jwt-secret-change-me"


def _jwt_exp_minutes() -> int:
    try:
        return max(1, int(os.getenv("GATEPASS_JWT_EXP_MIN", "720")))
    except Exception:
        return 720


def create_access_token(*, sub: str, role: str, department: str | None = None) -> str:
    """Issue an access token carrying the identity claims the core trusts.

    Used by the identity provider integration and by tests; the backend
    itself never authenticates principals.
    """
    secret = _jwt_secret()
    if not secret:
        raise RuntimeError("GATEPASS_JWT_SECRET is required when auth is enabled")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "role": role,
        "department": department,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=_jwt_exp_minutes())).timestamp()),
    }
    return sign_payload(payload, secret)


def decode_access_token(token: str) -> dict[str, Any]:
    secret = _jwt_secret()
    if not secret:
        raise ValueError("JWT secret not configured")
    payload = unsign_payload(token, secret)
    exp = int(payload.get("exp") or 0)
    if exp <= 0:
        raise ValueError("Missing exp")
    now_ts = int(datetime.now(timezone.utc).timestamp())
    if now_ts >= exp:
        raise ValueError("Token expired")
    return payload
