"""
JWT Service — access token encoding/decoding and one-time tokens.

Access token:  1 hour (configurable via JWT_ACCESS_EXPIRES)
Algorithm:     HS256

Token payload (access):
{
    "sub": "<user_id>",
    "tenant_id": <tenant_id>,
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Roles are deliberately not carried in the token; the middleware re-reads
them from user_roles on every request so a revoked role takes effect
immediately.

Invite and password-reset tokens are random strings; only their SHA-256
hash is stored.
"""

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

DEFAULT_ACCESS_EXPIRES = 3600
DEFAULT_RESET_EXPIRES = 86400
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Access tokens
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: int, tenant_id: int | None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    if tenant_id is not None:
        payload["tenant_id"] = tenant_id
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError).
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError(f"Expected access token, got {payload.get('type')}")
    try:
        payload["sub"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise jwt.InvalidTokenError("Token subject is not a user id") from None
    return payload


# ═══════════════════════════════════════════════════════════════
# One-time tokens (invite / password reset)
# ═══════════════════════════════════════════════════════════════
def hash_token(token: str) -> str:
    """SHA-256 hash of a token (for DB storage; raw tokens are never stored)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_one_time_token() -> tuple[str, str]:
    """Return (raw_token, token_hash)."""
    raw = secrets.token_urlsafe(32)
    return raw, hash_token(raw)


def reset_token_expiry() -> datetime:
    seconds = current_app.config.get("PASSWORD_RESET_EXPIRES", DEFAULT_RESET_EXPIRES)
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)
