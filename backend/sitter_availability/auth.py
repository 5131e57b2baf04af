"""Caller identity for the availability routes.

Tokens are ``base64url(provider_id|expiry).base64url(hmac_sha256)``. Issuing
them belongs to the surrounding application; this module only needs to mint
them for local use and to verify who is calling.
"""

import base64
import binascii
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status

from sitter_availability import config


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def _sign(payload: bytes) -> bytes:
    return hmac.new(config.AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()


def create_access_token(provider_id: str, ttl_hours: Optional[int] = None) -> tuple[str, str]:
    hours = ttl_hours if ttl_hours is not None else config.AUTH_TOKEN_TTL_HOURS
    expiry = datetime.now(timezone.utc) + timedelta(hours=hours)
    payload = f"{provider_id}|{int(expiry.timestamp())}".encode("utf-8")
    return f"{_b64url(payload)}.{_b64url(_sign(payload))}", expiry.isoformat()


def verify_access_token(token: str) -> Optional[str]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
        subject, expiry_ts = payload.decode("utf-8").rsplit("|", 1)
        expires_at = int(expiry_ts)
    except (ValueError, binascii.Error, UnicodeDecodeError):
        return None
    if not hmac.compare_digest(sent_sig, _sign(payload)):
        return None
    if datetime.now(timezone.utc).timestamp() > expires_at:
        return None
    return subject


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_caller(authorization: Optional[str]) -> Optional[str]:
    token = parse_bearer_token(authorization)
    if not token:
        return None
    return verify_access_token(token)


def assert_provider_authorized(
    provider_id: str,
    authorization: Optional[str] = Header(default=None),
) -> None:
    caller = resolve_caller(authorization)
    if not caller:
        if config.AUTH_REQUIRED:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        return
    if caller != provider_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the provider can change their own availability",
        )
