"""
auth/apikeys.py -- API key extraction and validation.

Two header shapes carry an API key:

    Authorization: Bearer cw_live_<64 hex>
    X-API-Key: cw_live_<64 hex>

Anything else (a JWT bearer token, an empty header) is not an API key and the
caller falls through to the other identity sources.

authenticate_api_key() either returns the matching ApiKey record or raises
AuthenticationInvalid with a distinct code for each failure:

    invalid_api_key   no key with that hash
    api_key_revoked   revoked_at is set
    api_key_expired   expires_at is in the past
    ip_not_allowed    whitelist is non-empty and the client IP is not on it

Store failures raise EvaluationFailed -- authentication fails closed.
Only key_prefix is ever logged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from auth.models import ApiKey
from auth.tokens import hash_api_key
from core.errors import AuthenticationInvalid, EvaluationFailed

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("missionguard.auth.apikeys")

_KEY_MARKER = "cw_"


def extract_api_key(authorization: str | None, x_api_key: str | None) -> str | None:
    """Return the raw API key from the request headers, or None."""
    if authorization and authorization.startswith(f"Bearer {_KEY_MARKER}"):
        return authorization[len("Bearer ") :].strip()
    if x_api_key and x_api_key.startswith(_KEY_MARKER):
        return x_api_key.strip()
    return None


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def authenticate_api_key(
    store: UserStore,
    raw_key: str,
    client_ip: str | None,
    now: datetime | None = None,
) -> ApiKey:
    """Validate raw_key and return its record. Raises on any failure."""
    now = now or datetime.now(timezone.utc)
    try:
        record = store.get_api_key_by_hash(hash_api_key(raw_key))
    except SQLAlchemyError as exc:
        logger.error("API key lookup failed: %s", exc)
        raise EvaluationFailed("Failed to validate API key", code="authentication_error") from exc

    if record is None:
        logger.warning("Rejected unknown API key (prefix %s)", raw_key[:12])
        raise AuthenticationInvalid("The provided API key is not valid", code="invalid_api_key")

    if record.revoked_at:
        logger.warning("Rejected revoked API key %s", record.key_prefix)
        raise AuthenticationInvalid("This API key has been revoked", code="api_key_revoked")

    if record.expires_at and now > _parse_iso(record.expires_at):
        logger.warning("Rejected expired API key %s", record.key_prefix)
        raise AuthenticationInvalid("This API key has expired", code="api_key_expired")

    if record.ip_whitelist and client_ip not in record.ip_whitelist:
        logger.warning("API key %s used from non-whitelisted IP %s", record.key_prefix, client_ip)
        raise AuthenticationInvalid(
            "Your IP address is not authorized for this API key",
            code="ip_not_allowed",
        )

    return record


def scope_allows(scopes, scope: str) -> bool:
    """True when the held scopes include `admin` or the exact scope."""
    held = set(scopes or ())
    return "admin" in held or scope in held
