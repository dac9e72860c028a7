"""
auth/tokens.py -- Identity tokens and API key utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry the
       identity asserted by the upstream identity provider: sub, email, name,
       preferred_username, and groups. Verification returns None on any
       failure -- the guard layer turns that into a 401.

  API keys: secrets.token_hex(32) gives 256 bits of entropy -- brute-force is
       computationally infeasible. We store HMAC-SHA256(SECRET_KEY, raw_key) so
       lookup is O(1).
       The raw key is returned exactly once, at generation, and never logged;
       key_prefix is the only part that may appear in logs or listings.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup: dev mode (DEBUG=true) auto-generates a
       random key with a warning; production mode refuses to start without one.
       Short keys (<32 chars) are rejected with ValueError [M6].

Layer rule: no imports from api/, access/, quota/, ratelimit/, or resources/.
Import from core/ is allowed -- core/ is the kernel and has no reverse
dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Identity
from core.config import get_settings

logger = logging.getLogger("missionguard.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

API_KEY_PREFIX = "cw_live_"
KEY_PREFIX_LENGTH = 12


# ---------------------------------------------------------------------------
# Identity tokens
# ---------------------------------------------------------------------------


def create_identity_token(identity: Identity, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for the given identity.

    Args:
        identity:       The principal to assert. groups are embedded verbatim
                        so the role can be re-derived on every request.
        expire_seconds: Token lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": identity.id,
        "email": identity.email,
        "name": identity.name,
        "preferred_username": identity.username,
        "groups": list(identity.groups),
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_identity_token(token: str) -> Identity | None:
    """Decode and verify a JWT. Returns the Identity or None on any failure.

    Returning None (rather than raising) keeps the caller simple: any invalid
    token is treated as unauthenticated.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    groups = payload.get("groups") or []
    if not isinstance(groups, list):
        return None
    return Identity(
        id=str(subject),
        email=payload.get("email"),
        name=payload.get("name"),
        username=payload.get("preferred_username"),
        groups=tuple(str(g) for g in groups),
    )


# ---------------------------------------------------------------------------
# API key generation and hashing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeneratedApiKey:
    """A freshly minted key. key is shown to the user once and then discarded."""

    key: str
    key_hash: str
    key_prefix: str

    def __repr__(self) -> str:
        return f"GeneratedApiKey(key_prefix={self.key_prefix!r})"


def generate_api_key() -> GeneratedApiKey:
    """Generate a new API key in the format: cw_live_<64 hex chars>.

    secrets.token_hex(32) produces 32 random bytes as 64 hex characters,
    giving 256 bits of entropy. Brute-force is computationally infeasible.
    """
    key = f"{API_KEY_PREFIX}{secrets.token_hex(32)}"
    return GeneratedApiKey(key=key, key_hash=hash_api_key(key), key_prefix=key[:KEY_PREFIX_LENGTH])


def hash_api_key(raw_key: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_key) as a hex string.

    Using SECRET_KEY as the HMAC key means an attacker who obtains the DB
    cannot reverse-engineer keys without also knowing SECRET_KEY. The hash
    is deterministic, enabling O(1) lookup by hash rather than scanning all
    active keys.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_key.encode(),
        hashlib.sha256,
    ).hexdigest()
