"""
auth/models.py -- Domain types for identities, roles, and API keys.

Pattern: Data class (pure data container, zero logic beyond trivial derived
properties). Stores and guards do the work.

Layer rule: no imports from api/, access/, quota/, ratelimit/, or resources/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Caller role. Strict total order: VIEWER < USER < ADMIN < SUPER_ADMIN."""

    VIEWER = "VIEWER"
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class AccessLevel(str, Enum):
    """Grant on a single session or project. READ_ONLY < READ_WRITE < ADMIN."""

    READ_ONLY = "READ_ONLY"
    READ_WRITE = "READ_WRITE"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Identity:
    """An authenticated principal as asserted by the identity provider.

    id is the provider's stable subject (Authentik uid / JWT sub). groups are
    raw provider group names; Role is derived from them in auth/roles.py.
    """

    id: str
    email: str | None = None
    name: str | None = None
    username: str | None = None
    groups: tuple[str, ...] = ()


@dataclass
class User:
    """Persisted user record, synced from the Identity on each request.

    role is None only on records written by external tooling before a sync;
    the resolver then falls back to the identity's groups.
    """

    id: str
    email: str | None = None
    name: str | None = None
    username: str | None = None
    role: str | None = None  # "VIEWER" | "USER" | "ADMIN" | "SUPER_ADMIN"
    team_id: str | None = None
    groups: list[str] = field(default_factory=list)
    created_at: str | None = None
    last_login_at: str | None = None
    is_active: bool = True


@dataclass
class ApiKey:
    """A long-lived credential for non-browser clients (CI/CD, scripts, agents).

    Security design:
    - key_hash is HMAC-SHA256(SECRET_KEY, raw_key). The store looks keys
      up by this hash.
    - key_prefix (first 12 chars of the raw key) is stored for display and
      logging only.
    - The raw key is never persisted. It is returned ONCE at creation.
    - revoked_at / expires_at are kept rather than deleting rows so the
      authenticator can report *why* a key stopped working.
    """

    user_id: str
    name: str
    key_hash: str
    key_prefix: str
    scopes: list[str] = field(default_factory=list)
    ip_whitelist: list[str] = field(default_factory=list)
    rate_limit: int | None = None  # per-key override of the quota api_rate_limit
    expires_at: str | None = None  # ISO 8601
    revoked_at: str | None = None  # ISO 8601
    usage_count: int = 0
    last_used_at: str | None = None
    created_at: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class ApiKeyGrant:
    """What a validated API key contributes to the caller context."""

    key_id: int
    key_prefix: str
    scopes: tuple[str, ...] = ()
    rate_limit: int | None = None


@dataclass(frozen=True)
class CallerContext:
    """Everything the evaluators need to know about who is calling.

    Built once per request by auth.dependencies.try_get_caller() and threaded
    explicitly through every evaluator. Anonymous callers have identity=None
    and role USER (the resolver default) -- guards check is_authenticated
    before trusting the role.
    """

    identity: Identity | None
    role: Role = Role.USER
    team_id: str | None = None
    api_key: ApiKeyGrant | None = None
    client_ip: str | None = None

    @property
    def user_id(self) -> str | None:
        return self.identity.id if self.identity is not None else None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    @property
    def via_api_key(self) -> bool:
        return self.api_key is not None


ANONYMOUS = CallerContext(identity=None)
