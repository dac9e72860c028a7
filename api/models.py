"""
API request and response models for MissionGuard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are separate from the dataclasses in auth/, quota/, and
resources/, which own the internal domain representation. Route handlers map
between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ApiKeyScope(str, Enum):
    read = "read"
    write = "write"
    agents = "agents"
    admin = "admin"


class RoleEnum(str, Enum):
    VIEWER = "VIEWER"
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"  # "healthy" | "degraded"
    version: str
    components: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    username: Optional[str] = None
    role: str
    team_id: Optional[str] = None
    groups: list[str] = []
    auth_method: str  # "api_key" | "session"
    scopes: Optional[list[str]] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    username: Optional[str] = None
    role: Optional[str] = None
    team_id: Optional[str] = None
    is_active: bool
    created_at: str
    last_login_at: Optional[str] = None


class UserPatch(BaseModel):
    """Body for PATCH /api/v1/auth/users/{id}. All fields optional."""

    role: Optional[RoleEnum] = None
    team_id: Optional[str] = Field(default=None, max_length=255)
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


def _clamp_rate_limit(value) -> int:
    """Coerce to int and clamp to 1..1000. Unparseable or zero -> 60."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = 0
    return max(1, min(1000, parsed or 60))


class ApiKeyCreate(BaseModel):
    """Body for POST /api/v1/auth/api-keys."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: str = Field(min_length=3, max_length=100)
    scopes: list[ApiKeyScope] = []
    expires_in_days: Optional[int] = Field(default=None, ge=1, alias="expiresInDays")
    ip_whitelist: list[str] = Field(default=[], alias="ipWhitelist")
    rate_limit: int = Field(default=60, alias="rateLimit")

    @field_validator("rate_limit", mode="before")
    @classmethod
    def clamp_rate_limit(cls, value) -> int:
        return _clamp_rate_limit(value)


class ApiKeyUpdate(BaseModel):
    """Body for PUT /api/v1/auth/api-keys/{id}. Omitted fields are left alone."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    scopes: Optional[list[ApiKeyScope]] = None
    ip_whitelist: Optional[list[str]] = Field(default=None, alias="ipWhitelist")
    rate_limit: Optional[int] = Field(default=None, alias="rateLimit")

    @field_validator("rate_limit", mode="before")
    @classmethod
    def clamp_rate_limit(cls, value):
        if value is None:
            return None
        return _clamp_rate_limit(value)


class ApiKeyResponse(BaseModel):
    """An API key as listed. Never carries the raw key or its hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[str] = None
    name: str
    key_prefix: str
    scopes: list[str]
    ip_whitelist: list[str]
    rate_limit: Optional[int] = None
    usage_count: int = 0
    last_used_at: Optional[str] = None
    expires_at: Optional[str] = None
    revoked_at: Optional[str] = None
    created_at: str


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Returned once, at creation. key is the only copy of the raw key."""

    key: str
    warning: str = "Save this key securely. It cannot be retrieved again."


# ---------------------------------------------------------------------------
# Quotas
# ---------------------------------------------------------------------------


class QuotaValues(BaseModel):
    """The ten quota ceilings. Used both for responses and for PUT bodies.

    In PUT bodies every field is optional and must be a non-negative integer;
    omitted fields keep inheriting from the next level.
    """

    model_config = ConfigDict(extra="forbid")

    max_active_sessions: Optional[int] = Field(default=None, ge=0)
    max_total_sessions: Optional[int] = Field(default=None, ge=0)
    max_active_agents: Optional[int] = Field(default=None, ge=0)
    max_total_agents: Optional[int] = Field(default=None, ge=0)
    max_prompts_library: Optional[int] = Field(default=None, ge=0)
    max_snippets: Optional[int] = Field(default=None, ge=0)
    max_folders: Optional[int] = Field(default=None, ge=0)
    api_rate_limit: Optional[int] = Field(default=None, ge=0)
    agent_runs_per_hour: Optional[int] = Field(default=None, ge=0)
    max_storage_bytes: Optional[int] = Field(default=None, ge=0)


class UsageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    active_sessions: int
    total_sessions: int
    active_agents: int
    total_agents: int
    prompts: int
    snippets: int
    folders: int


class MyQuotaResponse(BaseModel):
    """Response for GET /api/v1/quotas/me."""

    model_config = ConfigDict(frozen=True)

    quota: dict[str, int]
    usage: UsageResponse
    role: str
    percentages: dict[str, int]


class UserQuotaResponse(BaseModel):
    """Response for GET /api/v1/quotas/user/{id}."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    quota: dict[str, int]
    usage: UsageResponse


class QuotaOverrideResponse(QuotaValues):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[str] = None
    role: Optional[str] = None
    updated_at: str


class QuotaListResponse(BaseModel):
    """Response for GET /api/v1/quotas (admin)."""

    model_config = ConfigDict(frozen=True)

    quotas: list[QuotaOverrideResponse]
    defaults: dict[str, dict[str, int]]


class QuotaCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    resource: str
    current: Optional[int] = None
    max: Optional[int] = None
    remaining: Optional[int] = None


# ---------------------------------------------------------------------------
# Sessions, resources, projects
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    owner_id: Optional[str] = None
    project_path: Optional[str] = None
    status: str
    created_at: str


class SessionAccessResponse(BaseModel):
    """A session plus the caller's attained access level on it."""

    model_config = ConfigDict(frozen=True)

    session: SessionResponse
    access_level: str
    reason: str


class ResourceResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: str
    name: str
    owner_id: Optional[str] = None
    is_shared: bool
    is_public: bool
    project_path: Optional[str] = None
    created_at: str


class ProjectAccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_path: str
    can_access: bool
    access_level: Optional[str] = None
    reason: str


class TeamProjectResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_path: str
    access_level: str
    assigned_at: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
