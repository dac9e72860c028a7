"""
api/routes/v1/auth.py -- Caller identity, API key, and user management REST endpoints.

Routes:
  GET    /api/v1/auth/me                  -- resolved caller (requires auth)
  GET    /api/v1/auth/api-keys            -- list own active keys (requires auth)
  POST   /api/v1/auth/api-keys            -- create key; raw key returned once (requires auth)
  PUT    /api/v1/auth/api-keys/{id}       -- update own key (requires auth, ownership checked)
  DELETE /api/v1/auth/api-keys/{id}       -- revoke key (owner or ADMIN+)
  GET    /api/v1/auth/admin/api-keys      -- list keys across users (admin only)
  GET    /api/v1/auth/users               -- list users (admin only)
  PATCH  /api/v1/auth/users/{id}          -- update role/team/is_active (admin only)

Security:
  [H2] POST /api-keys is rate-limited per IP (Settings.api_key_create_rate_limit).
  [H3] At most Settings.max_api_keys_per_user active keys per user.
  [H4] The `admin` scope can only be granted by a SUPER_ADMIN.
  [M4] PATCH /users/{id} blocks self-deactivation, and only a SUPER_ADMIN may
       grant SUPER_ADMIN.
  IDOR guard: PUT /api-keys/{id} answers 404 for keys the caller does not own,
  so key ids belonging to other users are not disclosed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    ApiKeyScope,
    ApiKeyUpdate,
    MeResponse,
    MessageResponse,
    RoleEnum,
    UserPatch,
    UserResponse,
)
from auth.dependencies import get_caller, require_admin, require_scope
from auth.models import ApiKey, CallerContext, Role, User
from auth.roles import coerce_role, has_role
from auth.store import UserStore
from auth.tokens import generate_api_key
from core.config import get_settings
from core.errors import AuthorizationDenied, InvalidRequest, ResourceNotFound

logger = logging.getLogger("missionguard.api.auth")

_settings = get_settings()

# Auth policy:
# - GET    /api/v1/auth/me:                requires auth (get_caller)
# - GET    /api/v1/auth/api-keys:          requires auth (get_caller)
# - POST   /api/v1/auth/api-keys:          requires auth; API-key callers need the write scope
# - PUT    /api/v1/auth/api-keys/{id}:     requires auth + ownership; write scope for API keys
# - DELETE /api/v1/auth/api-keys/{id}:     requires auth + ownership or ADMIN+
# - GET    /api/v1/auth/admin/api-keys:    requires admin (require_admin)
# - GET    /api/v1/auth/users:             requires admin (require_admin)
# - PATCH  /api/v1/auth/users/{id}:        requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(caller: CallerContext = Depends(get_caller)) -> MeResponse:
    """Return the identity, role, and team resolved for the current caller."""
    identity = caller.identity
    return MeResponse(
        user_id=identity.id,
        email=identity.email,
        name=identity.name,
        username=identity.username,
        role=caller.role.value,
        team_id=caller.team_id,
        groups=list(identity.groups),
        auth_method="api_key" if caller.via_api_key else "session",
        scopes=list(caller.api_key.scopes) if caller.api_key else None,
    )


# ---------------------------------------------------------------------------
# API key management (authenticated)
# ---------------------------------------------------------------------------


def _check_admin_scope(caller: CallerContext, scopes: list[ApiKeyScope] | None) -> None:
    """[H4] Only SUPER_ADMIN may put the admin scope on a key."""
    if scopes and ApiKeyScope.admin in scopes and caller.role != Role.SUPER_ADMIN:
        logger.warning("Blocked admin-scope key request from %s (role %s)", caller.user_id, caller.role.value)
        raise AuthorizationDenied(
            "Only super admins can grant the admin scope",
            required=[Role.SUPER_ADMIN.value],
            current=caller.role.value,
        )


@router.get("/auth/api-keys", response_model=list[ApiKeyResponse])
async def list_api_keys(
    request: Request,
    caller: CallerContext = Depends(get_caller),
) -> list[ApiKeyResponse]:
    """List the caller's active API keys. Raw key values are never returned."""
    user_store: UserStore = request.app.state.user_store
    return [_api_key_to_response(k) for k in user_store.list_api_keys(caller.user_id)]


@limiter.limit(_settings.api_key_create_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
async def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    caller: CallerContext = Depends(require_scope("write")),
) -> ApiKeyCreatedResponse:
    """Generate a new API key. The raw key is shown ONCE and never stored."""
    user_store: UserStore = request.app.state.user_store
    _check_admin_scope(caller, body.scopes)

    limit = _settings.max_api_keys_per_user
    if user_store.count_active_api_keys(caller.user_id) >= limit:  # [H3]
        raise InvalidRequest(
            f"Maximum of {limit} active API keys per user. Revoke an existing key first.",
            code="key_limit_reached",
        )

    expires_at = None
    if body.expires_in_days:
        expires_at = (datetime.now(timezone.utc) + timedelta(days=body.expires_in_days)).isoformat()

    generated = generate_api_key()
    key_id = user_store.create_api_key(
        ApiKey(
            user_id=caller.user_id,
            name=body.name,
            key_hash=generated.key_hash,
            key_prefix=generated.key_prefix,
            scopes=[s.value for s in body.scopes],
            ip_whitelist=body.ip_whitelist,
            rate_limit=body.rate_limit,
            expires_at=expires_at,
        )
    )
    logger.info("API key %s created for %s", generated.key_prefix, caller.user_id)

    created = user_store.get_api_key(key_id)
    return ApiKeyCreatedResponse(**_api_key_to_response(created).model_dump(), key=generated.key)


@router.put("/auth/api-keys/{key_id}", response_model=ApiKeyResponse)
async def update_api_key(
    request: Request,
    key_id: int,
    body: ApiKeyUpdate,
    caller: CallerContext = Depends(require_scope("write")),
) -> ApiKeyResponse:
    """Update name, scopes, IP whitelist, or rate limit on one of the caller's keys."""
    user_store: UserStore = request.app.state.user_store

    existing = user_store.get_api_key(key_id)
    if existing is None or existing.user_id != caller.user_id:
        raise ResourceNotFound("API key not found.")
    if existing.revoked_at is not None:
        raise InvalidRequest("Cannot modify a revoked key.", code="key_revoked")

    _check_admin_scope(caller, body.scopes)

    updates = body.model_dump(exclude_none=True)
    if "scopes" in updates:
        updates["scopes"] = [ApiKeyScope(s).value for s in updates["scopes"]]
    if not updates:
        raise InvalidRequest("No fields to update.", code="no_changes")

    user_store.update_api_key(key_id, **updates)
    return _api_key_to_response(user_store.get_api_key(key_id))


@router.delete("/auth/api-keys/{key_id}", response_model=MessageResponse)
async def revoke_api_key(
    request: Request,
    key_id: int,
    caller: CallerContext = Depends(get_caller),
) -> MessageResponse:
    """Revoke an API key. Owners revoke their own keys; ADMIN+ may revoke any key."""
    user_store: UserStore = request.app.state.user_store

    existing = user_store.get_api_key(key_id)
    if existing is None:
        raise ResourceNotFound("API key not found.")
    if existing.user_id != caller.user_id and not has_role(caller.role, Role.ADMIN):
        raise AuthorizationDenied(
            "Cannot revoke another user's key",
            required=[Role.ADMIN.value],
            current=caller.role.value,
        )

    if user_store.revoke_api_key(key_id):
        logger.info("API key %s revoked by %s", existing.key_prefix, caller.user_id)
    return MessageResponse(message="API key revoked")


@router.get("/auth/admin/api-keys", response_model=list[ApiKeyResponse])
async def admin_list_api_keys(
    request: Request,
    include_revoked: bool = False,
    caller: CallerContext = Depends(require_admin),
) -> list[ApiKeyResponse]:
    """List API keys across all users. Admin only."""
    user_store: UserStore = request.app.state.user_store
    keys = user_store.list_all_api_keys(include_revoked=include_revoked)
    return [_api_key_to_response(k) for k in keys]


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    caller: CallerContext = Depends(require_admin),
) -> list[UserResponse]:
    """List all user records. Admin only."""
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    caller: CallerContext = Depends(require_admin),
) -> UserResponse:
    """Update a user's persisted role, team, or active status. Admin only.

    A persisted role takes precedence over the identity provider's groups on
    every later request (see auth/roles.resolve_role).
    """
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise ResourceNotFound("User not found.")

    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise InvalidRequest("No fields to update.", code="no_changes")

    # [M4] A super admin account can only be changed by another super admin
    if coerce_role(target.role) == Role.SUPER_ADMIN and caller.role != Role.SUPER_ADMIN:
        raise AuthorizationDenied(
            "Only super admins can modify a SUPER_ADMIN account",
            required=[Role.SUPER_ADMIN.value],
            current=caller.role.value,
        )

    if updates.get("role") is not None:
        # [M4] Only a super admin can mint another super admin
        if updates["role"] == RoleEnum.SUPER_ADMIN and caller.role != Role.SUPER_ADMIN:
            raise AuthorizationDenied(
                "Only super admins can grant the SUPER_ADMIN role",
                required=[Role.SUPER_ADMIN.value],
                current=caller.role.value,
            )
        updates["role"] = RoleEnum(updates["role"]).value

    # [M4] Block self-deactivation
    if updates.get("is_active") is False and target.id == caller.user_id:
        raise InvalidRequest("You cannot deactivate your own account.", code="self_deactivation")

    user_store.update_user(user_id, **updates)
    logger.info("User %s updated by %s: %s", user_id, caller.user_id, sorted(updates))
    return _user_to_response(user_store.get_by_id(user_id))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _api_key_to_response(key: ApiKey | None) -> ApiKeyResponse:
    if key is None:
        raise ResourceNotFound("API key not found.")
    return ApiKeyResponse(
        id=key.id,
        user_id=key.user_id,
        name=key.name,
        key_prefix=key.key_prefix,
        scopes=key.scopes,
        ip_whitelist=key.ip_whitelist,
        rate_limit=key.rate_limit,
        usage_count=key.usage_count,
        last_used_at=key.last_used_at,
        expires_at=key.expires_at,
        revoked_at=key.revoked_at,
        created_at=key.created_at or "",
    )


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise ResourceNotFound("User not found.")
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        username=user.username,
        role=user.role,
        team_id=user.team_id,
        is_active=user.is_active,
        created_at=user.created_at or "",
        last_login_at=user.last_login_at,
    )
