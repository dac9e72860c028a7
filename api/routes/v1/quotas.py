"""
api/routes/v1/quotas.py -- Resource quota REST endpoints.

Routes:
  GET    /api/v1/quotas/me              -- caller's quota, usage, and percentages
  GET    /api/v1/quotas                 -- stored override rows + built-in defaults (admin)
  GET    /api/v1/quotas/user/{id}       -- one user's effective quota and usage (admin)
  PUT    /api/v1/quotas/user/{id}       -- set per-user overrides (super admin)
  DELETE /api/v1/quotas/user/{id}       -- drop per-user overrides (super admin)
  PUT    /api/v1/quotas/role/{role}     -- set per-role overrides (super admin)
  POST   /api/v1/quotas/check/{kind}    -- dry-run the quota guard for one resource kind

Override bodies accept any subset of the ten quota fields. Omitted fields keep
inheriting from the next level down (user -> role -> built-in profile).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import (
    MessageResponse,
    MyQuotaResponse,
    QuotaCheckResponse,
    QuotaListResponse,
    QuotaOverrideResponse,
    QuotaValues,
    UsageResponse,
    UserQuotaResponse,
)
from api.routes.v1.auth import _user_to_response
from auth.dependencies import get_caller, require_admin, require_super_admin
from auth.models import CallerContext, Role
from auth.roles import resolve_role
from core.errors import InvalidRequest, ResourceNotFound
from quota.dependencies import enforce_quota
from quota.engine import DEFAULT_QUOTAS, get_user_quota, get_user_usage, usage_percentages
from quota.models import QuotaCheck, QuotaOverride
from ratelimit.dependencies import per_user_rate_limit
from resources.models import UsageSnapshot

logger = logging.getLogger("missionguard.api.quotas")

# Auth policy:
# - GET    /api/v1/quotas/me:            requires auth (get_caller)
# - GET    /api/v1/quotas:               requires admin (require_admin)
# - GET    /api/v1/quotas/user/{id}:     requires admin (require_admin)
# - PUT    /api/v1/quotas/user/{id}:     requires super admin (require_super_admin)
# - DELETE /api/v1/quotas/user/{id}:     requires super admin (require_super_admin)
# - PUT    /api/v1/quotas/role/{role}:   requires super admin (require_super_admin)
# - POST   /api/v1/quotas/check/{kind}:  requires auth + quota guard
# Every route is subject to the per-user rate limit.
router = APIRouter(dependencies=[Depends(per_user_rate_limit())])


def _usage_to_response(usage: UsageSnapshot) -> UsageResponse:
    return UsageResponse(
        active_sessions=usage.active_sessions,
        total_sessions=usage.total_sessions,
        active_agents=usage.active_agents,
        total_agents=usage.total_agents,
        prompts=usage.prompts,
        snippets=usage.snippets,
        folders=usage.folders,
    )


def _override_to_response(override: QuotaOverride) -> QuotaOverrideResponse:
    return QuotaOverrideResponse(
        id=override.id,
        user_id=override.user_id,
        role=override.role,
        updated_at=override.updated_at,
        **override.limits(),
    )


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.get("/quotas/me", response_model=MyQuotaResponse)
async def my_quota(request: Request, caller: CallerContext = Depends(get_caller)) -> MyQuotaResponse:
    """Return the caller's effective quota, live usage, and percent of each ceiling used."""
    quota = get_user_quota(request.app.state.quotas, caller.user_id, caller.role)
    usage = get_user_usage(request.app.state.resources, caller.user_id)
    return MyQuotaResponse(
        quota=quota.to_dict(),
        usage=_usage_to_response(usage),
        role=caller.role.value,
        percentages=usage_percentages(quota, usage),
    )


@router.post("/quotas/check/{kind}", response_model=QuotaCheckResponse)
async def check_quota(
    kind: str,
    caller: CallerContext = Depends(get_caller),
    check: QuotaCheck | None = Depends(enforce_quota()),
) -> QuotaCheckResponse:
    """Run the quota guard for `kind` without creating anything.

    A denial surfaces as the guard's 429. A bypassed check (SUPER_ADMIN, or a
    quota store failure) reports allowed with no counts.
    """
    if check is None:
        return QuotaCheckResponse(allowed=True, resource=kind)
    return QuotaCheckResponse(
        allowed=check.allowed,
        resource=check.resource,
        current=check.current,
        max=check.maximum,
        remaining=check.remaining,
    )


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/quotas", response_model=QuotaListResponse)
async def list_quotas(request: Request, caller: CallerContext = Depends(require_admin)) -> QuotaListResponse:
    """Return every stored override row plus the built-in role profiles for reference."""
    overrides = request.app.state.quotas.list_overrides()
    return QuotaListResponse(
        quotas=[_override_to_response(o) for o in overrides],
        defaults={role.value: quota.to_dict() for role, quota in DEFAULT_QUOTAS.items()},
    )


@router.get("/quotas/user/{user_id}", response_model=UserQuotaResponse)
async def user_quota(
    request: Request,
    user_id: str,
    caller: CallerContext = Depends(require_admin),
) -> UserQuotaResponse:
    """Return one user's effective quota and live usage. Admin only."""
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise ResourceNotFound("User not found.")
    role = resolve_role(user.groups, user.role)
    quota = get_user_quota(request.app.state.quotas, user.id, role)
    usage = get_user_usage(request.app.state.resources, user.id)
    return UserQuotaResponse(
        user=_user_to_response(user),
        quota=quota.to_dict(),
        usage=_usage_to_response(usage),
    )


@router.put("/quotas/user/{user_id}", response_model=QuotaOverrideResponse)
async def set_user_quota(
    request: Request,
    user_id: str,
    body: QuotaValues,
    caller: CallerContext = Depends(require_super_admin),
) -> QuotaOverrideResponse:
    """Create or update the per-user override row. Super admin only."""
    if request.app.state.user_store.get_by_id(user_id) is None:
        raise ResourceNotFound("User not found.")
    limits = body.model_dump(exclude_none=True)
    override = request.app.state.quotas.upsert_user_override(user_id, **limits)
    logger.info("Quota override for user %s set by %s: %s", user_id, caller.user_id, limits)
    return _override_to_response(override)


@router.delete("/quotas/user/{user_id}", response_model=MessageResponse)
async def delete_user_quota(
    request: Request,
    user_id: str,
    caller: CallerContext = Depends(require_super_admin),
) -> MessageResponse:
    """Remove the per-user override so the user reverts to the role quota. Super admin only."""
    if request.app.state.quotas.delete_user_override(user_id):
        logger.info("Quota override for user %s removed by %s", user_id, caller.user_id)
    return MessageResponse(message="User reverted to role default quota")


@router.put("/quotas/role/{role}", response_model=QuotaOverrideResponse)
async def set_role_quota(
    request: Request,
    role: str,
    body: QuotaValues,
    caller: CallerContext = Depends(require_super_admin),
) -> QuotaOverrideResponse:
    """Create or update the per-role override row. Super admin only."""
    if role not in {r.value for r in Role}:
        raise InvalidRequest(f"Invalid role: {role}")
    limits = body.model_dump(exclude_none=True)
    override = request.app.state.quotas.upsert_role_override(role, **limits)
    logger.info("Quota override for role %s set by %s: %s", role, caller.user_id, limits)
    return _override_to_response(override)
