"""
api/routes/v1/resources.py -- Ownership-filtered listings of agents, prompts, snippets, and folders.

Routes:
  GET /api/v1/resources/{kind}   -- kind is one of agents, prompts, snippets, folders

Query flags switch individual branches of the ownership filter off:
  include_shared, include_public, include_legacy (all default true).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from access.ownership import build_ownership_filter
from api.models import ResourceResponse
from auth.dependencies import require_scope
from auth.models import CallerContext
from core.errors import ResourceNotFound
from ratelimit.dependencies import per_user_rate_limit
from resources.models import OWNED_KINDS, Resource

logger = logging.getLogger("missionguard.api.resources")

# Auth policy:
# - GET /api/v1/resources/{kind}: requires auth; API keys need read scope
router = APIRouter(dependencies=[Depends(per_user_rate_limit())])


def _resource_to_response(resource: Resource) -> ResourceResponse:
    return ResourceResponse(
        id=resource.id,
        kind=resource.kind,
        name=resource.name,
        owner_id=resource.owner_id,
        is_shared=resource.is_shared,
        is_public=resource.is_public,
        project_path=resource.project_path,
        created_at=resource.created_at,
    )


@router.get("/resources/{kind}", response_model=list[ResourceResponse])
async def list_resources(
    request: Request,
    kind: str,
    include_shared: bool = True,
    include_public: bool = True,
    include_legacy: bool = True,
    caller: CallerContext = Depends(require_scope("read")),
) -> list[ResourceResponse]:
    """List the resources of one kind that the caller may see."""
    if kind not in OWNED_KINDS:
        raise ResourceNotFound(f"Unknown resource kind: {kind}")

    resources = request.app.state.resources
    where = build_ownership_filter(
        caller,
        resources.table(kind),
        include_shared=include_shared,
        include_public=include_public,
        include_legacy=include_legacy,
    )
    return [_resource_to_response(r) for r in resources.list_resources(kind, where)]
