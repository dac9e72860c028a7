"""
api/routes/v1/projects.py -- Project access probes and the caller's team assignments.

Routes:
  GET /api/v1/projects/access?path=...        -- READ_ONLY or better on the project
  GET /api/v1/projects/write-access?path=...  -- READ_WRITE or better on the project
  GET /api/v1/teams/me/projects               -- projects assigned to the caller's team

Every authenticated caller holds READ_ONLY on any project by default; only
write and admin actions are actually gated (see access/evaluator.py).
A missing path is a 400 invalid_request.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from access.dependencies import ProjectAccess, require_project_access
from api.models import ProjectAccessResponse, TeamProjectResponse
from auth.dependencies import get_caller, require_scope
from auth.models import AccessLevel, CallerContext
from ratelimit.dependencies import per_user_rate_limit

# Auth policy:
# - GET /api/v1/projects/access:        requires auth; API keys need read scope
# - GET /api/v1/projects/write-access:  requires READ_WRITE on the project; API keys need write scope
# - GET /api/v1/teams/me/projects:      requires auth (get_caller)
router = APIRouter(dependencies=[Depends(per_user_rate_limit())])

_PATH_QUERY = Query(default=None, description="Absolute project path")


def _access_to_response(access: ProjectAccess) -> ProjectAccessResponse:
    decision = access.decision
    return ProjectAccessResponse(
        project_path=access.project_path,
        can_access=decision.can_access,
        access_level=decision.access_level.value if decision.access_level else None,
        reason=decision.reason,
    )


@router.get(
    "/projects/access",
    response_model=ProjectAccessResponse,
    dependencies=[Depends(require_scope("read"))],
)
async def project_access(
    path: Optional[str] = _PATH_QUERY,
    access: ProjectAccess = Depends(require_project_access(AccessLevel.READ_ONLY)),
) -> ProjectAccessResponse:
    """Report the caller's access level on a project."""
    return _access_to_response(access)


@router.get(
    "/projects/write-access",
    response_model=ProjectAccessResponse,
    dependencies=[Depends(require_scope("write"))],
)
async def project_write_access(
    path: Optional[str] = _PATH_QUERY,
    access: ProjectAccess = Depends(require_project_access(AccessLevel.READ_WRITE)),
) -> ProjectAccessResponse:
    """Succeed only when the caller may modify files in the project."""
    return _access_to_response(access)


@router.get("/teams/me/projects", response_model=list[TeamProjectResponse])
async def my_team_projects(
    request: Request,
    caller: CallerContext = Depends(get_caller),
) -> list[TeamProjectResponse]:
    """List the project assignments of the caller's team. Empty when the caller has no team."""
    if not caller.team_id:
        return []
    return [
        TeamProjectResponse(
            project_path=a.project_path,
            access_level=a.access_level.value,
            assigned_at=a.assigned_at,
        )
        for a in request.app.state.teams.list_assignments(caller.team_id)
    ]
