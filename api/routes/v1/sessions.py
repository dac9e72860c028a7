"""
api/routes/v1/sessions.py -- Session listing and per-session access checks.

Routes:
  GET /api/v1/sessions                       -- sessions visible to the caller
  GET /api/v1/sessions/{id}                  -- one session (READ_ONLY or better)
  GET /api/v1/sessions/{id}/write-access     -- check READ_WRITE on one session

The listing is filtered in SQL by access/ownership.build_session_filter, so
rows the caller cannot see never leave the database. Single-session routes go
through access/dependencies.require_session_access: 404 for a missing
session, 403 access_denied when the attained level is too low.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from access.dependencies import SessionAccess, require_session_access
from access.ownership import build_session_filter
from access.teams import get_team_project_paths
from api.models import SessionAccessResponse, SessionResponse
from auth.dependencies import require_scope
from auth.models import AccessLevel, CallerContext, Role
from core.errors import EvaluationFailed
from ratelimit.dependencies import per_user_rate_limit
from resources.models import Session

logger = logging.getLogger("missionguard.api.sessions")

# Auth policy:
# - GET /api/v1/sessions:                    requires auth; API keys need read scope
# - GET /api/v1/sessions/{id}:               requires READ_ONLY on the session
# - GET /api/v1/sessions/{id}/write-access:  requires READ_WRITE on the session; API keys need write scope
router = APIRouter(dependencies=[Depends(per_user_rate_limit())])


def _session_to_response(session: Session) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        name=session.name,
        owner_id=session.owner_id,
        project_path=session.project_path,
        status=session.status,
        created_at=session.created_at,
    )


def _access_to_response(access: SessionAccess) -> SessionAccessResponse:
    return SessionAccessResponse(
        session=_session_to_response(access.session),
        access_level=access.decision.access_level.value,
        reason=access.decision.reason,
    )


@router.get("/sessions", response_model=list[SessionResponse])
async def list_sessions(
    request: Request,
    include_legacy: bool = True,
    caller: CallerContext = Depends(require_scope("read")),
) -> list[SessionResponse]:
    """List sessions the caller owns, legacy sessions, and sessions on the team's projects.

    ADMIN and SUPER_ADMIN see everything; VIEWER sees nothing.
    """
    resources = request.app.state.resources
    try:
        paths = []
        if caller.role not in (Role.ADMIN, Role.SUPER_ADMIN, Role.VIEWER):
            paths = get_team_project_paths(request.app.state.teams, caller.team_id)
        where = build_session_filter(
            caller, resources.sessions, include_legacy=include_legacy, team_project_paths=paths
        )
        sessions = resources.list_sessions(where)
    except SQLAlchemyError as exc:
        logger.error("Session listing failed for %s: %s", caller.user_id, exc)
        raise EvaluationFailed("Failed to evaluate session access", code="authorization_error") from exc
    return [_session_to_response(s) for s in sessions]


@router.get(
    "/sessions/{session_id}",
    response_model=SessionAccessResponse,
    dependencies=[Depends(require_scope("read"))],
)
async def get_session(
    session_id: str,
    access: SessionAccess = Depends(require_session_access(AccessLevel.READ_ONLY)),
) -> SessionAccessResponse:
    """Return the session with the access level the caller holds on it."""
    return _access_to_response(access)


@router.get(
    "/sessions/{session_id}/write-access",
    response_model=SessionAccessResponse,
    dependencies=[Depends(require_scope("write"))],
)
async def session_write_access(
    session_id: str,
    access: SessionAccess = Depends(require_session_access(AccessLevel.READ_WRITE)),
) -> SessionAccessResponse:
    """Succeed only when the caller may write to the session (send input, resize, stop)."""
    return _access_to_response(access)
