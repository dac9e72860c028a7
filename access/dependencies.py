"""
access/dependencies.py -- FastAPI guards for session and project access.

    @router.post("/sessions/{session_id}/input")
    def send(access: SessionAccess = Depends(require_session_access(AccessLevel.READ_WRITE))): ...

Guard order: 401 unauthenticated -> fetch (404 missing session) -> evaluate ->
403 denied or level too low -> attach to request.state and return.

Failure policy: authorization FAILS CLOSED. A store error while fetching the
session or reading team assignments is a 500 authorization_error; the
request is never served on a guess.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from access.evaluator import AccessDecision, access_level_satisfies, check_project_access, check_session_access
from auth.dependencies import get_caller
from auth.models import AccessLevel, CallerContext
from core.errors import AuthorizationDenied, EvaluationFailed, InvalidRequest, ResourceNotFound
from resources.models import Session

logger = logging.getLogger("missionguard.access")


@dataclass(frozen=True)
class SessionAccess:
    session: Session
    decision: AccessDecision
    caller: CallerContext


@dataclass(frozen=True)
class ProjectAccess:
    project_path: str
    decision: AccessDecision
    caller: CallerContext


def _deny(caller: CallerContext, decision: AccessDecision, required: AccessLevel, what: str) -> AuthorizationDenied:
    logger.warning(
        "Denied %s access for %s (role %s): needs %s, has %s (%s)",
        what,
        caller.user_id,
        caller.role.value,
        required.value,
        decision.access_level.value if decision.access_level else None,
        decision.reason,
    )
    return AuthorizationDenied(
        f"You do not have {required.value} access to this {what}",
        required=required.value,
        current=decision.access_level.value if decision.access_level else None,
        code="access_denied",
        reason=decision.reason,
    )


def require_session_access(
    required: AccessLevel = AccessLevel.READ_ONLY, param: str = "session_id"
) -> Callable[..., SessionAccess]:
    """Build a guard that resolves the session named by path parameter `param`."""

    def dependency(request: Request, caller: CallerContext = Depends(get_caller)) -> SessionAccess:
        session_id = request.path_params.get(param)
        try:
            session = request.app.state.resources.get_session(session_id)
            if session is None:
                raise ResourceNotFound("Session not found")
            decision = check_session_access(caller, session, request.app.state.teams)
        except SQLAlchemyError as exc:
            logger.error("Session access evaluation failed for %s: %s", session_id, exc)
            raise EvaluationFailed("Failed to evaluate session access", code="authorization_error") from exc

        if not decision.can_access or not access_level_satisfies(decision.access_level, required):
            raise _deny(caller, decision, required, "session")

        request.state.session = session
        request.state.access_level = decision.access_level
        return SessionAccess(session=session, decision=decision, caller=caller)

    return dependency


def require_project_access(
    required: AccessLevel = AccessLevel.READ_ONLY, param: str = "path"
) -> Callable[..., ProjectAccess]:
    """Build a guard for the project path given in query parameter `param`."""

    def dependency(request: Request, caller: CallerContext = Depends(get_caller)) -> ProjectAccess:
        project_path = request.query_params.get(param) or request.path_params.get(param)
        if not project_path:
            raise InvalidRequest("Project path is required")
        try:
            decision = check_project_access(caller, project_path, request.app.state.teams)
        except SQLAlchemyError as exc:
            logger.error("Project access evaluation failed for %s: %s", project_path, exc)
            raise EvaluationFailed("Failed to evaluate project access", code="authorization_error") from exc

        if not decision.can_access or not access_level_satisfies(decision.access_level, required):
            raise _deny(caller, decision, required, "project")

        request.state.project_path = project_path
        request.state.access_level = decision.access_level
        return ProjectAccess(project_path=project_path, decision=decision, caller=caller)

    return dependency
