"""
access/evaluator.py -- One access decision for one session or project.

Pure functions over the CallerContext, the resource, and a TeamStore. The
first matching rule wins.

Sessions:
    unauthenticated             denied          unauthenticated
    ADMIN / SUPER_ADMIN         ADMIN           admin_role
    VIEWER                      denied          viewer_role
    owner                       ADMIN           owner
    owner_id is None            READ_WRITE      legacy
    team assignment on path     assigned level  team_project
    otherwise                   denied          no_access

Projects:
    unauthenticated             denied          unauthenticated
    ADMIN / SUPER_ADMIN         ADMIN           admin_role
    team assignment on path     assigned level  team_project   (VIEWER capped at READ_ONLY)
    otherwise                   READ_ONLY       default_read

The project default grants READ_ONLY to every authenticated caller. Only
write and admin actions on projects are actually gated. Sessions and list
filters (access/ownership.py) have no such default.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.models import AccessLevel, CallerContext, Role
from access.teams import TeamStore, check_team_project_access
from resources.models import Session

ACCESS_LEVEL_ORDER: dict[AccessLevel, int] = {
    AccessLevel.READ_ONLY: 0,
    AccessLevel.READ_WRITE: 1,
    AccessLevel.ADMIN: 2,
}

_ADMIN_ROLES = (Role.ADMIN, Role.SUPER_ADMIN)


@dataclass(frozen=True)
class AccessDecision:
    can_access: bool
    access_level: AccessLevel | None
    reason: str


def access_level_satisfies(actual: AccessLevel | None, required: AccessLevel) -> bool:
    """True when actual is at or above required (READ_ONLY < READ_WRITE < ADMIN)."""
    if actual is None:
        return False
    return ACCESS_LEVEL_ORDER[actual] >= ACCESS_LEVEL_ORDER[required]


def check_session_access(caller: CallerContext, session: Session, teams: TeamStore) -> AccessDecision:
    if not caller.is_authenticated:
        return AccessDecision(False, None, "unauthenticated")
    if caller.role in _ADMIN_ROLES:
        return AccessDecision(True, AccessLevel.ADMIN, "admin_role")
    if caller.role == Role.VIEWER:
        return AccessDecision(False, None, "viewer_role")
    if session.owner_id == caller.user_id:
        return AccessDecision(True, AccessLevel.ADMIN, "owner")
    if session.owner_id is None:
        return AccessDecision(True, AccessLevel.READ_WRITE, "legacy")

    team = check_team_project_access(teams, caller.team_id, session.project_path)
    if team.has_access:
        return AccessDecision(True, team.access_level, "team_project")
    return AccessDecision(False, None, "no_access")


def check_project_access(caller: CallerContext, project_path: str, teams: TeamStore) -> AccessDecision:
    if not caller.is_authenticated:
        return AccessDecision(False, None, "unauthenticated")
    if caller.role in _ADMIN_ROLES:
        return AccessDecision(True, AccessLevel.ADMIN, "admin_role")

    team = check_team_project_access(teams, caller.team_id, project_path)
    if team.has_access:
        level = team.access_level
        if caller.role == Role.VIEWER:
            level = AccessLevel.READ_ONLY
        return AccessDecision(True, level, "team_project")
    return AccessDecision(True, AccessLevel.READ_ONLY, "default_read")
