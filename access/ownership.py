"""
access/ownership.py -- WHERE-clause builders for list endpoints.

The builders return SQLAlchemy predicates, not Python filters, so the store
applies them in SQL:

    rows = resources.list_resources("agents", build_ownership_filter(caller, resources.table("agents")))

Rules for owned resources (agents, prompts, snippets, folders):

    SUPER_ADMIN            everything
    otherwise, OR of:
      owner_id == caller   authenticated and not VIEWER
      is_shared            authenticated ADMIN or USER, include_shared
      is_public            include_public
      owner_id IS NULL     include_legacy (records created before ownership)

Sessions have no shared/public flags:

    ADMIN / SUPER_ADMIN    everything
    VIEWER                 nothing (terminal access is inherently a write)
    otherwise, OR of own, legacy, and sessions on the team's assigned paths

When no branch applies the result is false() -- the filter fails closed.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import Table, false, or_, true
from sqlalchemy.sql.elements import ColumnElement

from auth.models import CallerContext, Role

_SHARED_ROLES = (Role.ADMIN, Role.USER)


def build_ownership_filter(
    caller: CallerContext,
    table: Table,
    include_shared: bool = True,
    include_public: bool = True,
    include_legacy: bool = True,
) -> ColumnElement:
    if caller.role == Role.SUPER_ADMIN:
        return true()

    branches: list[ColumnElement] = []
    if caller.is_authenticated and caller.role != Role.VIEWER:
        branches.append(table.c.owner_id == caller.user_id)
    if include_shared and caller.is_authenticated and caller.role in _SHARED_ROLES:
        branches.append(table.c.is_shared == 1)
    if include_public:
        branches.append(table.c.is_public == 1)
    if include_legacy:
        branches.append(table.c.owner_id.is_(None))

    if not branches:
        return false()
    return or_(*branches)


def build_session_filter(
    caller: CallerContext,
    table: Table,
    include_legacy: bool = True,
    team_project_paths: Iterable[str] = (),
) -> ColumnElement:
    """Predicate for session listings. team_project_paths come from get_team_project_paths()."""
    if caller.role in (Role.ADMIN, Role.SUPER_ADMIN):
        return true()
    if caller.role == Role.VIEWER:
        return false()

    branches: list[ColumnElement] = []
    if caller.is_authenticated:
        branches.append(table.c.owner_id == caller.user_id)
    if include_legacy:
        branches.append(table.c.owner_id.is_(None))
    paths = list(team_project_paths)
    if paths:
        branches.append(table.c.project_path.in_(paths))

    if not branches:
        return false()
    return or_(*branches)
