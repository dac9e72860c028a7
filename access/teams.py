"""
access/teams.py -- Team -> project assignments and their resolution.

A ProjectAssignment grants every member of a team an access level on one
project path. Matching is exact: an assignment on /srv/app grants nothing on
/srv/app/sub or /srv. Assignments are maintained by team administrators
outside MissionGuard; assign_project / revoke_project exist only for the
operator CLI.

Pattern: Repository + Data Mapper, same shape as auth/store.py.

Usage:
    teams = TeamStore("sqlite:///missionguard.db")
    check_team_project_access(teams, "team-a", "/srv/app")
    # TeamProjectAccess(has_access=True, access_level=AccessLevel.READ_WRITE)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import AccessLevel, CallerContext, Role

logger = logging.getLogger("missionguard.access.teams")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'missionguard.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_team_projects = Table(
    "team_projects",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", String(255), nullable=False, index=True),
    Column("project_path", String(1024), nullable=False),
    Column("access_level", String(20), nullable=False, server_default=AccessLevel.READ_WRITE.value),
    Column("assigned_at", String(32), nullable=False),
    UniqueConstraint("team_id", "project_path", name="uq_team_project"),
)


@dataclass
class ProjectAssignment:
    team_id: str
    project_path: str
    access_level: AccessLevel = AccessLevel.READ_WRITE
    assigned_at: str = ""
    id: int | None = None


@dataclass(frozen=True)
class TeamProjectAccess:
    has_access: bool
    access_level: AccessLevel | None = None


NO_TEAM_ACCESS = TeamProjectAccess(has_access=False)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TeamStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def get_assignment(self, team_id: str, project_path: str) -> ProjectAssignment | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _team_projects.select().where(
                    (_team_projects.c.team_id == team_id) & (_team_projects.c.project_path == project_path)
                )
            ).fetchone()
        return _row_to_assignment(row) if row is not None else None

    def list_assignments(self, team_id: str) -> list[ProjectAssignment]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _team_projects.select()
                .where(_team_projects.c.team_id == team_id)
                .order_by(_team_projects.c.project_path)
            ).fetchall()
        return [_row_to_assignment(r) for r in rows]

    def assign_project(self, team_id: str, project_path: str, access_level: AccessLevel = AccessLevel.READ_WRITE) -> None:
        """Create or update the assignment. Operator CLI only."""
        now = datetime.now(timezone.utc).isoformat()
        with self.engine.connect() as conn:
            updated = conn.execute(
                _team_projects.update()
                .where((_team_projects.c.team_id == team_id) & (_team_projects.c.project_path == project_path))
                .values(access_level=access_level.value)
            )
            if updated.rowcount == 0:
                conn.execute(
                    _team_projects.insert().values(
                        team_id=team_id,
                        project_path=project_path,
                        access_level=access_level.value,
                        assigned_at=now,
                    )
                )
            conn.commit()

    def revoke_project(self, team_id: str, project_path: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _team_projects.delete().where(
                    (_team_projects.c.team_id == team_id) & (_team_projects.c.project_path == project_path)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_assignment(row) -> ProjectAssignment:
    return ProjectAssignment(
        id=row.id,
        team_id=row.team_id,
        project_path=row.project_path,
        access_level=AccessLevel(row.access_level),
        assigned_at=row.assigned_at,
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def check_team_project_access(store: TeamStore, team_id: str | None, project_path: str | None) -> TeamProjectAccess:
    """Exact-match lookup of a team's grant on a project path."""
    if not team_id or not project_path:
        return NO_TEAM_ACCESS
    assignment = store.get_assignment(team_id, project_path)
    if assignment is None:
        return NO_TEAM_ACCESS
    return TeamProjectAccess(has_access=True, access_level=assignment.access_level)


def get_team_project_paths(store: TeamStore, team_id: str | None) -> list[str]:
    """Assigned project paths for IN-filters. Empty when the caller has no team."""
    if not team_id:
        return []
    return [a.project_path for a in store.list_assignments(team_id)]


def resolve_team_access(caller: CallerContext, store: TeamStore, project_path: str | None) -> TeamProjectAccess:
    """Team grant for the caller. SUPER_ADMIN bypasses the lookup with ADMIN."""
    if caller.role == Role.SUPER_ADMIN:
        return TeamProjectAccess(has_access=True, access_level=AccessLevel.ADMIN)
    return check_team_project_access(store, caller.team_id, project_path)
