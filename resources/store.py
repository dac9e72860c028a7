"""
resources/store.py -- SQLAlchemy-backed read model of the guarded business entities.

Uses SQLAlchemy Core (not ORM) so the dataclasses in resources/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. ResourceStore is the repository; the
_row_to_* functions are the mappers. List methods accept an optional
SQLAlchemy predicate -- the ownership filters from access/ownership.py are
passed straight in, so the filtering happens in SQL and never in Python.

The create_* methods exist for the services that own these entities (and for
tests). MissionGuard itself only reads.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ResourceStore("sqlite:///missionguard.db")
    sid = store.create_session(Session(name="dev", owner_id="u-1", project_path="/srv/app"))
    rows = store.list_sessions(build_session_filter(caller, store.sessions))
    usage = store.count_usage("u-1")
    store.close()
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.sql.elements import ColumnElement

from resources.models import (
    EXECUTION_RUNNING,
    OWNED_KINDS,
    SESSION_ACTIVE_STATUSES,
    AgentExecution,
    Resource,
    Session,
    UsageSnapshot,
)

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'missionguard.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_sessions = Table(
    "sessions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("owner_id", String(255), index=True),  # NULL -> legacy
    Column("project_path", String(1024), index=True),
    Column("status", String(20), nullable=False, server_default="ACTIVE"),
    Column("created_at", String(32), nullable=False),
)


def _owned_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", String(64), primary_key=True),
        Column("name", String(255), nullable=False, server_default=""),
        Column("owner_id", String(255), index=True),  # NULL -> legacy
        Column("is_shared", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
        Column("is_public", Integer, nullable=False, server_default="0"),
        Column("project_path", String(1024)),
        Column("created_at", String(32), nullable=False),
    )


_owned: dict[str, Table] = {kind: _owned_table(kind) for kind in OWNED_KINDS}

_executions = Table(
    "agent_executions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("agent_id", String(64), nullable=False, index=True),
    Column("status", String(20), nullable=False, server_default=EXECUTION_RUNNING),
    Column("started_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _count(table: Table, *conditions) -> ColumnElement:
    return select(func.count()).select_from(table).where(*conditions).scalar_subquery()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ResourceStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # SQLite requires check_same_thread=False when used from FastAPI's
            # threadpool, where one pooled connection may cross threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    @property
    def sessions(self) -> Table:
        return _sessions

    def table(self, kind: str) -> Table:
        """Return the table for an owned resource kind. Raises KeyError for unknown kinds."""
        return _owned[kind]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> str:
        session_id = session.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    name=session.name,
                    owner_id=session.owner_id,
                    project_path=session.project_path,
                    status=session.status,
                    created_at=session.created_at or _now_iso(),
                )
            )
            conn.commit()
        return session_id

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_sessions(self, where: ColumnElement | None = None) -> list[Session]:
        """Return sessions matching the predicate, newest first."""
        stmt = _sessions.select()
        if where is not None:
            stmt = stmt.where(where)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_sessions.c.created_at.desc())).fetchall()
        return [_row_to_session(r) for r in rows]

    # ------------------------------------------------------------------
    # Agents, prompts, snippets, folders
    # ------------------------------------------------------------------

    def create_resource(self, resource: Resource) -> str:
        table = self.table(resource.kind)
        resource_id = resource.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                table.insert().values(
                    id=resource_id,
                    name=resource.name,
                    owner_id=resource.owner_id,
                    is_shared=1 if resource.is_shared else 0,
                    is_public=1 if resource.is_public else 0,
                    project_path=resource.project_path,
                    created_at=resource.created_at or _now_iso(),
                )
            )
            conn.commit()
        return resource_id

    def list_resources(self, kind: str, where: ColumnElement | None = None) -> list[Resource]:
        table = self.table(kind)
        stmt = table.select()
        if where is not None:
            stmt = stmt.where(where)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(table.c.created_at.desc())).fetchall()
        return [_row_to_resource(kind, r) for r in rows]

    def create_execution(self, execution: AgentExecution) -> str:
        execution_id = execution.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _executions.insert().values(
                    id=execution_id,
                    agent_id=execution.agent_id,
                    status=execution.status,
                    started_at=execution.started_at or _now_iso(),
                )
            )
            conn.commit()
        return execution_id

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def count_usage(self, user_id: str) -> UsageSnapshot:
        """Count everything a user owns in a single round trip.

        Each figure is a scalar subquery in one SELECT, so the snapshot is
        read from a single consistent view of the database.
        """
        agents = _owned["agents"]
        running = (
            select(func.count())
            .select_from(_executions.join(agents, _executions.c.agent_id == agents.c.id))
            .where(agents.c.owner_id == user_id, _executions.c.status == EXECUTION_RUNNING)
            .scalar_subquery()
        )
        stmt = select(
            _count(
                _sessions, _sessions.c.owner_id == user_id, _sessions.c.status.in_(SESSION_ACTIVE_STATUSES)
            ).label("active_sessions"),
            _count(_sessions, _sessions.c.owner_id == user_id).label("total_sessions"),
            running.label("active_agents"),
            _count(agents, agents.c.owner_id == user_id).label("total_agents"),
            _count(_owned["prompts"], _owned["prompts"].c.owner_id == user_id).label("prompts"),
            _count(_owned["snippets"], _owned["snippets"].c.owner_id == user_id).label("snippets"),
            _count(_owned["folders"], _owned["folders"].c.owner_id == user_id).label("folders"),
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return UsageSnapshot(
            active_sessions=row.active_sessions or 0,
            total_sessions=row.total_sessions or 0,
            active_agents=row.active_agents or 0,
            total_agents=row.total_agents or 0,
            prompts=row.prompts or 0,
            snippets=row.snippets or 0,
            folders=row.folders or 0,
        )

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        name=row.name,
        owner_id=row.owner_id,
        project_path=row.project_path,
        status=row.status,
        created_at=row.created_at,
    )


def _row_to_resource(kind: str, row) -> Resource:
    return Resource(
        kind=kind,
        id=row.id,
        name=row.name,
        owner_id=row.owner_id,
        is_shared=bool(row.is_shared),
        is_public=bool(row.is_public),
        project_path=row.project_path,
        created_at=row.created_at,
    )
