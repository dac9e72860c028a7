"""
quota/store.py -- SQLAlchemy Core persistence for quota override rows.

One table, two kinds of rows:
  user rows  user_id set, role NULL -- per-user custom limits
  role rows  role set, user_id NULL -- replace the built-in profile for a role

Every limit column is nullable; NULL means "inherit". Upserts only touch the
columns they are given, so an operator can raise one ceiling without pinning
the others.

UNIQUE(user_id) and UNIQUE(role) are enforced in code because SQLite treats
two NULLs as distinct in UNIQUE constraints.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import BigInteger, Column, Integer, MetaData, String, Table, create_engine, event
from sqlalchemy.engine import Engine

from quota.models import QUOTA_FIELDS, QuotaOverride

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'missionguard.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_quotas = Table(
    "resource_quotas",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), index=True),
    Column("role", String(20), index=True),
    Column("max_active_sessions", Integer),
    Column("max_total_sessions", Integer),
    Column("max_active_agents", Integer),
    Column("max_total_agents", Integer),
    Column("max_prompts_library", Integer),
    Column("max_snippets", Integer),
    Column("max_folders", Integer),
    Column("api_rate_limit", Integer),
    Column("agent_runs_per_hour", Integer),
    Column("max_storage_bytes", BigInteger),
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class QuotaStore:
    """Repository for QuotaOverride rows.

    Usage:
        store = QuotaStore()
        store.upsert_user_override("u-1", max_active_sessions=10)
        store.get_user_override("u-1").max_active_sessions  # 10
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_user_override(self, user_id: str) -> QuotaOverride | None:
        with self.engine.connect() as conn:
            row = conn.execute(_quotas.select().where(_quotas.c.user_id == user_id)).fetchone()
        return _row_to_override(row) if row is not None else None

    def get_role_override(self, role: str) -> QuotaOverride | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _quotas.select().where((_quotas.c.role == role) & _quotas.c.user_id.is_(None))
            ).fetchone()
        return _row_to_override(row) if row is not None else None

    def list_overrides(self) -> list[QuotaOverride]:
        """All rows, role rows first, then user rows."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _quotas.select().order_by(_quotas.c.role.is_(None), _quotas.c.role, _quotas.c.user_id)
            ).fetchall()
        return [_row_to_override(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_user_override(self, user_id: str, **limits) -> QuotaOverride:
        return self._upsert(_quotas.c.user_id == user_id, {"user_id": user_id}, limits)

    def upsert_role_override(self, role: str, **limits) -> QuotaOverride:
        return self._upsert((_quotas.c.role == role) & _quotas.c.user_id.is_(None), {"role": role}, limits)

    def delete_user_override(self, user_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_quotas.delete().where(_quotas.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    def _upsert(self, match, identity: dict, limits: dict) -> QuotaOverride:
        unknown = set(limits) - set(QUOTA_FIELDS)
        if unknown:
            raise ValueError(f"Unknown quota fields: {unknown!r}")
        values = {**limits, "updated_at": _now_iso()}
        with self.engine.connect() as conn:
            result = conn.execute(_quotas.update().where(match).values(**values))
            if result.rowcount == 0:
                conn.execute(_quotas.insert().values(**identity, **values))
            conn.commit()
            row = conn.execute(_quotas.select().where(match)).fetchone()
        return _row_to_override(row)

    def close(self) -> None:
        self.engine.dispose()


def _row_to_override(row) -> QuotaOverride:
    return QuotaOverride(
        id=row.id,
        user_id=row.user_id,
        role=row.role,
        updated_at=row.updated_at,
        **{name: getattr(row, name) for name in QUOTA_FIELDS},
    )
