"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as resources/store.py).
UserStore is the repository; _row_to_user / _row_to_api_key are the mappers.
Guard and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only key_hash is stored for API keys. The raw key never reaches this module.

User sync:
  upsert_user() runs on every authenticated request. Profile fields (email,
  name, username, groups, last_login_at) are refreshed each time; role is
  written only when the row is first created so a later change in the
  identity provider's groups can never silently downgrade an operator-set
  role.

Layer rule: no imports from api/, access/, quota/, ratelimit/, or resources/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import ApiKey, Identity, Role, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'missionguard.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(255), primary_key=True),  # identity provider subject
    Column("email", String(320)),
    Column("name", String(255)),
    Column("username", String(255)),
    Column("role", String(20)),  # NULL -> derive from groups
    Column("team_id", String(255)),
    Column("groups", Text),  # JSON array serialized as text
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_api_keys = Table(
    "api_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("key_prefix", String(12), nullable=False),  # first 12 chars, display only
    Column("scopes", Text),  # JSON array
    Column("ip_whitelist", Text),  # JSON array; empty -> any IP
    Column("rate_limit", Integer),
    Column("expires_at", String(32)),
    Column("revoked_at", String(32)),
    Column("usage_count", Integer, nullable=False, server_default="0"),
    Column("last_used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and ApiKey entities.

    Usage:
        store = UserStore()
        user = store.upsert_user(Identity(id="u-1", groups=("developers",)), Role.USER)
        key_id = store.create_api_key(ApiKey(user_id=user.id, name="ci", key_hash=h, key_prefix=p))
        store.close()
    """

    # Columns update_user() may touch. Anything else raises ValueError.
    _USER_FIELDS: set = {"role", "team_id", "is_active", "email", "name", "username"}
    _API_KEY_FIELDS: set = {"name", "scopes", "ip_whitelist", "rate_limit", "expires_at"}

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def upsert_user(self, identity: Identity, role: Role | str | None) -> User:
        """Create the user on first sight, otherwise refresh profile fields.

        role is applied only on insert. A concurrent first request that wins
        the insert race surfaces here as IntegrityError; the loser falls
        through to the update path.
        """
        now = _now_iso()
        profile = {
            "email": identity.email,
            "name": identity.name,
            "username": identity.username,
            "groups": json.dumps(list(identity.groups)),
            "last_login_at": now,
        }
        with self.engine.connect() as conn:
            exists = conn.execute(select(_users.c.id).where(_users.c.id == identity.id)).fetchone()
            if exists is None:
                try:
                    conn.execute(
                        _users.insert().values(
                            id=identity.id,
                            role=role.value if isinstance(role, Role) else role,
                            created_at=now,
                            is_active=1,
                            **profile,
                        )
                    )
                    conn.commit()
                except IntegrityError:
                    conn.rollback()
                    exists = True
            if exists is not None:
                conn.execute(_users.update().where(_users.c.id == identity.id).values(**profile))
                conn.commit()
            row = conn.execute(_users.select().where(_users.c.id == identity.id)).fetchone()
        return _row_to_user(row)

    def create_user(self, user: User) -> str:
        """Insert a fully specified user record. Used by tests and the CLI."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    email=user.email,
                    name=user.name,
                    username=user.username,
                    role=user.role,
                    team_id=user.team_id,
                    groups=json.dumps(user.groups),
                    created_at=user.created_at or _now_iso(),
                    last_login_at=user.last_login_at,
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
        return user.id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email, _users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, team_id, is_active, email, name, username.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if isinstance(fields.get("role"), Role):
            fields["role"] = fields["role"].value
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # API key queries
    # ------------------------------------------------------------------

    def create_api_key(self, api_key: ApiKey) -> int:
        """Insert a new API key record and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.insert().values(
                    user_id=api_key.user_id,
                    name=api_key.name,
                    key_hash=api_key.key_hash,
                    key_prefix=api_key.key_prefix,
                    scopes=json.dumps(api_key.scopes),
                    ip_whitelist=json.dumps(api_key.ip_whitelist),
                    rate_limit=api_key.rate_limit,
                    expires_at=api_key.expires_at,
                    usage_count=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_api_key(self, key_id: int) -> ApiKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.id == key_id)).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def get_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        """Look up a key by its HMAC hash. O(1) via UNIQUE index.

        Revoked and expired keys are returned too -- the authenticator needs
        them to report the precise failure reason.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.key_hash == key_hash)).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def list_api_keys(self, user_id: str, include_revoked: bool = False) -> list[ApiKey]:
        """Return a user's keys, newest first."""
        stmt = _api_keys.select().where(_api_keys.c.user_id == user_id)
        if not include_revoked:
            stmt = stmt.where(_api_keys.c.revoked_at.is_(None))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_api_keys.c.id.desc())).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def list_all_api_keys(self, include_revoked: bool = False) -> list[ApiKey]:
        """Return every user's keys, newest first. Admin-only operation."""
        stmt = _api_keys.select()
        if not include_revoked:
            stmt = stmt.where(_api_keys.c.revoked_at.is_(None))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_api_keys.c.id.desc())).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def count_active_api_keys(self, user_id: str) -> int:
        """Count non-revoked keys for a user (expired keys still count until revoked)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_api_keys)
                .where((_api_keys.c.user_id == user_id) & _api_keys.c.revoked_at.is_(None))
            ).scalar()
        return result or 0

    def update_api_key(self, key_id: int, **fields) -> bool:
        """Update name, scopes, ip_whitelist, rate_limit or expires_at on a live key.

        Revoked keys are immutable: the WHERE clause excludes them, so the
        call returns False exactly as if the key did not exist.
        """
        unknown = set(fields) - self._API_KEY_FIELDS
        if unknown:
            raise ValueError(f"Unknown api key fields: {unknown!r}")
        for name in ("scopes", "ip_whitelist"):
            if name in fields:
                fields[name] = json.dumps(list(fields[name]))
        if not fields:
            return self.get_api_key(key_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.update()
                .where((_api_keys.c.id == key_id) & _api_keys.c.revoked_at.is_(None))
                .values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_api_key(self, key_id: int) -> bool:
        """Stamp revoked_at. Returns False if the key is missing or already revoked.

        Ownership is checked by the route (owner or ADMIN+) before calling.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.update()
                .where((_api_keys.c.id == key_id) & _api_keys.c.revoked_at.is_(None))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def record_api_key_usage(self, key_id: int) -> None:
        """Increment usage_count and stamp last_used_at.

        Runs on the BackgroundWriter, off the response path. The increment is
        done in SQL so concurrent writers never lose counts.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _api_keys.update()
                .where(_api_keys.c.id == key_id)
                .values(usage_count=_api_keys.c.usage_count + 1, last_used_at=_now_iso())
            )
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        username=row.username,
        role=row.role,
        team_id=row.team_id,
        groups=json.loads(row.groups) if row.groups else [],
        created_at=row.created_at,
        last_login_at=row.last_login_at,
        is_active=bool(row.is_active),
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        key_hash=row.key_hash,
        key_prefix=row.key_prefix,
        scopes=json.loads(row.scopes) if row.scopes else [],
        ip_whitelist=json.loads(row.ip_whitelist) if row.ip_whitelist else [],
        rate_limit=row.rate_limit,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
        usage_count=row.usage_count or 0,
        last_used_at=row.last_used_at,
        created_at=row.created_at,
    )
