"""
ratelimit/store.py -- The two layers behind the per-user rate limiter.

RateLimitCache -- in-process dict of fixed windows, guarded by a lock. The
    only shared mutable structure in MissionGuard. It is constructed
    explicitly (normally by the app lifespan) and passed into RateLimiter;
    nothing here is module-level state.

RateLimitStore -- durable (identifier, window_start) -> request_count rows in
    SQL. Used to hydrate a cold cache (after a restart, or on another
    replica) and written best-effort after each allowed request. Consistency
    across processes is eventual only.

Keys are "<identifier>:<window_start_ms>". A window is idempotent per key:
replaying the same upsert never moves a count backwards.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    case,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'missionguard.db'}"


def window_key(identifier: str, window_start_ms: int) -> str:
    return f"{identifier}:{window_start_ms}"


# ---------------------------------------------------------------------------
# In-process cache
# ---------------------------------------------------------------------------


@dataclass
class WindowEntry:
    window_start: int  # epoch ms
    window_ms: int
    count: int = 0


class RateLimitCache:
    """Thread-safe map of window key -> WindowEntry.

    Usage:
        cache = RateLimitCache()
        cache.setdefault("u-1:1700000040000", WindowEntry(1700000040000, 60000))
        cache.consume("u-1:1700000040000", limit=60)   # -> 1
        cache.sweep(now_ms)                             # evict stale windows
    """

    def __init__(self) -> None:
        self._entries: dict[str, WindowEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> WindowEntry | None:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: WindowEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def setdefault(self, key: str, entry: WindowEntry) -> WindowEntry:
        """Insert entry unless the key is already present; return the live entry.

        Two requests hydrating the same cold window concurrently end up
        sharing one entry.
        """
        with self._lock:
            return self._entries.setdefault(key, entry)

    def consume(self, key: str, limit: int) -> int | None:
        """Atomically count one request. Returns the new count, or None when at limit."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.count >= limit:
                return None
            entry.count += 1
            return entry.count

    def sweep(self, now_ms: int) -> int:
        """Evict entries older than two of their own window widths. Returns evictions."""
        with self._lock:
            stale = [k for k, e in self._entries.items() if now_ms - e.window_start > 2 * e.window_ms]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Durable store
# ---------------------------------------------------------------------------

_metadata = MetaData()

_entries = Table(
    "rate_limit_entries",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", String(255), nullable=False),
    Column("window_start", BigInteger, nullable=False),  # epoch ms
    Column("request_count", Integer, nullable=False, server_default="0"),
    Column("last_request", String(32), nullable=False),
    UniqueConstraint("identifier", "window_start", name="uq_rate_limit_window"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class RateLimitStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def get_count(self, identifier: str, window_start_ms: int) -> int | None:
        with self.engine.connect() as conn:
            return conn.execute(
                select(_entries.c.request_count).where(
                    (_entries.c.identifier == identifier) & (_entries.c.window_start == window_start_ms)
                )
            ).scalar()

    def upsert(self, identifier: str, window_start_ms: int, count: int) -> None:
        """Record count for the window, never lowering a stored value."""
        now = datetime.now(timezone.utc).isoformat()
        match = (_entries.c.identifier == identifier) & (_entries.c.window_start == window_start_ms)
        with self.engine.connect() as conn:
            result = conn.execute(
                _entries.update()
                .where(match)
                .values(
                    request_count=case((_entries.c.request_count < count, count), else_=_entries.c.request_count),
                    last_request=now,
                )
            )
            if result.rowcount == 0:
                conn.execute(
                    _entries.insert().values(
                        identifier=identifier,
                        window_start=window_start_ms,
                        request_count=count,
                        last_request=now,
                    )
                )
            conn.commit()

    def purge_before(self, cutoff_ms: int) -> int:
        """Delete windows that started before cutoff_ms. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_entries.delete().where(_entries.c.window_start < cutoff_ms))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
