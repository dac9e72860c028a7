"""
ratelimit/limiter.py -- Fixed-window per-identifier request limiting.

    window_start = floor(now_ms / window_ms) * window_ms

One call to check():
  1. Find the window in the in-process cache. On a miss, hydrate the count
     from the durable store; if that fails, start from zero.
  2. At or over the limit: deny with retry_after =
     ceil((window_start + window_ms - now_ms) / 1000).
  3. Otherwise count the request under the cache lock (threads of one process
     never under-count) and hand the new count to the BackgroundWriter for a
     durable upsert. The response never waits on that write.

A caller spread across N replicas may exceed the limit by up to N - 1
requests per window before the durable counts catch up.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from core.background import BackgroundWriter
from ratelimit.store import RateLimitCache, RateLimitStore, WindowEntry, window_key

logger = logging.getLogger("missionguard.ratelimit")

DEFAULT_WINDOW_MS = 60_000


def format_reset(epoch_ms: int) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    return (
        datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after: int | None = None

    @property
    def reset_at(self) -> str:
        return format_reset(self.reset_at_ms)

    def headers(self) -> dict[str, str]:
        values = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at,
        }
        if self.retry_after is not None:
            values["Retry-After"] = str(self.retry_after)
        return values


class RateLimiter:
    """Layered limiter: in-process cache first, durable store behind it.

    Usage:
        limiter = RateLimiter(RateLimitCache(), durable=RateLimitStore(url), writer=BackgroundWriter())
        result = limiter.check("u-1", limit=60)
        limiter.sweep()

    clock returns epoch seconds and is injectable for tests.
    """

    def __init__(
        self,
        cache: RateLimitCache | None = None,
        durable: RateLimitStore | None = None,
        writer: BackgroundWriter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache if cache is not None else RateLimitCache()
        self.durable = durable
        self.writer = writer
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _hydrate(self, identifier: str, window_start: int) -> int:
        if self.durable is None:
            return 0
        try:
            return self.durable.get_count(identifier, window_start) or 0
        except Exception as exc:
            logger.warning("Rate limit hydrate failed for %s, starting from zero: %s", identifier, exc)
            return 0

    def _persist(self, identifier: str, window_start: int, count: int) -> None:
        if self.durable is None:
            return
        if self.writer is not None:
            self.writer.submit(self.durable.upsert, identifier, window_start, count, label="rate limit persist")
            return
        try:
            self.durable.upsert(identifier, window_start, count)
        except Exception as exc:
            logger.error("Rate limit persist failed for %s: %s", identifier, exc)

    def check(self, identifier: str, limit: int, window_ms: int = DEFAULT_WINDOW_MS) -> RateLimitResult:
        now_ms = self._now_ms()
        window_start = (now_ms // window_ms) * window_ms
        reset_ms = window_start + window_ms
        key = window_key(identifier, window_start)

        if self.cache.get(key) is None:
            count = self._hydrate(identifier, window_start)
            self.cache.setdefault(key, WindowEntry(window_start=window_start, window_ms=window_ms, count=count))

        new_count = self.cache.consume(key, limit)
        if new_count is None:
            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at_ms=reset_ms,
                retry_after=math.ceil((reset_ms - now_ms) / 1000),
            )

        self._persist(identifier, window_start, new_count)
        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=max(limit - new_count, 0),
            reset_at_ms=reset_ms,
        )

    def sweep(self) -> int:
        """Evict stale cache windows. Returns the number evicted."""
        evicted = self.cache.sweep(self._now_ms())
        if evicted:
            logger.debug("Rate limit sweep evicted %d windows", evicted)
        return evicted

    def purge_durable(self, retention_seconds: int) -> int:
        """Delete durable windows older than retention_seconds."""
        if self.durable is None:
            return 0
        return self.durable.purge_before(self._now_ms() - retention_seconds * 1000)
