"""
core/background.py -- Fire-and-forget hand-off for best-effort writes.

Counter persistence (rate-limit windows, API key usage) must never sit on the
response path. Callers hand a callable to BackgroundWriter.submit() and move
on. Semantics:

  best-effort  -- a failed write is logged and dropped; nobody is told.
  at-most-once -- there are no retries; a write lost to a crash stays lost.

The writer is owned by the application lifespan (created on startup, drained
and shut down on shutdown) and passed by reference into whatever needs it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

logger = logging.getLogger("missionguard.background")


class BackgroundWriter:
    """Thread-pool backed hand-off for best-effort persistence.

    Usage:
        writer = BackgroundWriter(max_workers=2)
        writer.submit(store.record_api_key_usage, key_id, label="api key usage")
        writer.shutdown()
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="missionguard-bg")
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args: Any, label: str = "background write") -> Future | None:
        """Schedule fn(*args). Returns the Future, or None if the writer is closed.

        Never raises: scheduling failures and task failures are both logged.
        """
        if self._closed:
            logger.warning("%s dropped: writer is shut down", label)
            return None
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError:
            logger.warning("%s dropped: executor refused the task", label)
            return None
        future.add_done_callback(lambda f: _log_failure(f, label))
        return future

    def shutdown(self, wait: bool = False) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)


def _log_failure(future: Future, label: str) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("%s failed: %s", label, exc)
