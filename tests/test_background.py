"""Unit tests for core/background.py -- BackgroundWriter.

Covers:
- Submitted callables run off the calling thread
- A failing task is logged, never raised to the submitter
- Submitting after shutdown drops the write and returns None
"""

import logging
import threading

from core.background import BackgroundWriter


class TestBackgroundWriter:
    def test_runs_submitted_callable(self) -> None:
        writer = BackgroundWriter(max_workers=1)
        seen: list[tuple[int, str]] = []

        future = writer.submit(lambda a, b: seen.append((a, b)), 1, "x")
        future.result(timeout=5)
        writer.shutdown(wait=True)

        assert seen == [(1, "x")]

    def test_runs_off_the_calling_thread(self) -> None:
        writer = BackgroundWriter(max_workers=1)
        future = writer.submit(threading.current_thread)
        worker = future.result(timeout=5)
        writer.shutdown(wait=True)

        assert worker is not threading.current_thread()
        assert worker.name.startswith("missionguard-bg")

    def test_failure_is_logged_not_raised(self, caplog) -> None:
        def boom() -> None:
            raise RuntimeError("disk full")

        writer = BackgroundWriter(max_workers=1)
        with caplog.at_level(logging.ERROR, logger="missionguard.background"):
            future = writer.submit(boom, label="api key usage")
            writer.shutdown(wait=True)

        assert future.exception() is not None
        assert "api key usage failed: disk full" in caplog.text

    def test_submit_after_shutdown_is_dropped(self, caplog) -> None:
        writer = BackgroundWriter(max_workers=1)
        writer.shutdown(wait=True)
        ran: list[int] = []

        with caplog.at_level(logging.WARNING, logger="missionguard.background"):
            assert writer.submit(ran.append, 1, label="rate limit persist") is None

        assert ran == []
        assert "rate limit persist dropped" in caplog.text
