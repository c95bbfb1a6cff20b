from __future__ import annotations

import logging
import threading
from typing import Any

from ..config import MATCHMAKING_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class MatchmakingScheduler:
    """Periodic matchmaking with at most one run in flight per process."""

    def __init__(self, matchmaking_service, queue_service, interval_seconds: float = MATCHMAKING_INTERVAL_SECONDS) -> None:
        self.matchmaking_service = matchmaking_service
        self.queue_service = queue_service
        self.interval_seconds = float(interval_seconds)
        self._run_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> list[dict[str, Any]] | None:
        """Run one matchmaking pass; None when skipped."""
        if not self.queue_service.is_enabled():
            logger.debug("[SCHEDULER] queue disabled; skipping run")
            return None
        if not self._run_lock.acquire(blocking=False):
            logger.info("[SCHEDULER] previous run still in progress; skipping")
            return None
        try:
            return self.matchmaking_service.run()
        except Exception:
            logger.exception("[SCHEDULER] matchmaking run failed")
            return None
        finally:
            self._run_lock.release()

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        stop_event = stop_event or self._stop
        logger.info("[SCHEDULER] started (interval=%ss)", self.interval_seconds)
        while not stop_event.wait(self.interval_seconds):
            self.tick()
        logger.info("[SCHEDULER] stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="matchmaking-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
