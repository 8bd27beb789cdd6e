"""Background loop that runs the cleaner on a fixed interval."""

from __future__ import annotations

import logging
import threading

from .cleaner import Cleaner, PassResult

logger = logging.getLogger(__name__)


class CleanerScheduler:
    """Runs one pass right away, then one pass per `interval_seconds` until stopped.

    Passes run sequentially on a single thread, so a slow pass delays the next
    tick instead of overlapping it. `stop()` wakes a waiting loop immediately;
    a pass already in progress is allowed to finish.
    """

    def __init__(self, cleaner: Cleaner, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.cleaner = cleaner
        self.interval_seconds = float(interval_seconds)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.passes = 0
        self.last_result: PassResult | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> threading.Thread:
        if self.running:
            raise RuntimeError("cleaner scheduler already running")
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="media-store-cleaner", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop() is called or `timeout` elapses; True if stopped."""

        return self._stop.wait(timeout)

    def run_forever(self) -> None:
        logger.info("Starting cleaner scheduler (interval=%ss)", self.interval_seconds)
        self._run_once()
        while not self._stop.wait(self.interval_seconds):
            logger.info("Running scheduled cleaner...")
            self._run_once()
        logger.info("Cleaner scheduler stopped.")

    def _run_once(self) -> None:
        try:
            self.last_result = self.cleaner.run_pass()
        except Exception:
            # The loop must outlive any single pass.
            logger.exception("Unexpected error in cleaner pass")
        finally:
            self.passes += 1
