"""One reconciliation pass: scan the backend, walk the upload root, delete the difference.

Scan and walk run side by side on daemon threads, bounded together by a
timeout. If either fails or times out the pass deletes nothing. A worker that
is still running when the pass gives up is left behind; being a daemon it
never keeps the process alive at exit.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .enumerator import enumerate_files
from .errors import MediaStoreError
from .reconciler import ReconcileReport, reconcile
from .scanners import ReferenceScanner, select_scanner
from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PassResult:
    ok: bool
    report: ReconcileReport | None = None
    error: str | None = None
    referenced: int = 0
    on_disk: int = 0
    duration_seconds: float = 0.0


class _Worker:
    """Runs `fn` on a daemon thread and keeps its return value or exception."""

    def __init__(self, name: str, fn: Callable[..., Any], *args: Any):
        self._fn = fn
        self._args = args
        self.value: Any = None
        self.error: Exception | None = None
        self.thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.thread.start()

    def _run(self) -> None:
        try:
            self.value = self._fn(*self._args)
        except Exception as e:
            self.error = e

    def join(self, timeout: float | None) -> bool:
        """True once the call has returned or raised."""

        self.thread.join(timeout)
        return not self.thread.is_alive()


class Cleaner:
    def __init__(
        self,
        scanner: ReferenceScanner,
        upload_root: Path | str,
        prefix: str,
        *,
        timeout_seconds: float | None = None,
        dry_run: bool = False,
    ):
        self.scanner = scanner
        self.upload_root = Path(upload_root)
        self.prefix = prefix
        self.timeout_seconds = timeout_seconds
        self.dry_run = dry_run

    def run_pass(self) -> PassResult:
        started = time.monotonic()
        scan = _Worker("media-store-scan", self.scanner.scan)
        walk = _Worker("media-store-walk", enumerate_files, self.upload_root, self.prefix)

        for worker in (scan, walk):
            if not worker.join(self._remaining(started)):
                return self._aborted(started, f"timed out after {self.timeout_seconds}s")
            if isinstance(worker.error, (MediaStoreError, OSError)):
                e = worker.error
                return self._aborted(started, f"{type(e).__name__}: {e}")
            if worker.error is not None:
                raise worker.error
        referenced, on_disk = scan.value, walk.value

        report = reconcile(on_disk, referenced, self.upload_root, self.prefix, dry_run=self.dry_run)
        duration = time.monotonic() - started
        logger.info(
            "Cleaner pass finished (backend=%s, referenced=%d, on_disk=%d, deleted=%d, failed=%d, dry_run=%s, %.2fs)",
            self.scanner.backend_name,
            len(referenced),
            len(on_disk),
            len(report.deleted),
            len(report.failed),
            self.dry_run,
            duration,
        )
        return PassResult(
            ok=True,
            report=report,
            referenced=len(referenced),
            on_disk=len(on_disk),
            duration_seconds=duration,
        )

    def _remaining(self, started: float) -> float | None:
        if self.timeout_seconds is None:
            return None
        return max(0.0, self.timeout_seconds - (time.monotonic() - started))

    def _aborted(self, started: float, error: str) -> PassResult:
        logger.error("Cleaner pass aborted, nothing deleted: %s", error)
        return PassResult(ok=False, error=error, duration_seconds=time.monotonic() - started)


def build_cleaner(settings: Settings, scanner: ReferenceScanner | None = None) -> Cleaner:
    """Cleaner wired from settings; raises ConfigError for an unknown MS_DB."""

    return Cleaner(
        scanner if scanner is not None else select_scanner(settings),
        settings.MS_UPLOAD_ROOT,
        settings.MS_REFERENCE_PREFIX,
        timeout_seconds=settings.MS_CLEANER_TIMEOUT_SECONDS,
        dry_run=settings.MS_CLEANER_DRY_RUN,
    )
