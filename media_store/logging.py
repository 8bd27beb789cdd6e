"""Log setup shared by the API server and the CLI.

Everything goes to the console and to ``<MS_LOG_DIR>/media_store.log``. The
cleaner loggers additionally write to ``cleaner.log``, a separate history of
what each pass scanned and deleted that is not drowned out by request logs.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import NamedTuple

from .settings import Settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

CLEANER_LOGGERS = (
    "media_store.cleaner",
    "media_store.reconciler",
    "media_store.scheduler",
    "media_store.scanners",
    "media_store.enumerator",
)

# Marks handlers installed here, so a repeated setup replaces only its own.
_OWNED = "_media_store_handler"


class LogFiles(NamedTuple):
    main: Path
    cleaner: Path | None


def _log_dir(settings: Settings) -> Path:
    p = Path(str(settings.MS_LOG_DIR))
    return p if p.is_absolute() else Path.cwd() / p


def _level(settings: Settings) -> tuple[str, int]:
    name = str(settings.MS_LOG_LEVEL or "INFO").upper().strip()
    return name, getattr(logging, name, logging.INFO)


def _daily_file(path: Path, level: int, backups: int) -> logging.Handler:
    h = TimedRotatingFileHandler(filename=str(path), when="midnight", backupCount=backups, encoding="utf-8")
    h.setLevel(level)
    h.setFormatter(logging.Formatter(LOG_FORMAT))
    setattr(h, _OWNED, True)
    return h


def _drop_owned(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        if getattr(h, _OWNED, False):
            logger.removeHandler(h)
            h.close()


def setup_logging(settings: Settings, *, filename: str = "media_store.log") -> LogFiles:
    """Route root, uvicorn and cleaner logging to rotating files and the console.

    Repeated calls replace the handlers installed by the previous call.
    """

    log_dir = _log_dir(settings)
    log_dir.mkdir(parents=True, exist_ok=True)
    level_name, level = _level(settings)
    backups = max(0, int(settings.MS_LOG_BACKUP_COUNT or 0))

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for h in root.handlers:
        h.close()
    root.handlers = [_daily_file(log_dir / filename, level, backups), console]
    root.setLevel(level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.setLevel(level)
        lg.propagate = True
    logging.getLogger("uvicorn.access").disabled = not settings.MS_LOG_ACCESS

    cleaner_file = log_dir / settings.MS_CLEANER_LOG_FILE if settings.MS_CLEANER_LOG_FILE else None
    for name in CLEANER_LOGGERS:
        lg = logging.getLogger(name)
        _drop_owned(lg)
        if cleaner_file is None:
            lg.setLevel(logging.NOTSET)
            continue
        # INFO at least: deletions are always recorded here. The root
        # handlers still filter these records at their own level.
        lg.setLevel(min(level, logging.INFO))
        lg.addHandler(_daily_file(cleaner_file, min(level, logging.INFO), backups))

    files = LogFiles(main=log_dir / filename, cleaner=cleaner_file)
    logging.getLogger("media_store").info(
        "logging enabled (file=%s, cleaner_file=%s, level=%s, access=%s)",
        os.fspath(files.main),
        os.fspath(cleaner_file) if cleaner_file else "-",
        level_name,
        settings.MS_LOG_ACCESS,
    )
    return files
