from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeleteFailure:
    reference: str
    path: str
    error: str


@dataclass(frozen=True)
class ReconcileReport:
    deleted: list[str] = field(default_factory=list)
    failed: list[DeleteFailure] = field(default_factory=list)
    kept: int = 0
    dry_run: bool = False


def path_for_reference(reference: str, root: Path | str, prefix: str) -> Path | None:
    """Absolute path of `reference` under `root`.

    Returns None when the reference would land outside root, or when the
    resulting path does not map back to the very same reference.
    """

    head = prefix.rstrip("/") + "/"
    if not reference.startswith(head):
        return None
    rel = reference[len(head):]
    if not rel:
        return None
    parts = rel.split("/")
    if any(p in ("", ".", "..") for p in parts):
        return None
    base = Path(root).resolve()
    full = base.joinpath(*parts)
    if os.path.commonpath([base, full]) != str(base):
        return None
    if full.relative_to(base).as_posix() != rel:
        return None
    return full


def reconcile(
    on_disk: set[str],
    referenced: set[str],
    root: Path | str,
    prefix: str,
    *,
    dry_run: bool = False,
) -> ReconcileReport:
    """Delete every on-disk file whose reference is not in `referenced`.

    Deletions are independent: a failure is recorded and the rest continue.
    A file that is already gone counts as deleted.
    """

    deleted: list[str] = []
    failed: list[DeleteFailure] = []
    kept = 0

    for ref in sorted(on_disk):
        if ref in referenced:
            kept += 1
            continue

        path = path_for_reference(ref, root, prefix)
        if path is None:
            failed.append(DeleteFailure(ref, "", "reference does not map to a file under the upload root"))
            logger.warning("Refusing to delete %s: no exact path under the upload root", ref)
            continue

        if dry_run:
            logger.info("Would delete unreferenced file: %s", path)
            deleted.append(ref)
            continue

        try:
            path.unlink()
        except FileNotFoundError:
            logger.info("Unreferenced file already gone: %s", path)
        except OSError as e:
            failed.append(DeleteFailure(ref, str(path), str(e)))
            logger.warning("Failed to delete %s: %s", path, e)
            continue
        else:
            logger.info("Deleted unreferenced file: %s", path)
        deleted.append(ref)

    return ReconcileReport(deleted=deleted, failed=failed, kept=kept, dry_run=dry_run)
