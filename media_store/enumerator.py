from __future__ import annotations

import os
from pathlib import Path

from .errors import EnumerationError
from .references import reference_for


def enumerate_files(root: Path | str, prefix: str) -> set[str]:
    """Return the reference of every regular file under `root`.

    Symlinks are never followed: linked directories are not descended and
    linked files are not emitted, so the cleaner can never delete through a
    link. Any walk error aborts the whole enumeration.
    """

    base = Path(root)
    if not base.is_dir():
        raise EnumerationError(f"upload root is not a directory: {base}")

    def _raise(err: OSError) -> None:
        raise EnumerationError(f"cannot walk {err.filename or base}: {err}") from err

    refs: set[str] = set()
    for dirpath, _dirnames, filenames in os.walk(base, onerror=_raise, followlinks=False):
        for name in filenames:
            full = os.path.join(dirpath, name)
            if os.path.islink(full) or not os.path.isfile(full):
                continue
            rel = os.path.relpath(full, base)
            refs.add(reference_for(rel.replace(os.sep, "/"), prefix))
    return refs
