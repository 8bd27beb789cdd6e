"""Reference strings and the document walk that discovers them.

A reference is the external path of a stored file, e.g. ``/uploads/a/b.png``.
Database values are normalized with `normalize_reference`; on-disk names are
turned into references verbatim by `reference_for`, so a name the
normalization would alter can never be mistaken for a different file.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any


class NodeKind(enum.Enum):
    MAPPING = "mapping"
    SEQUENCE = "sequence"
    STRING = "string"
    OTHER = "other"


def classify(node: Any) -> NodeKind:
    """Map a decoded document node onto the closed set of kinds we walk."""

    if isinstance(node, str):
        return NodeKind.STRING
    if isinstance(node, Mapping):
        return NodeKind.MAPPING
    # bytes are leaves, not sequences of ints
    if isinstance(node, (bytes, bytearray, memoryview)):
        return NodeKind.OTHER
    if isinstance(node, (Sequence, set, frozenset)):
        return NodeKind.SEQUENCE
    return NodeKind.OTHER


def normalize_reference(value: str) -> str:
    """Canonical form: `/` separators, no repeated separators, no trailing slash."""

    s = str(value).strip().replace("\\", "/")
    while "//" in s:
        s = s.replace("//", "/")
    if len(s) > 1:
        s = s.rstrip("/")
    return s


def is_reference(value: str, prefix: str) -> bool:
    """True when `value` names a file below `prefix` (the prefix alone does not count)."""

    if not value:
        return False
    return normalize_reference(value).startswith(prefix.rstrip("/") + "/")


def iter_strings(document: Any) -> Iterator[str]:
    """Yield every string leaf of an arbitrarily nested document.

    Uses an explicit stack so nesting depth is not limited by the interpreter's
    recursion limit. Leaves of unknown types are skipped.
    """

    stack: list[Any] = [document]
    while stack:
        node = stack.pop()
        kind = classify(node)
        if kind is NodeKind.STRING:
            yield node
        elif kind is NodeKind.MAPPING:
            stack.extend(node.values())
        elif kind is NodeKind.SEQUENCE:
            stack.extend(node)


def iter_references(document: Any, prefix: str) -> Iterator[str]:
    """Yield the normalized form of every reference in `document`.

    When normalization changes a value, the raw value is yielded as well: a
    file whose on-disk name is literally that string stays referenced.
    """

    for value in iter_strings(document):
        if is_reference(value, prefix):
            norm = normalize_reference(value)
            yield norm
            if value != norm:
                yield value


def collect_references(documents: Iterable[Any], prefix: str, into: set[str] | None = None) -> set[str]:
    refs = set() if into is None else into
    for doc in documents:
        refs.update(iter_references(doc, prefix))
    return refs


def reference_for(relative_path: str, prefix: str) -> str:
    """Reference for a `/`-separated path relative to the upload root.

    The path is used as-is: whitespace, backslashes and case survive, so the
    reference maps back to exactly the same file.
    """

    return f"{prefix.rstrip('/')}/{str(relative_path).lstrip('/')}"
