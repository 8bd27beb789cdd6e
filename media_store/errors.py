from __future__ import annotations


class MediaStoreError(Exception):
    """Base class for media_store errors."""


class ConfigError(MediaStoreError):
    """Unknown backend type or missing required configuration."""


class BackendConnectionError(MediaStoreError, ConnectionError):
    """The reference backend could not be reached."""


class QueryError(MediaStoreError):
    """A table/collection query failed (bad identifier, schema mismatch, cursor error)."""


class EnumerationError(MediaStoreError, OSError):
    """Walking the upload root failed."""
