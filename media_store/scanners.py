from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any, Protocol

import psycopg
from psycopg import sql
from pymongo import MongoClient
from pymongo.errors import ConfigurationError, ConnectionFailure, PyMongoError

from .errors import BackendConnectionError, ConfigError, QueryError
from .references import collect_references, iter_references
from .settings import Settings

logger = logging.getLogger(__name__)


class ReferenceScanner(Protocol):
    backend_name: str

    def scan(self) -> set[str]: ...


_SAFE_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def safe_ident(name: str) -> str:
    s = str(name or "").strip()
    if not _SAFE_IDENT.match(s):
        raise ConfigError(f"invalid SQL identifier: {name!r}")
    return s


def table_identifier(name: str) -> sql.Identifier:
    """`table` or `schema.table` as a quoted identifier."""

    parts = str(name or "").strip().split(".")
    if len(parts) > 2:
        raise ConfigError(f"invalid table name: {name!r}")
    return sql.Identifier(*(safe_ident(p) for p in parts))


class PostgresScanner:
    """Collects references from one column of each configured table.

    Every table is read through a named (server-side) cursor so only
    `batch_size` rows are held in memory at a time. With `statement_timeout_ms`
    set, the server cancels any single statement (each cursor fetch included)
    that runs longer, so an abandoned scan cannot hold a connection forever.
    """

    backend_name = "pg"

    def __init__(
        self,
        dsn: str,
        tables: list[str],
        field: str,
        prefix: str,
        *,
        batch_size: int = 1000,
        connect_timeout: int = 10,
        statement_timeout_ms: int | None = None,
        connect: Callable[..., Any] = psycopg.connect,
    ):
        if not tables:
            raise ConfigError("MS_PG_TABLES is required for the pg backend")
        self._dsn = dsn
        self._tables = [(t, table_identifier(t)) for t in tables]
        self._field = sql.Identifier(safe_ident(field))
        self._prefix = prefix
        self._batch_size = max(1, int(batch_size))
        self._connect_timeout = connect_timeout
        self._statement_timeout_ms = statement_timeout_ms
        self._connect = connect

    def _connect_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"connect_timeout": self._connect_timeout}
        if self._statement_timeout_ms:
            kwargs["options"] = f"-c statement_timeout={int(self._statement_timeout_ms)}"
        return kwargs

    def scan(self) -> set[str]:
        try:
            conn = self._connect(self._dsn, **self._connect_kwargs())
        except psycopg.ProgrammingError as e:
            # malformed DSN
            raise ConfigError(f"invalid PostgreSQL connection settings: {e}") from e
        except psycopg.Error as e:
            raise BackendConnectionError(f"cannot connect to PostgreSQL: {e}") from e

        refs: set[str] = set()
        with conn:
            for name, ident in self._tables:
                self._scan_table(conn, name, ident, refs)
        return refs

    def _scan_table(self, conn: Any, name: str, ident: sql.Identifier, refs: set[str]) -> None:
        query = sql.SQL("SELECT {} FROM {}").format(self._field, ident)
        before = len(refs)
        try:
            with conn.cursor(name=f"media_store_scan_{name.replace('.', '_')}") as cur:
                cur.itersize = self._batch_size
                cur.execute(query)
                for row in cur:
                    value = row[0]
                    if value is None or value == "":
                        continue
                    refs.update(iter_references(value, self._prefix))
        except psycopg.OperationalError as e:
            raise BackendConnectionError(f"lost PostgreSQL connection while reading {name}: {e}") from e
        except psycopg.Error as e:
            raise QueryError(f"query on table {name} failed: {e}") from e
        logger.debug("pg table %s: %d new references", name, len(refs) - before)


class MongoScanner:
    """Collects every prefixed string found anywhere inside the documents of each collection."""

    backend_name = "mongo"

    def __init__(
        self,
        uri: str,
        database: str,
        collections: list[str],
        prefix: str,
        *,
        batch_size: int = 1000,
        timeout_ms: int = 10_000,
        socket_timeout_ms: int | None = None,
        client_factory: Callable[..., Any] = MongoClient,
    ):
        if not uri:
            raise ConfigError("MS_MONGO_URI is required for the mongo backend")
        if not database:
            raise ConfigError("MS_MONGO_DATABASE is required for the mongo backend")
        if not collections:
            raise ConfigError("MS_MONGO_COLLECTIONS is required for the mongo backend")
        self._uri = uri
        self._database = database
        self._collections = list(collections)
        self._prefix = prefix
        self._batch_size = max(1, int(batch_size))
        self._timeout_ms = timeout_ms
        self._socket_timeout_ms = socket_timeout_ms
        self._client_factory = client_factory

    def scan(self) -> set[str]:
        kwargs: dict[str, Any] = {"serverSelectionTimeoutMS": self._timeout_ms}
        if self._socket_timeout_ms:
            kwargs["socketTimeoutMS"] = int(self._socket_timeout_ms)
        try:
            client = self._client_factory(self._uri, **kwargs)
        except ConfigurationError as e:
            raise ConfigError(f"invalid MongoDB connection settings: {e}") from e
        except PyMongoError as e:
            raise BackendConnectionError(f"cannot create MongoDB client: {e}") from e

        try:
            try:
                client.admin.command("ping")
            except PyMongoError as e:
                raise BackendConnectionError(f"cannot connect to MongoDB: {e}") from e

            db = client[self._database]
            refs: set[str] = set()
            for name in self._collections:
                self._scan_collection(db[name], name, refs)
            return refs
        finally:
            client.close()

    def _scan_collection(self, collection: Any, name: str, refs: set[str]) -> None:
        before = len(refs)
        try:
            with collection.find({}, batch_size=self._batch_size) as cursor:
                collect_references(cursor, self._prefix, into=refs)
        except ConnectionFailure as e:
            raise BackendConnectionError(f"lost MongoDB connection while reading {name}: {e}") from e
        except PyMongoError as e:
            raise QueryError(f"query on collection {name} failed: {e}") from e
        logger.debug("mongo collection %s: %d new references", name, len(refs) - before)


_BACKENDS = {
    "pg": "pg",
    "postgres": "pg",
    "postgresql": "pg",
    "mongo": "mongo",
    "mongodb": "mongo",
}


def _query_timeout_ms(settings: Settings) -> int | None:
    # Queries share the pass bound; the pass gives up on them no later anyway.
    seconds = settings.MS_CLEANER_TIMEOUT_SECONDS
    return int(seconds * 1000) if seconds and seconds > 0 else None


def select_scanner(settings: Settings) -> ReferenceScanner:
    """Build the one scanner this process will use, from MS_DB."""

    kind = _BACKENDS.get(str(settings.MS_DB or "").strip().lower())
    if kind == "pg":
        return PostgresScanner(
            settings.pg_dsn,
            settings.pg_tables,
            settings.MS_PG_FIELD,
            settings.MS_REFERENCE_PREFIX,
            batch_size=settings.MS_SCAN_BATCH_SIZE,
            connect_timeout=settings.MS_PG_CONNECT_TIMEOUT,
            statement_timeout_ms=_query_timeout_ms(settings),
        )
    if kind == "mongo":
        return MongoScanner(
            str(settings.MS_MONGO_URI or ""),
            str(settings.MS_MONGO_DATABASE or ""),
            settings.mongo_collections,
            settings.MS_REFERENCE_PREFIX,
            batch_size=settings.MS_SCAN_BATCH_SIZE,
            timeout_ms=settings.MS_MONGO_TIMEOUT_MS,
            socket_timeout_ms=_query_timeout_ms(settings),
        )
    raise ConfigError(f"invalid database type: {settings.MS_DB!r} (expected 'pg' or 'mongo')")
