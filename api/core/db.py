"""
Database backend selection and handles.

A process owns exactly one `DatabaseHandle`, built at startup by
`create_database()` from the backend chosen by `select_backend()`, opened
before the server listens and closed on shutdown (see `api/main.py`).

SQL parameter style (both backends):
- positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import asyncpg
import httpx

from . import neon
from .schema import Schema

logger = logging.getLogger(__name__)

MANAGED_URL_PATTERNS = (".neon.tech", "neon.database")
POSTGRES_SCHEMES = ("postgres", "postgresql")

# asyncpg rejects libpq-only parameters that managed providers put in URLs.
_UNSUPPORTED_QUERY_PARAMS = frozenset({"channel_binding"})
_SECRET_QUERY_PARAMS = frozenset({"password", "sslpassword", "passfile"})

UNPARSEABLE_URL = "<unparseable database url>"


class DatabaseConnectionError(RuntimeError):
    pass


class BackendKind(str, enum.Enum):
    MANAGED_SERVERLESS = "managed-serverless"
    DIRECT_POSTGRES = "direct-postgres"


def select_backend(url: str) -> BackendKind:
    """
    Pick a backend from the connection descriptor. Never raises.

    Managed-service patterns are checked first so they win over the default.
    """
    text = url if isinstance(url, str) else ""
    if any(pattern in text for pattern in MANAGED_URL_PATTERNS):
        return BackendKind.MANAGED_SERVERLESS
    return BackendKind.DIRECT_POSTGRES


def redact_url(url: str) -> str:
    """
    Mask credentials in a connection descriptor for logs and diagnostics.

    Anything that is not a `scheme://...` URL is replaced wholesale.
    """
    if not isinstance(url, str) or "://" not in url:
        return UNPARSEABLE_URL
    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError on a bad port
    except ValueError:
        return UNPARSEABLE_URL
    if not parts.scheme:
        return UNPARSEABLE_URL

    netloc = parts.netloc
    if "@" in netloc:
        userinfo, _, hostinfo = netloc.rpartition("@")
        username, sep, _ = userinfo.partition(":")
        netloc = f"{username}:***@{hostinfo}" if sep else f"{username}@{hostinfo}"

    query = parts.query
    if query:
        params = parse_qsl(query, keep_blank_values=True)
        if any(k.lower() in _SECRET_QUERY_PARAMS for k, _ in params):
            masked = [(k, "***" if k.lower() in _SECRET_QUERY_PARAMS else v) for k, v in params]
            query = urlencode(masked, safe="*")
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def _sanitize_database_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [
        (k, v)
        for (k, v) in parse_qsl(parts.query, keep_blank_values=True)
        if k not in _UNSUPPORTED_QUERY_PARAMS
    ]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _validate_url(url: str) -> None:
    try:
        parts = urlsplit(url)
        host = parts.hostname
        parts.port  # raises ValueError on a bad port
    except ValueError as exc:
        raise DatabaseConnectionError(f"Malformed database URL: {redact_url(url)}") from exc

    if parts.scheme not in POSTGRES_SCHEMES:
        raise DatabaseConnectionError(
            f"Unsupported database URL scheme: {redact_url(url)}"
        )
    if not host:
        raise DatabaseConnectionError(f"Database URL has no host: {redact_url(url)}")


class DatabaseHandle(Protocol):
    kind: BackendKind
    schema: Schema

    @property
    def redacted_url(self) -> str: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]: ...


class PostgresHandle:
    """
    Direct connection through an asyncpg pool.
    """

    kind = BackendKind.DIRECT_POSTGRES

    def __init__(
        self,
        url: str,
        schema: Schema,
        *,
        min_size: int = 1,
        max_size: int = 5,
        command_timeout: float = 30,
    ) -> None:
        self._url = _sanitize_database_url(url)
        self.schema = schema
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    @property
    def redacted_url(self) -> str:
        return redact_url(self._url)

    async def open(self) -> None:
        if self._pool is not None:
            return None
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self._url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError, ValueError) as exc:
            raise DatabaseConnectionError(
                f"Cannot open Postgres pool for {self.redacted_url}: {type(exc).__name__}"
            ) from exc

    async def close(self) -> None:
        if self._pool is None:
            return None
        await self._pool.close()
        self._pool = None

    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("DB pool is not initialized. Call open() on startup.")
        return self._pool

    async def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        rows = await self.pool().fetch(sql, *args)
        return [dict(r) for r in rows]


class NeonHttpHandle:
    """
    Managed serverless connection over Neon's HTTP SQL endpoint.

    Each statement is one HTTPS request; httpx pools the TCP connections.
    """

    kind = BackendKind.MANAGED_SERVERLESS

    def __init__(self, url: str, schema: Schema, *, timeout_s: float = 30.0) -> None:
        parts = urlsplit(url)
        if not parts.username or not parts.password:
            raise DatabaseConnectionError(
                f"Neon database URL needs a user and password: {redact_url(url)}"
            )
        self._url = url
        self.schema = schema
        self._timeout_s = timeout_s
        self._client: httpx.AsyncClient | None = None

    @property
    def redacted_url(self) -> str:
        return redact_url(self._url)

    async def open(self) -> None:
        if self._client is not None:
            return None
        self._client = httpx.AsyncClient(timeout=self._timeout_s)

    async def close(self) -> None:
        if self._client is None:
            return None
        await self._client.aclose()
        self._client = None

    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("HTTP client is not initialized. Call open() on startup.")
        return self._client

    async def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        return await neon.run_query(
            self.client(),
            connection_string=self._url,
            sql=sql,
            params=list(args),
        )


def create_database(kind: BackendKind, url: str, schema: Schema) -> DatabaseHandle:
    """
    Build the process-wide handle for `kind`. Call once at startup.
    """
    _validate_url(url)

    handle: DatabaseHandle
    if kind is BackendKind.MANAGED_SERVERLESS:
        handle = NeonHttpHandle(url, schema)
    elif kind is BackendKind.DIRECT_POSTGRES:
        handle = PostgresHandle(url, schema)
    else:
        raise DatabaseConnectionError(f"Unknown backend kind: {kind!r}")

    logger.info("database_backend kind=%s url=%s", kind.value, handle.redacted_url)
    return handle
