"""
Async database access helpers (raw SQL) using asyncpg.

`Database` owns the connection pool. It is created once during app startup
(see `api/main.py`), stored on `app.state`, and handed to request handlers via
the `get_database` dependency.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import asyncpg
from fastapi import Request

from . import settings
from .errors import PoolExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _sanitize_database_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def database_url() -> str:
    url = os.environ.get("DATABASE_URL", "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return _sanitize_database_url(url)


def _record_to_dict(record: asyncpg.Record) -> dict[str, Any]:
    return dict(record)


class Database:
    """
    A bounded pool of connections plus helpers that run one unit of work each.

    `pool` is anything with asyncpg's `acquire(timeout=...)`, `release(conn)`
    and `close()` coroutines.
    """

    def __init__(self, pool: Any, *, acquire_timeout: float = 5.0) -> None:
        self._pool = pool
        self._acquire_timeout = acquire_timeout

    @classmethod
    async def connect(
        cls,
        dsn: str | None = None,
        *,
        min_size: int | None = None,
        max_size: int | None = None,
        acquire_timeout: float | None = None,
        command_timeout: float | None = None,
    ) -> "Database":
        max_size = max_size if max_size is not None else settings.pool_max_size()
        min_size = min(min_size if min_size is not None else settings.pool_min_size(), max_size)
        pool = await asyncpg.create_pool(
            dsn=dsn or database_url(),
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout if command_timeout is not None else settings.command_timeout(),
        )
        logger.info("db_pool_opened min_size=%s max_size=%s", min_size, max_size)
        return cls(
            pool,
            acquire_timeout=acquire_timeout if acquire_timeout is not None else settings.pool_acquire_timeout(),
        )

    async def close(self) -> None:
        await self._pool.close()
        logger.info("db_pool_closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        """
        Check out one connection for the duration of the block.

        The connection goes back to the pool on every exit path.
        """
        try:
            conn = await self._pool.acquire(timeout=self._acquire_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("db_pool_exhausted acquire_timeout=%s", self._acquire_timeout)
            raise PoolExhaustedError(
                f"No database connection available within {self._acquire_timeout:g}s."
            ) from exc
        try:
            yield conn
        finally:
            await self._pool.release(conn)

    async def _run(self, work: Callable[[Any], Awaitable[T]]) -> T:
        async with self.connection() as conn:
            return await work(conn)

    async def run(self, work: Callable[[Any], Awaitable[T]]) -> T:
        """
        Run `work(conn)` on a pooled connection.

        The work is shielded: if the caller is cancelled (client went away),
        the query still finishes and the connection is released.
        """
        return await asyncio.shield(self._run(work))

    async def fetch_one(self, sql: str, *args: Any) -> dict[str, Any] | None:
        """
        Run a query and return a single row as a dict (or None).
        """
        row = await self.run(lambda conn: conn.fetchrow(sql, *args))
        return _record_to_dict(row) if row is not None else None

    async def fetch_all(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """
        Run a query and return all rows as a list of dicts.
        """
        rows = await self.run(lambda conn: conn.fetch(sql, *args))
        return [_record_to_dict(r) for r in rows]

    async def execute(self, sql: str, *args: Any) -> str:
        """
        Run a statement (INSERT/UPDATE/DELETE/DDL) and return its status tag.
        """
        return await self.run(lambda conn: conn.execute(sql, *args))


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database is not initialized. The app lifespan has not started.")
    return database
