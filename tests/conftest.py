from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from core.db import Database
from core.errors import ConflictError, NotFoundError
from main import create_app
from users import repository


class FakeConnection:
    """Stands in for an asyncpg connection; records what ran on it."""

    def __init__(self, index: int) -> None:
        self.index = index
        self.statements: list[tuple[str, tuple]] = []

    async def fetchrow(self, sql: str, *args: Any) -> dict | None:
        self.statements.append((sql, args))
        return {"connection": self.index}

    async def fetch(self, sql: str, *args: Any) -> list[dict]:
        self.statements.append((sql, args))
        return [{"connection": self.index}]

    async def execute(self, sql: str, *args: Any) -> str:
        self.statements.append((sql, args))
        return "OK"


class FakePool:
    """Bounded pool with asyncpg's acquire/release/close surface."""

    def __init__(self, connections: list[Any]) -> None:
        self._free = list(connections)
        self._size = len(connections)
        self._available: asyncio.Semaphore | None = None
        self.in_use: set[int] = set()
        self.peak_in_use = 0
        self.released: list[Any] = []
        self.closed = False

    async def acquire(self, *, timeout: float | None = None) -> Any:
        if self._available is None:
            self._available = asyncio.Semaphore(self._size)
        await asyncio.wait_for(self._available.acquire(), timeout)
        conn = self._free.pop()
        assert id(conn) not in self.in_use
        self.in_use.add(id(conn))
        self.peak_in_use = max(self.peak_in_use, len(self.in_use))
        return conn

    async def release(self, conn: Any) -> None:
        self.in_use.discard(id(conn))
        self._free.append(conn)
        self.released.append(conn)
        assert self._available is not None
        self._available.release()

    async def close(self) -> None:
        self.closed = True


def make_database(size: int = 2, *, acquire_timeout: float = 0.5) -> tuple[Database, FakePool]:
    pool = FakePool([FakeConnection(i) for i in range(size)])
    return Database(pool, acquire_timeout=acquire_timeout), pool


class FakeUserStore:
    """In-memory replacement for the repository functions."""

    def __init__(self) -> None:
        self.rows: dict[int, dict[str, Any]] = {}
        self._next_id = 1

    def _check_unique(self, username: str, email: str, *, exclude: int | None = None) -> None:
        for row in self.rows.values():
            if row["id"] == exclude:
                continue
            if row["username"] == username:
                raise ConflictError("username", "Username is already taken.")
            if row["email"] == email:
                raise ConflictError("email", "Email is already taken.")

    async def create_user(self, database: Any, *, username: str, email: str) -> dict[str, Any]:
        self._check_unique(username, email)
        row = {
            "id": self._next_id,
            "username": username,
            "email": email,
            "created_at": datetime(2025, 6, 11, 12, 0, tzinfo=timezone.utc),
        }
        self._next_id += 1
        self.rows[row["id"]] = row
        return dict(row)

    async def get_user(self, database: Any, user_id: int) -> dict[str, Any]:
        if user_id not in self.rows:
            raise NotFoundError(f"User {user_id} not found.")
        return dict(self.rows[user_id])

    async def list_users(self, database: Any) -> list[dict[str, Any]]:
        return [dict(self.rows[k]) for k in sorted(self.rows)]

    async def update_user(self, database: Any, user_id: int, *, username: str, email: str) -> dict[str, Any]:
        if user_id not in self.rows:
            raise NotFoundError(f"User {user_id} not found.")
        self._check_unique(username, email, exclude=user_id)
        self.rows[user_id].update(username=username, email=email)
        return dict(self.rows[user_id])

    async def delete_user(self, database: Any, user_id: int) -> None:
        if user_id not in self.rows:
            raise NotFoundError(f"User {user_id} not found.")
        del self.rows[user_id]


@pytest.fixture()
def user_store(monkeypatch) -> FakeUserStore:
    store = FakeUserStore()
    for name in ("create_user", "get_user", "list_users", "update_user", "delete_user"):
        monkeypatch.setattr(repository, name, getattr(store, name))
    return store


@pytest.fixture()
def client(user_store: FakeUserStore):
    database, _ = make_database()
    with TestClient(create_app(database=database)) as test_client:
        yield test_client
