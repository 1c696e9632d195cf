"""
User persistence.
This module is where all users-table SQL lives.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from core.db import Database
from core.errors import ConflictError, MigrationError, NotFoundError

logger = logging.getLogger(__name__)

# BIGINT identity column: anything outside this range was never issued.
_MAX_ID = 2**63 - 1

INSERT_USER_SQL = """
INSERT INTO users (username, email)
VALUES ($1, $2)
RETURNING id, username, email, created_at
"""

SELECT_USER_SQL = """
SELECT id, username, email, created_at
FROM users
WHERE id = $1
"""

LIST_USERS_SQL = """
SELECT id, username, email, created_at
FROM users
ORDER BY id ASC
"""

UPDATE_USER_SQL = """
UPDATE users
SET username = $2,
    email = $3
WHERE id = $1
RETURNING id, username, email, created_at
"""

DELETE_USER_SQL = """
DELETE FROM users
WHERE id = $1
RETURNING id
"""

STATEMENTS = (
    INSERT_USER_SQL,
    SELECT_USER_SQL,
    LIST_USERS_SQL,
    UPDATE_USER_SQL,
    DELETE_USER_SQL,
)


def _is_valid_id(user_id: int) -> bool:
    return 1 <= user_id <= _MAX_ID


def _conflict_from(exc: asyncpg.UniqueViolationError) -> ConflictError:
    constraint = getattr(exc, "constraint_name", None) or ""
    if "email" in constraint:
        return ConflictError("email", "Email is already taken.")
    if "username" in constraint:
        return ConflictError("username", "Username is already taken.")
    return ConflictError("user", "User already exists.")


def _not_found(user_id: int) -> NotFoundError:
    return NotFoundError(f"User {user_id} not found.")


async def create_user(database: Database, *, username: str, email: str) -> dict[str, Any]:
    try:
        row = await database.fetch_one(INSERT_USER_SQL, username, email)
    except asyncpg.UniqueViolationError as exc:
        raise _conflict_from(exc) from exc
    if row is None:
        raise RuntimeError("Failed to create user.")
    return row


async def get_user(database: Database, user_id: int) -> dict[str, Any]:
    if not _is_valid_id(user_id):
        raise _not_found(user_id)
    row = await database.fetch_one(SELECT_USER_SQL, user_id)
    if row is None:
        raise _not_found(user_id)
    return row


async def list_users(database: Database) -> list[dict[str, Any]]:
    return await database.fetch_all(LIST_USERS_SQL)


async def update_user(database: Database, user_id: int, *, username: str, email: str) -> dict[str, Any]:
    """
    Replace username and email. `id` and `created_at` are left untouched.
    """
    if not _is_valid_id(user_id):
        raise _not_found(user_id)
    try:
        row = await database.fetch_one(UPDATE_USER_SQL, user_id, username, email)
    except asyncpg.UniqueViolationError as exc:
        raise _conflict_from(exc) from exc
    if row is None:
        raise _not_found(user_id)
    return row


async def delete_user(database: Database, user_id: int) -> None:
    """
    Hard-delete a user. Deleting an id that is already gone raises NotFoundError.
    """
    if not _is_valid_id(user_id):
        raise _not_found(user_id)
    row = await database.fetch_one(DELETE_USER_SQL, user_id)
    if row is None:
        raise _not_found(user_id)


async def verify_statements(database: Database) -> None:
    """
    Prepare every statement above against the live schema.

    A column or table mismatch fails here, at startup, instead of on the first
    request that happens to use the broken query.
    """

    async def _prepare_all(conn: Any) -> None:
        for sql in STATEMENTS:
            await conn.prepare(sql)

    try:
        await database.run(_prepare_all)
    except asyncpg.PostgresError as exc:
        raise MigrationError(f"Schema does not match the user queries: {exc}") from exc
    logger.info("user_statements_verified count=%s", len(STATEMENTS))
