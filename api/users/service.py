"""
User business logic.

Calls the repository and turns domain errors into HTTP errors. Unexpected
storage faults are logged in full here and leave as an opaque 500.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, status

from core.db import Database
from core.errors import ConflictError, NotFoundError, PoolExhaustedError

from . import repository, schemas

logger = logging.getLogger(__name__)

INTERNAL_ERROR_DETAIL = "Internal server error."
RETRY_AFTER_SECONDS = 1


@contextmanager
def _http_errors(action: str, **context: object) -> Iterator[None]:
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PoolExhaustedError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is busy. Retry later.",
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        ) from exc
    except Exception as exc:
        details = " ".join(f"{k}={v}" for k, v in context.items())
        logger.exception("user_%s_failed %s", action, details)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=INTERNAL_ERROR_DETAIL,
        ) from exc


def _to_user_response(row: dict) -> schemas.UserResponse:
    return schemas.UserResponse(
        id=int(row["id"]),
        username=str(row["username"]),
        email=str(row["email"]),
        created_at=row["created_at"],
    )


async def create_user(database: Database, payload: schemas.UserPayload) -> schemas.UserResponse:
    with _http_errors("create"):
        row = await repository.create_user(database, username=payload.username, email=payload.email)
    return _to_user_response(row)


async def get_user(database: Database, user_id: int) -> schemas.UserResponse:
    with _http_errors("get", user_id=user_id):
        row = await repository.get_user(database, user_id)
    return _to_user_response(row)


async def list_users(database: Database) -> list[schemas.UserResponse]:
    with _http_errors("list"):
        rows = await repository.list_users(database)
    return [_to_user_response(row) for row in rows]


async def update_user(
    database: Database,
    user_id: int,
    payload: schemas.UserPayload,
) -> schemas.UserResponse:
    with _http_errors("update", user_id=user_id):
        row = await repository.update_user(
            database,
            user_id,
            username=payload.username,
            email=payload.email,
        )
    return _to_user_response(row)


async def delete_user(database: Database, user_id: int) -> None:
    with _http_errors("delete", user_id=user_id):
        await repository.delete_user(database, user_id)
