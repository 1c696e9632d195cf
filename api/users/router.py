"""
FastAPI router for user endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from core.db import Database, get_database

from . import schemas, service

router = APIRouter(prefix="/users")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: schemas.UserPayload,
    database: Database = Depends(get_database),
) -> schemas.UserResponse:
    return await service.create_user(database, payload)


@router.get("")
async def list_users(
    database: Database = Depends(get_database),
) -> list[schemas.UserResponse]:
    """
    All users, oldest first (ascending id).
    """
    return await service.list_users(database)


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    database: Database = Depends(get_database),
) -> schemas.UserResponse:
    return await service.get_user(database, user_id)


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    payload: schemas.UserPayload,
    database: Database = Depends(get_database),
) -> schemas.UserResponse:
    return await service.update_user(database, user_id, payload)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int,
    database: Database = Depends(get_database),
) -> Response:
    await service.delete_user(database, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
