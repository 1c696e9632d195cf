"""
User API schemas (request/response models).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, StrictStr, field_validator

USERNAME_MAX_LENGTH = 64
EMAIL_MAX_LENGTH = 320


class UserPayload(BaseModel):
    """
    Body for both create and update. Both fields are required on update too:
    PUT replaces the mutable part of the record.
    """

    username: StrictStr = Field(..., max_length=USERNAME_MAX_LENGTH)
    email: StrictStr = Field(..., max_length=EMAIL_MAX_LENGTH)

    @field_validator("username", "email", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        # Non-strings are left for StrictStr to reject.
        return value.strip() if isinstance(value, str) else value

    @field_validator("username", "email")
    @classmethod
    def _check_text(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        # PostgreSQL text columns cannot hold NUL.
        if "\x00" in value:
            raise ValueError("must not contain NUL characters")
        return value


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    created_at: datetime
