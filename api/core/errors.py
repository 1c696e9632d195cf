"""
Domain errors raised below the HTTP layer.

Services translate these into HTTP responses; nothing here knows about status
codes.
"""

from __future__ import annotations


class DatabaseError(RuntimeError):
    pass


class NotFoundError(DatabaseError):
    pass


class ConflictError(DatabaseError):
    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} already exists.")


class PoolExhaustedError(DatabaseError):
    """No pooled connection became available within the acquire timeout."""


class MigrationError(DatabaseError):
    """Schema could not be brought to the expected version. Fatal at startup."""
