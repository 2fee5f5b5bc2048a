"""Typed errors raised by the task graph engine.

Every error carries a short ``code`` string so the dispatch layer can map a
failure to a response without inspecting message text.
"""

from __future__ import annotations

from typing import Any, Optional


# Error codes
NOT_FOUND = "NOT_FOUND"
INVALID_ARGUMENT = "INVALID_ARGUMENT"
INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
INVALID_DEPENDENCY = "INVALID_DEPENDENCY"
OPERATION_NOT_PERMITTED = "OPERATION_NOT_PERMITTED"
TRANSACTION_IN_PROGRESS = "TRANSACTION_IN_PROGRESS"
NO_TRANSACTION = "NO_TRANSACTION"
FILE_READ_ERROR = "FILE_READ_ERROR"
FILE_WRITE_ERROR = "FILE_WRITE_ERROR"
BACKUP_ERROR = "BACKUP_ERROR"
RESTORE_ERROR = "RESTORE_ERROR"
PATH_RESOLUTION_ERROR = "PATH_RESOLUTION_ERROR"
PARSING_ERROR = "PARSING_ERROR"


class TaskGraphError(Exception):
    """Base class for all engine errors."""

    default_code = "UNKNOWN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.details is not None:
            data["details"] = self.details
        return data


class NotFoundError(TaskGraphError):
    """A referenced task, subtask or dependency target does not exist."""

    default_code = NOT_FOUND


class ValidationError(TaskGraphError, ValueError):
    """Illegal transition, would-be cycle, or malformed entity fields."""

    default_code = INVALID_ARGUMENT


class PersistenceError(TaskGraphError):
    """Backup or write failure at the filesystem boundary."""

    default_code = FILE_WRITE_ERROR


class ParseError(TaskGraphError):
    """Malformed on-disk content."""

    default_code = PARSING_ERROR
