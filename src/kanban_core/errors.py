"""Typed domain errors.

Errors are raised close to the data and carry the HTTP status the API layer
should answer with. Only ``kanban_core.api.errors`` turns them into responses.
"""
from typing import Any, Optional


class KanbanError(Exception):
    """Base class for every error the engine raises on purpose."""

    status_code: int = 500

    def __init__(self, message: str, extra: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}


class ValidationError(KanbanError):
    """Malformed or semantically invalid input."""

    status_code = 400


class StatusReasonRequiredError(ValidationError):
    """An agent attempted a non-standard status transition without a reason."""

    def __init__(self, message: str = "Reason is required for non-standard status transitions"):
        super().__init__(message)


class HierarchyError(ValidationError):
    """A parent assignment would break the ticket tree."""


class AuthenticationError(KanbanError):
    status_code = 401


class AuthorizationError(KanbanError):
    status_code = 403


class NotFoundError(KanbanError):
    """Missing resource, or one the caller is not allowed to know exists."""

    status_code = 404


class ConflictError(KanbanError):
    """A guarded write lost against the current state of the row."""

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        extra = {"currentStatus": current_status} if current_status is not None else None
        super().__init__(message, extra)
        self.current_status = current_status


class InternalError(KanbanError):
    status_code = 500


INTERNAL_ERROR_MESSAGE = "Internal server error"

# Substrings that reveal storage or infrastructure internals
LEAKY_PATTERNS = (
    "[SQL:",
    "sqlalchemy",
    "psycopg",
    "sqlite3",
    "(Background on this error",
    "Request ID",
    "Traceback",
    'File "',
)


def sanitize_server_error(message: Optional[str]) -> str:
    """Return ``message`` unless it is empty or leaks internals."""
    if not message or not message.strip():
        return INTERNAL_ERROR_MESSAGE
    lowered = message.lower()
    if any(pattern.lower() in lowered for pattern in LEAKY_PATTERNS):
        return INTERNAL_ERROR_MESSAGE
    return message
