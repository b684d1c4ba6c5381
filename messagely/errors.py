"""
Error kinds reported by the Messagely core.

Each error carries the HTTP status the API layer answers with, so route
handlers can let them propagate and a single exception handler renders them.
"""

from fastapi import status


class MessagelyError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(MessagelyError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class UnauthorizedError(MessagelyError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class NotFoundError(MessagelyError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(MessagelyError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class DuplicateKeyError(ConflictError):
    """Raised by the storage layer when a unique constraint rejects an insert."""

    default_message = "Duplicate key"


class InternalError(MessagelyError):
    pass
