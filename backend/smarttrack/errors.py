"""Typed errors raised by the catalog, registry, trip engine and matcher.

Every error carries the HTTP status it maps to; ``main`` installs a single
exception handler that turns them into JSON responses.
"""
from fastapi import status


class TransitError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TransitError):
    """Malformed input, e.g. a blank required field."""
    status_code = status.HTTP_400_BAD_REQUEST


class PreconditionError(TransitError):
    """Entity is not in the state the operation requires."""
    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(TransitError):
    """Transition attempted from a terminal state."""
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(TransitError):
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateError(TransitError):
    status_code = status.HTTP_409_CONFLICT


class ForbiddenError(TransitError):
    """Authenticated driver does not own the entity."""
    status_code = status.HTTP_403_FORBIDDEN


class ConnectivityError(TransitError):
    """Backing store unreachable or refused the operation."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
