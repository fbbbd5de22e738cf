"""Error taxonomy shared by services and API routes.

Services raise these; the handlers registered in ``main.py`` turn them into
``ErrorResponse`` bodies with the matching HTTP status.
"""

from typing import Any

from fastapi import status


class DelphiError(Exception):
    """Base exception for domain operations."""

    code = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class Unauthenticated(DelphiError):
    """Missing or invalid credential."""

    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class Unauthorized(DelphiError):
    """Authenticated but not allowed to perform the operation."""

    code = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidArgument(DelphiError):
    """Malformed or missing request fields."""

    code = "invalid_argument"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(DelphiError):
    """Referenced record does not exist."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(DelphiError):
    """State precondition violated."""

    code = "failed_precondition"
    status_code = status.HTTP_409_CONFLICT


class RateLimited(DelphiError):
    """Too many requests in the current window."""

    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class ServiceUnavailable(DelphiError):
    """A dependent external service is unconfigured or failing."""

    code = "unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class Internal(DelphiError):
    """Unexpected failure."""

    code = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
