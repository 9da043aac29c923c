"""Application error types rendered into the JSON response envelope."""

from __future__ import annotations

from typing import Mapping, Optional, Sequence


class AppError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        errors: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.errors = {field: list(messages) for field, messages in (errors or {}).items()}
        super().__init__(self.message)


class ValidationError(AppError):
    """Field-level validation failure."""

    status_code = 422
    default_message = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(errors={field: [message]})


class ConflictError(ValidationError):
    """A booking collides with an existing reservation for the same callsign."""

    def __init__(self, message: str = "This callsign already has a booking during this time period") -> None:
        super().__init__(errors={"booking": [message]})


class BadRequestError(AppError):
    status_code = 400
    default_message = "Bad request"


class AuthenticationError(AppError):
    """Missing or invalid credential.

    ``clear_cookies`` lists cookie names the response should expire, used when
    a stored credential turns out to be stale.
    """

    status_code = 401
    default_message = "Unauthorized"

    def __init__(self, message: Optional[str] = None, *, clear_cookies: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.clear_cookies = tuple(clear_cookies)


class AuthorizationError(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class UpstreamError(AppError):
    """An external provider (VATSIM OAuth or Core API) failed.

    Only the sanitized ``message`` reaches the client; raw upstream bodies are
    logged where the failure is detected.
    """

    status_code = 500
    default_message = "Upstream service error"
