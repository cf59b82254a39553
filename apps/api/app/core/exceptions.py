"""Error taxonomy for the newsletter API.

Each error carries the HTTP status, a machine-readable ``error`` code and a
human-readable ``message``; ``app.main`` renders them as JSON.
"""

from typing import Any


class NewsletterError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    error: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        *,
        error: str | None = None,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        if message is not None:
            self.message = message
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers or {}
        self.extra = extra or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "error": self.error, **self.extra}


class ValidationError(NewsletterError):
    status_code = 400
    error = "VALIDATION_ERROR"
    message = "Invalid request data"


class RateLimitError(NewsletterError):
    status_code = 429
    error = "RATE_LIMITED"
    message = "Too many requests. Please try again later."


class AuthError(NewsletterError):
    status_code = 401
    error = "UNAUTHORIZED"
    message = "Unauthorized"


class NotFoundError(NewsletterError):
    status_code = 404
    error = "NOT_FOUND"
    message = "Not found"


class DependencyError(NewsletterError):
    status_code = 503
    error = "DATABASE_ERROR"
    message = "Database service temporarily unavailable. Please try again later."


class RequestTimeoutError(NewsletterError):
    status_code = 408
    error = "TIMEOUT_ERROR"
    message = "Request timeout. Please try again."
