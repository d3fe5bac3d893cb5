from __future__ import annotations

from typing import Any


class TrackerError(Exception):
    """Base class for errors that cross the service boundary."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: Any = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code


class ValidationFailure(TrackerError):
    """Malformed or missing input. Raised before anything is persisted."""

    status_code = 422
    code = "validation_failed"


class NotFoundError(TrackerError):
    status_code = 404
    code = "not_found"


class DependencyFailure(TrackerError):
    """Storage or another collaborator was unavailable during a primary write."""

    status_code = 503
    code = "dependency_unavailable"


class AuthenticationRequired(TrackerError):
    status_code = 401
    code = "authentication_required"


class RateLimited(TrackerError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int) -> None:
        super().__init__("Too many requests")
        self.retry_after = retry_after


def error_envelope(exc: TrackerError, correlation_id: str | None) -> dict[str, Any]:
    return {
        "code": exc.code,
        "message": exc.message,
        "details": exc.details,
        "correlation_id": correlation_id,
    }
