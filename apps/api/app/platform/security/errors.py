from __future__ import annotations

from app.core.errors import TrackerError


class AuthorizationError(TrackerError):
    """Raised when the actor's visibility scope does not cover the target."""

    status_code = 403
    code = "forbidden"

    def __init__(self, message: str, *, operation: str | None = None, details=None) -> None:  # type: ignore[no-untyped-def]
        super().__init__(message, details=details)
        self.operation = operation
