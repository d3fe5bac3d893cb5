from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.auth import resolve_actor
from app.core.config import get_settings
from app.core.errors import RateLimited, error_envelope

WINDOW_SECONDS = 60
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class MutationLimiter:
    """Per-user token buckets, one per resource (``entries``, ``users``, ``notifications``)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _Bucket] = {}

    def take(self, user_id: str, resource: str, per_minute: int) -> int:
        """Consume one token; returns 0 when allowed, otherwise the seconds to wait."""

        if per_minute <= 0:
            return WINDOW_SECONDS

        now = time.monotonic()
        rate = per_minute / float(WINDOW_SECONDS)
        with self._lock:
            bucket = self._buckets.setdefault((user_id, resource), _Bucket(tokens=float(per_minute), updated_at=now))
            bucket.tokens = min(float(per_minute), bucket.tokens + max(0.0, now - bucket.updated_at) * rate)
            bucket.updated_at = now
            if bucket.tokens < 1.0:
                return max(1, math.ceil((1.0 - bucket.tokens) / rate))
            bucket.tokens -= 1.0
            return 0

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = MutationLimiter()


def _resource(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    return parts[1] if len(parts) > 1 else "api"


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if (
            settings.rate_limit_disabled
            or request.method.upper() not in MUTATING_METHODS
            or not request.url.path.startswith("/api/")
        ):
            return await call_next(request)

        retry_after = _limiter.take(
            resolve_actor(request).sub,
            _resource(request.url.path),
            settings.rate_limit_mutations_per_minute,
        )
        if not retry_after:
            return await call_next(request)

        correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None) or str(uuid.uuid4())
        exc = RateLimited(retry_after)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc, correlation_id),
            headers={"Retry-After": str(retry_after), "X-Correlation-Id": correlation_id},
        )


def reset_rate_limiter() -> None:
    _limiter.clear()
