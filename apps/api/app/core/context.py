from __future__ import annotations

from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.core.auth import ANONYMOUS, AuthUser, bearer_token, decode_token


@dataclass
class RequestContext:
    correlation_id: str
    actor: AuthUser

    @property
    def user_id(self) -> str | None:
        return None if self.actor is ANONYMOUS else self.actor.sub


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Decode the bearer token once per request; later layers read the actor from ``request.state.context``."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None) or ""
        request.state.context = RequestContext(
            correlation_id=correlation_id,
            actor=decode_token(bearer_token(request)),
        )
        response = await call_next(request)
        response.headers["x-request-id"] = correlation_id
        return response

