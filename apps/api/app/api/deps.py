from __future__ import annotations

import uuid

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.context import get_correlation_id
from app.core.auth import ANONYMOUS, AuthUser, get_current_user as get_auth_user
from app.core.errors import AuthenticationRequired, DependencyFailure, TrackerError, error_envelope
from app.notifications.dispatcher import NotificationDispatcher, dispatcher
from app.platform.security import ROLE_OTHERS, VALID_ROLES, ActorContext


def _request_correlation_id(request: Request) -> str | None:
    return get_correlation_id() or getattr(request.state, "correlation_id", None)


def tracker_error_response(request: Request, exc: TrackerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_envelope(exc, _request_correlation_id(request)))


def storage_error_response(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    return tracker_error_response(request, DependencyFailure("Storage is unavailable"))


def get_actor(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorContext:
    if auth_user is ANONYMOUS:
        raise AuthenticationRequired("Authentication required")
    try:
        user_id = uuid.UUID(auth_user.sub)
    except ValueError as exc:
        raise AuthenticationRequired("Invalid token subject") from exc

    return ActorContext(
        user_id=user_id,
        role=auth_user.role if auth_user.role in VALID_ROLES else ROLE_OTHERS,
        username=auth_user.username,
        correlation_id=_request_correlation_id(request),
    )


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher
