from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.errors import NotFoundError
from app.identity.api import router as users_router
from app.metrics import generate_metrics_payload, metrics_content_type
from app.notifications.api import router as notifications_router
from app.platform.security import ROLE_SUPERADMIN, AuthorizationError
from app.tracker.api import router as entries_router

router = APIRouter()
for resource_router in (entries_router, users_router, notifications_router):
    router.include_router(resource_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {"status": "ok", "service": settings.app_name, "environment": settings.app_env}


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    """Prometheus exposition, superadmins only. Answers 404 while metrics are switched off."""

    if not get_settings().metrics_enabled:
        raise NotFoundError("not found")
    if user.role != ROLE_SUPERADMIN:
        raise AuthorizationError("Metrics are restricted to superadmins", operation="metrics")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
