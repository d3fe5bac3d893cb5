import logging
from contextlib import asynccontextmanager, contextmanager

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import storage_error_response, tracker_error_response
from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.context import RequestContextMiddleware
from app.core.database import get_db
from app.core.errors import TrackerError
from app.core.events import DomainEvent, event_bus
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.rate_limit import MutationRateLimitMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.notifications.channel import manager
from app.notifications.dispatcher import dispatcher
from app.notifications.service import notification_service
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")


def _log_lifecycle(event: DomainEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


for _lifecycle_event in ("system.started", "system.stopped"):
    event_bus.subscribe(_lifecycle_event, _log_lifecycle)


@contextmanager
def _notification_session():
    """Open a session the same way request handlers get one, honouring dependency overrides."""

    sessions = app.dependency_overrides.get(get_db, get_db)()
    try:
        yield next(sessions)
    finally:
        sessions.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.publish("system.started", {"service": "api"})
    yield
    event_bus.publish("system.stopped", {"service": "api"})


notification_service.set_channel(manager)
dispatcher.set_session_factory(_notification_session)

app = FastAPI(title="SalesTrack API", version="0.1.0", lifespan=lifespan)
# the last middleware added is the outermost
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)
app.add_exception_handler(TrackerError, tracker_error_response)  # type: ignore[arg-type]
app.add_exception_handler(SQLAlchemyError, storage_error_response)  # type: ignore[arg-type]

if get_settings().otel_enabled:
    setup_otel("salestrack-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
