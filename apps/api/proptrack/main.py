from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from proptrack.api.errors import register_exception_handlers
from proptrack.api.routes import router as api_router
from proptrack.core.config import get_settings
from proptrack.core.events import InternalEvent, event_bus
from proptrack.logging import configure_logging
from proptrack.middleware.correlation_id import CorrelationIdMiddleware
from proptrack.middleware.request_logging import RequestLoggingMiddleware
from proptrack.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("proptrack.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info(event.name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "proptrack-api"})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel("proptrack-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
