from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import SQLAlchemyError

from zonecrm.api.errors import authentication_required_handler, authorization_denied_handler
from zonecrm.api.routes import router as api_router
from zonecrm.authz.capabilities import validate_capability_registry
from zonecrm.authz.errors import AuthorizationDenied
from zonecrm.container import build_services
from zonecrm.core.auth import AuthenticationRequired
from zonecrm.core.config import get_settings
from zonecrm.core.database import SessionLocal
from zonecrm.logging import configure_logging
from zonecrm.middleware.correlation_id import CorrelationIdMiddleware
from zonecrm.middleware.request_logging import RequestLoggingMiddleware
from zonecrm.otel import get_fastapi_server_request_hook, setup_otel


configure_logging(get_settings().log_level)
logger = logging.getLogger("zonecrm.lifecycle")


def _check_capability_registry() -> None:
    try:
        with SessionLocal() as session:
            unregistered = validate_capability_registry(session)
    except SQLAlchemyError as exc:
        logger.error("capability_registry.check_skipped", exc_info=True, extra={"error": str(exc)})
        return
    if unregistered:
        logger.warning(
            "capability_registry.unregistered_codes",
            extra={"capability": sorted(unregistered)},
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(SessionLocal, settings)
    if settings.capability_registry_check:
        _check_capability_registry()
    logger.info(
        "system.started",
        extra={"zone_access_mode": settings.zone_access_mode, "audit_dispatch": settings.audit_activity_dispatch},
    )
    yield


app = FastAPI(title="ZoneCRM API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_exception_handler(AuthorizationDenied, authorization_denied_handler)
app.add_exception_handler(AuthenticationRequired, authentication_required_handler)
app.include_router(api_router)

setup_otel(get_settings())

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
