# firewatch/transport/http_app.py
"""
HTTP command/query surface for incidents and evacuation alerts.

Route groups:
1. Operational: /, /health, /ready, /metrics
2. Incidents:   /api/fires (GeoJSON out, JSON attributes in)
3. Alerts:      /api/notifications
4. WhatsApp session management: /api/whatsapp/*

Route handlers stay thin: domain errors are raised as ``FirewatchError``
subtypes and mapped to ``{"error": ..., "field"?: ...}`` by one handler.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, Any, Optional

from fastapi import FastAPI, Request, Depends, Path
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from firewatch.config import settings
from firewatch.core.errors import (
    ChannelConfigError,
    FirewatchError,
    NotFoundError,
    ValidationError,
    from_pydantic,
)
from firewatch.core.incidents.geo import incident_to_feature, incidents_to_feature_collection
from firewatch.core.incidents.service import IncidentService
from firewatch.core.notify.dispatcher import NotificationDispatcher
from firewatch.core.notify.models import NotificationRequest
from firewatch.infra.db_async import close_pool, init_pool
from firewatch.infra.health_checks_async import (
    AsyncChannelsHealthCheck,
    AsyncDatabaseHealthCheck,
    AsyncHealthChecker,
)
from firewatch.infra.http_client import close_all_sessions
from firewatch.infra.logging_config import setup_logging, get_logger
from firewatch.infra.metrics import get_metrics_collector
from firewatch.infra.notification_channels import build_channels
from firewatch.infra.pg_incident_repo_async import AsyncPostgresIncidentRepository
from firewatch.infra.schema_validator import validate_schema_version
from firewatch.infra.whatsapp_session import WhatsAppSessionManager
from firewatch.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_service(request: Request) -> IncidentService:
    return request.app.state.incidents


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def get_whatsapp(request: Request) -> WhatsAppSessionManager:
    return request.app.state.whatsapp


def get_health_checker(request: Request) -> AsyncHealthChecker:
    return request.app.state.health_checker


async def _json_body(request: Request, *, required: bool = True) -> dict[str, Any]:
    """Parse a JSON object body; an empty body is ``{}`` when not required."""
    raw = await request.body()
    if not raw.strip():
        if required:
            raise ValidationError("Request body is required")
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    logger.info(f"Starting application: env={settings.app_env}")

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

    await init_pool()
    logger.info("Database pool initialized")

    # Validate schema version (does NOT run migrations)
    try:
        schema_result = await validate_schema_version()
        logger.info(f"Schema validated: {schema_result['current_version']}")
    except Exception:
        logger.critical(
            "Schema validation failed. Run migrations first: python -m firewatch.infra.migrate",
            exc_info=True
        )
        await close_pool()
        raise

    whatsapp = WhatsAppSessionManager.from_settings(settings)
    channels = build_channels(settings, whatsapp)

    fastapi_app.state.incidents = IncidentService(AsyncPostgresIncidentRepository())
    fastapi_app.state.whatsapp = whatsapp
    fastapi_app.state.dispatcher = NotificationDispatcher(
        channels, map_link_base_url=settings.map_link_base_url,
    )
    fastapi_app.state.health_checker = AsyncHealthChecker([
        AsyncDatabaseHealthCheck(),
        AsyncChannelsHealthCheck(channels),
    ])

    if whatsapp.is_configured and settings.whatsapp_auto_init:
        try:
            await whatsapp.init()
        except FirewatchError as exc:
            # Alerts still go out through the other channels; /api/whatsapp/init retries later.
            logger.error(f"WhatsApp session init failed: {exc.detail}")

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")
    await whatsapp.shutdown()
    await close_all_sessions()
    await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Firewatch",
    description="Wildfire incident tracking and evacuation alert dispatch",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(FirewatchError)
async def firewatch_error_handler(request: Request, exc: FirewatchError):
    """Map domain errors to their HTTP status"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    content: dict[str, Any] = {"error": exc.detail}
    field = getattr(exc, "field", None)
    if field:
        content["field"] = field
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed path/query parameters are caller errors (400)"""
    err = exc.errors()[0] if exc.errors() else {}
    loc = [str(p) for p in err.get("loc", ()) if p not in ("path", "query", "body")]
    field = loc[0] if loc else None
    content: dict[str, Any] = {"error": f"Invalid {field}: {err.get('msg')}" if field else "Invalid request"}
    if field:
        content["field"] = field
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


# ============================================================================
# OPERATIONAL ENDPOINTS
# ============================================================================

@app.get("/")
def root():
    """Service info and endpoint index"""
    return {
        "service": "firewatch",
        "version": app.version,
        "endpoints": {
            "incidents": "/api/fires",
            "incident": "/api/fires/{id}",
            "notifications": "/api/notifications",
            "notification_channels": "/api/notifications/channels",
            "whatsapp_status": "/api/whatsapp/status",
            "whatsapp_qr": "/api/whatsapp/qr",
            "whatsapp_init": "/api/whatsapp/init",
            "whatsapp_channels": "/api/whatsapp/channels",
            "health": "/health",
            "ready": "/ready",
        },
    }


@app.get("/health")
def health():
    """Liveness: the process is up and serving."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness(checker: AsyncHealthChecker = Depends(get_health_checker)):
    """Readiness: critical checks only"""
    result = await checker.run_checks(include_non_critical=False)
    if result["status"] == "unhealthy":
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    return {"status": "healthy"}


@app.get("/metrics")
def metrics():
    """In-process metrics snapshot"""
    if not settings.enable_metrics:
        raise NotFoundError("Metrics disabled")
    return get_metrics_collector().get_metrics()


# ============================================================================
# INCIDENTS
# ============================================================================

# Ids are BIGSERIAL; larger values never reach the database
IncidentId = Annotated[int, Path(le=2**63 - 1)]


@app.get("/api/fires")
async def list_fires(
    status: Optional[str] = None,
    service: IncidentService = Depends(get_service),
):
    incidents = await service.list(status)
    collection = incidents_to_feature_collection(incidents)
    collection["count"] = len(incidents)
    return collection


@app.get("/api/fires/{incident_id}")
async def get_fire(incident_id: IncidentId, service: IncidentService = Depends(get_service)):
    return incident_to_feature(await service.get(incident_id))


@app.post("/api/fires", status_code=201)
async def create_fire(request: Request, service: IncidentService = Depends(get_service)):
    body = await _json_body(request)
    incident = await service.create(body)
    return incident_to_feature(incident)


@app.patch("/api/fires/{incident_id}")
async def update_fire(
    incident_id: IncidentId,
    request: Request,
    service: IncidentService = Depends(get_service),
):
    body = await _json_body(request)
    incident = await service.update(incident_id, body)
    return incident_to_feature(incident)


@app.delete("/api/fires/{incident_id}")
async def delete_fire(incident_id: IncidentId, service: IncidentService = Depends(get_service)):
    await service.delete(incident_id)
    return {"deleted": incident_id}


@app.delete("/api/fires")
async def delete_all_fires(service: IncidentService = Depends(get_service)):
    return {"deleted": await service.delete_all()}


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@app.post("/api/notifications")
async def send_notification(
    request: Request,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Fan an alert out to every configured channel.

    200 when at least one channel delivered, 502 when every configured
    channel failed, 503 when no channel is configured.  The body always
    carries the per-channel results and errors.
    """
    body = await _json_body(request)
    try:
        alert = NotificationRequest.model_validate(body)
    except PydanticValidationError as exc:
        raise from_pydantic(exc)

    result = await dispatcher.dispatch(alert)

    if result.success:
        status_code = 200
    elif result.attempted == 0:
        status_code = 503
    else:
        status_code = 502
    return JSONResponse(status_code=status_code, content=result.to_dict())


@app.get("/api/notifications/channels")
def notification_channels(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    whatsapp: WhatsAppSessionManager = Depends(get_whatsapp),
):
    return {
        "channels": [
            {"name": ch.name, "configured": ch.is_configured()}
            for ch in dispatcher.channels
        ],
        "whatsapp": whatsapp.status(),
    }


# ============================================================================
# WHATSAPP SESSION
# ============================================================================

def _configured(whatsapp: WhatsAppSessionManager) -> WhatsAppSessionManager:
    if not whatsapp.is_configured:
        raise ChannelConfigError("WhatsApp bridge is not configured", channel="whatsapp")
    return whatsapp


@app.get("/api/whatsapp/status")
def whatsapp_status(whatsapp: WhatsAppSessionManager = Depends(get_whatsapp)):
    return _configured(whatsapp).status()


@app.get("/api/whatsapp/qr")
def whatsapp_qr(whatsapp: WhatsAppSessionManager = Depends(get_whatsapp)):
    code = _configured(whatsapp).pairing_code
    if not code:
        raise NotFoundError("No pairing code available")
    return {"qrCode": code, "state": whatsapp.state.value}


@app.post("/api/whatsapp/init")
async def whatsapp_init(request: Request, whatsapp: WhatsAppSessionManager = Depends(get_whatsapp)):
    body = await _json_body(request, required=False)
    return await whatsapp.init(
        group_name=body.get("group_name") or body.get("groupName"),
        channel=body.get("channel"),
    )


@app.get("/api/whatsapp/channels")
async def whatsapp_channels(whatsapp: WhatsAppSessionManager = Depends(get_whatsapp)):
    channels = await whatsapp.list_channels()
    return {"channels": [c.to_dict() for c in channels], "count": len(channels)}


@app.post("/api/whatsapp/channel")
async def whatsapp_select_channel(
    request: Request,
    whatsapp: WhatsAppSessionManager = Depends(get_whatsapp),
):
    body = await _json_body(request)
    name_or_id = body.get("channel")
    if not name_or_id or not isinstance(name_or_id, str):
        raise ValidationError("channel is required", field="channel")

    await whatsapp.list_channels(refresh=False)  # READY check
    selected = whatsapp.select_channel(name_or_id)
    if selected is None:
        raise NotFoundError(f"Channel {name_or_id!r} not found or not visible to this session")
    return {"selectedChannel": selected.to_dict()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "firewatch.transport.http_app:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # Middleware logs requests in prod
        server_header=False,
        date_header=False,
    )
