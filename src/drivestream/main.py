"""
DriveStream ingestion service (FastAPI)

POST /v1/telemetry: validate a snapshot, forward it to the raw telemetry
stream, and publish violations when the car's state changed.
"""

import logging
import sys
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api_models import ErrorResponseV1, HealthResponseV1, TelemetryAckV1, TelemetryReportV1
from .clock import utc_now
from .config import Settings, load_settings
from .errors import (
    ConfigurationError,
    DriveStreamError,
    InvalidArgumentError,
    UnauthenticatedError,
)
from .ingestion import TelemetryIngestionService
from .nats_client import DriveStreamNATSClient, stream_specs
from .publisher import EventPublisher
from .state_cache import JetStreamStateCache
from .validation import TelemetryValidator, require_car_id
from .violations import ViolationEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

TELEMETRY_PATH = "/v1/telemetry"

STATUS_BY_CODE = {
    InvalidArgumentError.code: 400,
    UnauthenticatedError.code: 401,
}


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging once per process"""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout)


app = FastAPI(
    title="DriveStream Telemetry Ingestion API",
    description="Vehicle telemetry ingestion with change detection and violation events",
    version="1.0.0",
)

# Global components (initialized on startup, or injected by tests)
settings: Optional[Settings] = None
nats_client: Optional[DriveStreamNATSClient] = None
ingestion_service: Optional[TelemetryIngestionService] = None


def initialize_components(service: TelemetryIngestionService,
                          client: Optional[DriveStreamNATSClient] = None) -> None:
    """Install the ingestion service used by the request handlers"""
    global ingestion_service, nats_client
    ingestion_service = service
    nats_client = client
    logger.info("Ingestion components initialized")


def reset_components() -> None:
    global ingestion_service, nats_client, settings
    ingestion_service = None
    nats_client = None
    settings = None


async def build_ingestion_service(cfg: Settings) -> TelemetryIngestionService:
    """Connect to NATS and wire the ingestion pipeline; fails fast on any unreachable dependency"""
    client = DriveStreamNATSClient(cfg.nats)
    if not await client.connect():
        raise ConfigurationError(f"cannot reach NATS at {cfg.nats.url}")
    await client.ensure_streams(stream_specs(cfg))

    publisher = await EventPublisher(client, cfg.topics).start()
    cache = await JetStreamStateCache.open(
        client,
        cfg.cache.ingestion_bucket,
        ttl_seconds=cfg.cache.ingestion_ttl_seconds,
        key_prefix=cfg.cache.key_prefix,
    )
    service = TelemetryIngestionService(
        publisher=publisher,
        cache=cache,
        engine=ViolationEngine(cfg.thresholds),
        validator=TelemetryValidator(),
    )
    initialize_components(service, client)
    return service


@app.on_event("startup")
async def startup_event():
    """Initialize components on startup"""
    global settings
    if ingestion_service is not None:
        logger.info("Ingestion service already initialized, skipping NATS wiring")
        return
    logger.info("Starting DriveStream ingestion service")
    settings = load_settings()
    await build_ingestion_service(settings)
    logger.info("DriveStream ingestion service started successfully")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    if nats_client:
        await nats_client.disconnect()
    logger.info("DriveStream ingestion service stopped")


def _trace_id(request: Request) -> Optional[str]:
    return request.headers.get("x-trace-id")


def _error_response(status_code: int, error: ErrorResponseV1) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump(exclude_none=True))


@app.exception_handler(DriveStreamError)
async def pipeline_error_handler(request: Request, exc: DriveStreamError):
    status_code = STATUS_BY_CODE.get(exc.code, 500)
    if status_code == 500:
        logger.error(f"Telemetry processing failed [{exc.code}]: {exc}")
        message = "can't put telemetry"
    else:
        message = exc.message
    details = exc.field_errors if isinstance(exc, InvalidArgumentError) else None
    return _error_response(status_code, ErrorResponseV1(
        code="INTERNAL" if status_code == 500 else exc.code,
        message=message,
        details=details or None,
        trace_id=_trace_id(request),
    ))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.setdefault(".".join(location) or "body", []).append(error.get("msg", "invalid"))
    logger.info(f"Rejected malformed telemetry payload: {sorted(details)}")
    return _error_response(400, ErrorResponseV1(
        code=InvalidArgumentError.code,
        message="invalid telemetry payload",
        details=details,
        trace_id=_trace_id(request),
    ))


@app.middleware("http")
async def require_car_identity(request: Request, call_next):
    """Reject telemetry without an identity before the body is read"""
    if request.method == "POST" and request.url.path == TELEMETRY_PATH:
        if not (request.headers.get("x-car-id") or "").strip():
            error = UnauthenticatedError("car_id required in request context")
            logger.info("Rejected telemetry without car identity")
            return _error_response(401, ErrorResponseV1(
                code=error.code,
                message=error.message,
                trace_id=_trace_id(request),
            ))
    return await call_next(request)


async def car_identity(x_car_id: Optional[str] = Header(default=None)) -> str:
    """Identity injected by the authenticating gateway"""
    return require_car_id(x_car_id)


def get_ingestion_service() -> TelemetryIngestionService:
    if ingestion_service is None:
        raise HTTPException(status_code=503, detail="Ingestion service not initialized")
    return ingestion_service


@app.get("/health", response_model=HealthResponseV1)
async def health_check():
    """Health check endpoint"""
    return HealthResponseV1(status="healthy", service="DriveStream ingestion")


@app.get("/health/liveness", response_model=HealthResponseV1)
async def liveness():
    return HealthResponseV1(status="alive", service="DriveStream ingestion")


@app.get("/health/readiness", response_model=HealthResponseV1)
async def readiness():
    checks = {
        "ingestion_service": ingestion_service is not None,
        "nats_connected": bool(nats_client and nats_client.connected),
    }
    if ingestion_service is None or (nats_client is not None and not nats_client.connected):
        return JSONResponse(
            status_code=503,
            content=HealthResponseV1(status="not_ready", service="DriveStream ingestion", checks=checks).model_dump(),
        )
    return HealthResponseV1(status="ready", service="DriveStream ingestion", checks=checks)


@app.post(TELEMETRY_PATH, response_model=TelemetryAckV1, status_code=202)
async def put_telemetry(
    report: TelemetryReportV1,
    car_id: str = Depends(car_identity),
    x_trace_id: Optional[str] = Header(default=None),
    service: TelemetryIngestionService = Depends(get_ingestion_service),
):
    """Ingest one telemetry snapshot for the authenticated car"""
    trace_id = x_trace_id or uuid.uuid4().hex
    received_at = utc_now()
    snapshot = report.to_snapshot(car_id, received_at)

    outcome = await service.process(car_id, snapshot, trace_id=trace_id)

    return TelemetryAckV1(
        message="telemetry processed successfully",
        car_id=car_id,
        trace_id=trace_id,
        changed=outcome.changed,
        violations_published=outcome.violations_published,
        violations_failed=outcome.violations_failed,
        processed_at=utc_now(),
    )


if __name__ == "__main__":
    import uvicorn
    cfg = load_settings()
    configure_logging(cfg.app.log_level)
    uvicorn.run(app, host=cfg.app.http_host, port=cfg.app.http_port)
