from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from modelrouter.config import settings
from modelrouter.providers import DEFAULT_PROVIDER

router = APIRouter(prefix="/health", tags=["health"])
log = structlog.get_logger()


@router.get("")
async def health() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": settings.app_version,
        }
    )


@router.get("/live")
async def liveness() -> JSONResponse:
    """Liveness probe: always returns 200 if the process is running."""
    return JSONResponse(content={"status": "alive"})


@router.get("/ready")
async def readiness(request: Request) -> JSONResponse:
    """Readiness probe: the gateway is built and has a default provider."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "errors": {"gateway": "not initialised"}},
        )

    if DEFAULT_PROVIDER not in gateway.registry:
        log.warning("readiness_no_default_provider", providers=gateway.registry.names())
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "errors": {"providers": "no default provider"}},
        )

    return JSONResponse(
        content={
            "status": "ready",
            "providers": gateway.registry.names(),
            "routing": "rules" if gateway.rules else "default",
        }
    )
