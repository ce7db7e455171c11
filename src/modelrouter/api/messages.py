"""Anthropic-compatible POST /v1/messages endpoint.

Validates the minimal request contract, hands the body to the gateway
pipeline, and renders gateway errors in the Anthropic error envelope with the
appropriate HTTP status code.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict

from modelrouter.gateway import GatewayState, RequestContext
from modelrouter.providers.errors import (
    AuthError,
    BackendInvocationError,
    ConfigurationError,
    GatewayError,
    InvalidRequestError,
    ProviderUnavailableError,
    RateLimitError,
    TimeoutError,
    TransformError,
)

router = APIRouter(prefix="/v1", tags=["messages"])

_log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# HTTP status and Anthropic error type for each gateway error
# ---------------------------------------------------------------------------
_ERROR_STATUS: dict[type[GatewayError], tuple[int, str]] = {
    TransformError: (400, "invalid_request_error"),
    ConfigurationError: (500, "api_error"),
    RateLimitError: (429, "rate_limit_error"),
    AuthError: (401, "authentication_error"),
    TimeoutError: (504, "timeout_error"),
    InvalidRequestError: (400, "invalid_request_error"),
    ProviderUnavailableError: (502, "api_error"),
    BackendInvocationError: (502, "api_error"),
}


# ---------------------------------------------------------------------------
# Request model (Anthropic wire format)
# ---------------------------------------------------------------------------


class MessagesRequest(BaseModel):
    """Minimal Anthropic Messages request; unknown fields are kept verbatim."""

    model_config = ConfigDict(extra="allow")

    model: str
    messages: list[dict[str, Any]]
    stream: bool = False


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def get_gateway(request: Request) -> GatewayState:
    """Return the shared :class:`GatewayState` from ``app.state``."""
    gateway: GatewayState | None = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Gateway not initialised")
    return gateway


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/messages", response_model=None)
async def create_message(
    body: MessagesRequest,
    gateway: GatewayState = Depends(get_gateway),
) -> Response:
    """Create a message through the configured backend providers.

    Returns:
        A ``text/event-stream`` response when ``body.stream`` is ``True``,
        otherwise a JSON Anthropic message.  Gateway errors become an
        Anthropic error object with a matching status code.
    """
    ctx = RequestContext.create(body.model_dump())
    await gateway.pipeline.run(ctx)

    if ctx.response is not None:
        return ctx.response
    if ctx.error is None:
        # Every stage either sets a response or raises.
        raise RuntimeError("pipeline finished without a response")
    return error_response(ctx.error, request_id=ctx.request_id)


@router.post("/messages/count_tokens")
async def count_tokens(
    body: MessagesRequest,
    gateway: GatewayState = Depends(get_gateway),
) -> JSONResponse:
    """Estimate the prompt size with the same counter the router uses."""
    tokens = gateway.classifier.estimate_tokens(body.model_dump())
    return JSONResponse(content={"input_tokens": tokens})


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------


def error_response(exc: GatewayError, request_id: str | None = None) -> JSONResponse:
    status_code, error_type = _status_for(exc)
    headers: dict[str, str] = {}
    if request_id:
        headers["X-Request-ID"] = request_id
    if exc.provider:
        headers["X-Provider"] = exc.provider
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(
        status_code=status_code,
        content={"type": "error", "error": {"type": error_type, "message": exc.message}},
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures in the Anthropic error envelope."""
    message = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    _log.warning("request_validation_failed", path=request.url.path, error=message)
    return JSONResponse(
        status_code=400,
        content={"type": "error", "error": {"type": "invalid_request_error", "message": message}},
    )


def _status_for(exc: GatewayError) -> tuple[int, str]:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return 500, "api_error"
