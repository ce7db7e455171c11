"""Per-request stage pipeline.

Every request runs the same six stages in the same order::

    attach_config → rewrite_body → route → format → invoke → adapt

Each stage is ``async (ctx, call_next)`` and either awaits ``call_next()``
or raises a :class:`~modelrouter.providers.errors.GatewayError`.  The
``route`` slot holds either the rule-based router or, when the routing rules
are incomplete, a stage that assigns the static default.
"""

import copy
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any

import structlog
from fastapi.responses import JSONResponse, StreamingResponse
from opentelemetry import trace
from opentelemetry.trace import StatusCode
from prometheus_client import Counter

from modelrouter.gateway.context import RequestContext
from modelrouter.gateway.router import Route, default_route, resolve_route
from modelrouter.gateway.stream_adapter import (
    adapt_completion,
    adapt_stream,
    build_message,
    close_backend_stream,
    stream_sse,
)
from modelrouter.gateway.transformer import transform
from modelrouter.providers import invoke
from modelrouter.providers.errors import GatewayError, TransformError

if TYPE_CHECKING:
    from modelrouter.gateway.state import GatewayState

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

REQUESTS = Counter(
    "modelrouter_requests_total",
    "Requests routed, by category and provider",
    ["category", "provider"],
)
ERRORS = Counter(
    "modelrouter_errors_total",
    "Requests that ended in a gateway error, by error type",
    ["error_type"],
)

NextStage = Callable[[], Awaitable[None]]
Stage = Callable[[RequestContext, NextStage], Awaitable[None]]
BodyRewriter = Callable[[dict[str, Any]], dict[str, Any]]


class Pipeline:
    """Runs an ordered list of named stages over a :class:`RequestContext`."""

    def __init__(self, stages: Sequence[tuple[str, Stage]]) -> None:
        self._stages = list(stages)

    @property
    def stage_names(self) -> list[str]:
        return [name for name, _ in self._stages]

    async def run(self, ctx: RequestContext) -> None:
        """Run every stage; a :class:`GatewayError` ends up in ``ctx.error``."""
        with _tracer.start_as_current_span("gateway.pipeline") as span:
            span.set_attribute("gateway.request_id", ctx.request_id)
            try:
                await self._dispatch(ctx, 0)
            except GatewayError as exc:
                exc.provider = exc.provider or ctx.provider_name
                exc.category = exc.category or (str(ctx.category) if ctx.category else None)
                exc.model = exc.model or ctx.model or ctx.requested_model
                ctx.error = exc
                ctx.response = None
                if ctx.backend_response is not None and ctx.stream:
                    await close_backend_stream(ctx.backend_response)
                ERRORS.labels(error_type=type(exc).__name__).inc()
                span.record_exception(exc)
                span.set_status(StatusCode.ERROR, exc.message)
                _log.error(
                    "pipeline_error",
                    stage=ctx.stage,
                    error_type=type(exc).__name__,
                    error=exc.message,
                    **ctx.log_context(),
                )
            if ctx.category is not None:
                span.set_attribute("gateway.category", str(ctx.category))
            if ctx.provider_name is not None:
                span.set_attribute("gen_ai.system", ctx.provider_name)

    async def _dispatch(self, ctx: RequestContext, index: int) -> None:
        if index >= len(self._stages):
            return
        name, stage = self._stages[index]
        ctx.stage = name
        await stage(ctx, lambda: self._dispatch(ctx, index + 1))


def build_pipeline(state: "GatewayState") -> Pipeline:
    """Assemble the six stages for *state*'s configuration."""

    async def attach_config(ctx: RequestContext, call_next: NextStage) -> None:
        ctx.config = state.config
        await call_next()

    async def rewrite_body(ctx: RequestContext, call_next: NextStage) -> None:
        body = copy.deepcopy(ctx.original_body)
        model = body.get("model")
        if not isinstance(model, str) or not model.strip():
            raise TransformError("model must be a non-empty string")
        body["model"] = model.strip()
        body["stream"] = bool(body.get("stream", False))
        for rewriter in state.body_rewriters:
            body = rewriter(body)
        ctx.body = body
        ctx.stream = body["stream"]
        await call_next()

    async def route_by_rules(ctx: RequestContext, call_next: NextStage) -> None:
        route = resolve_route(ctx.body, state.rules, state.classifier, state.registry, ctx.config)
        _apply_route(ctx, route, state)
        await call_next()

    async def route_default(ctx: RequestContext, call_next: NextStage) -> None:
        _apply_route(ctx, default_route(ctx.config, state.registry), state)
        await call_next()

    async def format_request(ctx: RequestContext, call_next: NextStage) -> None:
        ctx.outbound_body = transform(ctx.body, ctx.model)
        await call_next()

    async def invoke_provider(ctx: RequestContext, call_next: NextStage) -> None:
        provider = state.registry.resolve(ctx.provider_name)
        client = await state.cache.get_or_create(provider)
        ctx.backend_response = await invoke(
            client,
            ctx.outbound_body,
            provider=ctx.provider_name,
            category=str(ctx.category),
        )
        await call_next()

    async def adapt_response(ctx: RequestContext, call_next: NextStage) -> None:
        headers = {
            "X-Request-ID": ctx.request_id,
            "X-Provider": ctx.provider_name,
            "X-Route-Category": str(ctx.category),
        }
        if ctx.stream:
            events = adapt_stream(ctx.backend_response, ctx.model, ctx)
            ctx.response = StreamingResponse(
                stream_sse(ctx, events, queue_size=state.settings.stream_queue_size),
                media_type="text/event-stream",
                headers={**headers, "Cache-Control": "no-cache", "Connection": "keep-alive"},
            )
        else:
            events = adapt_completion(ctx.backend_response, ctx.model)
            ctx.response = JSONResponse(content=build_message(events), headers=headers)
        await call_next()

    route_stage = route_by_rules if state.rules else route_default
    return Pipeline(
        [
            ("attach_config", attach_config),
            ("rewrite_body", rewrite_body),
            ("route", route_stage),
            ("format", format_request),
            ("invoke", invoke_provider),
            ("adapt", adapt_response),
        ]
    )


def _apply_route(ctx: RequestContext, route: Route, state: "GatewayState") -> None:
    # Fails here, before any backend call, when the provider is unknown.
    state.registry.resolve(route.provider)
    ctx.category = route.category
    ctx.provider_name = route.provider
    ctx.model = route.model
    REQUESTS.labels(category=str(route.category), provider=route.provider).inc()
    _log.info("request_routed", stream=ctx.stream, **ctx.log_context())
