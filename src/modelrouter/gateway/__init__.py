"""Translation, routing and streaming core.

Example::

    from modelrouter.gateway import RequestContext, build_gateway

    gateway = build_gateway(config, settings)
    ctx = RequestContext.create({"model": "claude-sonnet-4", "messages": [...]})
    await gateway.pipeline.run(ctx)
    response = ctx.response  # or ctx.error
"""

from modelrouter.gateway.context import RequestContext
from modelrouter.gateway.pipeline import Pipeline, build_pipeline
from modelrouter.gateway.router import (
    Category,
    Classifier,
    Route,
    RoutingRule,
    default_route,
    load_rules,
    resolve_route,
)
from modelrouter.gateway.state import GatewayState, build_gateway
from modelrouter.gateway.stream_adapter import (
    EventChannel,
    SSEEncoder,
    adapt_completion,
    adapt_stream,
    build_message,
    stream_sse,
)
from modelrouter.gateway.transformer import transform

__all__ = [
    # Per-request
    "RequestContext",
    "Pipeline",
    "build_pipeline",
    # Routing
    "Category",
    "Classifier",
    "Route",
    "RoutingRule",
    "default_route",
    "load_rules",
    "resolve_route",
    # Translation
    "transform",
    "adapt_completion",
    "adapt_stream",
    "build_message",
    "EventChannel",
    "SSEEncoder",
    "stream_sse",
    # Shared state
    "GatewayState",
    "build_gateway",
]
