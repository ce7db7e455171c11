"""Backend provider layer.

Public surface area for the providers package.  Import from here rather than
from the individual submodules so internal structure can change freely.

Example::

    from modelrouter.providers import ClientCache, Provider, ProviderRegistry, invoke

    registry = ProviderRegistry()
    registry.register(Provider("deepseek", "https://api.deepseek.com/v1", "sk-...", ("deepseek-chat",)))

    client = await cache.get_or_create(registry.resolve("deepseek"))
    completion = await invoke(client, {"model": "deepseek-chat", "messages": [...]}, "deepseek")
"""

from modelrouter.providers.backend import count_tokens, invoke, map_error
from modelrouter.providers.client_cache import ClientCache, make_client_factory
from modelrouter.providers.errors import (
    AuthError,
    BackendInvocationError,
    ConfigurationError,
    GatewayError,
    InvalidRequestError,
    NotFoundError,
    ProviderUnavailableError,
    RateLimitError,
    StreamTruncationError,
    TimeoutError,
    TransformError,
)
from modelrouter.providers.models import EventKind, Provider, StreamEvent, ToolCallDelta
from modelrouter.providers.registry import DEFAULT_PROVIDER, ProviderRegistry, build_registry

__all__ = [
    # Models
    "Provider",
    "EventKind",
    "StreamEvent",
    "ToolCallDelta",
    # Registry and clients
    "DEFAULT_PROVIDER",
    "ProviderRegistry",
    "build_registry",
    "ClientCache",
    "make_client_factory",
    # Invocation
    "invoke",
    "map_error",
    "count_tokens",
    # Errors
    "GatewayError",
    "ConfigurationError",
    "NotFoundError",
    "TransformError",
    "StreamTruncationError",
    "BackendInvocationError",
    "RateLimitError",
    "AuthError",
    "TimeoutError",
    "InvalidRequestError",
    "ProviderUnavailableError",
]
