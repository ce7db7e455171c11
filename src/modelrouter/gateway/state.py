from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from modelrouter.config import GatewayConfig, Settings
from modelrouter.gateway.pipeline import BodyRewriter, Pipeline, build_pipeline
from modelrouter.gateway.router import Category, Classifier, RoutingRule, load_rules
from modelrouter.providers import (
    ClientCache,
    ProviderRegistry,
    build_registry,
    count_tokens,
    make_client_factory,
)
from modelrouter.providers.client_cache import ClientFactory

_log = structlog.get_logger(__name__)


@dataclass
class GatewayState:
    """Everything the pipeline shares across requests.

    Built once at startup and stored on ``app.state.gateway``.  The registry
    and rules are read-only after construction; the client cache is the only
    shared mutable piece and guards itself.
    """

    settings: Settings
    config: GatewayConfig
    registry: ProviderRegistry
    cache: ClientCache
    classifier: Classifier
    rules: dict[Category, RoutingRule]
    body_rewriters: list[BodyRewriter] = field(default_factory=list)
    pipeline: Pipeline = field(init=False)

    def __post_init__(self) -> None:
        self.pipeline = build_pipeline(self)

    async def aclose(self) -> None:
        await self.cache.aclose()


def build_gateway(
    config: GatewayConfig,
    settings: Settings,
    client_factory: ClientFactory | None = None,
    token_counter: Callable[[str], int] = count_tokens,
) -> GatewayState:
    """Construct the gateway state from a loaded configuration."""
    registry = build_registry(config)
    rules = load_rules(config.router)
    for rule in rules.values():
        if rule.provider not in registry:
            _log.warning(
                "routing_rule_unknown_provider",
                category=str(rule.category),
                provider=rule.provider,
                known=registry.names(),
            )

    return GatewayState(
        settings=settings,
        config=config,
        registry=registry,
        cache=ClientCache(
            factory=client_factory or make_client_factory(settings),
            max_size=settings.client_cache_size,
            ttl=settings.client_cache_ttl,
            close_grace=settings.client_close_grace,
        ),
        classifier=Classifier(
            long_context_threshold=settings.long_context_threshold,
            background_model_prefixes=settings.background_model_prefixes,
            think_model_marker=settings.think_model_marker,
            token_counter=token_counter,
        ),
        rules=rules,
    )
