"""Provider registry.

Built once at startup from :class:`~modelrouter.config.GatewayConfig` and
read-only afterwards, so concurrent requests resolve providers without any
locking.
"""

import structlog

from modelrouter.config import GatewayConfig
from modelrouter.providers.errors import NotFoundError
from modelrouter.providers.models import Provider

DEFAULT_PROVIDER = "default"

_log = structlog.get_logger(__name__)


class ProviderRegistry:
    """Name → :class:`Provider` mapping with typed lookup failures."""

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}

    def register(self, provider: Provider, name: str | None = None) -> None:
        """Insert or replace *provider* under *name* (defaults to ``provider.name``)."""
        self._providers[name or provider.name] = provider

    def resolve(self, name: str) -> Provider:
        """Return the provider registered as *name*.

        Raises:
            NotFoundError: No provider was registered under *name*.
        """
        try:
            return self._providers[name]
        except KeyError:
            raise NotFoundError(f"Provider {name} not found", provider=name) from None

    def names(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)


def build_registry(config: GatewayConfig) -> ProviderRegistry:
    """Register every configured provider and pick the ``"default"`` one.

    The ``OPENAI_API_KEY`` / ``OPENAI_BASE_URL`` / ``OPENAI_MODEL`` triple wins
    when all three are set; otherwise the first named provider is aliased as
    ``"default"``.  Both paths depend only on the configuration, so the same
    configuration always yields the same default.
    """
    registry = ProviderRegistry()
    for entry in config.providers:
        registry.register(Provider.from_config(entry))

    if config.has_default_triple:
        registry.register(
            Provider(
                name=DEFAULT_PROVIDER,
                base_url=config.openai_base_url,
                api_key=config.openai_api_key,
                models=(config.openai_model,),
            )
        )
        source = "openai_triple"
    elif config.providers:
        first = registry.resolve(config.providers[0].name)
        registry.register(first, name=DEFAULT_PROVIDER)
        source = first.name
    else:
        source = None

    if source is None:
        _log.warning("no_default_provider", providers=registry.names())
    else:
        _log.info("provider_registry_built", providers=registry.names(), default=source)
    return registry
