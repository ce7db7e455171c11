"""Tests for the provider registry."""

import pytest

from modelrouter.config import GatewayConfig
from modelrouter.providers import (
    DEFAULT_PROVIDER,
    ConfigurationError,
    NotFoundError,
    Provider,
    ProviderRegistry,
    build_registry,
)

_DEEPSEEK = {
    "name": "deepseek",
    "api_base_url": "https://api.deepseek.com/v1",
    "api_key": "sk-deepseek",
    "models": ["deepseek-chat", "deepseek-reasoner"],
}
_OLLAMA = {
    "name": "ollama",
    "api_base_url": "http://localhost:11434/v1",
    "api_key": "ollama",
    "models": ["qwen2.5-coder:latest"],
}


class TestProviderRegistry:
    def test_resolve_registered_provider(self) -> None:
        registry = ProviderRegistry()
        provider = Provider("deepseek", "https://api.deepseek.com/v1", "sk", ("deepseek-chat",))
        registry.register(provider)
        assert registry.resolve("deepseek") is provider

    def test_resolve_unknown_raises_not_found(self) -> None:
        with pytest.raises(NotFoundError, match="Provider missing not found") as exc_info:
            ProviderRegistry().resolve("missing")
        assert exc_info.value.provider == "missing"

    def test_not_found_is_a_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            ProviderRegistry().resolve("missing")

    def test_register_under_alias(self) -> None:
        registry = ProviderRegistry()
        provider = Provider("deepseek", "https://api.deepseek.com/v1", "sk")
        registry.register(provider, name="default")
        assert registry.resolve("default") is provider
        assert "deepseek" not in registry

    def test_register_replaces_existing(self) -> None:
        registry = ProviderRegistry()
        registry.register(Provider("p", "http://a", "k1"))
        replacement = Provider("p", "http://b", "k2")
        registry.register(replacement)
        assert registry.resolve("p") is replacement
        assert len(registry) == 1

    def test_default_model_is_first_listed(self) -> None:
        provider = Provider("p", "http://a", "k", ("first", "second"))
        assert provider.default_model == "first"
        assert Provider("p", "http://a", "k").default_model is None


class TestBuildRegistry:
    def test_openai_triple_becomes_default(self) -> None:
        config = GatewayConfig.model_validate(
            {
                "OPENAI_API_KEY": "sk-openai",
                "OPENAI_BASE_URL": "https://api.openai.com/v1",
                "OPENAI_MODEL": "gpt-4o",
                "Providers": [_DEEPSEEK],
            }
        )
        registry = build_registry(config)

        default = registry.resolve(DEFAULT_PROVIDER)
        assert default.base_url == "https://api.openai.com/v1"
        assert default.models == ("gpt-4o",)
        assert registry.names() == ["deepseek", DEFAULT_PROVIDER]

    def test_first_provider_aliased_without_triple(self) -> None:
        config = GatewayConfig.model_validate({"Providers": [_DEEPSEEK, _OLLAMA]})
        registry = build_registry(config)
        assert registry.resolve(DEFAULT_PROVIDER) is registry.resolve("deepseek")

    def test_incomplete_triple_is_ignored(self) -> None:
        config = GatewayConfig.model_validate(
            {"OPENAI_API_KEY": "sk-openai", "Providers": [_OLLAMA]}
        )
        registry = build_registry(config)
        assert registry.resolve(DEFAULT_PROVIDER).name == "ollama"

    def test_same_config_same_default(self) -> None:
        raw = {"Providers": [_OLLAMA, _DEEPSEEK]}
        first = build_registry(GatewayConfig.model_validate(raw))
        second = build_registry(GatewayConfig.model_validate(raw))
        assert first.resolve(DEFAULT_PROVIDER) == second.resolve(DEFAULT_PROVIDER)

    def test_empty_config_has_no_default(self) -> None:
        registry = build_registry(GatewayConfig())
        assert DEFAULT_PROVIDER not in registry
        assert len(registry) == 0
