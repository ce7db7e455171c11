"""Tests for settings and config-file loading."""

import json
from pathlib import Path

import pytest
from pydantic import SecretStr

from modelrouter.config import GatewayConfig, Settings, load_gateway_config


def _write(tmp_path: Path, raw) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(raw), encoding="utf-8")
    return path


@pytest.fixture
def bare_settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    for name in ("OPENAI_API_KEY", "OPENAI_BASE_URL", "OPENAI_MODEL"):
        monkeypatch.delenv(name, raising=False)
    return Settings(_env_file=None)


class TestLoadGatewayConfig:
    def test_reads_providers_and_router(self, tmp_path: Path, bare_settings: Settings) -> None:
        path = _write(
            tmp_path,
            {
                "Providers": [
                    {
                        "name": "deepseek",
                        "api_base_url": "https://api.deepseek.com/v1",
                        "api_key": "sk-d",
                        "models": ["deepseek-chat"],
                    }
                ],
                "Router": {
                    "background": "deepseek,deepseek-chat",
                    "think": "deepseek,deepseek-reasoner",
                    "longContext": "deepseek,deepseek-chat",
                },
            },
        )
        config = load_gateway_config(path, bare_settings)

        assert [p.name for p in config.providers] == ["deepseek"]
        assert config.router.long_context == "deepseek,deepseek-chat"
        assert config.routing_enabled

    def test_missing_file_is_empty_config(self, tmp_path: Path, bare_settings: Settings) -> None:
        config = load_gateway_config(tmp_path / "absent.json", bare_settings)
        assert config.providers == []
        assert not config.routing_enabled
        assert not config.has_default_triple

    def test_non_object_raises(self, tmp_path: Path, bare_settings: Settings) -> None:
        with pytest.raises(ValueError, match="JSON object"):
            load_gateway_config(_write(tmp_path, ["not", "an", "object"]), bare_settings)

    def test_invalid_json_raises(self, tmp_path: Path, bare_settings: Settings) -> None:
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError):
            load_gateway_config(path, bare_settings)

    def test_settings_override_file_triple(self, tmp_path: Path, bare_settings: Settings) -> None:
        path = _write(
            tmp_path,
            {
                "OPENAI_API_KEY": "sk-file",
                "OPENAI_BASE_URL": "https://file.example.com/v1",
                "OPENAI_MODEL": "file-model",
            },
        )
        overrides = bare_settings.model_copy(
            update={"openai_api_key": SecretStr("sk-env"), "openai_model": "env-model"}
        )
        config = load_gateway_config(path, overrides)

        assert config.openai_api_key == "sk-env"
        assert config.openai_model == "env-model"
        assert config.openai_base_url == "https://file.example.com/v1"
        assert config.has_default_triple

    def test_partial_router_disables_routing(self, tmp_path: Path, bare_settings: Settings) -> None:
        path = _write(tmp_path, {"Router": {"background": "p,m"}})
        assert not load_gateway_config(path, bare_settings).routing_enabled


class TestGatewayConfig:
    def test_unknown_keys_ignored(self) -> None:
        config = GatewayConfig.model_validate({"LOG": True, "HOST": "0.0.0.0"})
        assert config.providers == []

    def test_populate_by_field_name(self) -> None:
        config = GatewayConfig(openai_model="gpt-4o")
        assert config.openai_model == "gpt-4o"


class TestSettings:
    def test_defaults(self, bare_settings: Settings) -> None:
        assert bare_settings.port == 3456
        assert bare_settings.client_cache_size == 10
        assert bare_settings.client_cache_ttl == 7200
        assert bare_settings.long_context_threshold == 32_000

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PORT", "4000")
        monkeypatch.setenv("CLIENT_CACHE_SIZE", "3")
        settings = Settings(_env_file=None)
        assert settings.port == 4000
        assert settings.client_cache_size == 3
