import json
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

_log = structlog.get_logger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="model-router")
    app_version: str = Field(default="0.1.0")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3456)

    # Files owned by the running service
    config_path: Path = Field(default=Path("~/.model-router/config.json"))
    pid_file: Path = Field(default=Path("~/.model-router/.model-router.pid"))

    # Observability
    otel_exporter_otlp_endpoint: str = Field(default="http://localhost:4318")
    otel_service_name: str = Field(default="model-router")
    log_level: str = Field(default="INFO")

    # Single-provider shortcut; overrides the same keys in the config file
    openai_api_key: SecretStr | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    openai_model: str | None = Field(default=None)

    # Outbound HTTP
    proxy_url: str | None = Field(default=None)
    https_proxy: str | None = Field(default=None)
    llm_timeout: float = Field(default=600.0)

    # Client cache
    client_cache_size: int = Field(default=10, gt=0)
    client_cache_ttl: float = Field(default=2 * 60 * 60, gt=0)
    client_close_grace: float = Field(default=10 * 60, ge=0)

    # Streaming
    stream_queue_size: int = Field(default=64, gt=0)

    # Routing
    long_context_threshold: int = Field(default=32_000, gt=0)
    background_model_prefixes: list[str] = Field(
        default_factory=lambda: ["claude-3-5-haiku", "claude-haiku"]
    )
    think_model_marker: str = Field(default="thinking")


settings = Settings()


# ---------------------------------------------------------------------------
# Gateway configuration file
# ---------------------------------------------------------------------------


class ProviderConfig(BaseModel):
    """One entry of the ``Providers`` list."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    api_base_url: str
    api_key: str = ""
    models: list[str] = Field(default_factory=list)


class RouterConfig(BaseModel):
    """Routing rules as ``"provider,model"`` strings, one per category."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    background: str | None = None
    think: str | None = None
    long_context: str | None = Field(default=None, alias="longContext")

    @property
    def complete(self) -> bool:
        return bool(self.background and self.think and self.long_context)


class GatewayConfig(BaseModel):
    """Configuration object consumed by the gateway core.

    Field aliases follow the on-disk key names so a config file can be
    validated directly with :meth:`model_validate`.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(default=None, alias="OPENAI_BASE_URL")
    openai_model: str | None = Field(default=None, alias="OPENAI_MODEL")
    providers: list[ProviderConfig] = Field(default_factory=list, alias="Providers")
    router: RouterConfig | None = Field(default=None, alias="Router")

    @property
    def has_default_triple(self) -> bool:
        return bool(self.openai_api_key and self.openai_base_url and self.openai_model)

    @property
    def routing_enabled(self) -> bool:
        return self.router is not None and self.router.complete


def load_gateway_config(path: Path | None = None, overrides: Settings | None = None) -> GatewayConfig:
    """Read the JSON config file and apply ``OPENAI_*`` overrides from settings.

    A missing file yields an empty configuration; a file that is present but
    not valid JSON raises ``ValueError`` so a typo never silently disables
    routing.
    """
    overrides = overrides or settings
    path = (path or overrides.config_path).expanduser()

    raw: dict = {}
    if path.exists():
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"{path} must contain a JSON object")
    else:
        _log.warning("config_file_missing", path=str(path))

    if overrides.openai_api_key is not None:
        raw["OPENAI_API_KEY"] = overrides.openai_api_key.get_secret_value()
    if overrides.openai_base_url:
        raw["OPENAI_BASE_URL"] = overrides.openai_base_url
    if overrides.openai_model:
        raw["OPENAI_MODEL"] = overrides.openai_model

    config = GatewayConfig.model_validate(raw)
    _log.info(
        "config_loaded",
        path=str(path),
        openai_api_key=_mask(config.openai_api_key),
        openai_base_url=config.openai_base_url,
        openai_model=config.openai_model,
        providers=[p.name for p in config.providers],
        routing_enabled=config.routing_enabled,
    )
    return config


def _mask(secret: str | None) -> str | None:
    if not secret:
        return None
    return "***" + secret[-4:]
