"""Request classification and provider/model selection.

Routing is mechanical: a request lands in one of four categories based on its
shape (token volume, explicit flags, model hints), and each category maps to
a ``provider,model`` pair from the ``Router`` section of the configuration.

Default thresholds:

* ``longContext``: estimated prompt volume above 32 000 tokens.
* ``background``: ``metadata.background`` is truthy, or the requested model
  starts with ``claude-3-5-haiku`` / ``claude-haiku``.
* ``think``: a ``thinking`` block that is not ``{"type": "disabled"}``, or
  a requested model containing ``thinking``.

All three are settings (see :class:`modelrouter.config.Settings`), and the
predicates themselves can be replaced through :class:`Classifier`.
"""

import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from modelrouter.config import GatewayConfig, RouterConfig
from modelrouter.providers import DEFAULT_PROVIDER, ProviderRegistry, count_tokens
from modelrouter.providers.errors import ConfigurationError

_log = structlog.get_logger(__name__)


class Category(StrEnum):
    BACKGROUND = "background"
    THINK = "think"
    LONG_CONTEXT = "longContext"
    DEFAULT = "default"


ROUTED_CATEGORIES: tuple[Category, ...] = (
    Category.BACKGROUND,
    Category.THINK,
    Category.LONG_CONTEXT,
)


@dataclass(frozen=True)
class RoutingRule:
    """Maps a routing category to a ``provider`` / ``model`` pair."""

    category: Category
    provider: str
    model: str

    @classmethod
    def parse(cls, category: Category, value: str) -> "RoutingRule":
        """Parse ``"provider,model"`` (or ``"provider:model"``).

        A comma takes precedence so model names containing ``:`` can be
        written as ``"ollama,qwen2.5:7b"``.
        """
        provider, model = _split_pair(value)
        if not provider or not model:
            raise ConfigurationError(
                f"Router.{category} must look like 'provider,model', got {value!r}",
                category=str(category),
            )
        return cls(category=category, provider=provider, model=model)


@dataclass(frozen=True)
class Route:
    category: Category
    provider: str
    model: str


def load_rules(router: RouterConfig | None) -> dict[Category, RoutingRule]:
    """Return the routing table, or an empty one unless all three rules are set."""
    if router is None or not router.complete:
        return {}
    return {
        Category.BACKGROUND: RoutingRule.parse(Category.BACKGROUND, router.background),
        Category.THINK: RoutingRule.parse(Category.THINK, router.think),
        Category.LONG_CONTEXT: RoutingRule.parse(Category.LONG_CONTEXT, router.long_context),
    }


Predicate = Callable[[dict[str, Any]], bool]


class Classifier:
    """Assigns a :class:`Category` to an inbound request body.

    Args:
        long_context_threshold: Token estimate above which a request is
            ``longContext``.
        background_model_prefixes: Model-name prefixes that mark a
            background request.
        think_model_marker: Substring of the model name that marks a
            reasoning request.
        token_counter: ``str -> int`` estimator; defaults to
            :func:`modelrouter.providers.count_tokens`.
        predicates: Ordered ``(category, predicate)`` pairs overriding the
            built-in policy.  The first predicate returning ``True`` wins.
    """

    def __init__(
        self,
        long_context_threshold: int = 32_000,
        background_model_prefixes: Sequence[str] = ("claude-3-5-haiku", "claude-haiku"),
        think_model_marker: str = "thinking",
        token_counter: Callable[[str], int] = count_tokens,
        predicates: Sequence[tuple[Category, Predicate]] | None = None,
    ) -> None:
        self.long_context_threshold = long_context_threshold
        self.background_model_prefixes = tuple(background_model_prefixes)
        self.think_model_marker = think_model_marker
        self._count = token_counter
        self.predicates: list[tuple[Category, Predicate]] = list(
            predicates
            if predicates is not None
            else [
                (Category.LONG_CONTEXT, self.is_long_context),
                (Category.BACKGROUND, self.is_background),
                (Category.THINK, self.is_think),
            ]
        )

    def classify(self, body: dict[str, Any], rules: dict[Category, RoutingRule]) -> Category:
        """Return the routing category for *body*; never raises."""
        if not all(category in rules for category in ROUTED_CATEGORIES):
            return Category.DEFAULT
        for category, predicate in self.predicates:
            try:
                matched = predicate(body)
            except Exception as exc:
                _log.warning(
                    "classifier_predicate_failed",
                    category=str(category),
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            if matched:
                return category
        return Category.DEFAULT

    # ------------------------------------------------------------------
    # Built-in predicates
    # ------------------------------------------------------------------

    def is_long_context(self, body: dict[str, Any]) -> bool:
        return self.estimate_tokens(body) > self.long_context_threshold

    def is_background(self, body: dict[str, Any]) -> bool:
        metadata = body.get("metadata")
        if isinstance(metadata, dict) and metadata.get("background"):
            return True
        model = body.get("model")
        return isinstance(model, str) and model.startswith(self.background_model_prefixes)

    def is_think(self, body: dict[str, Any]) -> bool:
        thinking = body.get("thinking")
        if isinstance(thinking, dict):
            if thinking.get("type") != "disabled":
                return True
        elif thinking:
            return True
        model = body.get("model")
        return bool(self.think_model_marker) and isinstance(model, str) and (
            self.think_model_marker in model
        )

    # ------------------------------------------------------------------
    # Token estimation
    # ------------------------------------------------------------------

    def estimate_tokens(self, body: dict[str, Any]) -> int:
        """Estimate the prompt volume of an Anthropic-format request body.

        Counts the system prompt, text blocks, ``tool_use`` inputs,
        ``tool_result`` contents and tool definitions.
        """
        return self._count("\n".join(_collect_text(body)))


def resolve_route(
    body: dict[str, Any],
    rules: dict[Category, RoutingRule],
    classifier: Classifier,
    registry: ProviderRegistry,
    config: GatewayConfig,
) -> Route:
    """Pick the provider and concrete model for *body*.

    An inbound model of the form ``"provider,model"`` naming a registered
    provider bypasses classification.

    Raises:
        ConfigurationError: No default model can be determined.
    """
    requested = body.get("model")
    if isinstance(requested, str) and "," in requested:
        provider, model = _split_pair(requested)
        if provider in registry and model:
            return Route(Category.DEFAULT, provider, model)

    category = classifier.classify(body, rules)
    if category is Category.DEFAULT:
        return default_route(config, registry)
    rule = rules[category]
    return Route(category, rule.provider, rule.model)


def default_route(config: GatewayConfig, registry: ProviderRegistry) -> Route:
    """Route to the ``default`` provider and its configured model."""
    model = config.openai_model
    if not model and DEFAULT_PROVIDER in registry:
        model = registry.resolve(DEFAULT_PROVIDER).default_model
    if not model:
        raise ConfigurationError(
            "No default model configured; set OPENAI_MODEL or list models for a provider",
            provider=DEFAULT_PROVIDER,
            category=str(Category.DEFAULT),
        )
    return Route(Category.DEFAULT, DEFAULT_PROVIDER, model)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _split_pair(value: str) -> tuple[str, str]:
    separator = "," if "," in value else ":"
    provider, _, model = value.partition(separator)
    return provider.strip(), model.strip()


def _collect_text(body: dict[str, Any]) -> list[str]:
    parts: list[str] = []

    system = body.get("system")
    if isinstance(system, str):
        parts.append(system)
    elif isinstance(system, list):
        parts.extend(_block_text(block) for block in system)

    for message in body.get("messages") or []:
        if not isinstance(message, dict):
            continue
        content = message.get("content")
        if isinstance(content, str):
            parts.append(content)
        elif isinstance(content, list):
            parts.extend(_block_text(block) for block in content)

    for tool in body.get("tools") or []:
        if not isinstance(tool, dict):
            continue
        parts.append(f"{tool.get('name', '')} {tool.get('description', '')}")
        if tool.get("input_schema"):
            parts.append(json.dumps(tool["input_schema"]))

    return [part for part in parts if part]


def _block_text(block: Any) -> str:
    if isinstance(block, str):
        return block
    if not isinstance(block, dict):
        return ""
    kind = block.get("type")
    if kind == "text":
        text = block.get("text")
        return text if isinstance(text, str) else ""
    if kind == "tool_use":
        return json.dumps(block.get("input", {}))
    if kind == "tool_result":
        content = block.get("content")
        if isinstance(content, list):
            return "\n".join(_block_text(item) for item in content)
        if content is None or isinstance(content, str):
            return content or ""
        return json.dumps(content)
    return ""
