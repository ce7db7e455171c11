"""Provider and stream-event dataclasses.

These types form the contract between the gateway pipeline, the provider
layer and the streaming adapter.  All of them are immutable (``frozen=True``)
so a value handed to a concurrent request can never change underneath it.
"""

from dataclasses import dataclass
from enum import StrEnum

from modelrouter.config import ProviderConfig


@dataclass(frozen=True)
class Provider:
    """A configured OpenAI-compatible backend.

    Attributes:
        name: Unique registry key.
        base_url: Base URL of the chat-completions API, e.g.
            ``"https://api.deepseek.com/v1"``.
        api_key: Credential sent as a bearer token.
        models: Models served by this provider.  The first entry is the
            implicit default model.
    """

    name: str
    base_url: str
    api_key: str
    models: tuple[str, ...] = ()

    @property
    def default_model(self) -> str | None:
        return self.models[0] if self.models else None

    @classmethod
    def from_config(cls, entry: ProviderConfig) -> "Provider":
        return cls(
            name=entry.name,
            base_url=entry.api_base_url,
            api_key=entry.api_key,
            models=tuple(entry.models),
        )


class EventKind(StrEnum):
    START = "start"
    DELTA = "delta"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of a tool call as streamed by the backend.

    ``id`` and ``name`` arrive on the first fragment of a call; later
    fragments only extend ``arguments``.
    """

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass(frozen=True)
class StreamEvent:
    """One caller-facing unit of a response.

    A response is always ``start``, zero or more ``delta`` events, then
    exactly one ``terminal``.  A ``delta`` carries either ``text`` or a
    ``tool_call``.

    Attributes:
        kind: Position of the event in the response.
        text: Text fragment (``delta`` only).
        tool_call: Tool-call fragment (``delta`` only).
        message_id: Caller-facing message id (``start`` only).
        model: Model name reported to the caller (``start`` only).
        stop_reason: Anthropic stop reason (``terminal`` only); ``None`` when
            the backend stream was truncated.
        usage: ``{"input_tokens": N, "output_tokens": M}`` when known.
    """

    kind: EventKind
    text: str | None = None
    tool_call: ToolCallDelta | None = None
    message_id: str | None = None
    model: str | None = None
    stop_reason: str | None = None
    usage: dict[str, int] | None = None

    @classmethod
    def start(
        cls, message_id: str, model: str, usage: dict[str, int] | None = None
    ) -> "StreamEvent":
        return cls(EventKind.START, message_id=message_id, model=model, usage=usage)

    @classmethod
    def text_delta(cls, text: str) -> "StreamEvent":
        return cls(EventKind.DELTA, text=text)

    @classmethod
    def tool_delta(cls, tool_call: ToolCallDelta) -> "StreamEvent":
        return cls(EventKind.DELTA, tool_call=tool_call)

    @classmethod
    def terminal(
        cls, stop_reason: str | None, usage: dict[str, int] | None = None
    ) -> "StreamEvent":
        return cls(EventKind.TERMINAL, stop_reason=stop_reason, usage=usage)
