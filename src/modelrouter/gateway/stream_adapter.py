"""OpenAI chat-completions → Anthropic Messages response adaptation.

The backend's output is first turned into logical :class:`StreamEvent` values
(``start``, ``delta``..., ``terminal``).  For streaming callers those events
travel through a bounded :class:`EventChannel` from a producer task to the
HTTP writer and are rendered as Anthropic SSE frames by :class:`SSEEncoder`;
for non-streaming callers :func:`build_message` folds them into one message
object.
"""

import asyncio
import json
import time
import uuid
from collections.abc import AsyncIterable, AsyncIterator
from contextlib import aclosing
from dataclasses import replace
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from modelrouter.gateway.context import RequestContext
from modelrouter.providers.errors import BackendInvocationError, StreamTruncationError
from modelrouter.providers.models import EventKind, StreamEvent, ToolCallDelta

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

_STOP_REASONS: dict[str, str] = {
    "stop": "end_turn",
    "length": "max_tokens",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "content_filter": "end_turn",
}


# ---------------------------------------------------------------------------
# Backend output → logical events
# ---------------------------------------------------------------------------


def adapt_completion(completion: Any, model: str) -> list[StreamEvent]:
    """Adapt a non-streaming ``ChatCompletion``.

    Always returns one ``start``, one text ``delta`` carrying the full text,
    one ``delta`` per tool call, and one ``terminal``.
    """
    choices = getattr(completion, "choices", None) or []
    if not choices:
        raise BackendInvocationError("Backend returned no choices", model=model)

    choice = choices[0]
    message = choice.message
    usage = _usage(completion)

    events = [StreamEvent.start(_message_id(), model, usage)]
    events.append(StreamEvent.text_delta(getattr(message, "content", None) or ""))
    for i, call in enumerate(getattr(message, "tool_calls", None) or []):
        function = call.function
        events.append(
            StreamEvent.tool_delta(
                ToolCallDelta(
                    index=i,
                    id=call.id or _tool_use_id(),
                    name=function.name,
                    arguments=function.arguments or "",
                )
            )
        )
    events.append(StreamEvent.terminal(map_stop_reason(choice.finish_reason), usage))
    return events


async def adapt_stream(
    chunks: AsyncIterable[Any],
    model: str,
    ctx: RequestContext | None = None,
) -> AsyncIterator[StreamEvent]:
    """Adapt a streaming chunk sequence, one backend chunk at a time.

    Nothing is read ahead: each chunk's deltas are yielded before the next
    chunk is requested.  The ``terminal`` event is yielded exactly once, after
    the backend stream ends.  A stream that fails or ends without a
    ``finish_reason`` still terminates, and ``ctx.error`` is set to
    :class:`StreamTruncationError`.  The backend stream is closed on exit,
    including when the consumer stops early.
    """
    finish_reason: str | None = None
    usage: dict[str, int] | None = None
    error: StreamTruncationError | None = None
    received = 0
    tool_indexes: set[int] = set()

    try:
        yield StreamEvent.start(_message_id(), model)

        try:
            async for chunk in chunks:
                received += 1
                for event in _chunk_events(chunk):
                    call = event.tool_call
                    if call is not None and call.index not in tool_indexes:
                        tool_indexes.add(call.index)
                        if not call.id:
                            event = StreamEvent.tool_delta(replace(call, id=_tool_use_id()))
                    yield event
                finish_reason = _finish_reason(chunk) or finish_reason
                usage = _usage(chunk) or usage
        except Exception as exc:
            error = StreamTruncationError(
                f"Backend stream failed after {received} chunks: {exc}",
                model=model,
                original_error=exc,
            )
        else:
            if finish_reason is None:
                error = StreamTruncationError(
                    f"Backend stream ended after {received} chunks without a stop signal",
                    model=model,
                )

        if error is not None:
            if ctx is not None:
                error.provider = ctx.provider_name
                error.category = str(ctx.category) if ctx.category else None
                ctx.error = error
                _log.error("stream_truncated", error=error.message, **ctx.log_context())
            else:
                _log.error("stream_truncated", error=error.message, model=model)

        stop_reason = map_stop_reason(finish_reason) if finish_reason else None
        yield StreamEvent.terminal(stop_reason, usage)
    finally:
        await close_backend_stream(chunks)


def map_stop_reason(finish_reason: str | None) -> str:
    return _STOP_REASONS.get(finish_reason or "stop", "end_turn")


# ---------------------------------------------------------------------------
# Producer / consumer channel
# ---------------------------------------------------------------------------

_CLOSED = object()


class EventChannel:
    """Bounded single-producer, single-consumer queue of stream events.

    :meth:`send` suspends while the queue is full, so a slow caller
    transport slows down the producer.  :meth:`close` never blocks; once the
    channel is closed the consumer drains what is left and then stops.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise RuntimeError("send on closed channel")
        await self._queue.put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # A full queue needs no sentinel; __anext__ stops once it is drained.
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


async def pump(events: AsyncIterator[StreamEvent], channel: EventChannel) -> None:
    """Forward *events* into *channel* and close it, whatever happens."""
    try:
        async with aclosing(events) as source:
            async for event in source:
                await channel.send(event)
    finally:
        channel.close()


async def stream_sse(
    ctx: RequestContext,
    events: AsyncIterator[StreamEvent],
    queue_size: int = 64,
) -> AsyncIterator[str]:
    """Yield Anthropic SSE frames for *events*.

    The events are produced by a separate task feeding a bounded channel.
    When this generator is closed early (the caller disconnected), the
    producer is cancelled, which closes the backend stream.
    """
    channel = EventChannel(maxsize=queue_size)
    producer = asyncio.create_task(pump(events, channel))
    encoder = SSEEncoder()
    start_time = time.monotonic()
    delivered = 0

    # Not made current: the generator is resumed once per frame by the server.
    span = _tracer.start_span("gateway.stream")
    span.set_attribute("gen_ai.system", ctx.provider_name or "")
    span.set_attribute("gen_ai.request.model", ctx.model or "")
    try:
        async for event in channel:
            delivered += 1
            for frame in encoder.encode(event):
                yield frame
        await producer
    finally:
        if not producer.done():
            producer.cancel()
            await asyncio.wait({producer})
            _log.warning("stream_cancelled", delivered=delivered, **ctx.log_context())
        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        span.set_attribute("gateway.stream.events", delivered)
        if ctx.error is not None:
            span.set_status(StatusCode.ERROR, ctx.error.message)
        span.end()
        _log.info(
            "stream_complete",
            delivered=delivered,
            truncated=ctx.error is not None,
            duration_ms=duration_ms,
            **ctx.log_context(),
        )


# ---------------------------------------------------------------------------
# Caller-facing encodings
# ---------------------------------------------------------------------------


class SSEEncoder:
    """Renders logical events as Anthropic Messages SSE frames.

    Content blocks are opened lazily and closed when the next delta belongs
    to a different block, or when the terminal event arrives.
    """

    def __init__(self) -> None:
        self._index = -1
        self._open: str | None = None
        self._output_tokens = 0

    def encode(self, event: StreamEvent) -> list[str]:
        if event.kind is EventKind.START:
            return self._encode_start(event)
        if event.kind is EventKind.TERMINAL:
            return self._encode_terminal(event)
        if event.tool_call is not None:
            return self._encode_tool_delta(event.tool_call)
        return self._encode_text_delta(event.text or "")

    def _encode_start(self, event: StreamEvent) -> list[str]:
        usage = event.usage or {}
        message = {
            "id": event.message_id,
            "type": "message",
            "role": "assistant",
            "model": event.model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": usage.get("input_tokens", 0), "output_tokens": 0},
        }
        return [
            _frame("message_start", {"type": "message_start", "message": message}),
            _frame("ping", {"type": "ping"}),
        ]

    def _encode_text_delta(self, text: str) -> list[str]:
        frames = self._switch_block("text", {"type": "text", "text": ""})
        frames.append(
            _frame(
                "content_block_delta",
                {
                    "type": "content_block_delta",
                    "index": self._index,
                    "delta": {"type": "text_delta", "text": text},
                },
            )
        )
        return frames

    def _encode_tool_delta(self, call: ToolCallDelta) -> list[str]:
        block = {
            "type": "tool_use",
            "id": call.id or _tool_use_id(),
            "name": call.name or "",
            "input": {},
        }
        frames = self._switch_block(f"tool:{call.index}", block)
        if call.arguments:
            frames.append(
                _frame(
                    "content_block_delta",
                    {
                        "type": "content_block_delta",
                        "index": self._index,
                        "delta": {"type": "input_json_delta", "partial_json": call.arguments},
                    },
                )
            )
        return frames

    def _encode_terminal(self, event: StreamEvent) -> list[str]:
        frames = self._close_block()
        usage = event.usage or {}
        frames.append(
            _frame(
                "message_delta",
                {
                    "type": "message_delta",
                    "delta": {"stop_reason": event.stop_reason, "stop_sequence": None},
                    "usage": {"output_tokens": usage.get("output_tokens", 0)},
                },
            )
        )
        frames.append(_frame("message_stop", {"type": "message_stop"}))
        return frames

    def _switch_block(self, key: str, content_block: dict[str, Any]) -> list[str]:
        if self._open == key:
            return []
        frames = self._close_block()
        self._index += 1
        self._open = key
        frames.append(
            _frame(
                "content_block_start",
                {
                    "type": "content_block_start",
                    "index": self._index,
                    "content_block": content_block,
                },
            )
        )
        return frames

    def _close_block(self) -> list[str]:
        if self._open is None:
            return []
        self._open = None
        return [
            _frame("content_block_stop", {"type": "content_block_stop", "index": self._index})
        ]


def build_message(events: list[StreamEvent]) -> dict[str, Any]:
    """Fold a complete event sequence into one Anthropic message object."""
    message_id = model = stop_reason = None
    usage: dict[str, int] = {}
    blocks: list[dict[str, Any]] = []
    tool_blocks: dict[int, dict[str, Any]] = {}

    for event in events:
        if event.kind is EventKind.START:
            message_id, model = event.message_id, event.model
            usage.update(event.usage or {})
        elif event.kind is EventKind.TERMINAL:
            stop_reason = event.stop_reason
            usage.update(event.usage or {})
        elif event.tool_call is not None:
            call = event.tool_call
            block = tool_blocks.get(call.index)
            if block is None:
                block = {"type": "tool_use", "id": call.id, "name": call.name or "", "input": ""}
                tool_blocks[call.index] = block
                blocks.append(block)
            block["input"] += call.arguments
        elif blocks and blocks[-1]["type"] == "text":
            blocks[-1]["text"] += event.text or ""
        else:
            blocks.append({"type": "text", "text": event.text or ""})

    for block in tool_blocks.values():
        block["input"] = _parse_arguments(block["input"])

    content = [b for b in blocks if b["type"] != "text" or b["text"]] or [
        {"type": "text", "text": ""}
    ]
    return {
        "id": message_id,
        "type": "message",
        "role": "assistant",
        "model": model,
        "content": content,
        "stop_reason": stop_reason,
        "stop_sequence": None,
        "usage": {
            "input_tokens": usage.get("input_tokens", 0),
            "output_tokens": usage.get("output_tokens", 0),
        },
    }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _chunk_events(chunk: Any) -> list[StreamEvent]:
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return []
    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return []

    events: list[StreamEvent] = []
    text = getattr(delta, "content", None)
    if text:
        events.append(StreamEvent.text_delta(text))
    for call in getattr(delta, "tool_calls", None) or []:
        function = getattr(call, "function", None)
        events.append(
            StreamEvent.tool_delta(
                ToolCallDelta(
                    index=getattr(call, "index", None) or 0,
                    id=getattr(call, "id", None),
                    name=getattr(function, "name", None),
                    arguments=getattr(function, "arguments", None) or "",
                )
            )
        )
    return events


def _finish_reason(chunk: Any) -> str | None:
    choices = getattr(chunk, "choices", None) or []
    return getattr(choices[0], "finish_reason", None) if choices else None


def _usage(raw: Any) -> dict[str, int] | None:
    usage = getattr(raw, "usage", None)
    if usage is None:
        return None
    return {
        "input_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
    }


def _parse_arguments(raw: str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"_raw": raw}


def _message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


def _tool_use_id() -> str:
    return f"toolu_{uuid.uuid4().hex[:24]}"


def _frame(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def close_backend_stream(chunks: Any) -> None:
    close = getattr(chunks, "close", None) or getattr(chunks, "aclose", None)
    if close is None:
        return
    result = close()
    if asyncio.iscoroutine(result):
        await result
