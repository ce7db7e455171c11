"""Single-attempt calls to OpenAI-compatible backends.

The OpenAI SDK already speaks the chat-completions protocol, so this module
only adds what the gateway needs on top of it:

* Typed exception hierarchy (:mod:`modelrouter.providers.errors`)
* OpenTelemetry spans using GenAI semantic conventions
* Structured logging via structlog
* Token estimation for routing decisions (LiteLLM's tokenizer table)

There is no retry loop: every request makes exactly one attempt.
"""

import logging
import time
from typing import Any

import litellm
import openai
import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from modelrouter.providers.errors import (
    AuthError,
    BackendInvocationError,
    GatewayError,
    InvalidRequestError,
    ProviderUnavailableError,
    RateLimitError,
    TimeoutError,
)

# ---------------------------------------------------------------------------
# Module-level setup
# ---------------------------------------------------------------------------

# Suppress third-party verbose logging; we emit our own structured logs.
logging.getLogger("LiteLLM").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

# Tokenizer used for estimates; the gateway routes on volume, not exact counts.
_ESTIMATE_MODEL = "gpt-4"


async def invoke(
    client: Any,
    body: dict[str, Any],
    provider: str,
    category: str | None = None,
) -> Any:
    """Call ``client.chat.completions.create`` once with the outbound *body*.

    Args:
        client: An ``AsyncOpenAI``-compatible handle from the client cache.
        body: Transformed, OpenAI-schema request body.
        provider: Provider name, for logs, spans and error context.
        category: Routing category, for logs and error context.

    Returns:
        A ``ChatCompletion`` when ``body["stream"]`` is falsy, otherwise the
        SDK's async chunk stream.  The stream is returned unread.

    Raises:
        RateLimitError: Provider returned HTTP 429.
        AuthError: API key missing or invalid (HTTP 401 / 403).
        TimeoutError: Request exceeded the configured timeout.
        InvalidRequestError: Request rejected as malformed (HTTP 400 / 404 / 422).
        ProviderUnavailableError: Provider down or unreachable (5xx / network).
    """
    model = str(body.get("model", ""))
    stream = bool(body.get("stream"))
    start_time = time.monotonic()

    log = _log.bind(provider=provider, category=category, model=model, stream=stream)

    with _tracer.start_as_current_span("gateway.invoke") as span:
        span.set_attribute("gen_ai.system", provider)
        span.set_attribute("gen_ai.request.model", model)
        span.set_attribute("llm.stream", stream)
        if body.get("max_tokens") is not None:
            span.set_attribute("gen_ai.request.max_tokens", body["max_tokens"])

        log.info("backend_request_start", messages=len(body.get("messages", [])))
        try:
            response = await client.chat.completions.create(**body)
        except Exception as exc:
            mapped = map_error(exc, provider=provider, category=category, model=model)
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, mapped.message)
            log.error(
                "backend_request_error",
                error_type=type(mapped).__name__,
                error=mapped.message,
            )
            raise mapped from exc

        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        if not stream:
            usage = getattr(response, "usage", None)
            if usage is not None:
                span.set_attribute("gen_ai.usage.input_tokens", usage.prompt_tokens or 0)
                span.set_attribute("gen_ai.usage.output_tokens", usage.completion_tokens or 0)
        log.info("backend_request_complete", duration_ms=duration_ms)
        return response


def map_error(
    error: Exception,
    provider: str | None = None,
    category: str | None = None,
    model: str | None = None,
) -> GatewayError:
    """Map an OpenAI SDK exception to a typed gateway error.

    Mapping table:

    =====================================  ==============================
    OpenAI SDK exception                   Gateway exception
    =====================================  ==============================
    ``openai.RateLimitError``              :class:`RateLimitError`
    ``openai.AuthenticationError``         :class:`AuthError`
    ``openai.PermissionDeniedError``       :class:`AuthError`
    ``openai.APITimeoutError``             :class:`TimeoutError`
    ``openai.BadRequestError``             :class:`InvalidRequestError`
    ``openai.NotFoundError``               :class:`InvalidRequestError`
    ``openai.UnprocessableEntityError``    :class:`InvalidRequestError`
    ``openai.APIConnectionError``          :class:`ProviderUnavailableError`
    ``openai.APIError`` (catch-all)        :class:`ProviderUnavailableError`
    =====================================  ==============================

    ``openai.APITimeoutError`` subclasses ``openai.APIConnectionError`` and is
    therefore checked first.
    """
    # Already mapped; avoid double-wrapping.
    if isinstance(error, GatewayError):
        return error

    context = {"provider": provider, "category": category, "model": model}

    if isinstance(error, openai.RateLimitError):
        return RateLimitError(
            message=str(error),
            retry_after=_retry_after(error),
            original_error=error,
            **context,
        )

    if isinstance(error, openai.AuthenticationError | openai.PermissionDeniedError):
        return AuthError(
            message=f"Authentication failed for {provider}: {error}",
            original_error=error,
            **context,
        )

    if isinstance(error, openai.APITimeoutError):
        return TimeoutError(
            message=f"Request to {provider} timed out: {error}",
            original_error=error,
            **context,
        )

    if isinstance(
        error,
        openai.BadRequestError | openai.NotFoundError | openai.UnprocessableEntityError,
    ):
        return InvalidRequestError(
            message=f"Invalid request to {provider}: {error}",
            original_error=error,
            **context,
        )

    if isinstance(error, openai.APIConnectionError | openai.APIError):
        return ProviderUnavailableError(
            message=f"{provider} is unavailable: {error}",
            original_error=error,
            **context,
        )

    return BackendInvocationError(
        message=f"Unexpected error from {provider}: {error}",
        original_error=error,
        **context,
    )


def count_tokens(text: str) -> int:
    """Estimate the token count for *text*.

    Uses LiteLLM's tiktoken-backed counter and falls back to a word-count
    approximation when the tokenizer is unavailable.
    """
    if not text:
        return 0
    try:
        return litellm.token_counter(model=_ESTIMATE_MODEL, text=text)
    except Exception as exc:
        _log.warning(
            "token_counting_failed",
            error=str(exc),
            fallback="word_count_approximation",
        )
        return max(1, round(len(text.split()) * 1.3))


def _retry_after(error: Exception) -> float | None:
    response = getattr(error, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None
