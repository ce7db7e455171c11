"""Unit tests for the backend invocation layer (backend.py).

Mocking strategy
----------------
* Backend clients are lightweight fakes exposing ``chat.completions.create``,
  so no HTTP traffic is generated.
* OpenAI SDK exceptions are built with their real constructors so the
  ``isinstance`` checks in ``map_error`` behave exactly as in production.
* ``litellm.token_counter`` is patched at
  ``modelrouter.providers.backend.litellm.token_counter``.
* The module-level ``_tracer`` is replaced with a MagicMock to capture span
  operations.
"""

from typing import Any
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from modelrouter.providers.backend import count_tokens, invoke, map_error
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
# Fakes
# ---------------------------------------------------------------------------


class _Completions:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self._result = result
        self._error = error
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return self._result


class _Chat:
    def __init__(self, completions: _Completions) -> None:
        self.completions = completions


class _FakeClient:
    """Mimics the part of ``AsyncOpenAI`` the gateway touches."""

    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.chat = _Chat(_Completions(result, error))

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self.chat.completions.calls


class _Usage:
    def __init__(self, prompt_tokens: int = 10, completion_tokens: int = 5) -> None:
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens


class _Completion:
    def __init__(self) -> None:
        self.choices = []
        self.usage = _Usage()


# ---------------------------------------------------------------------------
# OpenAI exception factories
# ---------------------------------------------------------------------------

_REQ = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def _status_error(cls: type, status: int, headers: dict[str, str] | None = None) -> Exception:
    response = httpx.Response(status, request=_REQ, headers=headers)
    return cls(f"HTTP {status}", response=response, body=None)


_BODY = {
    "model": "deepseek-chat",
    "messages": [{"role": "user", "content": "Hi"}],
    "max_tokens": 64,
}


@pytest.fixture
def mock_span() -> MagicMock:
    span = MagicMock()
    span.__enter__ = MagicMock(return_value=span)
    span.__exit__ = MagicMock(return_value=False)
    return span


@pytest.fixture
def mock_tracer(mock_span: MagicMock) -> MagicMock:
    tracer = MagicMock()
    tracer.start_as_current_span.return_value = mock_span
    return tracer


# ---------------------------------------------------------------------------
# invoke()
# ---------------------------------------------------------------------------


class TestInvoke:
    async def test_passes_body_through_unchanged(self) -> None:
        completion = _Completion()
        client = _FakeClient(result=completion)

        result = await invoke(client, _BODY, provider="deepseek", category="default")

        assert result is completion
        assert client.calls == [_BODY]

    async def test_makes_exactly_one_attempt_on_failure(self) -> None:
        client = _FakeClient(error=_status_error(openai.InternalServerError, 503))

        with pytest.raises(ProviderUnavailableError):
            await invoke(client, _BODY, provider="deepseek")

        assert len(client.calls) == 1

    async def test_stream_is_returned_unread(self) -> None:
        stream = MagicMock()
        client = _FakeClient(result=stream)

        result = await invoke(client, {**_BODY, "stream": True}, provider="deepseek")

        assert result is stream
        stream.__aiter__.assert_not_called()

    async def test_error_carries_provider_category_and_model(self) -> None:
        client = _FakeClient(error=_status_error(openai.AuthenticationError, 401))

        with pytest.raises(AuthError) as exc_info:
            await invoke(client, _BODY, provider="deepseek", category="think")

        err = exc_info.value
        assert err.provider == "deepseek"
        assert err.category == "think"
        assert err.model == "deepseek-chat"
        assert isinstance(err.__cause__, openai.AuthenticationError)

    async def test_span_attributes_recorded(
        self, mock_tracer: MagicMock, mock_span: MagicMock, mocker: Any
    ) -> None:
        mocker.patch("modelrouter.providers.backend._tracer", mock_tracer)
        client = _FakeClient(result=_Completion())

        await invoke(client, _BODY, provider="deepseek")

        mock_tracer.start_as_current_span.assert_called_once_with("gateway.invoke")
        mock_span.set_attribute.assert_any_call("gen_ai.system", "deepseek")
        mock_span.set_attribute.assert_any_call("gen_ai.request.model", "deepseek-chat")
        mock_span.set_attribute.assert_any_call("gen_ai.usage.input_tokens", 10)
        mock_span.set_attribute.assert_any_call("gen_ai.usage.output_tokens", 5)

    async def test_span_records_exception(
        self, mock_tracer: MagicMock, mock_span: MagicMock, mocker: Any
    ) -> None:
        mocker.patch("modelrouter.providers.backend._tracer", mock_tracer)
        error = _status_error(openai.BadRequestError, 400)
        client = _FakeClient(error=error)

        with pytest.raises(InvalidRequestError):
            await invoke(client, _BODY, provider="deepseek")

        mock_span.record_exception.assert_called_once_with(error)
        mock_span.set_status.assert_called_once()


# ---------------------------------------------------------------------------
# map_error()
# ---------------------------------------------------------------------------


class TestErrorMapping:
    """OpenAI SDK exceptions become the matching gateway error type."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (_status_error(openai.RateLimitError, 429), RateLimitError),
            (_status_error(openai.AuthenticationError, 401), AuthError),
            (_status_error(openai.PermissionDeniedError, 403), AuthError),
            (openai.APITimeoutError(request=_REQ), TimeoutError),
            (_status_error(openai.BadRequestError, 400), InvalidRequestError),
            (_status_error(openai.NotFoundError, 404), InvalidRequestError),
            (_status_error(openai.UnprocessableEntityError, 422), InvalidRequestError),
            (openai.APIConnectionError(request=_REQ), ProviderUnavailableError),
            (_status_error(openai.InternalServerError, 500), ProviderUnavailableError),
            (ValueError("unexpected"), BackendInvocationError),
        ],
    )
    def test_maps_to_expected_type(self, error: Exception, expected: type) -> None:
        mapped = map_error(error, provider="deepseek", category="default", model="m")

        assert type(mapped) is expected
        assert mapped.original_error is error
        assert mapped.provider == "deepseek"

    def test_timeout_is_not_reported_as_connection_error(self) -> None:
        mapped = map_error(openai.APITimeoutError(request=_REQ), provider="p")
        assert isinstance(mapped, TimeoutError)
        assert not isinstance(mapped, ProviderUnavailableError)

    def test_retry_after_header_extracted(self) -> None:
        error = _status_error(openai.RateLimitError, 429, headers={"retry-after": "30"})
        mapped = map_error(error, provider="p")
        assert isinstance(mapped, RateLimitError)
        assert mapped.retry_after == 30.0

    def test_retry_after_none_without_header(self) -> None:
        mapped = map_error(_status_error(openai.RateLimitError, 429), provider="p")
        assert mapped.retry_after is None

    def test_retry_after_ignores_http_date(self) -> None:
        error = _status_error(
            openai.RateLimitError, 429, headers={"retry-after": "Wed, 21 Oct 2026 07:28:00 GMT"}
        )
        assert map_error(error, provider="p").retry_after is None

    def test_gateway_errors_are_not_rewrapped(self) -> None:
        original = RateLimitError("slow down", provider="p")
        assert map_error(original) is original

    def test_all_results_are_gateway_errors(self) -> None:
        assert isinstance(map_error(RuntimeError("x")), GatewayError)


# ---------------------------------------------------------------------------
# count_tokens()
# ---------------------------------------------------------------------------


class TestTokenCounting:
    def test_returns_litellm_token_count(self, mocker: Any) -> None:
        mocker.patch("modelrouter.providers.backend.litellm.token_counter", return_value=7)
        assert count_tokens("Hello world") == 7

    def test_empty_text_is_zero(self, mocker: Any) -> None:
        counter = mocker.patch("modelrouter.providers.backend.litellm.token_counter")
        assert count_tokens("") == 0
        counter.assert_not_called()

    def test_fallback_used_when_token_counter_raises(self, mocker: Any) -> None:
        mocker.patch(
            "modelrouter.providers.backend.litellm.token_counter",
            side_effect=Exception("tokenizer unavailable"),
        )
        # 2 words -> round(2 * 1.3) = 3
        assert count_tokens("Hello world") == 3

    def test_fallback_scales_with_word_count(self, mocker: Any) -> None:
        mocker.patch(
            "modelrouter.providers.backend.litellm.token_counter",
            side_effect=Exception("fail"),
        )
        assert count_tokens("word " * 100) > count_tokens("hi")
