"""Exception hierarchy for the gateway core.

Every failure a request can hit is one of these types, so the HTTP layer can
map them to status codes with a single lookup and logs always carry the
provider, routing category and model that were in play.
"""


class GatewayError(Exception):
    """Base exception for all gateway errors.

    Attributes:
        message: Human-readable error description.
        provider: Provider name the request was routed to, when known.
        category: Routing category assigned to the request, when known.
        model: Concrete model name, when known.
        original_error: The upstream exception that caused this error, if any.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        category: str | None = None,
        model: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.category = category
        self.model = model
        self.original_error = original_error
        super().__init__(message)


class ConfigurationError(GatewayError):
    """Raised when the configuration cannot serve the request."""


class NotFoundError(ConfigurationError):
    """Raised when a provider name is not present in the registry."""


class TransformError(GatewayError):
    """Raised when the inbound body cannot be translated to the outbound schema."""


class StreamTruncationError(GatewayError):
    """Recorded when a backend stream ends without a stop signal or fails mid-way."""


class BackendInvocationError(GatewayError):
    """Base for failures while calling a backend provider.

    There is exactly one attempt per request; these are never retried.
    """


class RateLimitError(BackendInvocationError):
    """Raised when the provider returns HTTP 429.

    Attributes:
        retry_after: Seconds to wait before retrying, when the provider
            supplies a ``Retry-After`` header.  ``None`` if unavailable.
    """

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        provider: str | None = None,
        category: str | None = None,
        model: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            provider=provider,
            category=category,
            model=model,
            original_error=original_error,
        )
        self.retry_after = retry_after


class AuthError(BackendInvocationError):
    """Raised for authentication or authorisation failures (HTTP 401 / 403)."""


class TimeoutError(BackendInvocationError):  # noqa: A001 – intentionally shadows the built-in
    """Raised when a provider request exceeds the configured timeout."""


class InvalidRequestError(BackendInvocationError):
    """Raised when the provider rejects the translated request (HTTP 400 / 404 / 422)."""


class ProviderUnavailableError(BackendInvocationError):
    """Raised when the provider is down or unreachable (HTTP 5xx / network error)."""
