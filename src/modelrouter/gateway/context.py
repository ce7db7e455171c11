import copy
import uuid
from dataclasses import dataclass, field
from typing import Any

from starlette.responses import Response

from modelrouter.config import GatewayConfig
from modelrouter.gateway.router import Category
from modelrouter.providers.errors import GatewayError


@dataclass
class RequestContext:
    """Per-request state threaded through the pipeline stages.

    Created when a request enters the pipeline and owned by that request's
    task only.  ``original_body`` is a private copy and is never mutated;
    stages work on ``body`` and ``outbound_body``.
    """

    original_body: dict[str, Any]
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    stage: str | None = None
    body: dict[str, Any] = field(default_factory=dict)
    stream: bool = False
    config: GatewayConfig | None = None
    category: Category | None = None
    provider_name: str | None = None
    model: str | None = None
    outbound_body: dict[str, Any] | None = None
    backend_response: Any = None
    response: Response | None = None
    error: GatewayError | None = None

    @classmethod
    def create(cls, body: dict[str, Any], request_id: str | None = None) -> "RequestContext":
        ctx = cls(original_body=copy.deepcopy(body))
        if request_id:
            ctx.request_id = request_id
        return ctx

    @property
    def requested_model(self) -> str | None:
        model = self.original_body.get("model")
        return model if isinstance(model, str) else None

    def log_context(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "requested_model": self.requested_model,
            "category": str(self.category) if self.category else None,
            "provider": self.provider_name,
            "model": self.model,
        }
