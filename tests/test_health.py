"""Tests for /health endpoints."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from modelrouter.config import GatewayConfig, Settings
from modelrouter.gateway import build_gateway
from modelrouter.main import app


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def cleanup_gateway():
    yield
    if hasattr(app.state, "gateway"):
        del app.state.gateway


def _install_gateway(raw: dict) -> None:
    app.state.gateway = build_gateway(
        GatewayConfig.model_validate(raw),
        Settings(),
        client_factory=lambda provider: object(),
        token_counter=len,
    )


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------
class TestHealthEndpoint:
    async def test_returns_200(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200

    async def test_response_structure(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body
        assert "version" in body

    async def test_version_matches_settings(self, client: AsyncClient) -> None:
        from modelrouter.config import settings

        response = await client.get("/health")
        assert response.json()["version"] == settings.app_version


# ---------------------------------------------------------------------------
# /health/live
# ---------------------------------------------------------------------------
class TestLivenessEndpoint:
    async def test_returns_200(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")
        assert response.status_code == 200

    async def test_response_body(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")
        assert response.json()["status"] == "alive"


# ---------------------------------------------------------------------------
# /health/ready
# ---------------------------------------------------------------------------
class TestReadinessEndpoint:
    async def test_ready_with_default_provider(self, client: AsyncClient) -> None:
        _install_gateway(
            {
                "OPENAI_API_KEY": "sk",
                "OPENAI_BASE_URL": "https://api.openai.com/v1",
                "OPENAI_MODEL": "gpt-4o-mini",
            }
        )
        response = await client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["providers"] == ["default"]
        assert body["routing"] == "default"

    async def test_reports_rule_routing(self, client: AsyncClient) -> None:
        provider = {"name": "p", "api_base_url": "http://p/v1", "api_key": "k", "models": ["m"]}
        _install_gateway(
            {
                "Providers": [provider],
                "Router": {"background": "p,m", "think": "p,m", "longContext": "p,m"},
            }
        )
        response = await client.get("/health/ready")
        assert response.json()["routing"] == "rules"

    async def test_gateway_missing_returns_503(self, client: AsyncClient) -> None:
        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"

    async def test_no_default_provider_returns_503(self, client: AsyncClient) -> None:
        _install_gateway({})
        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert "providers" in response.json()["errors"]


# ---------------------------------------------------------------------------
# /metrics
# ---------------------------------------------------------------------------
class TestMetricsEndpoint:
    async def test_exposes_gateway_counters(self, client: AsyncClient) -> None:
        response = await client.get("/metrics/")
        assert response.status_code == 200
        assert "modelrouter_requests_total" in response.text
