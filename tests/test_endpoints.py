"""API tests through the FastAPI test client."""
import pytest
from fastapi.testclient import TestClient

from market_gateway.main import create_app
from market_gateway.models import AssetCategory

from conftest import StubProvider, make_gateway


@pytest.fixture
def providers():
    return {
        "alpha": StubProvider("alpha", prices={"AAPL": 190.0}, default_price=25.0),
        "coins": StubProvider("coins", categories=(AssetCategory.CRYPTO,), default_price=65000.0),
    }


@pytest.fixture
def gateway(test_settings, equity_chain, providers):
    return make_gateway(test_settings, providers, equity_chain)


@pytest.fixture
def client(gateway):
    with TestClient(create_app(gateway=gateway)) as test_client:
        yield test_client


class TestServiceEndpoints:
    """Root, liveness and health."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "healthy"}

    def test_health_reports_providers(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["background_tasks_running"] is True
        assert set(data["providers"]) == {"alpha", "coins"}
        assert data["demo_mode_providers"] == []

    def test_demo_mode_degrades_health(self, test_settings, equity_chain, providers):
        providers["alpha"].api_key_setting = "alpha_api_key"
        gateway = make_gateway(test_settings, providers, equity_chain)

        with TestClient(create_app(gateway=gateway)) as test_client:
            data = test_client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["demo_mode_providers"] == ["alpha"]

    def test_gateway_not_running(self, gateway):
        client = TestClient(create_app(gateway=gateway))

        assert client.get("/health").status_code == 503

    def test_unknown_route_uses_error_schema(self, client):
        response = client.get("/v2/nothing")

        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "NOT_FOUND"
        assert body["details"]["path"] == "/v2/nothing"

    def test_process_time_header(self, client):
        assert "X-Process-Time" in client.get("/").headers


class TestMarketDataEndpoints:
    """Asset, quote, search, diagnostics and refresh routes."""

    def test_quote(self, client):
        data = client.get("/v1/quote/aapl").json()

        assert data["symbol"] == "AAPL"
        assert data["price"] == 190.0
        assert data["source"] == "alpha"
        assert data["status"] == "fresh"

    def test_unknown_asset_returns_zero_record(self, client, providers):
        providers["alpha"].default_price = None

        response = client.get("/v1/assets/stock/ZZZ")

        assert response.status_code == 200
        data = response.json()
        assert data["price"] == 0.0
        assert data["source"] == "unavailable"
        assert data["status"] == "fallback"

    def test_asset_page(self, client):
        data = client.get("/v1/assets/stock", params={"page": 2, "limit": 3}).json()

        assert len(data["items"]) == 3
        assert data["pagination"]["page"] == 2
        assert data["pagination"]["has_prev"] is True
        assert data["metadata"]["refreshed"] == 3

    def test_invalid_category_and_params(self, client):
        assert client.get("/v1/assets/bonds").status_code == 422
        assert client.get("/v1/assets/stock", params={"page": 0}).status_code == 422
        assert client.get("/v1/assets/stock", params={"sort_order": "sideways"}).status_code == 422

    def test_search(self, client):
        data = client.get("/v1/search", params={"q": "apple"}).json()

        assert data["results"][0]["symbol"] == "AAPL"
        assert client.get("/v1/search").status_code == 422

    def test_search_by_category(self, client):
        data = client.get("/v1/search", params={"q": "BTC", "category": "crypto"}).json()

        assert data["category"] == "crypto"
        assert data["results"][0]["symbol"] == "BTC"

    def test_diagnostics(self, client):
        client.get("/v1/quote/AAPL")

        data = client.get("/v1/diagnostics").json()

        assert data["providers"]["alpha"]["attempts"] == 1
        assert "cache" in data and "prefetch" in data

    def test_refresh(self, client):
        data = client.post("/v1/refresh", params={"category": "crypto"}).json()

        assert data["status"] == "completed"
        assert data["reports"][0]["category"] == "crypto"
        assert data["reports"][0]["live_written"] == 5
