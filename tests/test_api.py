"""Tests for the FastAPI endpoints."""

import re
import time

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from stakerelay import __version__
from stakerelay.api.app import create_app
from stakerelay.relay.replay import MemoryReplayStore
from stakerelay.services import RelayServices
from tests.conftest import (
    OTHER_KEY,
    RELAYER_ADDRESS,
    ROUTER_ADDRESS,
    STAKING_ADDRESS,
    TOKEN_1,
    TOKEN_2,
    USER_ADDRESS,
    YLS_ADDRESS,
    sign_stake,
)

TX_HASH = re.compile(r"^0x[0-9a-f]{64}$")


@pytest_asyncio.fixture
async def client(settings, services):
    """Async test client over the durable replay store."""
    app = create_app(settings, services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def make_client(settings, transport):
    """Build a client for modified settings."""
    created = []

    async def factory(**overrides):
        custom = settings.model_copy(update=overrides)
        services = RelayServices(custom, transport=transport, replay_store=MemoryReplayStore())
        await services.start()
        ac = AsyncClient(transport=ASGITransport(app=create_app(custom, services=services)), base_url="http://test")
        created.append((services, ac))
        return ac

    yield factory

    for services, ac in created:
        await ac.aclose()
        await services.close()


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "OK"
        assert data["environment"] == "test"
        assert data["version"] == __version__
        assert "timestamp" in data

    async def test_detailed_health(self, client):
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["config"]["relayer_key"] == "***"
        assert data["relayer"]["address"] == RELAYER_ADDRESS
        assert data["signerHealthy"] is True
        assert data["replayStoreDurable"] is True
        assert "22" * 32 not in response.text

    async def test_detailed_health_without_signer(self, make_client):
        client = await make_client(relayer_private_key=None)

        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["relayer"] is None
        assert data["signerHealthy"] is False


class TestRelayEndpoint:
    """Tests for POST /api/relay/stake."""

    async def test_relay_success(self, client, node):
        payload = sign_stake(pid=0, amount=10**18)

        response = await client.post("/api/relay/stake", json=payload)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert TX_HASH.match(data["txHash"])
        assert data["message"] == "Transaction relayed successfully"
        assert len(node.sent) == 1

    async def test_resubmission_rejected(self, client, node):
        payload = sign_stake()
        first = await client.post("/api/relay/stake", json=payload)
        assert first.status_code == 200

        second = await client.post("/api/relay/stake", json=payload)

        assert second.status_code == 409
        assert second.json()["error"]
        assert len(node.sent) == 1

    async def test_expired(self, client, node):
        payload = sign_stake(deadline=int(time.time()) - 10)

        response = await client.post("/api/relay/stake", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "Transaction expired"
        assert node.sent == []

    async def test_invalid_signature(self, client):
        payload = sign_stake(key=OTHER_KEY, user=USER_ADDRESS)

        response = await client.post("/api/relay/stake", json=payload)

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid signature"

    async def test_missing_field(self, client):
        payload = sign_stake()
        del payload["signature"]

        response = await client.post("/api/relay/stake", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required field: signature"

    async def test_invalid_json(self, client):
        response = await client.post(
            "/api/relay/stake", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Request body must be valid JSON"

    async def test_upstream_failure(self, client, node):
        node.send_errors = [(-32000, "insufficient funds for gas * price + value")]

        response = await client.post("/api/relay/stake", json=sign_stake())

        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "Failed to relay transaction"
        assert "insufficient funds" in data["details"]

    async def test_relayer_not_configured(self, make_client):
        client = await make_client(relayer_private_key=None)

        response = await client.post("/api/relay/stake", json=sign_stake())

        assert response.status_code == 500
        assert response.json()["error"] == "Relayer is not configured"

    async def test_production_hides_details(self, make_client):
        client = await make_client(environment="production")

        response = await client.post("/api/relay/stake", json=sign_stake(deadline=int(time.time()) - 10))

        assert response.status_code == 400
        assert response.json() == {"error": "Transaction expired"}


class TestStakingEndpoint:
    """Tests for GET /api/staking/{address}."""

    async def test_staking_info(self, client):
        response = await client.get(f"/api/staking/{USER_ADDRESS}")

        assert response.status_code == 200
        data = response.json()
        assert data["stakedBalance"] == str(5 * 10**18)
        assert data["totalStaked"] == str(100 * 10**18)

    async def test_invalid_address(self, client):
        response = await client.get("/api/staking/0x1234")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid Ethereum address"

    async def test_invalid_pid(self, client):
        response = await client.get(f"/api/staking/{USER_ADDRESS}", params={"pid": -1})

    async def test_pid_beyond_uint256(self, client):
        response = await client.get(f"/api/staking/{USER_ADDRESS}", params={"pid": 2**256})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request parameters"

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request parameters"

    async def test_node_failure(self, client, node):
        node.failing_methods.add("eth_call")

        response = await client.get(f"/api/staking/{USER_ADDRESS}")

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to fetch staking information"


class TestSwapQuoteEndpoint:
    """Tests for GET /api/swap/quote."""

    async def test_fallback_quote(self, client):
        response = await client.get(
            "/api/swap/quote", params={"amountIn": "100", "tokenIn": TOKEN_1, "tokenOut": TOKEN_2}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["amountIn"] == "100"
        assert data["amountOut"] == "0.100000"
        assert data["exchange"] == "Mock Exchange"
        assert data["degraded"] is True
        assert data["note"] == "Using mock data - contract call failed"

    async def test_router_quote(self, client, node):
        node.set_amounts_out([100 * 10**18, 10**18, 2 * 10**18])

        response = await client.get(
            "/api/swap/quote", params={"amountIn": "100", "tokenIn": TOKEN_1, "tokenOut": TOKEN_2}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["amountOut"] == "2.0"
        assert data["exchange"] == "Uniswap V2"
        assert data["degraded"] is False
        assert "note" not in data

    async def test_fallback_quote_for_large_amount(self, client):
        response = await client.get(
            "/api/swap/quote",
            params={"amountIn": "10000000000000000000000000", "tokenIn": TOKEN_1, "tokenOut": TOKEN_2},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["amountOut"] == "10000000000000000000000.000000"
        assert data["degraded"] is True

    async def test_missing_parameters(self, client):
        response = await client.get("/api/swap/quote", params={"amountIn": "100"})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required parameters: amountIn, tokenIn, tokenOut"


class TestInfoEndpoints:
    """Tests for contracts and gas endpoints."""

    async def test_contracts(self, client):
        response = await client.get("/api/contracts")

        assert response.status_code == 200
        assert response.json() == {
            "staking": STAKING_ADDRESS,
            "swapRouter": ROUTER_ADDRESS,
            "ylsToken": YLS_ADDRESS,
            "tradingStrategies": None,
        }

    async def test_gas_estimate(self, client):
        response = await client.get("/api/gas/estimate")

        assert response.status_code == 200
        assert response.json() == {
            "gasPrice": "2.0",
            "maxFeePerGas": "2.001",
            "maxPriorityFeePerGas": "0.001",
        }

    async def test_gas_estimate_failure(self, client, node):
        node.failing_methods.add("eth_gasPrice")

        response = await client.get("/api/gas/estimate")

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to estimate gas prices"

    async def test_unknown_route(self, client):
        response = await client.get("/api/nope")

        assert response.status_code == 404
        assert response.json() == {"error": "Route not found", "path": "/api/nope"}
