"""
Shared fixtures for orbminer integration tests.

Provides:
 - A fully wired AutomationServer backed by in-memory SQLite and the
   embedded ChainSimulator (no RPC endpoint, no real funds)
 - A FastAPI TestClient over the server's app
 - Helpers to register and fund users through the REST API
"""

import pytest
import pytest_asyncio

from orbminer.chain_simulator import ChainSimulator
from orbminer.config import Config
from orbminer.server import AutomationServer


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
def chain():
    return ChainSimulator(round_id=10)


@pytest_asyncio.fixture
async def server(chain):
    config = Config(
        simulate=True,
        db_path=":memory:",
        poll_interval_sec=0.05,
        user_delay_sec=0,
        settle_delay_sec=0,
        checkpoint_delay_sec=0,
        user_timeout_sec=5,
        restart_backoff_rounds=2,
    )
    srv = AutomationServer(config, chain=chain)
    await srv._init_services()
    yield srv
    await srv.stop()


@pytest.fixture
def client(server):
    from fastapi.testclient import TestClient
    return TestClient(server.app)


# ── Helpers ────────────────────────────────────────────────────────────────

@pytest.fixture
def register(client):
    """Factory: register a user with a generated wallet, fund it, apply settings.

    Returns the wallet's public key.
    """

    def _register(user_id: str, fund_sol: float = 1.0, **settings) -> str:
        resp = client.post("/api/users", json={"user_id": user_id})
        assert resp.status_code == 200, resp.text
        public_key = resp.json()["public_key"]
        if fund_sol:
            assert client.post(f"/chain/fund/{public_key}", params={"sol": fund_sol}).status_code == 200
        if settings:
            assert client.put(f"/api/users/{user_id}/settings", json=settings).status_code == 200
        return public_key

    return _register
