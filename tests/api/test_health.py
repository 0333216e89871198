from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    # In tests neither Postgres nor Redis is configured
    assert data["checks"]["database"] == "not_configured"
    assert data["checks"]["redis"] == "not_configured"


def test_health_reports_chain_and_reward_mode(client: TestClient) -> None:
    data = client.get("/health").json()
    assert data["checks"]["chain"] == "simulated"
    assert data["reward_mode"] in ("off-chain-only", "on-chain")


def test_ready_returns_200(client: TestClient) -> None:
    assert client.get("/ready").status_code == 200
