"""Student registration, wallet linking and balance."""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from tests.conftest import OTHER_WALLET, WALLET, complete_course, create_course, create_student


def test_register_student_with_wallet(client: TestClient) -> None:
    resp = client.post("/v1/students", json={"name": "Ada", "wallet_address": WALLET})
    assert resp.status_code == 201
    assert resp.json()["wallet_address"] == WALLET


def test_register_student_without_wallet(client: TestClient) -> None:
    resp = client.post("/v1/students", json={"name": "Ada"})
    assert resp.status_code == 201
    assert resp.json()["wallet_address"] is None


def test_register_rejects_malformed_wallet(client: TestClient) -> None:
    resp = client.post("/v1/students", json={"name": "Ada", "wallet_address": "0x1234"})
    assert resp.status_code == 422


def test_register_rejects_zero_address(client: TestClient) -> None:
    resp = client.post(
        "/v1/students", json={"name": "Ada", "wallet_address": "0x" + "0" * 40}
    )
    assert resp.status_code == 422


def test_get_student(client: TestClient) -> None:
    student_id = create_student(client)
    resp = client.get(f"/v1/students/{student_id}")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Ada"


def test_get_unknown_student_returns_404(client: TestClient) -> None:
    assert client.get(f"/v1/students/{uuid.uuid4()}").status_code == 404


def test_link_wallet_replaces_address(client: TestClient) -> None:
    student_id = create_student(client, wallet=None)
    resp = client.put(
        f"/v1/students/{student_id}/wallet", json={"wallet_address": OTHER_WALLET}
    )
    assert resp.status_code == 200
    assert resp.json()["wallet_address"] == OTHER_WALLET


def test_link_wallet_rejects_invalid_address(client: TestClient) -> None:
    student_id = create_student(client)
    resp = client.put(f"/v1/students/{student_id}/wallet", json={"wallet_address": "nope"})
    assert resp.status_code == 422


def test_link_wallet_unknown_student_returns_404(client: TestClient) -> None:
    resp = client.put(f"/v1/students/{uuid.uuid4()}/wallet", json={"wallet_address": WALLET})
    assert resp.status_code == 404


def test_balance_starts_at_zero(client: TestClient) -> None:
    student_id = create_student(client)
    resp = client.get(f"/v1/students/{student_id}/balance")
    assert resp.status_code == 200
    assert resp.json() == {
        "student_id": student_id,
        "earned": 0,
        "unsettled": 0,
        "rewarded_courses": 0,
    }


def test_balance_after_completing_course(client: TestClient) -> None:
    course_id = create_course(client, token_reward=100)
    student_id = create_student(client)
    complete_course(client, student_id, course_id)

    body = client.get(f"/v1/students/{student_id}/balance").json()
    assert body["earned"] == 100
    assert body["rewarded_courses"] == 1
    assert body["unsettled"] == 0


def test_balance_unknown_student_returns_404(client: TestClient) -> None:
    assert client.get(f"/v1/students/{uuid.uuid4()}/balance").status_code == 404
