from decimal import Decimal

import pytest

AUTH = {"Authorization": "Bearer admin-secret"}


def test_requires_admin_token(client):
    assert client.get("/api/v1/admin/users/user-1/ledger").status_code == 401
    response = client.get("/api/v1/admin/users/user-1/ledger", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


def test_balance_adjustment(client, store):
    response = client.post(
        "/api/v1/admin/users/user-1/balance-adjustments",
        json={"amount": -20, "reason": "estorno de bônus"},
        headers=AUTH,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["transaction_type"] == "admin_adjustment"
    assert body["amount"] == -20
    assert body["new_balance"] == 30
    assert body["metadata"]["admin_reason"] == "estorno de bônus"
    assert store.balance("user-1") == Decimal("30.00")


def test_adjustment_for_unknown_user(client):
    response = client.post(
        "/api/v1/admin/users/ghost/balance-adjustments",
        json={"amount": 10, "reason": "teste"},
        headers=AUTH,
    )
    assert response.status_code == 404


@pytest.mark.parametrize("raw", [b"Infinity", b"-Infinity", b"NaN"])
def test_non_finite_adjustment_is_rejected(client, store, raw):
    response = client.post(
        "/api/v1/admin/users/user-1/balance-adjustments",
        content=b'{"amount": ' + raw + b', "reason": "teste"}',
        headers={**AUTH, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request"}
    assert store.balance("user-1") == Decimal("50.00")
    assert store.transactions == []


def test_ledger_report(client, store, rng):
    rng.draw = 0.1
    client.post(
        "/api/v1/process-game",
        json={"scratch_card_id": "card-iphone", "user_id": "user-1", "card_price": 1},
    )
    client.post(
        "/api/v1/admin/users/user-1/balance-adjustments",
        json={"amount": 5, "reason": "cortesia"},
        headers=AUTH,
    )

    response = client.get("/api/v1/admin/users/user-1/ledger", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["balance"] == 1054
    assert len(body["transactions"]) == 2
    assert body["verification"]["integrity_status"] == "OK"
    assert body["buckets"] == {"real": "1004.00", "simulated": "0.00"}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Frame-Options"] == "DENY"
