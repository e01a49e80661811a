from dataclasses import replace
from decimal import Decimal

import pytest

from raspadinha.app.config import settings
from raspadinha.app.records import DepositStatus, TransactionType

PAID_URL = "/api/v1/webhooks/woovi"
EXPIRED_URL = "/api/v1/webhooks/woovi-expired"


def paid_payload(correlation_id="dep_user-1_1_abc", value=2500, status="COMPLETED"):
    return {
        "event": "OPENPIX:CHARGE_COMPLETED",
        "charge": {"correlationID": correlation_id, "status": status, "value": value},
        "pix": {"endToEndId": "E12345678202401011200abcdef"},
    }


def expired_payload(correlation_id="dep_user-1_1_abc", event="OPENPIX:CHARGE_EXPIRED"):
    return {
        "event": event,
        "charge": {"correlationID": correlation_id, "status": "EXPIRED", "value": 2500},
    }


@pytest.fixture
def deposit(store):
    return store.add_deposit("user-1", "25.00", "dep_user-1_1_abc")


# =============================================================================
# PAGAMENTO CONCLUÍDO
# =============================================================================

def test_completed_payment_credits_once(client, store, deposit):
    response = client.post(PAID_URL, json=paid_payload())

    assert response.status_code == 200
    assert response.text == "OK"
    assert store.deposits[deposit.id].status is DepositStatus.COMPLETED
    assert store.balance("user-1") == Decimal("75.00")

    tx = store.transactions[-1]
    assert tx.transaction_type is TransactionType.DEPOSIT
    assert tx.reference_id == deposit.id
    assert tx.metadata["woovi_correlation_id"] == "dep_user-1_1_abc"
    assert tx.metadata["woovi_end_to_end_id"] == "E12345678202401011200abcdef"
    assert tx.metadata["payment_method"] == "PIX"
    assert tx.metadata["is_simulated"] is False


def test_duplicate_delivery_is_noop(client, store, deposit):
    client.post(PAID_URL, json=paid_payload())
    writes = store.writes

    response = client.post(PAID_URL, json=paid_payload())

    assert response.status_code == 200
    assert response.text == "OK"
    assert store.writes == writes
    assert store.balance("user-1") == Decimal("75.00")
    assert len([t for t in store.transactions if t.transaction_type is TransactionType.DEPOSIT]) == 1


def test_already_completed_deposit_scenario_d(client, store):
    store.add_deposit("user-1", "25.00", "dep_done", status=DepositStatus.COMPLETED)

    response = client.post(PAID_URL, json=paid_payload("dep_done"))

    assert response.status_code == 200
    assert store.writes == 0


def test_amount_mismatch_fails_deposit(client, store, deposit):
    response = client.post(PAID_URL, json=paid_payload(value=2000))

    assert response.status_code == 400
    assert response.text == "Amount mismatch"
    assert store.deposits[deposit.id].status is DepositStatus.FAILED
    assert store.balance("user-1") == Decimal("50.00")
    assert store.transactions == []


def test_one_cent_tolerance(client, store, deposit):
    response = client.post(PAID_URL, json=paid_payload(value=2501))

    assert response.status_code == 200
    assert store.deposits[deposit.id].status is DepositStatus.COMPLETED


@pytest.mark.parametrize(
    "payload",
    [
        {"event": "OPENPIX:TRANSACTION_RECEIVED"},
        {"charge": {"correlationID": "dep_user-1_1_abc", "status": "ACTIVE", "value": 2500}},
    ],
)
def test_irrelevant_events_are_acknowledged(client, store, deposit, payload):
    response = client.post(PAID_URL, json=payload)

    assert response.status_code == 200
    assert store.deposits[deposit.id].status is DepositStatus.PENDING
    assert store.writes == 0


def test_invalid_json(client):
    response = client.post(PAID_URL, content=b"not-json")

    assert response.status_code == 400
    assert response.text == "Invalid JSON"


def test_credit_failure_keeps_deposit_pending_for_redelivery(client, store, deposit):
    store.fail_on.add("apply_balance_change")

    response = client.post(PAID_URL, json=paid_payload())

    assert response.status_code == 500
    assert response.text == "Balance update error"
    assert store.deposits[deposit.id].status is DepositStatus.PENDING
    assert store.balance("user-1") == Decimal("50.00")
    assert store.transactions == []

    store.fail_on.clear()
    retry = client.post(PAID_URL, json=paid_payload())

    assert retry.status_code == 200
    assert store.deposits[deposit.id].status is DepositStatus.COMPLETED
    assert store.balance("user-1") == Decimal("75.00")
    assert len(store.transactions) == 1


def test_timeout_during_credit_is_not_half_applied(client, store, deposit):
    async def timing_out(*args, **kwargs):
        raise TimeoutError("statement timeout")

    store.complete_deposit = timing_out
    response = client.post(PAID_URL, json=paid_payload())

    assert response.status_code == 500
    assert response.text == "Balance update error"
    assert store.deposits[deposit.id].status is DepositStatus.PENDING
    assert store.balance("user-1") == Decimal("50.00")

    del store.complete_deposit
    retry = client.post(PAID_URL, json=paid_payload())

    assert retry.status_code == 200
    assert store.balance("user-1") == Decimal("75.00")


def test_deposit_without_account_is_failed(client, store):
    ghost = store.add_deposit("ghost", "25.00", "dep_ghost")

    response = client.post(PAID_URL, json=paid_payload("dep_ghost"))

    assert response.status_code == 500
    assert response.text == "Balance update error"
    assert store.deposits[ghost.id].status is DepositStatus.FAILED
    assert store.transactions == []


def test_failure_to_mark_failed_leaves_deposit_pending(client, store):
    ghost = store.add_deposit("ghost", "25.00", "dep_ghost")
    store.fail_on.add("transition_failed")

    response = client.post(PAID_URL, json=paid_payload("dep_ghost"))

    assert response.status_code == 500
    assert response.text == "Balance update error"
    assert store.deposits[ghost.id].status is DepositStatus.PENDING
    assert store.transactions == []


def test_concurrent_delivery_losing_swap_does_not_credit(client, store, deposit):
    find_pending = store.find_pending_deposit

    async def raced(correlation_id):
        found = await find_pending(correlation_id)
        # outra entrega conclui o depósito entre a leitura e a troca de status
        store.deposits[found.id] = replace(found, status=DepositStatus.COMPLETED)
        return found

    store.find_pending_deposit = raced
    response = client.post(PAID_URL, json=paid_payload())

    assert response.status_code == 200
    assert response.text == "OK"
    assert store.balance("user-1") == Decimal("50.00")
    assert store.transactions == []


def test_lookup_failure_returns_database_error(client, store, deposit):
    store.fail_on.add("find_pending_deposit")

    response = client.post(PAID_URL, json=paid_payload())

    assert response.status_code == 500
    assert response.text == "Database error"
    assert store.deposits[deposit.id].status is DepositStatus.PENDING


def test_webhook_token_enforced_when_configured(client, monkeypatch, deposit):
    monkeypatch.setattr(settings, "WEBHOOK_AUTH_TOKEN", "woovi-token")

    assert client.post(PAID_URL, json=paid_payload()).status_code == 401
    response = client.post(PAID_URL, json=paid_payload(), headers={"Authorization": "woovi-token"})
    assert response.status_code == 200


# =============================================================================
# COBRANÇA EXPIRADA
# =============================================================================

def test_expiry_scenario_e(client, store, deposit):
    response = client.post(EXPIRED_URL, json=expired_payload())

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Payment expiration processed successfully",
        "correlationID": "dep_user-1_1_abc",
        "status": "expired",
    }
    assert store.deposits[deposit.id].status is DepositStatus.EXPIRED
    assert store.balance("user-1") == Decimal("50.00")
    assert store.transactions == []

    audit = store.audit[-1]
    assert audit.action == "payment_expired"
    assert audit.table_name == "credit_purchases"
    assert audit.record_id == deposit.id
    assert audit.old_values == {"status": "pending"}
    assert audit.new_values["status"] == "expired"
    assert audit.new_values["webhook_data"]["event"] == "OPENPIX:CHARGE_EXPIRED"
    assert "expired_at" in audit.new_values


@pytest.mark.parametrize("event", ["charge.expired", None])
def test_expiry_event_variants(client, store, deposit, event):
    response = client.post(EXPIRED_URL, json=expired_payload(event=event))

    assert response.status_code == 200
    assert store.deposits[deposit.id].status is DepositStatus.EXPIRED


def test_expiry_without_pending_deposit_is_acknowledged(client, store):
    response = client.post(EXPIRED_URL, json=expired_payload("dep_unknown"))

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert store.writes == 0


def test_expiry_replay_is_noop(client, store, deposit):
    client.post(EXPIRED_URL, json=expired_payload())
    writes = store.writes

    client.post(EXPIRED_URL, json=expired_payload())

    assert store.writes == writes
    assert len(store.audit) == 1


def test_not_an_expiry_event(client, store, deposit):
    payload = {"event": "OPENPIX:CHARGE_COMPLETED", "charge": {"correlationID": "dep_user-1_1_abc", "status": "COMPLETED"}}

    response = client.post(EXPIRED_URL, json=payload)

    assert response.status_code == 200
    assert store.deposits[deposit.id].status is DepositStatus.PENDING


def test_expiry_event_without_correlation_id(client):
    response = client.post(EXPIRED_URL, json={"event": "OPENPIX:CHARGE_EXPIRED"})

    assert response.status_code == 400


def test_expiry_never_touches_completed_deposit(client, store):
    done = store.add_deposit("user-1", "25.00", "dep_paid", status=DepositStatus.COMPLETED)

    client.post(EXPIRED_URL, json=expired_payload("dep_paid"))

    assert store.deposits[done.id].status is DepositStatus.COMPLETED
