"""
Transactions API tests (read-only)
"""

from datetime import timedelta

from fastapi.testclient import TestClient

from emailpay.core.transactions.models import TransactionStatus

API = "/api/v1/transactions"


def test_get_transaction(client: TestClient, make_transaction, settings):
    tx_hash = "0x" + "ab" * 32
    make_transaction(
        "tx-1",
        amount="10.500000",
        status=TransactionStatus.COMPLETED,
        tx_hash=tx_hash,
        block_number=42,
        meta={"retry_of": "tx-0"},
    )

    response = client.get(f"{API}/tx-1")

    assert response.status_code == 200
    data = response.json()
    assert data["tx_id"] == "tx-1"
    assert data["amount"] == "10.5"
    assert data["status"] == "completed"
    assert data["block_number"] == 42
    assert data["explorer_url"] == settings.EXPLORER_TX_URL.format(tx_hash=tx_hash)
    assert data["retry_of"] == "tx-0"
    assert data["created_at"].endswith("+00:00")


def test_get_missing_transaction(client: TestClient):
    response = client.get(f"{API}/missing")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "TRANSACTION_NOT_FOUND"


def test_list_user_transactions_newest_first(client: TestClient, make_transaction):
    make_transaction("old", age=timedelta(hours=2))
    make_transaction("new", age=timedelta(minutes=1))
    make_transaction("received", sender_email="c@x.com", recipient_email="a@x.com", age=timedelta(hours=1))
    make_transaction("unrelated", sender_email="c@x.com", recipient_email="d@x.com")

    response = client.get(f"{API}/user/A@x.com")

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "a@x.com"
    assert data["count"] == 3
    assert [tx["tx_id"] for tx in data["transactions"]] == ["new", "received", "old"]


def test_list_filters_by_status_and_limit(client: TestClient, make_transaction):
    make_transaction("t1", status=TransactionStatus.FAILED, age=timedelta(minutes=3))
    make_transaction("t2", status=TransactionStatus.FAILED, age=timedelta(minutes=2))
    make_transaction("t3", status=TransactionStatus.COMPLETED)

    response = client.get(f"{API}/user/a@x.com", params={"status": "FAILED", "limit": 1})

    assert response.status_code == 200
    assert [tx["tx_id"] for tx in response.json()["transactions"]] == ["t2"]


def test_list_rejects_invalid_status(client: TestClient):
    response = client.get(f"{API}/user/a@x.com", params={"status": "lost"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_STATUS"


def test_list_rejects_out_of_range_limit(client: TestClient):
    assert client.get(f"{API}/user/a@x.com", params={"limit": 0}).status_code == 422
