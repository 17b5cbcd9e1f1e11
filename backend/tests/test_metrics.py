"""
Metrics helper tests
"""

from emailpay.utils.metrics import _normalize_path, get_metrics_output, record_transaction_outcome


def test_normalize_path():
    assert _normalize_path("/api/v1/wallets/alice@example.com/balance") == "/api/v1/wallets/{email}/balance"
    assert (
        _normalize_path("/api/v1/transactions/123e4567-e89b-12d3-a456-426614174000")
        == "/api/v1/transactions/{id}"
    )
    assert _normalize_path("/api/v1/things/42") == "/api/v1/things/{id}"
    assert _normalize_path("/health") == "/health"


def test_outcome_counter_is_exported():
    record_transaction_outcome("completed")

    assert b'emailpay_transaction_outcomes_total{status="completed"}' in get_metrics_output()
