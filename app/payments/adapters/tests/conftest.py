"""
Pytest fixtures for Toss Payments adapter tests.

Sections:
    - HTTP Mock Fixtures
    - Response Body Fixtures
"""

from unittest.mock import patch

import pytest


# =============================================================================
# HTTP Mock Fixtures
# =============================================================================


@pytest.fixture
def mock_request():
    """Patch requests.request as used by the adapter."""
    with patch("payments.adapters.toss_adapter.requests.request") as mocked:
        yield mocked


# =============================================================================
# Response Body Fixtures
# =============================================================================


@pytest.fixture
def payment_body():
    """GET /v1/payments/{paymentKey} body of an approved card payment."""
    return {
        "paymentKey": "tgen_20260201_abc",
        "orderId": "order-000001",
        "status": "DONE",
        "totalAmount": 100000,
        "balanceAmount": 100000,
        "method": "카드",
        "approvedAt": "2026-02-01T10:00:00+09:00",
        "cancels": None,
    }


@pytest.fixture
def cancelled_body(payment_body):
    """The same payment after two partial cancels that drained it."""
    return {
        **payment_body,
        "status": "CANCELED",
        "balanceAmount": 0,
        "cancels": [
            {
                "transactionKey": "txn_a",
                "cancelAmount": 40000,
                "cancelReason": "cancellation-1: Schedule change",
                "canceledAt": "2026-02-10T09:00:00+09:00",
                "refundableAmount": 60000,
                "cancelStatus": "DONE",
            },
            {
                "transactionKey": "txn_b",
                "cancelAmount": 60000,
                "cancelReason": "고객 요청",
                "canceledAt": "2026-02-11T09:00:00+09:00",
                "refundableAmount": 0,
                "cancelStatus": "DONE",
            },
        ],
    }
