"""
Payment adapters for external services.

All payment gateway calls go through these adapters to ensure consistent
error handling, timeouts, idempotency and observability.

Usage:
    from payments.adapters import TossPaymentsAdapter

    payment = TossPaymentsAdapter.retrieve_payment(payment_key)
"""

from payments.adapters.toss_adapter import (
    CancelPaymentParams,
    ConfirmPaymentParams,
    GatewayCancel,
    GatewayFailure,
    GatewayPayment,
    GatewayPaymentStatus,
    TossPaymentsAdapter,
)

__all__ = [
    "CancelPaymentParams",
    "ConfirmPaymentParams",
    "GatewayCancel",
    "GatewayFailure",
    "GatewayPayment",
    "GatewayPaymentStatus",
    "TossPaymentsAdapter",
]
