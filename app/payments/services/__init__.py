"""
Payment services for coordinating payment operations.

This module provides:
- PaymentLedger: Applies payment state transitions and their side effects
- CancellationService: Cancellation requests, approvals and refunds
- PaymentService: Checkout confirmation
- SettlementService: Guide settlements for completed payments
- load_refund_policy: Refund policy for a booking kind

Usage:
    from payments.services import CancellationService

    outcome = CancellationService.create_cancellation_request(
        payment_id=payment.id,
        requester=user,
        requester_type="traveler",
        reason_type="schedule_change",
    )

    from payments.services import PaymentLedger

    with transaction.atomic():
        payment = PaymentLedger.lock_payment(payment_key=key)
        PaymentLedger.sync_from_gateway(payment, gateway_payment)
"""

from payments.services.cancellation_service import (
    CancellationOutcome,
    CancellationService,
    RefundPreview,
)
from payments.services.payment_ledger import PaymentLedger
from payments.services.payment_service import PaymentService
from payments.services.refund_policy_service import (
    default_refund_policy,
    load_refund_policy,
)
from payments.services.settlement_service import SettlementService, split_amount

__all__ = [
    "CancellationOutcome",
    "CancellationService",
    "PaymentLedger",
    "PaymentService",
    "RefundPreview",
    "SettlementService",
    "default_refund_policy",
    "load_refund_policy",
    "split_amount",
]
