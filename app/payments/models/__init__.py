"""
Payment domain models.

- Payment: Authoritative record of one purchase attempt (django-fsm status)
- PaymentRefund: Refund-ledger row per gateway cancel transaction
- WebhookEvent: Inbound gateway notification, stored before processing
- CancellationRequest: A traveler/guide request to cancel a paid booking
- Settlement: Commission/tax/payout split for a completed payment
- RefundPolicyRule: Stored refund tier, overriding the settings table
"""

from payments.models.cancellation_request import CancellationRequest
from payments.models.payment import Payment
from payments.models.refund import PaymentRefund
from payments.models.refund_policy import RefundPolicyRule
from payments.models.settlement import Settlement
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "CancellationRequest",
    "Payment",
    "PaymentRefund",
    "RefundPolicyRule",
    "Settlement",
    "WebhookEvent",
]
