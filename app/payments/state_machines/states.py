"""
State enums for payment models.

These are Django TextChoices for database storage and admin integration;
the Payment status is driven by django-fsm transitions on the model.

State Machines Overview:

Payment States:
    pending → completed → cancelled | partially_refunded | refunded
    partially_refunded → partially_refunded | refunded
    pending → failed | expired

CancellationRequest States:
    pending → approved | rejected
    (auto-approved requests are created approved and resolved once the
    refund has gone through)

WebhookEvent States:
    pending → processed
    pending → failed → processed (reconciliation sweep)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the Payment lifecycle.

    Terminal states: CANCELLED, REFUNDED, FAILED, EXPIRED
    COMPLETED and PARTIALLY_REFUNDED can still take refunds.
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    REFUNDED = "refunded", "Refunded"
    FAILED = "failed", "Failed"
    EXPIRED = "expired", "Expired"


# Payment statuses that may still receive a refund.
REFUNDABLE_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED}
)

TERMINAL_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
        PaymentStatus.FAILED,
        PaymentStatus.EXPIRED,
    }
)


class RefundType(models.TextChoices):
    FULL = "full", "Full"
    PARTIAL = "partial", "Partial"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    A row is written PENDING before any processing so redeliveries of the
    same event id are recognised even if processing crashes.
    """

    PENDING = "pending", "Pending"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class CancellationStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class CancellationDecision(models.TextChoices):
    """Admin decision on a pending cancellation request."""

    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class SettlementStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"


class PolicyApplicability(models.TextChoices):
    """Which kind of booking a stored refund policy rule prices."""

    TRIP = "trip", "Trip"
    PRODUCT = "product", "Product"


__all__ = [
    "CancellationDecision",
    "CancellationStatus",
    "PaymentStatus",
    "PolicyApplicability",
    "REFUNDABLE_PAYMENT_STATUSES",
    "RefundType",
    "SettlementStatus",
    "TERMINAL_PAYMENT_STATUSES",
    "WebhookEventStatus",
]
