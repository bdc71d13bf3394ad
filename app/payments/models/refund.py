"""
PaymentRefund model: refund-ledger rows mirrored from the gateway.

The gateway keeps the full history of cancels for a payment and resends all
of it on every PARTIAL_CANCELED notification. Each cancel carries its own
transaction key; one row is stored per key, so replays and redeliveries can
be applied any number of times.

Usage:
    from payments.models import PaymentRefund

    PaymentRefund.objects.filter(payment=payment).aggregate(Sum("refund_amount"))
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import RefundType


class PaymentRefund(UUIDPrimaryKeyMixin, BaseModel):
    """
    One executed refund (a gateway cancel transaction).

    Fields:
        payment: Payment the money came back from
        refund_amount: Cancelled amount in minor units
        refund_type: FULL when this cancel brought the payment to zero
        transaction_key: Gateway per-cancel transaction key (unique)
        canceled_at: When the gateway executed the cancel
        gateway_response: The cancel entry as the gateway reported it
    """

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="refunds",
    )

    refund_amount = models.PositiveBigIntegerField(
        help_text="Cancelled amount in minor units",
    )

    refund_type = models.CharField(
        max_length=10,
        choices=RefundType.choices,
        default=RefundType.PARTIAL,
    )

    refund_reason = models.TextField(blank=True, default="")

    transaction_key = models.CharField(
        max_length=200,
        unique=True,
        help_text="Gateway cancel transaction key - unique for idempotency",
    )

    canceled_at = models.DateTimeField(null=True, blank=True)

    gateway_response = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(refund_amount__gt=0),
                name="payment_refund_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentRefund({self.transaction_key}, {self.refund_amount}, {self.refund_type})"
