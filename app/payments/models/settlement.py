"""
Settlement model: how a completed payment splits between the platform and
the guide.

    commission_amount = amount * commission_rate_bps // 10000
    tax_amount        = amount * tax_rate_bps // 10000
    settlement_amount = amount - commission_amount - tax_amount

Rates are stored in basis points (1000 = 10%) so the split is exact integer
math; the three amounts always add back up to the payment amount. The
one-to-one key on payment makes a second settlement for the same payment
impossible at the database level.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import SettlementStatus


class Settlement(UUIDPrimaryKeyMixin, BaseModel):
    """Guide payout record for one completed payment."""

    payment = models.OneToOneField(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="settlement",
    )

    total_amount = models.PositiveBigIntegerField(
        help_text="Payment amount the split was computed from",
    )

    commission_rate_bps = models.PositiveIntegerField(
        help_text="Platform commission rate in basis points",
    )
    commission_amount = models.PositiveBigIntegerField()

    tax_rate_bps = models.PositiveIntegerField(
        help_text="Withholding tax rate in basis points",
    )
    tax_amount = models.PositiveBigIntegerField()

    settlement_amount = models.PositiveBigIntegerField(
        help_text="Amount paid out to the guide",
    )

    status = models.CharField(
        max_length=20,
        choices=SettlementStatus.choices,
        default=SettlementStatus.PENDING,
        db_index=True,
    )

    settled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(
                    total_amount=models.F("commission_amount")
                    + models.F("tax_amount")
                    + models.F("settlement_amount")
                ),
                name="settlement_amounts_add_up",
            ),
        ]

    def __str__(self) -> str:
        return f"Settlement({self.payment_id}, {self.status}, {self.settlement_amount})"

    def mark_completed(self) -> None:
        """
        Mark the payout as done.

        Note: Does not save - caller must save after calling.
        """
        self.status = SettlementStatus.COMPLETED
        self.settled_at = timezone.now()
