"""
RefundPolicyRule model: refund tiers maintained by operations staff.

When active rules exist for a booking kind they replace the
REFUND_POLICY_TIERS setting for that kind. See
payments.services.refund_policy_service.load_refund_policy.
"""

from __future__ import annotations

from django.core.validators import MaxValueValidator
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PolicyApplicability


class RefundPolicyRule(UUIDPrimaryKeyMixin, BaseModel):
    """One tier: cancelling at least N days before the start refunds P%."""

    applicable_to = models.CharField(
        max_length=10,
        choices=PolicyApplicability.choices,
        default=PolicyApplicability.TRIP,
    )

    days_from_trip_start = models.PositiveIntegerField(
        help_text="Minimum whole days between cancellation and start",
    )

    refund_percentage = models.PositiveSmallIntegerField(
        validators=[MaxValueValidator(100)],
    )

    label = models.CharField(max_length=100)

    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["applicable_to", "-days_from_trip_start"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(refund_percentage__lte=100),
                name="refund_policy_percentage_max_100",
            ),
            models.UniqueConstraint(
                fields=["applicable_to", "days_from_trip_start"],
                condition=models.Q(is_active=True),
                name="one_active_rule_per_threshold",
            ),
        ]

    def __str__(self) -> str:
        return f"RefundPolicyRule({self.applicable_to}, {self.days_from_trip_start}d, {self.refund_percentage}%)"
