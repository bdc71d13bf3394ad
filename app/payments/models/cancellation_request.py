"""
CancellationRequest model: a traveler's or guide's request to cancel a paid
booking, with the refund the policy engine computed for it.

A request is resolved once processed_at is set. Until then it is either
PENDING (waiting for an admin) or APPROVED by the policy but not yet
refunded (the gateway call failed or is still to be retried).
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.policy import CancellationReason, RequesterType
from payments.state_machines import CancellationStatus


class CancellationRequest(UUIDPrimaryKeyMixin, BaseModel):
    """
    One cancellation attempt for a payment.

    Fields:
        payment: Payment whose booking is being cancelled
        requester/requester_type: Who asked (traveler or guide)
        reason_type/reason_detail: Reason category and free text
        calculated_refund_amount: What the refund policy granted
        actual_refund_amount: What was actually refunded (set when resolved)
        refund_attempts/refund_attempted_at: Gateway refund attempts made;
            a second attempt reads the payment back from the gateway first
        processed_by/processed_at/admin_notes: Resolution audit trail
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="cancellation_requests",
    )

    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="cancellation_requests",
    )

    requester_type = models.CharField(
        max_length=20,
        choices=RequesterType.choices,
    )

    # ==========================================================================
    # Reason
    # ==========================================================================

    reason_type = models.CharField(
        max_length=40,
        choices=CancellationReason.choices,
    )

    reason_detail = models.TextField(blank=True, default="")

    supporting_documents = models.JSONField(
        default=list,
        blank=True,
        help_text="URLs of uploaded evidence (medical notes, notices, ...)",
    )

    # ==========================================================================
    # Refund Calculation
    # ==========================================================================

    calculated_refund_amount = models.PositiveBigIntegerField()
    refund_percentage = models.PositiveSmallIntegerField(default=0)
    days_before_trip = models.IntegerField(null=True, blank=True)
    policy_label = models.CharField(max_length=100, blank=True, default="")

    actual_refund_amount = models.PositiveBigIntegerField(null=True, blank=True)

    refund_attempts = models.PositiveSmallIntegerField(default=0)
    refund_attempted_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Resolution
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=CancellationStatus.choices,
        default=CancellationStatus.PENDING,
        db_index=True,
    )

    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="processed_cancellations",
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    admin_notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="cancel_req_status_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["payment"],
                condition=models.Q(status="pending"),
                name="one_pending_cancellation_per_payment",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"CancellationRequest({self.id}, {self.status}, "
            f"{self.calculated_refund_amount})"
        )

    @property
    def is_resolved(self) -> bool:
        return self.processed_at is not None

    @property
    def awaiting_refund(self) -> bool:
        """Approved by policy or admin, refund not yet executed."""
        return self.status == CancellationStatus.APPROVED and not self.is_resolved
