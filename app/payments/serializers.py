"""
DRF serializers for payments app.

This module provides serializers for:
- Cancellation requests (input and display)
- Refund previews
- Admin decisions on cancellation requests
- Checkout confirmation

Related files:
    - services/cancellation_service.py: CancellationService
    - views.py: Payment API views

Usage:
    serializer = CancellationRequestCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import CancellationRequest, Payment
from payments.policy import CancellationReason
from payments.state_machines import CancellationDecision


# =============================================================================
# Input Serializers
# =============================================================================


class RefundPreviewRequestSerializer(serializers.Serializer):
    """
    Input for the refund calculator.

    The requester type is not accepted from the client; it follows from
    the user's role on the booking.
    """

    payment_id = serializers.UUIDField()
    reason_type = serializers.ChoiceField(choices=CancellationReason.choices)


class CancellationRequestCreateSerializer(serializers.Serializer):
    payment_id = serializers.UUIDField()
    reason_type = serializers.ChoiceField(choices=CancellationReason.choices)
    reason_detail = serializers.CharField(
        required=False,
        allow_blank=True,
        max_length=2000,
    )
    supporting_documents = serializers.ListField(
        child=serializers.URLField(),
        required=False,
        max_length=10,
    )


class ProcessCancellationSerializer(serializers.Serializer):
    """
    Admin decision on a pending request.

    Fields:
        decision: approved or rejected
        admin_notes: Optional notes stored on the request
        override_refund_amount: Refund this instead of the calculated amount
            (approvals only)
    """

    decision = serializers.ChoiceField(choices=CancellationDecision.choices)
    admin_notes = serializers.CharField(required=False, allow_blank=True)
    override_refund_amount = serializers.IntegerField(
        required=False,
        allow_null=True,
        min_value=0,
    )

    def validate(self, attrs):
        if (
            attrs.get("override_refund_amount") is not None
            and attrs["decision"] != CancellationDecision.APPROVED
        ):
            raise serializers.ValidationError(
                {"override_refund_amount": "Only allowed when approving."}
            )
        return attrs


class ConfirmPaymentSerializer(serializers.Serializer):
    payment_id = serializers.UUIDField()
    payment_key = serializers.CharField(max_length=200)
    amount = serializers.IntegerField(min_value=1)


# =============================================================================
# Output Serializers
# =============================================================================


class RefundCalculationSerializer(serializers.Serializer):
    """Read-only view of a policy engine result."""

    original_amount = serializers.IntegerField()
    refund_amount = serializers.IntegerField()
    refund_percentage = serializers.IntegerField()
    deduction_amount = serializers.IntegerField()
    days_before_trip = serializers.IntegerField()
    policy_label = serializers.CharField()
    requires_admin_approval = serializers.BooleanField()


class CancellationRequestSerializer(serializers.ModelSerializer):
    payment_id = serializers.UUIDField(read_only=True)
    requester_id = serializers.IntegerField(read_only=True)
    processed_by_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = CancellationRequest
        fields = [
            "id",
            "payment_id",
            "requester_id",
            "requester_type",
            "reason_type",
            "reason_detail",
            "supporting_documents",
            "calculated_refund_amount",
            "refund_percentage",
            "days_before_trip",
            "policy_label",
            "actual_refund_amount",
            "status",
            "processed_by_id",
            "processed_at",
            "admin_notes",
            "refund_attempts",
            "created_at",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "order_id",
            "payment_key",
            "amount",
            "currency",
            "status",
            "payment_method",
            "paid_at",
            "refund_amount",
            "cancelled_at",
            "refunded_at",
        ]
        read_only_fields = fields
