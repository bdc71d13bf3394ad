"""
Tests for CancellationService.

The gateway is replaced by the mock_gateway fixture; cancel responses are
built from toss_payment_data() so they carry a realistic cancel history.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from bookings.models import BookingMessage, BookingMessageType, TripStatus
from core.exceptions import ValidationError
from payments.adapters import GatewayPayment
from payments.exceptions import (
    CancellationRequestNotFoundError,
    DuplicateCancellationRequestError,
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    InvalidCancellationStateError,
    InvalidPaymentStateError,
    PaymentNotFoundError,
    RefundPolicyViolationError,
)
from payments.models import CancellationRequest, Payment, PaymentRefund
from payments.policy import (
    POST_TRIP_LABEL,
    CancellationReason,
    RefundPolicy,
    RefundPolicyTier,
    RequesterType,
)
from payments.services import CancellationService
from payments.state_machines import (
    CancellationDecision,
    CancellationStatus,
    PaymentStatus,
)
from payments.tests.factories import (
    CancellationRequestFactory,
    ProductPaymentFactory,
    toss_payment_data,
)


def cancelled_response(payment, amount, transaction_key="txn_cancel_1", reason=None):
    """Gateway payment after cancelling ``amount``."""
    entry = {
        "transactionKey": transaction_key,
        "cancelAmount": amount,
        "cancelReason": reason or "cancellation",
        "canceledAt": "2026-03-01T10:00:00+09:00",
        "cancelStatus": "DONE",
    }
    status = "CANCELED" if amount == payment.amount else "PARTIAL_CANCELED"
    return GatewayPayment.from_dict(toss_payment_data(payment, status=status, cancels=[entry]))


def request_cancellation(payment, **kwargs):
    values = {
        "payment_id": payment.id,
        "requester": payment.payer,
        "requester_type": RequesterType.TRAVELER,
        "reason_type": CancellationReason.SCHEDULE_CHANGE,
    }
    values.update(kwargs)
    return CancellationService.create_cancellation_request(**values)


# =============================================================================
# Automatic Path
# =============================================================================


@pytest.mark.django_db
class TestAutomaticCancellation:
    """Requests the policy grants without review are refunded at once."""

    def test_tiered_refund(self, completed_payment, mock_gateway):
        mock_gateway.cancel_payment.return_value = cancelled_response(
            completed_payment, 85000
        )

        outcome = request_cancellation(completed_payment)

        assert outcome.refund_calculation.refund_percentage == 85
        assert outcome.refund_calculation.days_before_trip == 14
        request = outcome.request
        assert request.status == CancellationStatus.APPROVED
        assert request.is_resolved
        assert request.actual_refund_amount == 85000
        assert request.processed_by is None

        params = mock_gateway.cancel_payment.call_args.args[0]
        assert params.payment_key == completed_payment.payment_key
        assert params.cancel_amount == 85000
        assert params.idempotency_key == f"cancellation-{request.id}"
        assert params.cancel_reason.startswith(f"cancellation-{request.id}")

        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.refund_amount == 85000
        assert payment.trip.status == TripStatus.SUBMITTED
        assert PaymentRefund.objects.get(payment=payment).transaction_key == "txn_cancel_1"

    def test_guide_cancellation_refunds_in_full(self, completed_payment, mock_gateway):
        mock_gateway.cancel_payment.return_value = cancelled_response(
            completed_payment, 100000
        )

        outcome = request_cancellation(
            completed_payment,
            requester=completed_payment.offer.guide,
            requester_type=RequesterType.GUIDE,
            reason_type=CancellationReason.GUIDE_UNAVAILABLE,
        )

        assert outcome.request.actual_refund_amount == 100000
        assert Payment.objects.get(pk=completed_payment.pk).status == PaymentStatus.REFUNDED

    def test_zero_refund_skips_gateway(self, completed_payment, mock_gateway):
        no_refund = RefundPolicy(tiers=(RefundPolicyTier(0, 0, "non-refundable"),))

        outcome = request_cancellation(completed_payment, policy=no_refund)

        mock_gateway.cancel_payment.assert_not_called()
        assert outcome.request.actual_refund_amount == 0
        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.refund_amount == 0

    def test_gateway_failure_leaves_request_for_retry(self, completed_payment, mock_gateway):
        mock_gateway.cancel_payment.side_effect = GatewayUnavailableError("down")

        outcome = request_cancellation(completed_payment)

        request = outcome.request
        assert request.status == CancellationStatus.APPROVED
        assert request.awaiting_refund
        assert request.refund_attempts == 1
        assert Payment.objects.get(pk=completed_payment.pk).status == PaymentStatus.COMPLETED

    def test_posts_conversation_message(
        self, completed_payment, mock_gateway, django_capture_on_commit_callbacks
    ):
        mock_gateway.cancel_payment.return_value = cancelled_response(
            completed_payment, 85000
        )

        with django_capture_on_commit_callbacks(execute=True):
            request_cancellation(completed_payment)

        types = set(
            BookingMessage.objects.filter(offer=completed_payment.offer).values_list(
                "message_type", flat=True
            )
        )
        assert types == {
            BookingMessageType.CANCELLATION_REQUEST,
            BookingMessageType.CANCELLATION_APPROVED,
        }


# =============================================================================
# Admin Path
# =============================================================================


@pytest.mark.django_db
class TestAdminReviewedCancellation:
    def test_started_trip_waits_for_admin(self, completed_payment, mock_gateway):
        trip = completed_payment.trip
        trip.start_date = timezone.now() - timedelta(days=1)
        trip.save()

        outcome = request_cancellation(completed_payment)

        request = outcome.request
        assert request.status == CancellationStatus.PENDING
        assert request.calculated_refund_amount == 0
        assert request.policy_label == POST_TRIP_LABEL
        mock_gateway.cancel_payment.assert_not_called()

    def test_exception_reason_waits_for_admin(self, completed_payment, mock_gateway):
        outcome = request_cancellation(
            completed_payment, reason_type=CancellationReason.NATURAL_DISASTER
        )

        assert outcome.request.status == CancellationStatus.PENDING
        assert outcome.request.calculated_refund_amount == 100000
        mock_gateway.cancel_payment.assert_not_called()

    def test_admin_approves_with_override(self, completed_payment, mock_gateway, admin_user):
        request = request_cancellation(
            completed_payment, reason_type=CancellationReason.NATURAL_DISASTER
        ).request
        mock_gateway.cancel_payment.return_value = cancelled_response(
            completed_payment, 30000
        )

        result = CancellationService.process_cancellation(
            request.id,
            admin=admin_user,
            decision=CancellationDecision.APPROVED,
            notes="Partial evidence",
            override_amount=30000,
        )

        approved = result["request"]
        assert result["success"] is True
        assert approved.actual_refund_amount == 30000
        assert approved.processed_by == admin_user
        assert approved.admin_notes == "Partial evidence"
        assert mock_gateway.cancel_payment.call_args.args[0].cancel_amount == 30000
        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.refund_amount == 30000

    def test_override_above_refundable_rejected(self, completed_payment, mock_gateway, admin_user):
        request = CancellationRequestFactory(payment=completed_payment)

        with pytest.raises(RefundPolicyViolationError):
            CancellationService.approve_cancellation(
                request.id, admin=admin_user, override_amount=100001
            )

        mock_gateway.cancel_payment.assert_not_called()
        assert CancellationRequest.objects.get(pk=request.pk).refund_attempts == 0

    def test_reject(self, completed_payment, mock_gateway, admin_user):
        request = CancellationRequestFactory(payment=completed_payment)

        result = CancellationService.process_cancellation(
            request.id,
            admin=admin_user,
            decision=CancellationDecision.REJECTED,
            notes="Trip went ahead",
        )

        rejected = result["request"]
        assert rejected.status == CancellationStatus.REJECTED
        assert rejected.admin_notes == "Trip went ahead"
        assert rejected.processed_at is not None
        assert Payment.objects.get(pk=completed_payment.pk).status == PaymentStatus.COMPLETED
        mock_gateway.cancel_payment.assert_not_called()

    def test_rejected_request_cannot_be_approved(self, completed_payment, admin_user):
        request = CancellationRequestFactory(
            payment=completed_payment, status=CancellationStatus.REJECTED
        )

        with pytest.raises(InvalidCancellationStateError):
            CancellationService.approve_cancellation(request.id, admin=admin_user)

    def test_approved_request_cannot_be_rejected(self, completed_payment, admin_user):
        request = CancellationRequestFactory(
            payment=completed_payment, status=CancellationStatus.APPROVED
        )

        with pytest.raises(InvalidCancellationStateError):
            CancellationService.reject_cancellation(request.id, admin=admin_user)

    def test_unknown_decision(self, completed_payment, admin_user):
        request = CancellationRequestFactory(payment=completed_payment)

        with pytest.raises(ValidationError):
            CancellationService.process_cancellation(
                request.id, admin=admin_user, decision="maybe"
            )

    def test_unknown_request(self, admin_user):
        with pytest.raises(CancellationRequestNotFoundError):
            CancellationService.reject_cancellation(
                "00000000-0000-0000-0000-000000000000", admin=admin_user
            )

    def test_gateway_refusal_changes_nothing(self, completed_payment, mock_gateway, admin_user):
        request = CancellationRequestFactory(payment=completed_payment)
        mock_gateway.cancel_payment.side_effect = GatewayRequestError(
            "Already cancelled", gateway_code="ALREADY_CANCELED_PAYMENT"
        )

        with pytest.raises(GatewayRequestError):
            CancellationService.approve_cancellation(request.id, admin=admin_user)

        stored = CancellationRequest.objects.get(pk=request.pk)
        assert stored.status == CancellationStatus.PENDING
        assert stored.processed_at is None
        assert Payment.objects.get(pk=completed_payment.pk).status == PaymentStatus.COMPLETED

    def test_pending_requests_oldest_first(self, completed_payment):
        older = CancellationRequestFactory(payment=completed_payment)
        CancellationRequestFactory(status=CancellationStatus.APPROVED)
        newer = CancellationRequestFactory()

        pending = list(CancellationService.get_pending_cancellation_requests())

        assert pending == [older, newer]


# =============================================================================
# Retries
# =============================================================================


@pytest.mark.django_db
class TestRetriedApproval:
    def test_retry_reuses_refund_made_by_timed_out_attempt(
        self, completed_payment, mock_gateway
    ):
        mock_gateway.cancel_payment.side_effect = GatewayTimeoutError("timed out")
        request = request_cancellation(completed_payment).request
        idempotency_key = f"cancellation-{request.id}"
        mock_gateway.retrieve_payment.return_value = cancelled_response(
            completed_payment, 85000, reason=f"{idempotency_key}: Schedule change"
        )
        mock_gateway.cancel_payment.reset_mock()

        approved = CancellationService.approve_cancellation(request.id)

        mock_gateway.cancel_payment.assert_not_called()
        assert approved.is_resolved
        assert approved.refund_attempts == 2
        payment = Payment.objects.get(pk=completed_payment.pk)
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.refund_amount == 85000

    def test_retry_cancels_when_no_earlier_refund(self, completed_payment, mock_gateway):
        mock_gateway.cancel_payment.side_effect = GatewayUnavailableError("down")
        request = request_cancellation(completed_payment).request
        mock_gateway.retrieve_payment.return_value = GatewayPayment.from_dict(
            toss_payment_data(completed_payment)
        )
        mock_gateway.cancel_payment.side_effect = None
        mock_gateway.cancel_payment.return_value = cancelled_response(
            completed_payment, 85000
        )

        approved = CancellationService.approve_cancellation(request.id)

        assert approved.is_resolved
        assert mock_gateway.cancel_payment.call_count == 2
        assert Payment.objects.get(pk=completed_payment.pk).refund_amount == 85000

    def test_resolved_request_cannot_be_approved_again(self, completed_payment, mock_gateway):
        mock_gateway.cancel_payment.return_value = cancelled_response(
            completed_payment, 85000
        )
        request = request_cancellation(completed_payment).request

        with pytest.raises(InvalidCancellationStateError):
            CancellationService.approve_cancellation(request.id)

        assert mock_gateway.cancel_payment.call_count == 1


# =============================================================================
# Request Validation
# =============================================================================


@pytest.mark.django_db
class TestRequestValidation:
    def test_payment_must_be_completed(self, pending_payment):
        with pytest.raises(InvalidPaymentStateError):
            request_cancellation(pending_payment)

    def test_unknown_payment(self, user):
        with pytest.raises(PaymentNotFoundError):
            CancellationService.create_cancellation_request(
                payment_id="00000000-0000-0000-0000-000000000000",
                requester=user,
                requester_type=RequesterType.TRAVELER,
                reason_type=CancellationReason.SCHEDULE_CHANGE,
            )

    def test_open_request_blocks_another(self, completed_payment, mock_gateway):
        request_cancellation(
            completed_payment, reason_type=CancellationReason.NATURAL_DISASTER
        )

        with pytest.raises(DuplicateCancellationRequestError):
            request_cancellation(completed_payment)

    def test_unrefunded_approval_blocks_another(self, completed_payment, mock_gateway):
        mock_gateway.cancel_payment.side_effect = GatewayUnavailableError("down")
        request_cancellation(completed_payment)

        with pytest.raises(DuplicateCancellationRequestError):
            request_cancellation(completed_payment)

    def test_rejected_request_allows_a_new_one(self, completed_payment, mock_gateway):
        CancellationRequestFactory(
            payment=completed_payment,
            status=CancellationStatus.REJECTED,
            processed_at=timezone.now(),
        )
        mock_gateway.cancel_payment.return_value = cancelled_response(
            completed_payment, 85000
        )

        outcome = request_cancellation(completed_payment)

        assert outcome.request.is_resolved


@pytest.mark.django_db
class TestPreviewRefund:
    def test_preview_stores_nothing(self, completed_payment, simple_policy):
        preview = CancellationService.preview_refund(
            completed_payment.id,
            requester_type=RequesterType.TRAVELER,
            reason_type=CancellationReason.SCHEDULE_CHANGE,
            policy=simple_policy,
        )

        assert preview.refund_calculation.refund_amount == 100000
        assert preview.policy_lines[0].startswith("7+ days")
        assert not CancellationRequest.objects.exists()

    def test_product_booking_uses_booked_date(self, simple_policy):
        payment = ProductPaymentFactory(
            status=PaymentStatus.COMPLETED,
            product_offer__start_date=timezone.now() + timedelta(days=4),
        )

        preview = CancellationService.preview_refund(
            payment.id,
            requester_type=RequesterType.TRAVELER,
            reason_type=CancellationReason.SCHEDULE_CHANGE,
            policy=simple_policy,
        )

        assert preview.refund_calculation.days_before_trip == 4
        assert preview.refund_calculation.refund_amount == 25000
