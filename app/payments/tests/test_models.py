"""
Tests for payment domain models.

Tests constraints, defaults, FSM transitions and helper methods for the
payment models. Payments whose transitions are exercised are re-read
from the database first, the way the ledger works on locked rows.
"""

import uuid

import pytest
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed

from bookings.tests.factories import OfferFactory, TripFactory, UserFactory
from payments.models import (
    CancellationRequest,
    Payment,
    PaymentRefund,
    Settlement,
    WebhookEvent,
)
from payments.state_machines import (
    CancellationStatus,
    PaymentStatus,
    SettlementStatus,
    WebhookEventStatus,
)
from payments.tests.factories import (
    CancellationRequestFactory,
    CompletedPaymentFactory,
    PaymentFactory,
    ProductPaymentFactory,
    WebhookEventFactory,
)


# =============================================================================
# Payment Tests
# =============================================================================


@pytest.mark.django_db
class TestPaymentModel:
    """Tests for Payment fields and constraints."""

    def test_default_values(self):
        payment = PaymentFactory()

        assert isinstance(payment.pk, uuid.UUID)
        assert payment.status == PaymentStatus.PENDING
        assert payment.currency == "KRW"
        assert payment.refund_amount == 0
        assert payment.version == 1
        assert payment.refundable_amount == payment.amount

    def test_product_payment(self):
        payment = ProductPaymentFactory()

        assert payment.trip is None
        assert payment.product == payment.product_offer.product
        assert payment.amount == 50000

    def test_amount_must_be_positive(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(amount=0)

    def test_refund_cannot_exceed_amount(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(amount=1000, refund_amount=1001)

    def test_order_id_unique(self):
        PaymentFactory(order_id="order-dup")

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(order_id="order-dup")

    def test_requires_complete_trip_booking(self):
        trip = TripFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            Payment.objects.create(
                payer=trip.traveler,
                amount=1000,
                order_id="order-half",
                trip=trip,
            )

    def test_cannot_reference_two_bookings(self):
        product_payment = ProductPaymentFactory()
        offer = OfferFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            Payment.objects.create(
                payer=offer.trip.traveler,
                amount=1000,
                order_id="order-both",
                trip=offer.trip,
                offer=offer,
                product=product_payment.product,
                product_offer=product_payment.product_offer,
            )

    def test_booking_cannot_change(self):
        payment = Payment.objects.get(pk=PaymentFactory().pk)
        other = OfferFactory()

        payment.trip = other.trip
        payment.offer = other

        with pytest.raises(ValueError):
            payment.save()

    def test_version_increments_on_save(self):
        payment = Payment.objects.get(pk=PaymentFactory().pk)
        assert payment.version == 1

        payment.payment_method = "card"
        payment.save()
        assert payment.version == 2

        payment.save()
        assert payment.version == 3

    def test_status_cannot_be_assigned(self):
        payment = Payment.objects.get(pk=PaymentFactory().pk)

        with pytest.raises(AttributeError):
            payment.status = PaymentStatus.COMPLETED

    def test_str_representation(self):
        payment = PaymentFactory(amount=12000)

        assert str(payment) == f"Payment({payment.id}, pending, 12000 KRW)"


@pytest.mark.django_db
class TestPaymentTransitions:
    """Tests for the django-fsm transitions on Payment."""

    def test_complete(self):
        payment = Payment.objects.get(pk=PaymentFactory().pk)

        payment.complete(payment_method="card")
        payment.save()

        stored = Payment.objects.get(pk=payment.pk)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.paid_at is not None
        assert stored.payment_method == "card"

    def test_fail_and_expire_only_from_pending(self):
        failed = Payment.objects.get(pk=PaymentFactory().pk)
        failed.fail("card declined")
        assert failed.status == PaymentStatus.FAILED
        assert failed.failure_reason == "card declined"

        expired = Payment.objects.get(pk=PaymentFactory().pk)
        expired.expire()
        assert expired.status == PaymentStatus.EXPIRED

        completed = Payment.objects.get(pk=CompletedPaymentFactory().pk)
        with pytest.raises(TransitionNotAllowed):
            completed.fail("late failure")

    def test_cancel_records_refund_total(self):
        payment = Payment.objects.get(pk=CompletedPaymentFactory(amount=100000).pk)

        payment.cancel(refund_total=100000)

        assert payment.status == PaymentStatus.CANCELLED
        assert payment.refund_amount == 100000
        assert payment.refunded_at == payment.cancelled_at

    def test_forfeited_cancel_refunds_nothing(self):
        payment = Payment.objects.get(pk=CompletedPaymentFactory().pk)

        payment.cancel()

        assert payment.refund_amount == 0
        assert payment.refunded_at is None
        assert payment.cancelled_at is not None

    def test_pending_payment_cannot_be_cancelled(self):
        payment = Payment.objects.get(pk=PaymentFactory().pk)

        with pytest.raises(TransitionNotAllowed):
            payment.cancel()

    def test_partial_then_full_refund(self):
        payment = Payment.objects.get(pk=CompletedPaymentFactory(amount=100000).pk)

        payment.refund_partial(refund_total=30000)
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert payment.refundable_amount == 70000

        payment.refund_partial(refund_total=60000)
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED

        payment.refund_full()
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.is_fully_refunded
        assert payment.cancelled_at is not None

    def test_refunded_is_terminal(self):
        payment = Payment.objects.get(
            pk=PaymentFactory(status=PaymentStatus.REFUNDED, refund_amount=100000).pk
        )

        with pytest.raises(TransitionNotAllowed):
            payment.refund_partial(refund_total=100000)
        with pytest.raises(TransitionNotAllowed):
            payment.complete()


# =============================================================================
# PaymentRefund Tests
# =============================================================================


@pytest.mark.django_db
class TestPaymentRefundModel:
    def test_transaction_key_unique(self):
        payment = CompletedPaymentFactory()
        PaymentRefund.objects.create(
            payment=payment, refund_amount=1000, transaction_key="txn_1"
        )

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRefund.objects.create(
                payment=payment, refund_amount=1000, transaction_key="txn_1"
            )

    def test_amount_must_be_positive(self):
        payment = CompletedPaymentFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRefund.objects.create(
                payment=payment, refund_amount=0, transaction_key="txn_zero"
            )


# =============================================================================
# WebhookEvent Tests
# =============================================================================


@pytest.mark.django_db
class TestWebhookEventModel:
    def test_event_id_unique(self):
        WebhookEventFactory(event_id="evt_dup")

        with pytest.raises(IntegrityError), transaction.atomic():
            WebhookEventFactory(event_id="evt_dup")

    def test_mark_processed(self):
        event = WebhookEventFactory(error_message="boom")

        event.mark_processed()

        assert event.is_processed
        assert event.processed_at is not None
        assert event.error_message is None

    def test_mark_failed_counts_attempts(self):
        event = WebhookEventFactory()

        event.mark_failed("first")
        event.mark_failed("second")

        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "second"
        assert event.retry_count == 2

    def test_stored_unchanged(self):
        event = WebhookEventFactory(payload={"eventId": "evt_x", "data": {"n": 1}})

        assert WebhookEvent.objects.get(pk=event.pk).payload == {
            "eventId": "evt_x",
            "data": {"n": 1},
        }


# =============================================================================
# CancellationRequest Tests
# =============================================================================


@pytest.mark.django_db
class TestCancellationRequestModel:
    def test_one_pending_request_per_payment(self):
        request = CancellationRequestFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            CancellationRequestFactory(payment=request.payment)

    def test_resolved_requests_do_not_block(self):
        request = CancellationRequestFactory(status=CancellationStatus.REJECTED)

        second = CancellationRequestFactory(payment=request.payment)

        assert second.status == CancellationStatus.PENDING
        assert CancellationRequest.objects.filter(payment=request.payment).count() == 2

    def test_awaiting_refund(self):
        request = CancellationRequestFactory(status=CancellationStatus.APPROVED)
        assert request.awaiting_refund is True
        assert request.is_resolved is False

        request.processed_by = UserFactory()
        request.processed_at = request.created_at
        assert request.awaiting_refund is False


# =============================================================================
# Settlement Tests
# =============================================================================


@pytest.mark.django_db
class TestSettlementModel:
    def _create(self, payment, **overrides):
        values = {
            "total_amount": 100000,
            "commission_rate_bps": 1000,
            "commission_amount": 10000,
            "tax_rate_bps": 330,
            "tax_amount": 3300,
            "settlement_amount": 86700,
        }
        values.update(overrides)
        return Settlement.objects.create(payment=payment, **values)

    def test_amounts_must_add_up(self):
        payment = CompletedPaymentFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            self._create(payment, settlement_amount=86000)

    def test_one_settlement_per_payment(self):
        payment = CompletedPaymentFactory()
        self._create(payment)

        with pytest.raises(IntegrityError), transaction.atomic():
            self._create(payment)

    def test_mark_completed(self):
        settlement = self._create(CompletedPaymentFactory())

        settlement.mark_completed()

        assert settlement.status == SettlementStatus.COMPLETED
        assert settlement.settled_at is not None
