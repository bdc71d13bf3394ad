"""
Factory Boy factories for payment test data.

Usage:
    from payments.tests.factories import (
        CancellationRequestFactory,
        PaymentFactory,
        ProductPaymentFactory,
        WebhookEventFactory,
    )

    # A pending payment for a trip offer
    payment = PaymentFactory()

    # A completed payment (status can only be set at construction time)
    payment = PaymentFactory(status=PaymentStatus.COMPLETED, paid_at=timezone.now())

    # A payment for a product booking
    payment = ProductPaymentFactory(amount=50000)
"""

import factory
from django.utils import timezone

from bookings.tests.factories import (
    OfferFactory,
    ProductOfferFactory,
    UserFactory,
)
from payments.models import CancellationRequest, Payment, WebhookEvent
from payments.policy import CancellationReason, RequesterType
from payments.state_machines import (
    CancellationStatus,
    PaymentStatus,
    WebhookEventStatus,
)
from payments.webhooks.events import GatewayEventType


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for a trip payment.

    The trip, its guide offer and the payer (the trip's traveler) are
    created together so the booking pairing is always consistent.
    """

    class Meta:
        model = Payment

    offer = factory.SubFactory(OfferFactory)
    trip = factory.SelfAttribute("offer.trip")
    payer = factory.SelfAttribute("trip.traveler")
    amount = 100000
    currency = "KRW"
    order_id = factory.Sequence(lambda n: f"order-{n:06d}")
    payment_key = factory.Sequence(lambda n: f"tgen_test_{n:06d}")
    status = PaymentStatus.PENDING


class CompletedPaymentFactory(PaymentFactory):
    status = PaymentStatus.COMPLETED
    payment_method = "card"
    paid_at = factory.LazyFunction(timezone.now)


class ProductPaymentFactory(PaymentFactory):
    """Payment for a product booking instead of a trip offer."""

    offer = None
    trip = None
    product_offer = factory.SubFactory(ProductOfferFactory)
    product = factory.SelfAttribute("product_offer.product")
    payer = factory.SelfAttribute("product_offer.traveler")
    amount = factory.SelfAttribute("product_offer.total_price")


class CancellationRequestFactory(factory.django.DjangoModelFactory):
    """Pending traveler request computed at the 85% tier."""

    class Meta:
        model = CancellationRequest

    payment = factory.SubFactory(CompletedPaymentFactory)
    requester = factory.SelfAttribute("payment.payer")
    requester_type = RequesterType.TRAVELER
    reason_type = CancellationReason.SCHEDULE_CHANGE
    reason_detail = ""
    calculated_refund_amount = factory.LazyAttribute(
        lambda o: o.payment.amount * 85 // 100
    )
    refund_percentage = 85
    days_before_trip = 14
    policy_label = "6-19 days before start"
    status = CancellationStatus.PENDING


class WebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WebhookEvent

    event_id = factory.Sequence(lambda n: f"evt_test_{n:06d}")
    event_type = GatewayEventType.PAYMENT_DONE
    payment_key = factory.Sequence(lambda n: f"tgen_event_{n:06d}")
    payload = factory.LazyAttribute(
        lambda o: {
            "eventId": o.event_id,
            "eventType": o.event_type,
            "data": {"paymentKey": o.payment_key, "status": "DONE"},
        }
    )
    status = WebhookEventStatus.PENDING


def toss_payment_data(
    payment,
    status="DONE",
    cancels=None,
    balance_amount=None,
    method="카드",
    failure=None,
):
    """
    Body of a gateway payment object for ``payment``.

    Shaped like GET /v1/payments/{paymentKey} and like the ``data`` object of
    webhook notifications.

    Args:
        payment: Payment the gateway object describes
        status: Gateway status (DONE, CANCELED, PARTIAL_CANCELED, ...)
        cancels: List of (transaction_key, cancel_amount) pairs or dicts
        balance_amount: Defaults to amount minus the cancelled total
        failure: Optional {"code": ..., "message": ...}
    """
    cancel_entries = []
    for cancel in cancels or []:
        if isinstance(cancel, dict):
            cancel_entries.append(cancel)
            continue
        transaction_key, cancel_amount = cancel
        cancel_entries.append(
            {
                "transactionKey": transaction_key,
                "cancelAmount": cancel_amount,
                "cancelReason": "고객 요청",
                "canceledAt": "2026-03-01T10:00:00+09:00",
                "cancelStatus": "DONE",
            }
        )

    cancelled_total = sum(c["cancelAmount"] for c in cancel_entries)
    data = {
        "paymentKey": payment.payment_key,
        "orderId": payment.order_id,
        "status": status,
        "totalAmount": payment.amount,
        "balanceAmount": (
            payment.amount - cancelled_total if balance_amount is None else balance_amount
        ),
        "method": method,
        "approvedAt": "2026-02-01T10:00:00+09:00",
        "cancels": cancel_entries or None,
    }
    if failure:
        data["failure"] = failure
    return data


def toss_webhook_body(payment, event_type, event_id=None, **data_kwargs):
    """Webhook notification body wrapping toss_payment_data()."""
    status = data_kwargs.pop("status", None) or {
        GatewayEventType.PAYMENT_DONE: "DONE",
        GatewayEventType.PAYMENT_CANCELED: "CANCELED",
        GatewayEventType.PAYMENT_PARTIAL_CANCELED: "PARTIAL_CANCELED",
        GatewayEventType.PAYMENT_FAILED: "ABORTED",
        GatewayEventType.PAYMENT_EXPIRED: "EXPIRED",
    }[event_type]
    return {
        "eventId": event_id or f"evt_{payment.order_id}_{event_type}",
        "eventType": event_type,
        "timestamp": "2026-03-01T10:00:01+09:00",
        "data": toss_payment_data(payment, status=status, **data_kwargs),
    }
