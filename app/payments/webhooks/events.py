"""
Typed gateway webhook events.

Each event type the gateway sends has its own dataclass, so handlers receive
a parsed payment (amounts as ints, timestamps as datetimes, the cancel
history as GatewayCancel objects) instead of raw JSON.

Body format:
    {
        "eventType": "PAYMENT.PARTIAL_CANCELED",
        "eventId": "evt_...",
        "timestamp": "2024-02-13T12:18:14+09:00",
        "data": {"paymentKey": ..., "orderId": ..., "status": ...,
                 "totalAmount": ..., "balanceAmount": ..., "cancels": [...]}
    }
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import models

from payments.adapters import GatewayPayment
from payments.exceptions import InvalidWebhookPayloadError

if TYPE_CHECKING:
    from typing import Any


class GatewayEventType(models.TextChoices):
    PAYMENT_DONE = "PAYMENT.DONE", "Payment done"
    PAYMENT_CANCELED = "PAYMENT.CANCELED", "Payment canceled"
    PAYMENT_PARTIAL_CANCELED = "PAYMENT.PARTIAL_CANCELED", "Payment partially canceled"
    PAYMENT_FAILED = "PAYMENT.FAILED", "Payment failed"
    PAYMENT_EXPIRED = "PAYMENT.EXPIRED", "Payment expired"


@dataclass(frozen=True)
class WebhookEnvelope:
    """The outer fields of a webhook body, validated but not interpreted."""

    event_id: str
    event_type: str
    data: dict[str, Any]

    @property
    def payment_key(self) -> str:
        return self.data.get("paymentKey") or ""

    @property
    def claimed_status(self) -> str:
        return self.data.get("status") or ""


@dataclass(frozen=True)
class PaymentEvent:
    event_id: str
    payment: GatewayPayment

    event_type = ""


@dataclass(frozen=True)
class PaymentDoneEvent(PaymentEvent):
    event_type = GatewayEventType.PAYMENT_DONE


@dataclass(frozen=True)
class PaymentCanceledEvent(PaymentEvent):
    event_type = GatewayEventType.PAYMENT_CANCELED


@dataclass(frozen=True)
class PaymentPartialCanceledEvent(PaymentEvent):
    event_type = GatewayEventType.PAYMENT_PARTIAL_CANCELED


@dataclass(frozen=True)
class PaymentFailedEvent(PaymentEvent):
    event_type = GatewayEventType.PAYMENT_FAILED


@dataclass(frozen=True)
class PaymentExpiredEvent(PaymentEvent):
    event_type = GatewayEventType.PAYMENT_EXPIRED


EVENT_CLASSES: dict[str, type[PaymentEvent]] = {
    cls.event_type: cls
    for cls in (
        PaymentDoneEvent,
        PaymentCanceledEvent,
        PaymentPartialCanceledEvent,
        PaymentFailedEvent,
        PaymentExpiredEvent,
    )
}


def parse_envelope(body: Any) -> WebhookEnvelope:
    """
    Raises:
        InvalidWebhookPayloadError: If eventId, eventType or data is missing
    """
    if not isinstance(body, dict):
        raise InvalidWebhookPayloadError("Webhook body must be a JSON object")

    event_id = body.get("eventId")
    event_type = body.get("eventType")
    data = body.get("data")
    if not event_id or not event_type or not isinstance(data, dict):
        raise InvalidWebhookPayloadError(
            "Webhook body is missing eventId, eventType or data",
            details={"fields": sorted(body.keys())},
        )
    return WebhookEnvelope(event_id=str(event_id), event_type=str(event_type), data=data)


def parse_event(body: dict[str, Any]) -> PaymentEvent | None:
    """
    Parse a stored webhook body into its typed event.

    Returns:
        The event, or None for event types we do not handle

    Raises:
        InvalidWebhookPayloadError: If the body or its payment data is malformed
    """
    envelope = parse_envelope(body)
    event_class = EVENT_CLASSES.get(envelope.event_type)
    if event_class is None:
        return None

    try:
        payment = GatewayPayment.from_dict(envelope.data)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise InvalidWebhookPayloadError(
            "Webhook payment data is malformed",
            details={"event_id": envelope.event_id, "error": str(e)},
        ) from e
    return event_class(event_id=envelope.event_id, payment=payment)
