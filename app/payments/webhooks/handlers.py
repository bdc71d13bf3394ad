"""
Webhook event handlers for gateway payment notifications.

This module provides a handler registry and one handler per
GatewayEventType. Handlers receive the typed event and drive the payment
ledger; dispatch_webhook runs each of them inside one transaction, so a
failing handler leaves no partial writes behind.

Usage:
    from payments.webhooks.handlers import dispatch_webhook

    result = dispatch_webhook(webhook_event)
    if result.success:
        webhook_event.mark_processed()
    else:
        webhook_event.mark_failed(result.error)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from django.db import transaction

from core.exceptions import BaseApplicationError
from core.services import ServiceResult
from payments.services import PaymentLedger
from payments.webhooks.events import GatewayEventType, parse_event

if TYPE_CHECKING:
    from payments.models import Payment, WebhookEvent
    from payments.webhooks.events import PaymentEvent


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event types to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[PaymentEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler(GatewayEventType.PAYMENT_DONE)
        def handle_payment_done(event: PaymentDoneEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[PaymentEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Parse a stored webhook and run its handler in a transaction.

    Unknown event types succeed without doing anything. Any error raised
    while handling becomes a failed result so it is recorded on the event;
    unexpected errors are logged with their traceback.
    """
    log_context = {
        "event_id": webhook_event.event_id,
        "event_type": webhook_event.event_type,
    }

    try:
        event = parse_event(webhook_event.payload)
    except BaseApplicationError as e:
        logger.warning("Unparseable webhook payload", extra=log_context)
        return ServiceResult.from_exception(e)

    if event is None:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra=log_context,
        )
        return ServiceResult.success(None)

    handler = WEBHOOK_HANDLERS[event.event_type]
    logger.info(f"Dispatching {event.event_type} to handler", extra=log_context)

    try:
        with transaction.atomic():
            return handler(event)
    except BaseApplicationError as e:
        logger.warning(
            "Webhook handler failed",
            extra={**log_context, "error_code": e.error_code, "error": e.message},
        )
        return ServiceResult.from_exception(e)
    except Exception as e:
        logger.exception("Webhook handler raised unexpectedly", extra=log_context)
        return ServiceResult.from_exception(e, error_code="WEBHOOK_HANDLER_ERROR")


def _lock_payment(event: PaymentEvent) -> Payment:
    payment = PaymentLedger.lock_payment(
        payment_key=event.payment.payment_key,
        order_id=event.payment.order_id,
    )
    if not payment.payment_key:
        payment.payment_key = event.payment.payment_key
        payment.save(update_fields=["payment_key", "version", "updated_at"])
    return payment


# =============================================================================
# Handlers
# =============================================================================


@register_handler(GatewayEventType.PAYMENT_DONE)
def handle_payment_done(event: PaymentEvent) -> ServiceResult:
    """
    Payment approved: complete it, accept the booking, create the settlement.

    A redelivered DONE for a completed payment only re-ensures the
    settlement; for a payment that has since been refunded it does nothing.
    """
    payment = _lock_payment(event)
    PaymentLedger.mark_completed(
        payment,
        paid_at=event.payment.approved_at,
        payment_method=event.payment.method,
        gateway_amount=event.payment.total_amount,
    )
    return ServiceResult.success({"payment_id": str(payment.id), "status": payment.status})


@register_handler(GatewayEventType.PAYMENT_CANCELED)
def handle_payment_canceled(event: PaymentEvent) -> ServiceResult:
    """Whole payment cancelled at the gateway."""
    payment = _lock_payment(event)
    PaymentLedger.apply_gateway_cancellation(payment, event.payment.cancels, full=True)
    return ServiceResult.success({"payment_id": str(payment.id), "status": payment.status})


@register_handler(GatewayEventType.PAYMENT_PARTIAL_CANCELED)
def handle_payment_partial_canceled(event: PaymentEvent) -> ServiceResult:
    """
    Part of the payment cancelled.

    The event carries the whole cancel history; only entries whose
    transaction key is new get a refund row, and the refunded total is the
    sum of the full history.
    """
    payment = _lock_payment(event)
    PaymentLedger.apply_gateway_cancellation(payment, event.payment.cancels, full=False)
    return ServiceResult.success(
        {
            "payment_id": str(payment.id),
            "status": payment.status,
            "refund_amount": payment.refund_amount,
        }
    )


@register_handler(GatewayEventType.PAYMENT_FAILED)
def handle_payment_failed(event: PaymentEvent) -> ServiceResult:
    payment = _lock_payment(event)
    failure = event.payment.failure
    PaymentLedger.mark_failed(payment, failure.message if failure else None)
    return ServiceResult.success({"payment_id": str(payment.id), "status": payment.status})


@register_handler(GatewayEventType.PAYMENT_EXPIRED)
def handle_payment_expired(event: PaymentEvent) -> ServiceResult:
    payment = _lock_payment(event)
    PaymentLedger.mark_expired(payment)
    return ServiceResult.success({"payment_id": str(payment.id), "status": payment.status})
