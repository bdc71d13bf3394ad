"""
Celery tasks for payment reconciliation.

This module provides periodic and on-demand tasks for:
- Re-deriving payment state from the gateway for webhooks that failed
  or were never finished
- Syncing a single payment from the gateway
- Retrying refunds of approved cancellations whose gateway call failed

A failed webhook is not replayed from its stored body: by the time the
sweep runs the body may be stale, so the payment is read back from the
gateway instead and the ledger is driven toward what the gateway reports.

Usage:
    from payments.tasks import reconcile_payment

    reconcile_payment.delay(str(payment.id))

    # Scheduled via django-celery-beat (see migration 0002)
    from payments.tasks import reconcile_failed_webhooks
    reconcile_failed_webhooks.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from core.exceptions import BaseApplicationError
from payments.adapters import TossPaymentsAdapter
from payments.exceptions import GatewayRateLimitError, GatewayUnavailableError
from payments.models import CancellationRequest, Payment, WebhookEvent
from payments.services import CancellationService, PaymentLedger
from payments.state_machines import CancellationStatus, WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

RECONCILIATION_BATCH_SIZE = 100
STUCK_PENDING_THRESHOLD_MINUTES = 10
MAX_REFUND_ATTEMPTS = 5
REFUND_RETRY_DELAY_MINUTES = 5


# =============================================================================
# Webhook Reconciliation
# =============================================================================


@shared_task
def reconcile_failed_webhooks() -> dict:
    """
    Periodic task to repair payments whose webhook did not go through.

    Picks up failed events that have retries left, plus events stuck in
    PENDING (the process died between storing and processing them).

    Returns:
        Dict with counts of reconciled and still-failing events
    """
    stuck_before = timezone.now() - timedelta(minutes=STUCK_PENDING_THRESHOLD_MINUTES)
    events = WebhookEvent.objects.filter(
        Q(
            status=WebhookEventStatus.FAILED,
            retry_count__lt=settings.WEBHOOK_MAX_RETRIES,
        )
        | Q(status=WebhookEventStatus.PENDING, created_at__lt=stuck_before)
    ).order_by("created_at")[:RECONCILIATION_BATCH_SIZE]

    reconciled = 0
    failed = 0
    for event in events:
        if reconcile_webhook_event(event):
            reconciled += 1
        else:
            failed += 1

    if reconciled or failed:
        logger.info(
            f"Reconciled {reconciled} webhook events, {failed} still failing",
            extra={"reconciled_count": reconciled, "failed_count": failed},
        )
    return {"reconciled_count": reconciled, "failed_count": failed}


def reconcile_webhook_event(event: WebhookEvent) -> bool:
    """
    Sync the event's payment from the gateway and record the outcome.

    Events without a payment key cannot be looked up at the gateway; their
    stored body is dispatched again instead.
    """
    from payments.webhooks.handlers import dispatch_webhook

    log_context = {
        "event_id": event.event_id,
        "event_type": event.event_type,
        "retry_count": event.retry_count,
    }

    if event.payment_key:
        try:
            gateway_payment = TossPaymentsAdapter.retrieve_payment(event.payment_key)
            with transaction.atomic():
                payment = PaymentLedger.lock_payment(
                    payment_key=event.payment_key,
                    order_id=gateway_payment.order_id,
                )
                PaymentLedger.sync_from_gateway(payment, gateway_payment)
        except BaseApplicationError as e:
            error = str(e)
        else:
            error = None
    else:
        result = dispatch_webhook(event)
        error = None if result.success else f"[{result.error_code}] {result.error}"

    if error is None:
        event.mark_processed()
        logger.info("Webhook event reconciled", extra=log_context)
    else:
        event.mark_failed(error)
        logger.warning(
            "Webhook event reconciliation failed",
            extra={**log_context, "error": error},
        )
    event.save(
        update_fields=["status", "processed_at", "error_message", "retry_count", "updated_at"]
    )
    return error is None


@shared_task(
    bind=True,
    autoretry_for=(GatewayUnavailableError, GatewayRateLimitError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
)
def reconcile_payment(self, payment_id: str) -> dict:
    """
    Sync one payment from the gateway.

    Args:
        payment_id: UUID of the Payment

    Returns:
        Dict with the payment's status after the sync
    """
    if isinstance(payment_id, str):
        payment_id = UUID(payment_id)

    payment = Payment.objects.filter(pk=payment_id).first()
    if payment is None:
        logger.error("Payment not found", extra={"payment_id": str(payment_id)})
        return {"status": "not_found", "payment_id": str(payment_id)}

    if not payment.payment_key:
        logger.info(
            "Payment has no gateway reference yet, skipping",
            extra={"payment_id": str(payment_id)},
        )
        return {"status": "skipped", "payment_id": str(payment_id)}

    gateway_payment = TossPaymentsAdapter.retrieve_payment(payment.payment_key)
    with transaction.atomic():
        payment = PaymentLedger.lock_payment(payment_id=payment_id)
        PaymentLedger.sync_from_gateway(payment, gateway_payment)

    logger.info(
        "Payment reconciled",
        extra={
            "payment_id": str(payment_id),
            "status": payment.status,
            "gateway_status": gateway_payment.status,
        },
    )
    return {
        "status": "reconciled",
        "payment_id": str(payment_id),
        "payment_status": payment.status,
    }


# =============================================================================
# Cancellation Refund Retries
# =============================================================================


@shared_task
def retry_unprocessed_cancellations() -> dict:
    """
    Periodic task to finish approved cancellations whose refund failed.

    Each retry goes through CancellationService.approve_cancellation, which
    reads the payment back from the gateway before cancelling again.
    """
    retry_before = timezone.now() - timedelta(minutes=REFUND_RETRY_DELAY_MINUTES)
    requests = CancellationRequest.objects.filter(
        status=CancellationStatus.APPROVED,
        processed_at__isnull=True,
        refund_attempts__lt=MAX_REFUND_ATTEMPTS,
    ).filter(
        Q(refund_attempted_at__isnull=True) | Q(refund_attempted_at__lt=retry_before)
    ).order_by("created_at")[:RECONCILIATION_BATCH_SIZE]

    resolved = 0
    failed = 0
    for request in requests:
        try:
            CancellationService.approve_cancellation(request.id)
        except BaseApplicationError as e:
            failed += 1
            logger.warning(
                "Cancellation refund retry failed",
                extra={
                    "cancellation_request_id": str(request.id),
                    "refund_attempts": request.refund_attempts,
                    "error_code": e.error_code,
                },
            )
        else:
            resolved += 1

    if resolved or failed:
        logger.info(
            f"Retried {resolved + failed} cancellation refunds",
            extra={"resolved_count": resolved, "failed_count": failed},
        )
    return {"resolved_count": resolved, "failed_count": failed}
