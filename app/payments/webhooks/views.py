"""
Webhook endpoint view for the payment gateway.

The view:
1. Parses the body (400 if malformed)
2. Verifies the claimed payment status with the gateway (401 on mismatch)
3. Creates the WebhookEvent record (idempotent on event id)
4. Processes the event synchronously and records the outcome
5. Returns 200 once the event is stored, whatever the outcome

Usage:
    # In urls.py
    from payments.webhooks.views import toss_webhook

    urlpatterns = [
        path("webhooks/toss/", toss_webhook, name="toss_webhook"),
    ]
"""

from __future__ import annotations

import json
import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import TossPaymentsAdapter
from payments.exceptions import (
    GatewayError,
    InvalidWebhookPayloadError,
    WebhookVerificationError,
)
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.webhooks.events import parse_envelope
from payments.webhooks.handlers import dispatch_webhook

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def toss_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive a gateway notification.

    Security:
    - No shared-secret signature: the claimed status is confirmed by
      reading the payment back from the gateway. A forged or stale
      notification fails that check and nothing is stored.
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - WebhookEvent.event_id is unique
    - The row is written before processing, so a redelivery is recognised
      even if processing of the first delivery failed

    Returns:
        JsonResponse with status:
        - 200: Event stored ({"success": bool})
        - 400: Malformed body
        - 401: Status could not be confirmed with the gateway
        - 503: Gateway unreachable, nothing stored (the gateway redelivers)
    """
    try:
        body = json.loads(request.body)
        envelope = parse_envelope(body)
    except (ValueError, InvalidWebhookPayloadError) as e:
        logger.warning("Malformed webhook body", extra={"error": str(e)})
        return JsonResponse(
            {"success": False, "error": "Invalid webhook payload"},
            status=400,
        )

    log_context = {"event_id": envelope.event_id, "event_type": envelope.event_type}
    logger.info(f"Received gateway webhook: {envelope.event_type}", extra=log_context)

    # Step 1: Verify against the gateway
    if envelope.payment_key:
        if not envelope.claimed_status:
            logger.warning("Webhook without payment status", extra=log_context)
            return JsonResponse(
                {"success": False, "error": "Missing payment status"},
                status=400,
            )
        try:
            TossPaymentsAdapter.verify_payment_status(
                envelope.payment_key,
                envelope.claimed_status,
            )
        except WebhookVerificationError as e:
            logger.warning(
                "Webhook verification failed",
                extra={**log_context, "details": e.details},
            )
            return JsonResponse({"success": False, **e.to_dict()}, status=e.http_status)
        except GatewayError as e:
            logger.error(
                "Gateway unavailable during webhook verification",
                extra={**log_context, "error_code": e.error_code},
            )
            return JsonResponse({"success": False, **e.to_dict()}, status=503)

    # Step 2: Store before processing (idempotent)
    webhook_event, created = WebhookEvent.objects.get_or_create(
        event_id=envelope.event_id,
        defaults={
            "event_type": envelope.event_type,
            "payment_key": envelope.payment_key,
            "payload": body,
            "status": WebhookEventStatus.PENDING,
        },
    )

    if not created:
        logger.info(
            "Webhook already received, skipping",
            extra={**log_context, "status": webhook_event.status},
        )
        return JsonResponse({"success": True, "message": "Already processed"})

    # Step 3: Process and record the outcome
    result = dispatch_webhook(webhook_event)
    if result.success:
        webhook_event.mark_processed()
    else:
        webhook_event.mark_failed(f"[{result.error_code}] {result.error}")
    webhook_event.save(
        update_fields=[
            "status",
            "processed_at",
            "error_message",
            "retry_count",
            "updated_at",
        ]
    )

    logger.info(
        "Webhook processed",
        extra={
            **log_context,
            "success": result.success,
            "error_code": result.error_code,
        },
    )
    return JsonResponse({"success": result.success})
