"""
Webhook handling for payment gateway notifications.

This module provides the view and handlers for processing gateway
webhooks. Webhooks are verified against the gateway, stored idempotently,
and processed in the request.

Usage:
    # In urls.py
    from payments.webhooks.views import toss_webhook

    urlpatterns = [
        path("webhooks/toss/", toss_webhook, name="toss_webhook"),
    ]
"""

from payments.webhooks.events import GatewayEventType, parse_event
from payments.webhooks.handlers import WEBHOOK_HANDLERS, dispatch_webhook, register_handler
from payments.webhooks.views import toss_webhook

__all__ = [
    "GatewayEventType",
    "WEBHOOK_HANDLERS",
    "dispatch_webhook",
    "parse_event",
    "register_handler",
    "toss_webhook",
]
