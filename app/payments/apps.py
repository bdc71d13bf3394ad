"""
Payments app configuration.

This app provides:
- The payment ledger and its state machine
- Cancellation requests and the refund policy
- Gateway webhook handling and reconciliation
- Guide settlements
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
