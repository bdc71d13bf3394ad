"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    REFUNDABLE_PAYMENT_STATUSES,
    TERMINAL_PAYMENT_STATUSES,
    CancellationDecision,
    CancellationStatus,
    PaymentStatus,
    PolicyApplicability,
    RefundType,
    SettlementStatus,
    WebhookEventStatus,
)

__all__ = [
    "CancellationDecision",
    "CancellationStatus",
    "PaymentStatus",
    "PolicyApplicability",
    "REFUNDABLE_PAYMENT_STATUSES",
    "RefundType",
    "SettlementStatus",
    "TERMINAL_PAYMENT_STATUSES",
    "WebhookEventStatus",
]
