"""
Where refund policies come from.

Active RefundPolicyRule rows for a booking kind form that kind's tier table.
Without any, the REFUND_POLICY_TIERS setting is used. Exception reasons
always come from CANCELLATION_EXCEPTION_REASONS.
"""

from __future__ import annotations

import logging

from django.conf import settings

from payments.models import RefundPolicyRule
from payments.policy import RefundPolicy, RefundPolicyTier
from payments.state_machines import PolicyApplicability

logger = logging.getLogger(__name__)


def default_refund_policy() -> RefundPolicy:
    """Policy built from settings only."""
    return RefundPolicy.from_config(
        settings.REFUND_POLICY_TIERS,
        settings.CANCELLATION_EXCEPTION_REASONS,
    )


def load_refund_policy(kind: str = PolicyApplicability.TRIP) -> RefundPolicy:
    """
    Build the refund policy for a booking kind.

    Args:
        kind: PolicyApplicability value (trip or product)
    """
    rules = list(
        RefundPolicyRule.objects.filter(applicable_to=kind, is_active=True).order_by(
            "-days_from_trip_start"
        )
    )
    if not rules:
        return default_refund_policy()

    logger.debug(
        "Using stored refund policy rules",
        extra={"kind": kind, "rule_count": len(rules)},
    )
    return RefundPolicy(
        tiers=tuple(
            RefundPolicyTier(
                days_from_trip_start=rule.days_from_trip_start,
                refund_percentage=rule.refund_percentage,
                label=rule.label,
            )
            for rule in rules
        ),
        exception_reasons=frozenset(settings.CANCELLATION_EXCEPTION_REASONS),
    )
