"""
Settlement service: the guide's share of a completed payment.

A settlement is created at most once per payment. Two webhook deliveries
racing to complete the same payment both reach ensure_settlement; the
one-to-one key on Settlement.payment plus an insert-or-ignore makes the
second insert a no-op instead of an IntegrityError.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings

from core.services import BaseService
from payments.models import Settlement
from payments.state_machines import SettlementStatus

if TYPE_CHECKING:
    from payments.models import Payment

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10000


def split_amount(
    amount: int,
    commission_rate_bps: int,
    tax_rate_bps: int,
) -> tuple[int, int, int]:
    """
    Split an amount into (commission, tax, settlement).

    Floors both deductions, so the three parts always sum to amount.
    """
    commission = amount * commission_rate_bps // BPS_DENOMINATOR
    tax = amount * tax_rate_bps // BPS_DENOMINATOR
    return commission, tax, amount - commission - tax


class SettlementService(BaseService):
    """Creates and completes settlements."""

    @classmethod
    def ensure_settlement(
        cls,
        payment: Payment,
        commission_rate_bps: int | None = None,
        tax_rate_bps: int | None = None,
    ) -> Settlement:
        """
        Return the payment's settlement, creating it if missing.

        Rates default to SETTLEMENT_COMMISSION_RATE_BPS and
        SETTLEMENT_TAX_RATE_BPS. An existing settlement is returned
        unchanged even if the rates differ.
        """
        if commission_rate_bps is None:
            commission_rate_bps = settings.SETTLEMENT_COMMISSION_RATE_BPS
        if tax_rate_bps is None:
            tax_rate_bps = settings.SETTLEMENT_TAX_RATE_BPS

        commission, tax, settlement_amount = split_amount(
            payment.amount, commission_rate_bps, tax_rate_bps
        )

        Settlement.objects.bulk_create(
            [
                Settlement(
                    payment=payment,
                    total_amount=payment.amount,
                    commission_rate_bps=commission_rate_bps,
                    commission_amount=commission,
                    tax_rate_bps=tax_rate_bps,
                    tax_amount=tax,
                    settlement_amount=settlement_amount,
                )
            ],
            ignore_conflicts=True,
        )
        settlement = Settlement.objects.get(payment=payment)

        cls.get_logger().info(
            "Settlement ensured",
            extra={
                "payment_id": str(payment.id),
                "settlement_id": str(settlement.id),
                "settlement_amount": settlement.settlement_amount,
            },
        )
        return settlement

    @classmethod
    def mark_completed(cls, settlement: Settlement) -> Settlement:
        """Record that the guide has been paid out. No-op if already completed."""
        if settlement.status == SettlementStatus.COMPLETED:
            return settlement

        settlement.mark_completed()
        settlement.save(update_fields=["status", "settled_at", "updated_at"])
        logger.info(
            "Settlement completed",
            extra={
                "settlement_id": str(settlement.id),
                "payment_id": str(settlement.payment_id),
            },
        )
        return settlement
