"""
Payment ledger: the only code that moves a Payment between states.

Every operation takes a Payment that the caller has re-read with
select_for_update() inside the current transaction (see lock_payment). The
expected prior state is checked on that locked row, so two webhook
deliveries racing on one payment serialize on the row lock and the second
one sees the first one's result.

Side effects that must commit together with a transition happen here too:
accepting or reverting the booking, creating the settlement, and writing
refund-ledger rows for gateway cancels.

Usage:
    with transaction.atomic():
        payment = PaymentLedger.lock_payment(payment_key=payment_key)
        PaymentLedger.mark_completed(payment, paid_at=approved_at, payment_method="card")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db.models import Q
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from bookings.services import BookingService
from core.services import BaseService
from payments.adapters import GatewayPaymentStatus
from payments.exceptions import (
    InvalidStateTransitionError,
    PaymentAmountMismatchError,
    PaymentNotFoundError,
    RefundPolicyViolationError,
)
from payments.models import Payment, PaymentRefund
from payments.services.settlement_service import SettlementService
from payments.state_machines import (
    TERMINAL_PAYMENT_STATUSES,
    PaymentStatus,
    RefundType,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from payments.adapters import GatewayCancel, GatewayPayment

logger = logging.getLogger(__name__)

# Cancel entries the gateway has actually executed.
EXECUTED_CANCEL_STATUS = "DONE"

# Gateway statuses that say nothing new about an existing payment.
IN_FLIGHT_GATEWAY_STATUSES = frozenset(
    {
        GatewayPaymentStatus.READY,
        GatewayPaymentStatus.IN_PROGRESS,
        GatewayPaymentStatus.WAITING_FOR_DEPOSIT,
    }
)


class PaymentLedger(BaseService):
    """
    Applies payment state transitions and their side effects.

    All methods must run inside transaction.atomic() on a locked row.
    """

    # =========================================================================
    # Locking
    # =========================================================================

    @classmethod
    def lock_payment(
        cls,
        payment_key: str | None = None,
        order_id: str | None = None,
        payment_id=None,
    ) -> Payment:
        """
        Re-read a payment with a row lock.

        payment_id wins if given. Otherwise the payment matching the
        payment key or the order id is used; a notification can arrive
        before checkout confirmation stored the payment key.

        Raises:
            PaymentNotFoundError: If no payment matches
        """
        if payment_id is not None:
            lookup = Q(pk=payment_id)
        elif payment_key or order_id:
            lookup = Q()
            if payment_key:
                lookup |= Q(payment_key=payment_key)
            if order_id:
                lookup |= Q(order_id=order_id)
        else:
            raise PaymentNotFoundError("No payment reference given")

        payment = Payment.objects.select_for_update().filter(lookup).first()
        if payment is None:
            raise PaymentNotFoundError(
                "Payment not found",
                details={
                    "payment_id": str(payment_id) if payment_id else None,
                    "payment_key": payment_key,
                    "order_id": order_id,
                },
            )
        return payment

    @classmethod
    def _apply(cls, payment: Payment, transition_name: str, *args, **kwargs) -> None:
        """Run a django-fsm transition and save, translating refusals."""
        from_state = payment.status
        try:
            getattr(payment, transition_name)(*args, **kwargs)
        except TransitionNotAllowed as e:
            raise InvalidStateTransitionError(
                f"Cannot {transition_name} payment in '{from_state}' state",
                details={
                    "payment_id": str(payment.id),
                    "current_state": from_state,
                    "transition": transition_name,
                },
            ) from e
        payment.save()

        cls.get_logger().info(
            "Payment transitioned",
            extra={
                "payment_id": str(payment.id),
                "from_state": from_state,
                "to_state": payment.status,
                "refund_amount": payment.refund_amount,
            },
        )

    # =========================================================================
    # Approval Outcomes
    # =========================================================================

    @classmethod
    def mark_completed(
        cls,
        payment: Payment,
        paid_at: datetime | None = None,
        payment_method: str | None = None,
        gateway_amount: int | None = None,
    ) -> Payment:
        """
        PENDING -> COMPLETED, accept the booking and create the settlement.

        An already-completed payment only gets its settlement ensured. Any
        later state is left alone: a late DONE never undoes a refund.

        Raises:
            PaymentAmountMismatchError: If the gateway charged a different amount
        """
        if gateway_amount is not None and gateway_amount != payment.amount:
            raise PaymentAmountMismatchError(
                "Gateway amount does not match payment amount",
                details={
                    "payment_id": str(payment.id),
                    "amount": payment.amount,
                    "gateway_amount": gateway_amount,
                },
            )

        if payment.status == PaymentStatus.COMPLETED:
            SettlementService.ensure_settlement(payment)
            return payment

        if payment.status != PaymentStatus.PENDING:
            logger.info(
                "Ignoring completion of payment past pending",
                extra={"payment_id": str(payment.id), "status": payment.status},
            )
            return payment

        cls._apply(payment, "complete", paid_at=paid_at, payment_method=payment_method)
        BookingService.mark_accepted(payment)
        SettlementService.ensure_settlement(payment)
        return payment

    @classmethod
    def mark_failed(cls, payment: Payment, reason: str | None = None) -> Payment:
        """PENDING -> FAILED. Idempotent for an already-failed payment."""
        if payment.status == PaymentStatus.FAILED:
            return payment
        cls._apply(payment, "fail", reason)
        return payment

    @classmethod
    def mark_expired(cls, payment: Payment) -> Payment:
        """PENDING -> EXPIRED. Idempotent for an already-expired payment."""
        if payment.status == PaymentStatus.EXPIRED:
            return payment
        cls._apply(payment, "expire")
        return payment

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def record_gateway_cancels(
        cls,
        payment: Payment,
        cancels: Iterable[GatewayCancel],
        reason: str = "",
    ) -> int:
        """
        Store refund rows for executed cancels not seen before.

        The gateway sends the whole cancel history every time, so rows are
        keyed by transaction key and existing keys are skipped.

        Returns:
            Total cancelled over the full history

        Raises:
            RefundPolicyViolationError: If the history adds up to more than
                the payment amount
        """
        executed = [c for c in cancels if c.cancel_status == EXECUTED_CANCEL_STATUS]
        total = sum(c.cancel_amount for c in executed)
        if total > payment.amount:
            raise RefundPolicyViolationError(
                "Gateway cancels exceed the payment amount",
                details={
                    "payment_id": str(payment.id),
                    "amount": payment.amount,
                    "cancelled_total": total,
                },
            )

        recorded = set(
            PaymentRefund.objects.filter(
                transaction_key__in=[c.transaction_key for c in executed]
            ).values_list("transaction_key", flat=True)
        )

        rows = []
        running_total = 0
        for cancel in executed:
            running_total += cancel.cancel_amount
            if cancel.transaction_key in recorded:
                continue
            rows.append(
                PaymentRefund(
                    payment=payment,
                    refund_amount=cancel.cancel_amount,
                    refund_type=(
                        RefundType.FULL
                        if running_total >= payment.amount
                        else RefundType.PARTIAL
                    ),
                    refund_reason=cancel.cancel_reason or reason,
                    transaction_key=cancel.transaction_key,
                    canceled_at=cancel.canceled_at,
                    gateway_response=cancel.raw,
                )
            )

        if rows:
            PaymentRefund.objects.bulk_create(rows, ignore_conflicts=True)
            logger.info(
                "Refund rows recorded",
                extra={
                    "payment_id": str(payment.id),
                    "new_rows": len(rows),
                    "cancelled_total": total,
                },
            )
        return total

    @classmethod
    def apply_gateway_cancellation(
        cls,
        payment: Payment,
        cancels: Iterable[GatewayCancel],
        full: bool,
    ) -> Payment:
        """
        Apply a CANCELED (full=True) or PARTIAL_CANCELED notification.

        CANCELED: COMPLETED -> CANCELLED, PARTIALLY_REFUNDED -> REFUNDED.
        PARTIAL_CANCELED: -> REFUNDED when the history covers the whole
        amount, else PARTIALLY_REFUNDED.
        Terminal payments only get their refund total brought up to date.
        """
        cancels = list(cancels)
        total = cls.record_gateway_cancels(payment, cancels)
        cancelled_at = _latest_cancel_time(cancels)

        if payment.status in TERMINAL_PAYMENT_STATUSES:
            cls._sync_refund_total(payment, total, cancelled_at)
            return payment

        if full and payment.status == PaymentStatus.COMPLETED:
            cls._apply(payment, "cancel", refund_total=total, cancelled_at=cancelled_at)
        elif full or total >= payment.amount:
            cls._apply(payment, "refund_full", refunded_at=cancelled_at)
        else:
            cls._apply(payment, "refund_partial", total, refunded_at=cancelled_at)

        if full or payment.status == PaymentStatus.REFUNDED:
            BookingService.revert_acceptance(payment)
        return payment

    @classmethod
    def apply_cancellation_refund(
        cls,
        payment: Payment,
        cancels: Iterable[GatewayCancel] = (),
        cancelled_at: datetime | None = None,
    ) -> Payment:
        """
        Close out a payment after an approved cancellation request.

        The refund total comes from the gateway's cancel history (zero for a
        forfeited booking). COMPLETED payments end CANCELLED, or REFUNDED
        when the total covers the whole amount. A PARTIALLY_REFUNDED payment
        (a cancel notification got here first) ends REFUNDED or stays
        PARTIALLY_REFUNDED. The booking is always reverted.
        """
        cancels = list(cancels)
        total = max(cls.record_gateway_cancels(payment, cancels), payment.refund_amount)
        cancelled_at = cancelled_at or _latest_cancel_time(cancels) or timezone.now()

        if payment.status in TERMINAL_PAYMENT_STATUSES:
            cls._sync_refund_total(payment, total, cancelled_at)
        elif total >= payment.amount:
            cls._apply(payment, "refund_full", refunded_at=cancelled_at)
        elif payment.status == PaymentStatus.COMPLETED:
            cls._apply(payment, "cancel", refund_total=total, cancelled_at=cancelled_at)
        else:
            cls._apply(payment, "refund_partial", total, refunded_at=cancelled_at)

        BookingService.revert_acceptance(payment)
        return payment

    @classmethod
    def _sync_refund_total(
        cls,
        payment: Payment,
        total: int,
        refunded_at: datetime | None,
    ) -> None:
        """Raise refund_amount on a terminal payment; never lowers it."""
        if total <= payment.refund_amount:
            return
        payment.refund_amount = total
        payment.refunded_at = refunded_at or timezone.now()
        payment.save(update_fields=["refund_amount", "refunded_at", "version", "updated_at"])
        logger.info(
            "Refund total synced on terminal payment",
            extra={
                "payment_id": str(payment.id),
                "status": payment.status,
                "refund_amount": total,
            },
        )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    @classmethod
    def sync_from_gateway(
        cls,
        payment: Payment,
        gateway_payment: GatewayPayment,
    ) -> Payment:
        """
        Drive the ledger toward the gateway's view of the payment.

        Used by checkout confirmation and by the reconciliation sweep. Only
        forward transitions are applied.
        """
        status = gateway_payment.status
        logger.info(
            "Syncing payment from gateway",
            extra={
                "payment_id": str(payment.id),
                "status": payment.status,
                "gateway_status": status,
            },
        )

        if not payment.payment_key:
            payment.payment_key = gateway_payment.payment_key
            payment.save(update_fields=["payment_key", "version", "updated_at"])

        if status in IN_FLIGHT_GATEWAY_STATUSES:
            return payment

        if status == GatewayPaymentStatus.ABORTED:
            reason = gateway_payment.failure.message if gateway_payment.failure else None
            return cls.mark_failed(payment, reason)

        if status == GatewayPaymentStatus.EXPIRED:
            return cls.mark_expired(payment)

        # DONE, CANCELED and PARTIAL_CANCELED all mean the payment was approved.
        cls.mark_completed(
            payment,
            paid_at=gateway_payment.approved_at,
            payment_method=gateway_payment.method,
            gateway_amount=gateway_payment.total_amount,
        )
        if status == GatewayPaymentStatus.CANCELED:
            return cls.apply_gateway_cancellation(payment, gateway_payment.cancels, full=True)
        if status == GatewayPaymentStatus.PARTIAL_CANCELED:
            return cls.apply_gateway_cancellation(payment, gateway_payment.cancels, full=False)
        return payment


def _latest_cancel_time(cancels: list[GatewayCancel]) -> datetime | None:
    times = [c.canceled_at for c in cancels if c.canceled_at]
    return max(times) if times else None
