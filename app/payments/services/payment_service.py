"""
Checkout confirmation.

After the payer authorises a payment in the gateway's checkout widget, the
client posts the payment key back here. The gateway only captures the money
once we confirm it, and the ledger then completes the payment from the
gateway's answer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.services import BaseService
from payments.adapters import ConfirmPaymentParams, TossPaymentsAdapter
from payments.exceptions import (
    InvalidPaymentStateError,
    PaymentAmountMismatchError,
    PaymentNotFoundError,
)
from payments.models import Payment
from payments.services.payment_ledger import PaymentLedger
from payments.state_machines import PaymentStatus

if TYPE_CHECKING:
    import uuid

logger = logging.getLogger(__name__)


class PaymentService(BaseService):
    """Confirms checkouts with the gateway."""

    # Gateway adapter - can be injected for testing
    _gateway_adapter: type | None = None

    @classmethod
    def get_gateway_adapter(cls) -> type:
        return cls._gateway_adapter or TossPaymentsAdapter

    @classmethod
    def set_gateway_adapter(cls, adapter: type | None) -> None:
        """Set the gateway adapter class (for testing)."""
        cls._gateway_adapter = adapter

    @classmethod
    def confirm_payment(
        cls,
        payment_id: uuid.UUID,
        payment_key: str,
        amount: int,
    ) -> Payment:
        """
        Confirm a checkout and complete the payment.

        Confirming a payment that is already completed with the same key
        returns it unchanged.

        Raises:
            PaymentNotFoundError: Payment does not exist
            InvalidPaymentStateError: Payment is not pending
            PaymentAmountMismatchError: Amount differs from the stored amount
            GatewayError: Gateway refused or could not be reached
        """
        payment = Payment.objects.filter(pk=payment_id).first()
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )

        if payment.status == PaymentStatus.COMPLETED and payment.payment_key == payment_key:
            logger.info(
                "Payment already confirmed",
                extra={"payment_id": str(payment.id)},
            )
            return payment

        if payment.status != PaymentStatus.PENDING:
            raise InvalidPaymentStateError(
                f"Payment in '{payment.status}' state cannot be confirmed",
                details={"payment_id": str(payment.id), "status": payment.status},
            )
        if payment.payment_key and payment.payment_key != payment_key:
            raise InvalidPaymentStateError(
                "Payment key does not belong to this payment",
                details={"payment_id": str(payment.id)},
            )
        if amount != payment.amount:
            raise PaymentAmountMismatchError(
                "Confirmed amount does not match payment amount",
                details={
                    "payment_id": str(payment.id),
                    "amount": payment.amount,
                    "confirmed_amount": amount,
                },
            )

        gateway_payment = cls.get_gateway_adapter().confirm_payment(
            ConfirmPaymentParams(
                payment_key=payment_key,
                order_id=payment.order_id,
                amount=amount,
                idempotency_key=f"confirm-{payment.id}",
            )
        )

        with cls.atomic():
            payment = PaymentLedger.lock_payment(payment_id=payment.id)
            PaymentLedger.sync_from_gateway(payment, gateway_payment)

        cls.get_logger().info(
            "Payment confirmed",
            extra={
                "payment_id": str(payment.id),
                "status": payment.status,
                "gateway_status": gateway_payment.status,
            },
        )
        return payment
