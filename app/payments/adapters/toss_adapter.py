"""
Toss Payments API adapter.

Every call to the payment gateway goes through TossPaymentsAdapter so that
timeouts, authentication, error translation and logging are handled in one
place.

Features:
- Configurable timeout on every call
- HTTP errors and transport errors translated to domain exceptions
- Structured logging with timing metrics
- Idempotency-Key header on mutating calls

A timeout is reported as GatewayTimeoutError, not as a failure: the gateway
may have executed the call. Callers must read the payment back before
retrying a cancel.

Configuration (via settings):
- TOSS_SECRET_KEY: Server-side secret key (Basic auth username)
- TOSS_API_BASE_URL: API root (default: https://api.tosspayments.com/v1)
- TOSS_API_TIMEOUT_SECONDS: Timeout per call (default: 10)

Usage:
    from payments.adapters import CancelPaymentParams, TossPaymentsAdapter

    payment = TossPaymentsAdapter.retrieve_payment("tgen_20240213121757MvuS8")

    payment = TossPaymentsAdapter.cancel_payment(
        CancelPaymentParams(
            payment_key=payment.payment_key,
            cancel_reason="Traveler cancelled",
            cancel_amount=50000,
            idempotency_key="cancellation-3f2a...",
        )
    )
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import requests
from django.conf import settings
from django.db import models
from django.utils.dateparse import parse_datetime

from payments.exceptions import (
    GatewayError,
    GatewayRateLimitError,
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    WebhookVerificationError,
)

if TYPE_CHECKING:
    from typing import Any


class GatewayPaymentStatus(models.TextChoices):
    """Payment statuses as reported by the gateway."""

    READY = "READY", "Ready"
    IN_PROGRESS = "IN_PROGRESS", "In progress"
    WAITING_FOR_DEPOSIT = "WAITING_FOR_DEPOSIT", "Waiting for deposit"
    DONE = "DONE", "Done"
    CANCELED = "CANCELED", "Canceled"
    PARTIAL_CANCELED = "PARTIAL_CANCELED", "Partially canceled"
    ABORTED = "ABORTED", "Aborted"
    EXPIRED = "EXPIRED", "Expired"


# =============================================================================
# Data Types
# =============================================================================


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return parse_datetime(value)


@dataclass
class GatewayCancel:
    """
    One cancel transaction in a payment's cancel history.

    Attributes:
        transaction_key: Gateway key unique to this cancel
        cancel_amount: Amount cancelled in minor units
        cancel_reason: Reason sent with the cancel request
        canceled_at: When the gateway executed the cancel
        refundable_amount: Amount still cancellable after this cancel
        cancel_status: Gateway status of the cancel (DONE when executed)
        raw: The entry exactly as received
    """

    transaction_key: str
    cancel_amount: int
    cancel_reason: str = ""
    canceled_at: datetime | None = None
    refundable_amount: int | None = None
    cancel_status: str = "DONE"
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayCancel:
        return cls(
            transaction_key=data["transactionKey"],
            cancel_amount=int(data["cancelAmount"]),
            cancel_reason=data.get("cancelReason") or "",
            canceled_at=_parse_timestamp(data.get("canceledAt")),
            refundable_amount=data.get("refundableAmount"),
            cancel_status=data.get("cancelStatus") or "DONE",
            raw=dict(data),
        )


@dataclass
class GatewayFailure:
    code: str = ""
    message: str = ""


@dataclass
class GatewayPayment:
    """
    Payment as the gateway currently sees it.

    Also used for the ``data`` object of webhook notifications, which has
    the same shape.
    """

    payment_key: str
    order_id: str
    status: str
    total_amount: int
    balance_amount: int
    method: str = ""
    approved_at: datetime | None = None
    cancels: list[GatewayCancel] = field(default_factory=list)
    failure: GatewayFailure | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayPayment:
        """
        Raises:
            KeyError/TypeError/ValueError/AttributeError: If required fields are
                missing or malformed
        """
        total_amount = int(data["totalAmount"])
        balance = data.get("balanceAmount")
        failure = data.get("failure")
        return cls(
            payment_key=data["paymentKey"],
            order_id=data.get("orderId") or "",
            status=data["status"],
            total_amount=total_amount,
            balance_amount=total_amount if balance is None else int(balance),
            method=data.get("method") or "",
            approved_at=_parse_timestamp(data.get("approvedAt")),
            cancels=[GatewayCancel.from_dict(c) for c in data.get("cancels") or []],
            failure=(
                GatewayFailure(
                    code=failure.get("code") or "",
                    message=failure.get("message") or "",
                )
                if failure
                else None
            ),
            raw_response=dict(data),
        )

    @property
    def total_cancelled(self) -> int:
        """Sum over the whole cancel history."""
        return sum(cancel.cancel_amount for cancel in self.cancels)

    def status_as_claimed(self, claimed_status: str) -> str:
        """
        Live status normalised for comparison with a claimed status.

        Cancel notifications can race the gateway's own status bookkeeping,
        so a claimed CANCELED is accepted when the cancel history has fully
        drained the balance, and a claimed PARTIAL_CANCELED when the history
        left part of the total in place.
        """
        if self.cancels:
            if (
                claimed_status == GatewayPaymentStatus.CANCELED
                and self.balance_amount == 0
            ):
                return GatewayPaymentStatus.CANCELED
            if (
                claimed_status == GatewayPaymentStatus.PARTIAL_CANCELED
                and 0 < self.balance_amount < self.total_amount
            ):
                return GatewayPaymentStatus.PARTIAL_CANCELED
        return self.status


@dataclass
class CancelPaymentParams:
    """
    Parameters for cancelling (refunding) a payment.

    Attributes:
        payment_key: Gateway payment key
        cancel_reason: Reason shown on the gateway dashboard
        cancel_amount: Amount to cancel; None cancels the whole balance
        idempotency_key: Same key for every attempt of the same refund
    """

    payment_key: str
    cancel_reason: str
    idempotency_key: str
    cancel_amount: int | None = None

    def __post_init__(self) -> None:
        if not self.payment_key:
            raise ValueError("payment_key is required")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if self.cancel_amount is not None and self.cancel_amount <= 0:
            raise ValueError("cancel_amount must be positive")


@dataclass
class ConfirmPaymentParams:
    payment_key: str
    order_id: str
    amount: int
    idempotency_key: str

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be positive")


# =============================================================================
# Adapter
# =============================================================================


class TossPaymentsAdapter:
    """
    Adapter for Toss Payments API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from web workers and Celery workers.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Core Operations
    # =========================================================================

    @classmethod
    def retrieve_payment(
        cls,
        payment_key: str,
        trace_id: str | None = None,
    ) -> GatewayPayment:
        """
        Read a payment's live status.

        Raises:
            GatewayRequestError: Unknown payment key
            GatewayUnavailableError/GatewayTimeoutError: Gateway unreachable
        """
        data = cls._request(
            "GET",
            f"/payments/{payment_key}",
            log_context={
                "operation": "retrieve_payment",
                "payment_key": payment_key,
                "trace_id": trace_id,
            },
        )
        return GatewayPayment.from_dict(data)

    @classmethod
    def cancel_payment(
        cls,
        params: CancelPaymentParams,
        trace_id: str | None = None,
    ) -> GatewayPayment:
        """
        Cancel all or part of a payment.

        Returns:
            The payment after the cancel, including the full cancel history

        Raises:
            GatewayRequestError: Cancel refused (already cancelled, amount too large, ...)
            GatewayTimeoutError: Outcome unknown
            GatewayUnavailableError: Gateway unreachable, nothing happened
        """
        body: dict[str, Any] = {"cancelReason": params.cancel_reason}
        if params.cancel_amount is not None:
            body["cancelAmount"] = params.cancel_amount

        data = cls._request(
            "POST",
            f"/payments/{params.payment_key}/cancel",
            json=body,
            idempotency_key=params.idempotency_key,
            log_context={
                "operation": "cancel_payment",
                "payment_key": params.payment_key,
                "cancel_amount": params.cancel_amount,
                "idempotency_key": params.idempotency_key,
                "trace_id": trace_id,
            },
        )
        return GatewayPayment.from_dict(data)

    @classmethod
    def confirm_payment(
        cls,
        params: ConfirmPaymentParams,
        trace_id: str | None = None,
    ) -> GatewayPayment:
        """Approve a payment the payer authorised at checkout."""
        data = cls._request(
            "POST",
            "/payments/confirm",
            json={
                "paymentKey": params.payment_key,
                "orderId": params.order_id,
                "amount": params.amount,
            },
            idempotency_key=params.idempotency_key,
            log_context={
                "operation": "confirm_payment",
                "payment_key": params.payment_key,
                "order_id": params.order_id,
                "amount": params.amount,
                "trace_id": trace_id,
            },
        )
        return GatewayPayment.from_dict(data)

    @classmethod
    def verify_payment_status(
        cls,
        payment_key: str,
        claimed_status: str,
    ) -> GatewayPayment:
        """
        Confirm that the gateway agrees with a claimed payment status.

        Webhooks are authenticated this way instead of with a shared-secret
        signature: the notification is trusted only if the gateway, asked
        directly, reports the same status.

        Raises:
            WebhookVerificationError: Status mismatch or unknown payment key
            GatewayUnavailableError: The gateway could not be asked
        """
        try:
            payment = cls.retrieve_payment(payment_key)
        except GatewayRequestError as e:
            raise WebhookVerificationError(
                "Payment could not be verified with the gateway",
                details={"payment_key": payment_key, "gateway_code": e.gateway_code},
            ) from e

        live_status = payment.status_as_claimed(claimed_status)
        if live_status != claimed_status:
            cls.get_logger().warning(
                "Webhook status does not match gateway",
                extra={
                    "payment_key": payment_key,
                    "claimed_status": claimed_status,
                    "live_status": live_status,
                },
            )
            raise WebhookVerificationError(
                "Claimed payment status does not match the gateway",
                details={
                    "payment_key": payment_key,
                    "claimed_status": claimed_status,
                    "live_status": live_status,
                },
            )
        return payment

    # =========================================================================
    # Transport
    # =========================================================================

    @classmethod
    def _request(
        cls,
        method: str,
        path: str,
        log_context: dict[str, Any],
        json: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        logger = cls.get_logger()
        url = f"{settings.TOSS_API_BASE_URL.rstrip('/')}{path}"
        headers = {"Content-Type": "application/json"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        start_time = time.time()
        logger.info("Starting gateway operation", extra=log_context)

        try:
            response = requests.request(
                method,
                url,
                json=json,
                headers=headers,
                auth=(settings.TOSS_SECRET_KEY, ""),
                timeout=settings.TOSS_API_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_transport_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        if not response.ok:
            cls._handle_error_response(response, log_context, duration_ms)

        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                "Gateway returned a non-JSON body",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise GatewayUnavailableError(
                "Gateway returned an unreadable response",
                details={"status_code": response.status_code},
            ) from e

        logger.info(
            "Gateway operation completed",
            extra={
                **log_context,
                "status": data.get("status"),
                "duration_ms": duration_ms,
            },
        )
        return data

    @classmethod
    def _handle_transport_error(
        cls,
        error: requests.RequestException,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate transport exceptions to domain exceptions.

        Raises:
            GatewayTimeoutError: Timed out (outcome unknown)
            GatewayUnavailableError: Connection failed or other transport error
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, requests.Timeout):
            logger.error("Gateway call timed out", extra=log_context)
            raise GatewayTimeoutError(
                "Payment gateway did not respond in time",
                details={"operation": log_context.get("operation")},
            ) from error

        logger.error(
            "Could not reach payment gateway",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            "Could not connect to the payment gateway. Please retry.",
            details={"operation": log_context.get("operation")},
        ) from error

    @classmethod
    def _handle_error_response(
        cls,
        response: requests.Response,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate gateway error responses to domain exceptions.

        The gateway answers errors with {"code": ..., "message": ...}.

        Raises:
            GatewayRateLimitError: 429
            GatewayUnavailableError: 5xx
            GatewayRequestError: Other 4xx
        """
        logger = cls.get_logger()
        try:
            body = response.json()
        except ValueError:
            body = {}
        code = body.get("code") or ""
        message = body.get("message") or response.reason or "Gateway error"
        log_context = {
            **log_context,
            "status_code": response.status_code,
            "gateway_code": code,
            "duration_ms": duration_ms,
        }
        details = {"status_code": response.status_code}

        error: GatewayError
        if response.status_code == 429:
            logger.warning("Rate limited by payment gateway", extra=log_context)
            error = GatewayRateLimitError(message, details=details, gateway_code=code)
        elif response.status_code >= 500:
            logger.error("Payment gateway server error", extra=log_context)
            error = GatewayUnavailableError(message, details=details, gateway_code=code)
        else:
            if response.status_code in (401, 403):
                logger.critical(
                    "Payment gateway rejected credentials - check TOSS_SECRET_KEY",
                    extra=log_context,
                )
            else:
                logger.warning("Payment gateway rejected request", extra=log_context)
            error = GatewayRequestError(message, details=details, gateway_code=code)
        raise error
