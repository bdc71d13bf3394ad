"""
Payment-specific exceptions for payment, cancellation and gateway operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Payment lookup failures (404)
    ├── CancellationRequestNotFoundError - Cancellation lookup failures (404)
    ├── InvalidPaymentStateError - Payment status wrong for the operation (409)
    ├── InvalidCancellationStateError - Request already resolved/rejected (409)
    ├── RefundPolicyViolationError - Refund amount outside 0..refundable (400)
    ├── PaymentAmountMismatchError - Gateway amount differs from ours (400)
    ├── WebhookVerificationError - Webhook failed the gateway callback check (401)
    ├── InvalidWebhookPayloadError - Webhook body unusable (400)
    └── GatewayError - Base for all payment gateway errors
        ├── GatewayRequestError - Gateway rejected the request (permanent)
        ├── GatewayRateLimitError - Rate limited (transient, retry)
        └── GatewayUnavailableError - Unreachable or 5xx (transient, retry)
            └── GatewayTimeoutError - No answer in time (outcome unknown)

    DuplicateCancellationRequestError - Unresolved request exists (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from payments.exceptions import GatewayTimeoutError, GatewayUnavailableError

    try:
        TossPaymentsAdapter.cancel_payment(params)
    except GatewayTimeoutError:
        # The refund may or may not have happened. Do not retry blindly:
        # read the payment back from the gateway before trying again.
        raise
    except GatewayUnavailableError:
        # Nothing happened at the gateway; safe to retry later.
        raise
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    Example:
        try:
            CancellationService.approve_cancellation(request_id)
        except PaymentError as e:
            logger.error(f"Cancellation approval failed: {e}")
            return Response(e.to_dict(), status=e.http_status)
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError, NotFoundError):
    """
    Raised when a payment cannot be found.

    Example:
        payment = Payment.objects.filter(id=payment_id).first()
        if not payment:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)}
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"
    http_status: int = 404


class CancellationRequestNotFoundError(PaymentError, NotFoundError):
    """Raised when a cancellation request id does not exist."""

    default_error_code: str = "CANCELLATION_REQUEST_NOT_FOUND"
    http_status: int = 404


class InvalidPaymentStateError(PaymentError):
    """
    Raised when the payment's status does not allow the operation.

    Use for:
    - Requesting cancellation of a payment that is not completed
    - Refunding a payment that is already cancelled/refunded
    - Bookings whose start date cannot be resolved
    """

    default_error_code: str = "INVALID_PAYMENT_STATE"
    http_status: int = 409


class InvalidCancellationStateError(PaymentError):
    """Raised when a cancellation request is already resolved."""

    default_error_code: str = "INVALID_CANCELLATION_STATE"
    http_status: int = 409


class RefundPolicyViolationError(PaymentError, ValidationError):
    """
    Raised when a computed or overridden refund amount is out of bounds.

    The refund must satisfy 0 <= refund <= the payment's refundable balance.

    Example:
        raise RefundPolicyViolationError(
            "Refund amount exceeds refundable balance",
            details={"refund_amount": 120000, "refundable_amount": 100000}
        )
    """

    default_error_code: str = "REFUND_POLICY_VIOLATION"
    http_status: int = 400


class PaymentAmountMismatchError(PaymentError):
    """Raised when the gateway reports a different amount than was stored."""

    default_error_code: str = "AMOUNT_MISMATCH"
    http_status: int = 400


class WebhookVerificationError(PaymentError):
    """
    Raised when a webhook's claimed status does not match the gateway.

    Authenticity is established by reading the payment back from the
    gateway, so a stale (but genuine) webhook fails this check as well.
    """

    default_error_code: str = "WEBHOOK_VERIFICATION_FAILED"
    http_status: int = 401


class InvalidWebhookPayloadError(PaymentError):
    """Raised when a webhook body is missing required fields."""

    default_error_code: str = "INVALID_WEBHOOK_PAYLOAD"
    http_status: int = 400


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentError):
    """
    Base exception for payment gateway errors.

    Attributes:
        gateway_code: Error code returned by the gateway, if any
        is_retryable: Whether the operation can be retried as-is
    """

    default_error_code: str = "GATEWAY_ERROR"
    http_status: int = 502
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        gateway_code: str | None = None,
    ):
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.gateway_code:
            result["gateway_code"] = self.gateway_code
        return result


class GatewayRequestError(GatewayError):
    """
    The gateway rejected the request (4xx).

    Permanent for the same parameters: invalid payment key, cancel amount
    larger than the cancellable balance, already-cancelled payment.
    """

    default_error_code: str = "GATEWAY_REQUEST_REJECTED"
    is_retryable: bool = False


class GatewayRateLimitError(GatewayError):
    """Rate limited by the gateway (429)."""

    default_error_code: str = "GATEWAY_RATE_LIMITED"
    http_status: int = 503
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """
    The gateway could not be reached or answered with a 5xx.

    The request is left unresolved; callers retry later.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    http_status: int = 503
    is_retryable: bool = True


class GatewayTimeoutError(GatewayUnavailableError):
    """
    The gateway did not answer within the configured timeout.

    The outcome is unknown: a timed-out cancel may have been executed.
    Before retrying a mutating call, read the payment back from the gateway.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"


def is_retryable_gateway_error(error: Exception) -> bool:
    """Check if an error is a transient gateway error."""
    if isinstance(error, GatewayError):
        return error.is_retryable
    return False


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class DuplicateCancellationRequestError(ConflictError):
    """
    Raised when a payment already has an unresolved cancellation request.

    Backed by a partial unique constraint, so two concurrent requests cannot
    both slip past the application check.
    """

    default_error_code: str = "DUPLICATE_CANCELLATION_REQUEST"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a django-fsm transition is not allowed from the current state.

    Example:
        try:
            payment.complete(paid_at=approved_at)
        except TransitionNotAllowed:
            raise InvalidStateTransitionError(
                f"Cannot complete payment from '{payment.status}'",
                details={"current_state": payment.status, "target_state": "completed"}
            )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
