"""
Cancellation service: cancellation requests and the refunds they trigger.

This module provides the CancellationService class which takes a
cancellation request from a traveler or guide, prices it with the refund
policy, and either refunds straight away or holds it for an administrator.

Approval follows a two-phase pattern so that no gateway call is made while
a database transaction is open:

    Phase 1 (transaction): lock request and payment, validate, count the attempt
    Phase 2 (no transaction): cancel at the gateway with an idempotency key
    Phase 3 (transaction): re-lock, record refund rows, transition the payment,
                           revert the booking, resolve the request

A gateway failure in phase 2 leaves both the request and the payment exactly
as they were, so the approval can simply be retried.

Usage:
    from payments.services import CancellationService

    outcome = CancellationService.create_cancellation_request(
        payment_id=payment.id,
        requester=request.user,
        requester_type=RequesterType.TRAVELER,
        reason_type=CancellationReason.SCHEDULE_CHANGE,
    )
    if outcome.request.status == CancellationStatus.PENDING:
        ...  # waiting for an admin

    CancellationService.process_cancellation(
        request_id,
        admin=request.user,
        decision=CancellationDecision.APPROVED,
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.utils import timezone

from bookings.models import BookingMessageType
from bookings.services import BookingService, ConversationService
from core.exceptions import ValidationError
from core.services import BaseService
from payments.adapters import CancelPaymentParams, TossPaymentsAdapter
from payments.exceptions import (
    CancellationRequestNotFoundError,
    DuplicateCancellationRequestError,
    GatewayError,
    InvalidCancellationStateError,
    InvalidPaymentStateError,
    PaymentNotFoundError,
)
from payments.models import CancellationRequest, Payment
from payments.policy import (
    RefundCalculation,
    RefundPolicy,
    calculate_refund,
    describe_policy,
    validate_refund_amount,
)
from payments.services.payment_ledger import PaymentLedger
from payments.services.refund_policy_service import load_refund_policy
from payments.state_machines import (
    REFUNDABLE_PAYMENT_STATUSES,
    CancellationDecision,
    CancellationStatus,
    PaymentStatus,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from django.db.models import QuerySet

    from payments.adapters import GatewayCancel


logger = logging.getLogger(__name__)


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class CancellationOutcome:
    """
    Result of creating a cancellation request.

    Attributes:
        request: The stored request (approved and resolved on the auto path
            unless the gateway was unavailable)
        refund_calculation: What the refund policy granted
    """

    request: CancellationRequest
    refund_calculation: RefundCalculation


@dataclass
class RefundPreview:
    """Read-only refund estimate shown before a request is submitted."""

    payment: Payment
    refund_calculation: RefundCalculation
    policy_lines: list[str] = field(default_factory=list)


# =============================================================================
# Cancellation Service
# =============================================================================


class CancellationService(BaseService):
    """
    Orchestrates cancellation requests.

    Auto vs. admin path:
        - The policy grants the refund without review (tiered refund, guide
          cancellation): the request is stored APPROVED and refunded at once.
        - The policy asks for review (trip already started, exception
          reason): the request is stored PENDING for an administrator.

    Safety Guarantees:
        - At most one unresolved request per payment (partial unique index)
        - Idempotency key cancellation-<request id> on every gateway cancel
        - A retried approval reads the payment back from the gateway first
          and skips the cancel if it already went through
    """

    # Gateway adapter - can be injected for testing
    _gateway_adapter: type | None = None

    @classmethod
    def get_gateway_adapter(cls) -> type:
        return cls._gateway_adapter or TossPaymentsAdapter

    @classmethod
    def set_gateway_adapter(cls, adapter: type | None) -> None:
        """Set the gateway adapter class (for testing)."""
        cls._gateway_adapter = adapter

    # =========================================================================
    # Request Creation
    # =========================================================================

    @classmethod
    def create_cancellation_request(
        cls,
        payment_id: uuid.UUID,
        requester,
        requester_type: str,
        reason_type: str,
        reason_detail: str | None = None,
        supporting_documents: list[str] | None = None,
        policy: RefundPolicy | None = None,
    ) -> CancellationOutcome:
        """
        Create a cancellation request and refund at once if the policy allows.

        Args:
            payment_id: Payment whose booking is cancelled
            requester: User asking for the cancellation
            requester_type: RequesterType value
            reason_type: CancellationReason value
            reason_detail: Free-text explanation
            supporting_documents: Evidence URLs
            policy: Refund policy to apply (loaded for the booking kind if None)

        Raises:
            PaymentNotFoundError: Payment does not exist
            InvalidPaymentStateError: Payment not completed, or booking has no start date
            DuplicateCancellationRequestError: An unresolved request exists
        """
        log = cls.get_logger()
        payment = cls._get_payment(payment_id)
        cls._ensure_completed(payment)

        trip_start = BookingService.resolve_start_date(payment)
        if trip_start is None:
            raise InvalidPaymentStateError(
                "Booking start date could not be determined",
                details={"payment_id": str(payment.id)},
            )

        if policy is None:
            policy = load_refund_policy(BookingService.booking_kind(payment))

        calculation = calculate_refund(
            amount=payment.amount,
            trip_start=trip_start,
            cancellation_date=timezone.now(),
            requester_type=requester_type,
            reason_type=reason_type,
            policy=policy,
        )

        with cls.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            cls._ensure_completed(payment)

            unresolved = CancellationRequest.objects.filter(
                payment=payment,
                processed_at__isnull=True,
            ).exclude(status=CancellationStatus.REJECTED)
            if unresolved.exists():
                raise DuplicateCancellationRequestError(
                    "A cancellation request for this payment is already open",
                    details={"payment_id": str(payment.id)},
                )

            try:
                with transaction.atomic():
                    request = CancellationRequest.objects.create(
                        payment=payment,
                        requester=requester,
                        requester_type=requester_type,
                        reason_type=reason_type,
                        reason_detail=reason_detail or "",
                        supporting_documents=supporting_documents or [],
                        calculated_refund_amount=calculation.refund_amount,
                        refund_percentage=calculation.refund_percentage,
                        days_before_trip=calculation.days_before_trip,
                        policy_label=calculation.policy_label,
                        status=(
                            CancellationStatus.PENDING
                            if calculation.requires_admin_approval
                            else CancellationStatus.APPROVED
                        ),
                    )
            except IntegrityError as e:
                raise DuplicateCancellationRequestError(
                    "A cancellation request for this payment is already open",
                    details={"payment_id": str(payment.id)},
                ) from e

            transaction.on_commit(
                partial(
                    cls._post_message,
                    payment,
                    BookingMessageType.CANCELLATION_REQUEST,
                    f"Cancellation requested ({request.get_reason_type_display()}). "
                    f"Expected refund: {calculation.refund_amount}",
                    sender=requester,
                    metadata={
                        "cancellation_request_id": str(request.id),
                        "refund_amount": calculation.refund_amount,
                        "requires_admin_approval": calculation.requires_admin_approval,
                    },
                )
            )

        log.info(
            "Cancellation request created",
            extra={
                "cancellation_request_id": str(request.id),
                "payment_id": str(payment.id),
                "requester_type": requester_type,
                "reason_type": reason_type,
                "refund_amount": calculation.refund_amount,
                "requires_admin_approval": calculation.requires_admin_approval,
            },
        )

        if not calculation.requires_admin_approval:
            try:
                request = cls.approve_cancellation(request.id)
            except GatewayError as e:
                # Left approved-but-unprocessed; approving again retries the refund.
                log.warning(
                    "Automatic refund failed, request left for retry",
                    extra={
                        "cancellation_request_id": str(request.id),
                        "error_code": e.error_code,
                        "is_retryable": e.is_retryable,
                    },
                )
                request = CancellationRequest.objects.get(pk=request.pk)

        return CancellationOutcome(request=request, refund_calculation=calculation)

    # =========================================================================
    # Approval (two-phase)
    # =========================================================================

    @classmethod
    def approve_cancellation(
        cls,
        request_id: uuid.UUID,
        admin=None,
        override_amount: int | None = None,
        admin_notes: str | None = None,
    ) -> CancellationRequest:
        """
        Refund at the gateway and resolve the request.

        Args:
            request_id: CancellationRequest to approve
            admin: Approving administrator (None on the automatic path)
            override_amount: Refund this amount instead of the calculated one
            admin_notes: Notes stored on the request

        Raises:
            CancellationRequestNotFoundError: Request does not exist
            InvalidCancellationStateError: Request resolved or rejected
            InvalidPaymentStateError: Payment can no longer be refunded
            RefundPolicyViolationError: Amount negative or above the refundable balance
            GatewayError: Gateway refused or could not be reached; nothing changed
        """
        log = cls.get_logger()

        # Phase 1: validate and count the attempt
        with cls.atomic():
            request = cls._lock_request(request_id)
            if request.is_resolved or request.status == CancellationStatus.REJECTED:
                raise InvalidCancellationStateError(
                    f"Cancellation request is already {request.status}",
                    details={
                        "cancellation_request_id": str(request.id),
                        "status": request.status,
                    },
                )

            payment = Payment.objects.select_for_update().get(pk=request.payment_id)
            previous_attempts = request.refund_attempts
            # After an earlier attempt a cancel notification may already have
            # moved the payment on; phase 3 reconciles that.
            retry_after_refund = previous_attempts and payment.status in (
                PaymentStatus.CANCELLED,
                PaymentStatus.REFUNDED,
            )
            if payment.status not in REFUNDABLE_PAYMENT_STATUSES and not retry_after_refund:
                raise InvalidPaymentStateError(
                    f"Payment in '{payment.status}' state cannot be refunded",
                    details={"payment_id": str(payment.id), "status": payment.status},
                )
            if not payment.payment_key:
                raise InvalidPaymentStateError(
                    "Payment has no gateway reference",
                    details={"payment_id": str(payment.id)},
                )

            refund_amount = (
                override_amount
                if override_amount is not None
                else request.calculated_refund_amount
            )
            validate_refund_amount(
                refund_amount,
                payment.amount if previous_attempts else payment.refundable_amount,
            )

            request.refund_attempts = previous_attempts + 1
            request.refund_attempted_at = timezone.now()
            request.save(update_fields=["refund_attempts", "refund_attempted_at", "updated_at"])
            payment_key = payment.payment_key

        log.info(
            "Approving cancellation",
            extra={
                "cancellation_request_id": str(request.id),
                "payment_id": str(payment.id),
                "refund_amount": refund_amount,
                "attempt": request.refund_attempts,
                "admin_id": admin.pk if admin else None,
            },
        )

        # Phase 2: gateway, outside any transaction
        cancels: list[GatewayCancel] = []
        if refund_amount > 0:
            cancels = cls._execute_gateway_refund(
                request=request,
                payment_key=payment_key,
                refund_amount=refund_amount,
                reconcile_first=previous_attempts > 0,
            )

        # Phase 3: record the outcome
        with cls.atomic():
            request = cls._lock_request(request_id)
            if request.is_resolved:
                log.warning(
                    "Cancellation request resolved concurrently",
                    extra={
                        "cancellation_request_id": str(request.id),
                        "status": request.status,
                    },
                )
                return request

            payment = PaymentLedger.lock_payment(payment_id=request.payment_id)
            PaymentLedger.apply_cancellation_refund(payment, cancels)

            request.actual_refund_amount = refund_amount
            request.status = CancellationStatus.APPROVED
            request.processed_by = admin
            request.processed_at = timezone.now()
            if admin_notes:
                request.admin_notes = admin_notes
            request.save()

            transaction.on_commit(
                partial(
                    cls._post_message,
                    payment,
                    BookingMessageType.CANCELLATION_APPROVED,
                    f"Cancellation approved. Refunded: {refund_amount}",
                    sender=admin,
                    metadata={
                        "cancellation_request_id": str(request.id),
                        "refund_amount": refund_amount,
                    },
                )
            )

        log.info(
            "Cancellation approved",
            extra={
                "cancellation_request_id": str(request.id),
                "payment_id": str(payment.id),
                "payment_status": payment.status,
                "refund_amount": refund_amount,
            },
        )
        return request

    @classmethod
    def _execute_gateway_refund(
        cls,
        request: CancellationRequest,
        payment_key: str,
        refund_amount: int,
        reconcile_first: bool,
    ) -> list[GatewayCancel]:
        """
        Cancel at the gateway, or find the cancel an earlier attempt made.

        Cancels made for a request carry its idempotency key at the start of
        their reason, which is how an earlier attempt is recognised.
        """
        adapter = cls.get_gateway_adapter()
        idempotency_key = f"cancellation-{request.id}"

        try:
            if reconcile_first:
                live = adapter.retrieve_payment(payment_key)
                if any(c.cancel_reason.startswith(idempotency_key) for c in live.cancels):
                    cls.get_logger().info(
                        "Refund already executed by an earlier attempt",
                        extra={
                            "cancellation_request_id": str(request.id),
                            "gateway_cancelled_total": live.total_cancelled,
                        },
                    )
                    return live.cancels

            gateway_payment = adapter.cancel_payment(
                CancelPaymentParams(
                    payment_key=payment_key,
                    cancel_reason=f"{idempotency_key}: {request.get_reason_type_display()}",
                    cancel_amount=refund_amount,
                    idempotency_key=idempotency_key,
                )
            )
        except GatewayError as e:
            cls.get_logger().error(
                "Gateway refund failed",
                extra={
                    "cancellation_request_id": str(request.id),
                    "payment_key": payment_key,
                    "refund_amount": refund_amount,
                    "error_code": e.error_code,
                    "gateway_code": e.gateway_code,
                },
            )
            raise
        return gateway_payment.cancels

    # =========================================================================
    # Rejection & Admin Dispatch
    # =========================================================================

    @classmethod
    def reject_cancellation(
        cls,
        request_id: uuid.UUID,
        admin,
        notes: str | None = None,
    ) -> CancellationRequest:
        """
        Reject a pending request. The payment is not touched.

        Raises:
            CancellationRequestNotFoundError: Request does not exist
            InvalidCancellationStateError: Request is not pending
        """
        with cls.atomic():
            request = cls._lock_request(request_id)
            if request.status != CancellationStatus.PENDING or request.is_resolved:
                raise InvalidCancellationStateError(
                    "Only pending cancellation requests can be rejected",
                    details={
                        "cancellation_request_id": str(request.id),
                        "status": request.status,
                    },
                )

            request.status = CancellationStatus.REJECTED
            request.processed_by = admin
            request.processed_at = timezone.now()
            request.admin_notes = notes or ""
            request.save(
                update_fields=[
                    "status",
                    "processed_by",
                    "processed_at",
                    "admin_notes",
                    "updated_at",
                ]
            )

            payment = request.payment
            transaction.on_commit(
                partial(
                    cls._post_message,
                    payment,
                    BookingMessageType.CANCELLATION_REJECTED,
                    "Cancellation request rejected"
                    + (f": {notes}" if notes else ""),
                    sender=admin,
                    metadata={"cancellation_request_id": str(request.id)},
                )
            )

        cls.get_logger().info(
            "Cancellation rejected",
            extra={
                "cancellation_request_id": str(request.id),
                "admin_id": admin.pk if admin else None,
            },
        )
        return request

    @classmethod
    def process_cancellation(
        cls,
        request_id: uuid.UUID,
        admin,
        decision: str,
        notes: str | None = None,
        override_amount: int | None = None,
    ) -> dict:
        """Apply an administrator's decision on a request."""
        if decision == CancellationDecision.APPROVED:
            request = cls.approve_cancellation(
                request_id,
                admin=admin,
                override_amount=override_amount,
                admin_notes=notes,
            )
        elif decision == CancellationDecision.REJECTED:
            request = cls.reject_cancellation(request_id, admin=admin, notes=notes)
        else:
            raise ValidationError(
                f"Unknown decision '{decision}'",
                details={"decision": decision},
            )
        return {"success": True, "request": request}

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_pending_cancellation_requests(cls) -> QuerySet[CancellationRequest]:
        """Requests waiting for an administrator, oldest first."""
        return (
            CancellationRequest.objects.filter(status=CancellationStatus.PENDING)
            .select_related("payment", "requester")
            .order_by("created_at")
        )

    @classmethod
    def preview_refund(
        cls,
        payment_id: uuid.UUID,
        requester_type: str,
        reason_type: str,
        policy: RefundPolicy | None = None,
        cancellation_date: datetime | None = None,
    ) -> RefundPreview:
        """
        What a cancellation would refund right now, without storing anything.

        Raises:
            PaymentNotFoundError: Payment does not exist
            InvalidPaymentStateError: Booking has no start date
        """
        payment = cls._get_payment(payment_id)
        trip_start = BookingService.resolve_start_date(payment)
        if trip_start is None:
            raise InvalidPaymentStateError(
                "Booking start date could not be determined",
                details={"payment_id": str(payment.id)},
            )
        if policy is None:
            policy = load_refund_policy(BookingService.booking_kind(payment))

        calculation = calculate_refund(
            amount=payment.amount,
            trip_start=trip_start,
            cancellation_date=cancellation_date or timezone.now(),
            requester_type=requester_type,
            reason_type=reason_type,
            policy=policy,
        )
        return RefundPreview(
            payment=payment,
            refund_calculation=calculation,
            policy_lines=describe_policy(policy),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _get_payment(cls, payment_id) -> Payment:
        payment = (
            Payment.objects.select_related("trip", "offer", "product", "product_offer")
            .filter(pk=payment_id)
            .first()
        )
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found",
                details={"payment_id": str(payment_id)},
            )
        return payment

    @staticmethod
    def _ensure_completed(payment: Payment) -> None:
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidPaymentStateError(
                "Only completed payments can be cancelled",
                details={"payment_id": str(payment.id), "status": payment.status},
            )

    @staticmethod
    def _lock_request(request_id) -> CancellationRequest:
        request = (
            CancellationRequest.objects.select_for_update().filter(pk=request_id).first()
        )
        if request is None:
            raise CancellationRequestNotFoundError(
                f"Cancellation request {request_id} not found",
                details={"cancellation_request_id": str(request_id)},
            )
        return request

    @staticmethod
    def _post_message(
        payment: Payment,
        message_type: str,
        content: str,
        sender=None,
        metadata: dict | None = None,
    ) -> None:
        """Post to the booking conversation. Failures are logged, never raised."""
        try:
            ConversationService.post_message(
                payment,
                message_type,
                content,
                sender=sender,
                metadata=metadata,
            )
        except Exception:
            logger.exception(
                "Failed to post cancellation message",
                extra={"payment_id": str(payment.id), "message_type": message_type},
            )
