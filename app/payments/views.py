"""
DRF views for payments app.

This module provides API views for:
- Refund previews
- Cancellation requests by travelers and guides
- Admin review of pending cancellation requests
- Checkout confirmation

Related files:
    - services/: CancellationService, PaymentService
    - serializers.py: Request/response serializers
    - urls.py: URL routing
    - webhooks/views.py: Gateway webhook endpoint (not DRF)

Endpoints:
    POST /api/v1/payments/cancellations/calculate/ - Preview a refund
    POST /api/v1/payments/cancellations/ - Request a cancellation
    GET /api/v1/payments/cancellations/pending/ - Pending requests (admin)
    POST /api/v1/payments/cancellations/<id>/process/ - Approve/reject (admin)
    POST /api/v1/payments/confirm/ - Confirm a checkout

Errors:
    Domain errors are answered with BaseApplicationError.to_dict() and the
    exception's http_status.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.services import BookingService
from core.exceptions import BaseApplicationError, PermissionDeniedError, ValidationError
from payments.exceptions import PaymentNotFoundError
from payments.models import Payment
from payments.policy import RequesterType, reasons_for
from payments.serializers import (
    CancellationRequestCreateSerializer,
    CancellationRequestSerializer,
    ConfirmPaymentSerializer,
    PaymentSerializer,
    ProcessCancellationSerializer,
    RefundCalculationSerializer,
    RefundPreviewRequestSerializer,
)
from payments.services import CancellationService, PaymentService

logger = logging.getLogger(__name__)


def _error_response(error: BaseApplicationError) -> Response:
    return Response(error.to_dict(), status=error.http_status)


def _resolve_requester(payment_id, user, reason_type: str) -> tuple[Payment, str]:
    """
    Work out whether ``user`` cancels as the traveler or the guide.

    Raises:
        PaymentNotFoundError: Payment does not exist
        PermissionDeniedError: User is neither payer nor guide
        ValidationError: Reason not available to that side
    """
    payment = (
        Payment.objects.select_related("offer", "product").filter(pk=payment_id).first()
    )
    if payment is None:
        raise PaymentNotFoundError(
            f"Payment {payment_id} not found",
            details={"payment_id": str(payment_id)},
        )

    if payment.payer_id == user.pk:
        requester_type = RequesterType.TRAVELER
    elif BookingService.is_guide(payment, user):
        requester_type = RequesterType.GUIDE
    else:
        raise PermissionDeniedError(
            "You are not a party to this booking",
            details={"payment_id": str(payment_id)},
        )

    if reason_type not in reasons_for(requester_type):
        raise ValidationError(
            f"Reason '{reason_type}' is not available to a {requester_type}",
            error_code="INVALID_CANCELLATION_REASON",
            details={"reason_type": reason_type, "requester_type": requester_type},
        )
    return payment, requester_type


class CancellationRequestPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100


# =============================================================================
# Traveler / Guide Endpoints
# =============================================================================


class RefundPreviewView(APIView):
    """
    Preview the refund a cancellation would get right now.

    POST /api/v1/payments/cancellations/calculate/

    Request body:
        {"payment_id": "...", "reason_type": "schedule_change"}

    Returns:
        {"refund_calculation": {...}, "policy": ["...", ...]}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="preview_cancellation_refund",
        summary="Preview cancellation refund",
        description=(
            "Calculate the refund for cancelling a booking now, without creating "
            "a request. The requester type is derived from the caller's role."
        ),
        request=RefundPreviewRequestSerializer,
        responses={
            200: OpenApiResponse(description="Refund calculation and policy lines"),
            403: OpenApiResponse(description="Caller is not a party to the booking"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Payments - Cancellations"],
    )
    def post(self, request):
        serializer = RefundPreviewRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            payment, requester_type = _resolve_requester(
                data["payment_id"], request.user, data["reason_type"]
            )
            preview = CancellationService.preview_refund(
                payment_id=payment.id,
                requester_type=requester_type,
                reason_type=data["reason_type"],
            )
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(
            {
                "requester_type": requester_type,
                "refund_calculation": RefundCalculationSerializer(
                    preview.refund_calculation
                ).data,
                "policy": preview.policy_lines,
            }
        )


class CancellationRequestCreateView(APIView):
    """
    Request cancellation of a paid booking.

    POST /api/v1/payments/cancellations/

    Request body:
        {
            "payment_id": "...",
            "reason_type": "schedule_change",
            "reason_detail": "Flight moved",
            "supporting_documents": ["https://..."]
        }

    Returns:
        201 {"request": {...}, "refund_calculation": {...}}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_cancellation_request",
        summary="Request cancellation",
        description=(
            "Create a cancellation request. Refunds the policy grants without "
            "review are executed immediately; others wait for an administrator."
        ),
        request=CancellationRequestCreateSerializer,
        responses={
            201: OpenApiResponse(
                response=CancellationRequestSerializer,
                description="Request created",
            ),
            403: OpenApiResponse(description="Caller is not a party to the booking"),
            404: OpenApiResponse(description="Payment not found"),
            409: OpenApiResponse(
                description="Payment not cancellable or a request is already open"
            ),
        },
        tags=["Payments - Cancellations"],
    )
    def post(self, request):
        serializer = CancellationRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            payment, requester_type = _resolve_requester(
                data["payment_id"], request.user, data["reason_type"]
            )
            outcome = CancellationService.create_cancellation_request(
                payment_id=payment.id,
                requester=request.user,
                requester_type=requester_type,
                reason_type=data["reason_type"],
                reason_detail=data.get("reason_detail"),
                supporting_documents=data.get("supporting_documents"),
            )
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(
            {
                "request": CancellationRequestSerializer(outcome.request).data,
                "refund_calculation": RefundCalculationSerializer(
                    outcome.refund_calculation
                ).data,
            },
            status=status.HTTP_201_CREATED,
        )


# =============================================================================
# Admin Endpoints
# =============================================================================


class PendingCancellationListView(APIView):
    """
    List cancellation requests waiting for review, oldest first.

    GET /api/v1/payments/cancellations/pending/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="list_pending_cancellations",
        summary="List pending cancellation requests",
        responses={
            200: OpenApiResponse(
                response=CancellationRequestSerializer(many=True),
                description="Paginated pending requests",
            ),
        },
        tags=["Payments - Admin"],
    )
    def get(self, request):
        paginator = CancellationRequestPagination()
        queryset = CancellationService.get_pending_cancellation_requests()
        page = paginator.paginate_queryset(queryset, request, view=self)
        serializer = CancellationRequestSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)


class ProcessCancellationView(APIView):
    """
    Approve or reject a cancellation request.

    POST /api/v1/payments/cancellations/<request_id>/process/

    Request body:
        {"decision": "approved", "admin_notes": "...", "override_refund_amount": 50000}
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="process_cancellation_request",
        summary="Approve or reject a cancellation request",
        description=(
            "Approving refunds at the gateway and cancels the booking. A gateway "
            "outage leaves the request and payment unchanged (503, retry later)."
        ),
        request=ProcessCancellationSerializer,
        responses={
            200: OpenApiResponse(
                response=CancellationRequestSerializer,
                description="Request resolved",
            ),
            400: OpenApiResponse(description="Refund amount outside the refundable balance"),
            404: OpenApiResponse(description="Request not found"),
            409: OpenApiResponse(description="Request already resolved or payment not refundable"),
            502: OpenApiResponse(description="Gateway refused the refund"),
            503: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Payments - Admin"],
    )
    def post(self, request, request_id):
        serializer = ProcessCancellationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = CancellationService.process_cancellation(
                request_id,
                admin=request.user,
                decision=data["decision"],
                notes=data.get("admin_notes"),
                override_amount=data.get("override_refund_amount"),
            )
        except BaseApplicationError as e:
            logger.info(
                "Cancellation processing refused",
                extra={
                    "cancellation_request_id": str(request_id),
                    "error_code": e.error_code,
                },
            )
            return _error_response(e)

        return Response(
            {
                "success": result["success"],
                "request": CancellationRequestSerializer(result["request"]).data,
            }
        )


# =============================================================================
# Checkout
# =============================================================================


class ConfirmPaymentView(APIView):
    """
    Confirm a checkout the payer authorised with the gateway.

    POST /api/v1/payments/confirm/

    Request body:
        {"payment_id": "...", "payment_key": "tgen_...", "amount": 100000}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_payment",
        summary="Confirm checkout",
        request=ConfirmPaymentSerializer,
        responses={
            200: OpenApiResponse(response=PaymentSerializer, description="Payment completed"),
            400: OpenApiResponse(description="Amount mismatch"),
            403: OpenApiResponse(description="Caller is not the payer"),
            404: OpenApiResponse(description="Payment not found"),
            409: OpenApiResponse(description="Payment is not pending"),
        },
        tags=["Payments - Checkout"],
    )
    def post(self, request):
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = Payment.objects.filter(pk=data["payment_id"]).first()
        if payment is not None and payment.payer_id != request.user.pk:
            return _error_response(
                PermissionDeniedError("Only the payer can confirm this payment")
            )

        try:
            payment = PaymentService.confirm_payment(
                payment_id=data["payment_id"],
                payment_key=data["payment_key"],
                amount=data["amount"],
            )
        except BaseApplicationError as e:
            return _error_response(e)

        return Response(PaymentSerializer(payment).data)
