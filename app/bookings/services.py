"""
Booking status side effects driven by the payment flow.

BookingService is called by the payment ledger inside the ledger's own
transaction, so every write here commits or rolls back together with the
payment transition that caused it.

Status mapping:
    payment completed  -> trip accepted, offer accepted (or product offer accepted)
    payment cancelled/refunded -> trip submitted, offer pending
                                  (or product offer pending)

Reverting only touches rows that are still "accepted"; a trip that already
moved on (completed, cancelled by other means) is left alone.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bookings.models import (
    BookingMessage,
    Offer,
    OfferStatus,
    ProductOffer,
    ProductOfferStatus,
    Trip,
    TripStatus,
)
from core.services import BaseService

if TYPE_CHECKING:
    from datetime import datetime

    from payments.models import Payment

logger = logging.getLogger(__name__)


class BookingKind:
    TRIP = "trip"
    PRODUCT = "product"


class BookingService(BaseService):
    """Keeps trip/offer and product-offer statuses in step with payments."""

    @staticmethod
    def booking_kind(payment: Payment) -> str:
        return BookingKind.TRIP if payment.trip_id else BookingKind.PRODUCT

    @staticmethod
    def resolve_start_date(payment: Payment) -> datetime | None:
        """
        Start of the booked service for a payment.

        Trips use their own start date. Product offers use the date the
        traveler booked, falling back to the product's default date.
        """
        if payment.trip_id:
            return payment.trip.start_date
        if payment.product_offer_id:
            return payment.product_offer.effective_start_date
        return None

    @classmethod
    def mark_accepted(cls, payment: Payment) -> None:
        """Accept the booking a completed payment belongs to."""
        if payment.trip_id:
            Trip.objects.filter(pk=payment.trip_id).update(status=TripStatus.ACCEPTED)
            Offer.objects.filter(pk=payment.offer_id).update(status=OfferStatus.ACCEPTED)
        else:
            ProductOffer.objects.filter(pk=payment.product_offer_id).update(
                status=ProductOfferStatus.ACCEPTED
            )

        cls.get_logger().info(
            "Booking accepted",
            extra={
                "payment_id": str(payment.id),
                "trip_id": str(payment.trip_id) if payment.trip_id else None,
                "product_offer_id": (
                    str(payment.product_offer_id) if payment.product_offer_id else None
                ),
            },
        )

    @classmethod
    def revert_acceptance(cls, payment: Payment) -> None:
        """Put an accepted booking back to its pre-acceptance status."""
        if payment.trip_id:
            Trip.objects.filter(
                pk=payment.trip_id, status=TripStatus.ACCEPTED
            ).update(status=TripStatus.SUBMITTED)
            Offer.objects.filter(
                pk=payment.offer_id, status=OfferStatus.ACCEPTED
            ).update(status=OfferStatus.PENDING)
        else:
            ProductOffer.objects.filter(
                pk=payment.product_offer_id, status=ProductOfferStatus.ACCEPTED
            ).update(status=ProductOfferStatus.PENDING)

        cls.get_logger().info(
            "Booking acceptance reverted",
            extra={"payment_id": str(payment.id)},
        )

    @staticmethod
    def is_guide(payment: Payment, user) -> bool:
        """Whether ``user`` is the guide on the payment's booking."""
        if payment.offer_id:
            return payment.offer.guide_id == user.pk
        if payment.product_id:
            return payment.product.guide_id == user.pk
        return False


class ConversationService(BaseService):
    """Posts system messages into a booking's conversation thread."""

    @classmethod
    def post_message(
        cls,
        payment: Payment,
        message_type: str,
        content: str,
        sender=None,
        metadata: dict | None = None,
    ) -> BookingMessage:
        message = BookingMessage.objects.create(
            offer_id=payment.offer_id,
            product_offer_id=payment.product_offer_id,
            sender=sender,
            message_type=message_type,
            content=content,
            metadata=metadata or {},
        )
        logger.debug(
            "Booking message posted",
            extra={"payment_id": str(payment.id), "message_type": message_type},
        )
        return message
