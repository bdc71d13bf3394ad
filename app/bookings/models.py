"""
Booking models that payments settle against.

Models:
    Trip: A traveler's trip request
    Offer: A guide's offer for a trip
    Product: A guide-published tour product
    ProductOffer: A traveler's booking of a product
    BookingMessage: Conversation log attached to an offer or product offer

Statuses here are plain choices fields. Only the payment flow moves them
between "pending/submitted" and "accepted" (see bookings.services).
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class TripStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    SUBMITTED = "submitted", "Submitted"
    ACCEPTED = "accepted", "Accepted"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class OfferStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"
    WITHDRAWN = "withdrawn", "Withdrawn"
    CANCELLED = "cancelled", "Cancelled"


class ProductOfferStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    REJECTED = "rejected", "Rejected"
    CANCELLED = "cancelled", "Cancelled"


class BookingMessageType(models.TextChoices):
    TEXT = "text", "Text"
    CANCELLATION_REQUEST = "cancellation_request", "Cancellation Request"
    CANCELLATION_APPROVED = "cancellation_approved", "Cancellation Approved"
    CANCELLATION_REJECTED = "cancellation_rejected", "Cancellation Rejected"


class Trip(UUIDPrimaryKeyMixin, BaseModel):
    """A trip request posted by a traveler and answered with guide offers."""

    traveler = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="trips",
    )
    destination = models.CharField(max_length=200)
    start_date = models.DateTimeField(help_text="When the trip begins")
    end_date = models.DateTimeField(null=True, blank=True)
    status = models.CharField(
        max_length=20,
        choices=TripStatus.choices,
        default=TripStatus.DRAFT,
        db_index=True,
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Trip({self.id}, {self.destination}, {self.status})"


class Offer(UUIDPrimaryKeyMixin, BaseModel):
    """A guide's priced offer for a trip."""

    trip = models.ForeignKey(Trip, on_delete=models.PROTECT, related_name="offers")
    guide = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="offers",
    )
    price = models.PositiveBigIntegerField(help_text="Offered price in minor units")
    status = models.CharField(
        max_length=20,
        choices=OfferStatus.choices,
        default=OfferStatus.PENDING,
        db_index=True,
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Offer({self.id}, trip={self.trip_id}, {self.status})"


class Product(UUIDPrimaryKeyMixin, BaseModel):
    """A tour product published by a guide."""

    guide = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="products",
    )
    title = models.CharField(max_length=200)
    price = models.PositiveBigIntegerField(help_text="List price in minor units")
    start_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Default start for bookings that do not pick their own date",
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Product({self.id}, {self.title})"


class ProductOffer(UUIDPrimaryKeyMixin, BaseModel):
    """A traveler's booking request for a product."""

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="offers",
    )
    traveler = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="product_offers",
    )
    start_date = models.DateTimeField(null=True, blank=True)
    total_price = models.PositiveBigIntegerField()
    status = models.CharField(
        max_length=20,
        choices=ProductOfferStatus.choices,
        default=ProductOfferStatus.PENDING,
        db_index=True,
    )

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"ProductOffer({self.id}, product={self.product_id}, {self.status})"

    @property
    def effective_start_date(self):
        return self.start_date or self.product.start_date


class BookingMessage(UUIDPrimaryKeyMixin, BaseModel):
    """
    A message in the conversation attached to an offer or a product offer.

    Cancellation workflow events are posted here so both parties see them in
    their chat thread.
    """

    offer = models.ForeignKey(
        Offer,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="messages",
    )
    product_offer = models.ForeignKey(
        ProductOffer,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="messages",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="booking_messages",
    )
    message_type = models.CharField(
        max_length=40,
        choices=BookingMessageType.choices,
        default=BookingMessageType.TEXT,
    )
    content = models.TextField()
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(offer__isnull=False, product_offer__isnull=True)
                    | models.Q(offer__isnull=True, product_offer__isnull=False)
                ),
                name="booking_message_single_thread",
            ),
        ]

    def __str__(self) -> str:
        return f"BookingMessage({self.id}, {self.message_type})"
