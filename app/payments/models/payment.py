"""
Payment model: the authoritative record of one purchase attempt.

A Payment is created PENDING when checkout starts and is then moved only by
django-fsm transitions, called from payments.services.payment_ledger. It
belongs to exactly one booking: a trip plus the accepted guide offer, or a
product plus the traveler's product offer.

Usage:
    from payments.models import Payment
    from payments.state_machines import PaymentStatus

    payment = Payment.objects.create(
        payer=traveler,
        amount=100000,
        order_id="order-7f3a",
        trip=trip,
        offer=offer,
    )

    # Transitions are only applied through the ledger, on a locked row
    payment = Payment.objects.select_for_update().get(pk=payment.pk)
    payment.complete(paid_at=approved_at, payment_method="card")
    payment.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PaymentStatus

BOOKING_FIELDS = ("trip_id", "offer_id", "product_id", "product_offer_id")


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    One purchase attempt against the payment gateway.

    State Flow:
        PENDING -> COMPLETED -> CANCELLED | PARTIALLY_REFUNDED | REFUNDED
        PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED | REFUNDED
        PENDING -> FAILED | EXPIRED

    Fields:
        payer: Traveler who paid (nullable for imported/legacy rows)
        amount: Charged amount in minor units (KRW has no minor unit)
        payment_key: Gateway payment reference, set on checkout confirmation
        order_id: Our order id sent to the gateway at checkout
        trip/offer or product/product_offer: The booking being paid for
        refund_amount: Total refunded so far, never above amount
        version: Optimistic locking version, bumped on each save

    Note:
        Payments are never deleted. Every relation pointing here uses
        PROTECT and the admin disables deletion.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments",
        help_text="User who made the payment",
    )

    trip = models.ForeignKey(
        "bookings.Trip",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments",
    )
    offer = models.ForeignKey(
        "bookings.Offer",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments",
    )
    product = models.ForeignKey(
        "bookings.Product",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments",
    )
    product_offer = models.ForeignKey(
        "bookings.ProductOffer",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount = models.PositiveBigIntegerField(
        help_text="Payment amount in minor currency units",
    )

    currency = models.CharField(
        max_length=3,
        default="KRW",
        help_text="ISO 4217 currency code",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current payment status (managed by FSM)",
    )

    # ==========================================================================
    # Gateway References
    # ==========================================================================

    payment_key = models.CharField(
        max_length=200,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway payment key",
    )

    order_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Order id sent to the gateway at checkout",
    )

    payment_method = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Method reported by the gateway (card, transfer, ...)",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # State Timestamps & Refund Totals
    # ==========================================================================

    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the most recent refund was recorded",
    )

    refund_amount = models.PositiveBigIntegerField(
        default=0,
        help_text="Total refunded in minor units",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Gateway failure message for failed/expired payments",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
            models.Index(fields=["payer", "status"], name="payment_payer_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(refund_amount__lte=F("amount")),
                name="payment_refund_within_amount",
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(
                        trip__isnull=False,
                        offer__isnull=False,
                        product__isnull=True,
                        product_offer__isnull=True,
                    )
                    | models.Q(
                        trip__isnull=True,
                        offer__isnull=True,
                        product__isnull=False,
                        product_offer__isnull=False,
                    )
                ),
                name="payment_single_booking",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.status}, {self.amount} {self.currency})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_booking = tuple(
            instance.__dict__.get(name) for name in BOOKING_FIELDS
        )
        return instance

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        Raises:
            ValueError: If the booking pairing of a stored payment changed
        """
        loaded = getattr(self, "_loaded_booking", None)
        if loaded is not None and loaded != self.booking_ids:
            raise ValueError("The booking of a payment cannot be changed")

        is_update = self.pk and not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    @property
    def booking_ids(self) -> tuple:
        return tuple(getattr(self, name) for name in BOOKING_FIELDS)

    @property
    def refundable_amount(self) -> int:
        return self.amount - self.refund_amount

    @property
    def is_fully_refunded(self) -> bool:
        return self.refund_amount >= self.amount

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.COMPLETED,
    )
    def complete(self, paid_at=None, payment_method: str | None = None):
        """
        Transition: PENDING -> COMPLETED

        Called when the gateway reports the payment as approved (DONE).
        """
        self.paid_at = paid_at or timezone.now()
        if payment_method:
            self.payment_method = payment_method

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """Transition: PENDING -> FAILED"""
        self.failure_reason = reason or "Payment failed"

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.EXPIRED,
    )
    def expire(self):
        """Transition: PENDING -> EXPIRED"""
        self.failure_reason = "Payment expired"

    @transition(
        field=status,
        source=PaymentStatus.COMPLETED,
        target=PaymentStatus.CANCELLED,
    )
    def cancel(self, refund_total: int = 0, cancelled_at=None):
        """
        Transition: COMPLETED -> CANCELLED

        The booking is cancelled. refund_total is whatever the gateway
        returned to the payer (zero for a forfeited payment).
        """
        self.cancelled_at = cancelled_at or timezone.now()
        if refund_total:
            self.refund_amount = refund_total
            self.refunded_at = self.cancelled_at

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(self, refund_total: int, refunded_at=None):
        """Transition: COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED"""
        self.refund_amount = refund_total
        self.refunded_at = refunded_at or timezone.now()

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.REFUNDED,
    )
    def refund_full(self, refunded_at=None):
        """Transition: COMPLETED/PARTIALLY_REFUNDED -> REFUNDED"""
        self.refund_amount = self.amount
        self.refunded_at = refunded_at or timezone.now()
        self.cancelled_at = self.cancelled_at or self.refunded_at
