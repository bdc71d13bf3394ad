"""
Payment admin configuration.

Registers payment domain models with the Django admin. Payments, refund
rows and webhook events are audit records: they cannot be deleted here and
their states are only changed through the service layer.
"""

from django.contrib import admin, messages

from payments.models import (
    CancellationRequest,
    Payment,
    PaymentRefund,
    RefundPolicyRule,
    Settlement,
    WebhookEvent,
)

__all__ = [
    "CancellationRequestAdmin",
    "PaymentAdmin",
    "PaymentRefundAdmin",
    "RefundPolicyRuleAdmin",
    "SettlementAdmin",
    "WebhookEventAdmin",
]


class PaymentRefundInline(admin.TabularInline):
    model = PaymentRefund
    extra = 0
    can_delete = False
    fields = ["transaction_key", "refund_amount", "refund_type", "canceled_at"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    State changes should be made through the service layer, not admin.
    """

    list_display = [
        "id",
        "order_id",
        "payer",
        "amount",
        "status",
        "refund_amount",
        "paid_at",
        "created_at",
    ]
    list_filter = ["status", "payment_method", "created_at"]
    search_fields = ["id", "order_id", "payment_key", "payer__email"]
    readonly_fields = [
        "id",
        "status",
        "payment_key",
        "order_id",
        "amount",
        "currency",
        "refund_amount",
        "trip",
        "offer",
        "product",
        "product_offer",
        "paid_at",
        "cancelled_at",
        "refunded_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PaymentRefundInline]
    actions = ["reconcile_with_gateway"]

    fieldsets = (
        (None, {"fields": ("id", "payer", "status", "order_id", "payment_key")}),
        ("Amount", {"fields": ("amount", "currency", "refund_amount", "payment_method")}),
        ("Booking", {"fields": ("trip", "offer", "product", "product_offer")}),
        (
            "State Timestamps",
            {
                "fields": ("paid_at", "cancelled_at", "refunded_at"),
                "classes": ("collapse",),
            },
        ),
        ("Failure Info", {"fields": ("failure_reason",), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("version", "created_at", "updated_at")}),
    )

    @admin.action(description="Reconcile with payment gateway")
    def reconcile_with_gateway(self, request, queryset):
        from payments.tasks import reconcile_payment

        count = 0
        for payment in queryset.exclude(payment_key__isnull=True):
            reconcile_payment.delay(str(payment.id))
            count += 1
        self.message_user(request, f"Queued {count} payments for reconciliation", messages.INFO)

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (audit trail)."""
        return False


@admin.register(PaymentRefund)
class PaymentRefundAdmin(admin.ModelAdmin):
    list_display = ["transaction_key", "payment", "refund_amount", "refund_type", "canceled_at"]
    list_filter = ["refund_type"]
    search_fields = ["transaction_key", "payment__order_id"]
    readonly_fields = [
        "id",
        "payment",
        "refund_amount",
        "refund_type",
        "refund_reason",
        "transaction_key",
        "canceled_at",
        "gateway_response",
        "created_at",
    ]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(CancellationRequest)
class CancellationRequestAdmin(admin.ModelAdmin):
    """
    Admin configuration for CancellationRequest.

    Approving and rejecting goes through the API (CancellationService) so the
    gateway refund and the payment transition happen together.
    """

    list_display = [
        "id",
        "payment",
        "requester_type",
        "reason_type",
        "calculated_refund_amount",
        "actual_refund_amount",
        "status",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "requester_type", "reason_type"]
    search_fields = ["id", "payment__order_id"]
    readonly_fields = [
        "id",
        "payment",
        "requester",
        "requester_type",
        "reason_type",
        "calculated_refund_amount",
        "refund_percentage",
        "days_before_trip",
        "policy_label",
        "actual_refund_amount",
        "refund_attempts",
        "refund_attempted_at",
        "status",
        "processed_by",
        "processed_at",
        "created_at",
    ]
    ordering = ["-created_at"]


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):
    list_display = [
        "payment",
        "total_amount",
        "commission_amount",
        "tax_amount",
        "settlement_amount",
        "status",
        "settled_at",
    ]
    list_filter = ["status"]
    readonly_fields = [
        "id",
        "payment",
        "total_amount",
        "commission_rate_bps",
        "commission_amount",
        "tax_rate_bps",
        "tax_amount",
        "settlement_amount",
        "created_at",
    ]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(RefundPolicyRule)
class RefundPolicyRuleAdmin(admin.ModelAdmin):
    list_display = ["applicable_to", "days_from_trip_start", "refund_percentage", "label", "is_active"]
    list_filter = ["applicable_to", "is_active"]
    ordering = ["applicable_to", "-days_from_trip_start"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "event_id",
        "event_type",
        "payment_key",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "event_id", "payment_key"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "event_id",
        "event_type",
        "payment_key",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        return False
