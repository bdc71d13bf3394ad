import uuid

import django.core.validators
import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("amount", models.PositiveBigIntegerField(help_text="Payment amount in minor currency units")),
                ("currency", models.CharField(default="KRW", help_text="ISO 4217 currency code", max_length=3)),
                ("status", django_fsm.FSMField(choices=[("pending", "Pending"), ("completed", "Completed"), ("cancelled", "Cancelled"), ("partially_refunded", "Partially Refunded"), ("refunded", "Refunded"), ("failed", "Failed"), ("expired", "Expired")], db_index=True, default="pending", help_text="Current payment status (managed by FSM)", max_length=50, protected=True)),
                ("payment_key", models.CharField(blank=True, help_text="Gateway payment key", max_length=200, null=True, unique=True)),
                ("order_id", models.CharField(help_text="Order id sent to the gateway at checkout", max_length=64, unique=True)),
                ("payment_method", models.CharField(blank=True, default="", help_text="Method reported by the gateway (card, transfer, ...)", max_length=50)),
                ("version", models.PositiveIntegerField(default=1, help_text="Version for optimistic locking - incremented on each save")),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, help_text="When the most recent refund was recorded", null=True)),
                ("refund_amount", models.PositiveBigIntegerField(default=0, help_text="Total refunded in minor units")),
                ("failure_reason", models.TextField(blank=True, help_text="Gateway failure message for failed/expired payments", null=True)),
                ("payer", models.ForeignKey(blank=True, help_text="User who made the payment", null=True, on_delete=django.db.models.deletion.PROTECT, related_name="payments", to=settings.AUTH_USER_MODEL)),
                ("trip", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="bookings.trip")),
                ("offer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="bookings.offer")),
                ("product", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="bookings.product")),
                ("product_offer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="bookings.productoffer")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="payment_status_created_idx"),
                    models.Index(fields=["payer", "status"], name="payment_payer_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="payment_amount_positive"),
                    models.CheckConstraint(condition=models.Q(("refund_amount__lte", models.F("amount"))), name="payment_refund_within_amount"),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("offer__isnull", False), ("product__isnull", True), ("product_offer__isnull", True), ("trip__isnull", False)),
                            models.Q(("offer__isnull", True), ("product__isnull", False), ("product_offer__isnull", False), ("trip__isnull", True)),
                            _connector="OR",
                        ),
                        name="payment_single_booking",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentRefund",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("refund_amount", models.PositiveBigIntegerField(help_text="Cancelled amount in minor units")),
                ("refund_type", models.CharField(choices=[("full", "Full"), ("partial", "Partial")], default="partial", max_length=10)),
                ("refund_reason", models.TextField(blank=True, default="")),
                ("transaction_key", models.CharField(help_text="Gateway cancel transaction key - unique for idempotency", max_length=200, unique=True)),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                ("gateway_response", models.JSONField(blank=True, default=dict)),
                ("payment", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="refunds", to="payments.payment")),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("refund_amount__gt", 0)), name="payment_refund_amount_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("event_id", models.CharField(help_text="Gateway event id - unique constraint for idempotency", max_length=255, unique=True)),
                ("event_type", models.CharField(db_index=True, help_text="Gateway event type (e.g., 'PAYMENT.DONE')", max_length=100)),
                ("payment_key", models.CharField(blank=True, db_index=True, default="", help_text="Gateway payment key the event refers to", max_length=200)),
                ("payload", models.JSONField(help_text="Full webhook body from the gateway (JSON)")),
                ("status", models.CharField(choices=[("pending", "Pending"), ("processed", "Processed"), ("failed", "Failed")], db_index=True, default="pending", max_length=20)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0, help_text="Number of failed processing attempts")),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
                    models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CancellationRequest",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("requester_type", models.CharField(choices=[("traveler", "Traveler"), ("guide", "Guide")], max_length=20)),
                ("reason_type", models.CharField(choices=[("schedule_change", "Schedule change"), ("booking_mismatch", "Booking does not match the offer"), ("guide_unresponsive", "Guide unresponsive"), ("guide_unavailable", "Guide unavailable"), ("traveler_request", "Traveler asked to cancel"), ("traveler_unresponsive", "Traveler unresponsive"), ("facility_unavailable", "Facility unavailable"), ("natural_disaster", "Natural disaster"), ("medical_emergency", "Medical emergency"), ("other", "Other")], max_length=40)),
                ("reason_detail", models.TextField(blank=True, default="")),
                ("supporting_documents", models.JSONField(blank=True, default=list, help_text="URLs of uploaded evidence (medical notes, notices, ...)")),
                ("calculated_refund_amount", models.PositiveBigIntegerField()),
                ("refund_percentage", models.PositiveSmallIntegerField(default=0)),
                ("days_before_trip", models.IntegerField(blank=True, null=True)),
                ("policy_label", models.CharField(blank=True, default="", max_length=100)),
                ("actual_refund_amount", models.PositiveBigIntegerField(blank=True, null=True)),
                ("refund_attempts", models.PositiveSmallIntegerField(default=0)),
                ("refund_attempted_at", models.DateTimeField(blank=True, null=True)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")], db_index=True, default="pending", max_length=20)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("admin_notes", models.TextField(blank=True, default="")),
                ("payment", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="cancellation_requests", to="payments.payment")),
                ("requester", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="cancellation_requests", to=settings.AUTH_USER_MODEL)),
                ("processed_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="processed_cancellations", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="cancel_req_status_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("status", "pending")), fields=("payment",), name="one_pending_cancellation_per_payment"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Settlement",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("total_amount", models.PositiveBigIntegerField(help_text="Payment amount the split was computed from")),
                ("commission_rate_bps", models.PositiveIntegerField(help_text="Platform commission rate in basis points")),
                ("commission_amount", models.PositiveBigIntegerField()),
                ("tax_rate_bps", models.PositiveIntegerField(help_text="Withholding tax rate in basis points")),
                ("tax_amount", models.PositiveBigIntegerField()),
                ("settlement_amount", models.PositiveBigIntegerField(help_text="Amount paid out to the guide")),
                ("status", models.CharField(choices=[("pending", "Pending"), ("completed", "Completed")], db_index=True, default="pending", max_length=20)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("payment", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="settlement", to="payments.payment")),
            ],
            options={
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total_amount", models.F("commission_amount") + models.F("tax_amount") + models.F("settlement_amount"))),
                        name="settlement_amounts_add_up",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundPolicyRule",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("applicable_to", models.CharField(choices=[("trip", "Trip"), ("product", "Product")], default="trip", max_length=10)),
                ("days_from_trip_start", models.PositiveIntegerField(help_text="Minimum whole days between cancellation and start")),
                ("refund_percentage", models.PositiveSmallIntegerField(validators=[django.core.validators.MaxValueValidator(100)])),
                ("label", models.CharField(max_length=100)),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["applicable_to", "-days_from_trip_start"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("refund_percentage__lte", 100)), name="refund_policy_percentage_max_100"),
                    models.UniqueConstraint(condition=models.Q(("is_active", True)), fields=("applicable_to", "days_from_trip_start"), name="one_active_rule_per_threshold"),
                ],
            },
        ),
    ]
