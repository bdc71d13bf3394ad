import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Trip",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("destination", models.CharField(max_length=200)),
                ("start_date", models.DateTimeField(help_text="When the trip begins")),
                ("end_date", models.DateTimeField(blank=True, null=True)),
                ("status", models.CharField(choices=[("draft", "Draft"), ("submitted", "Submitted"), ("accepted", "Accepted"), ("completed", "Completed"), ("cancelled", "Cancelled")], db_index=True, default="draft", max_length=20)),
                ("traveler", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="trips", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Offer",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("price", models.PositiveBigIntegerField(help_text="Offered price in minor units")),
                ("status", models.CharField(choices=[("pending", "Pending"), ("accepted", "Accepted"), ("rejected", "Rejected"), ("withdrawn", "Withdrawn"), ("cancelled", "Cancelled")], db_index=True, default="pending", max_length=20)),
                ("guide", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="offers", to=settings.AUTH_USER_MODEL)),
                ("trip", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="offers", to="bookings.trip")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=200)),
                ("price", models.PositiveBigIntegerField(help_text="List price in minor units")),
                ("start_date", models.DateTimeField(blank=True, help_text="Default start for bookings that do not pick their own date", null=True)),
                ("guide", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="products", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="ProductOffer",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("start_date", models.DateTimeField(blank=True, null=True)),
                ("total_price", models.PositiveBigIntegerField()),
                ("status", models.CharField(choices=[("pending", "Pending"), ("accepted", "Accepted"), ("rejected", "Rejected"), ("cancelled", "Cancelled")], db_index=True, default="pending", max_length=20)),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="offers", to="bookings.product")),
                ("traveler", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="product_offers", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="BookingMessage",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier (UUID4)", primary_key=True, serialize=False)),
                ("message_type", models.CharField(choices=[("text", "Text"), ("cancellation_request", "Cancellation Request"), ("cancellation_approved", "Cancellation Approved"), ("cancellation_rejected", "Cancellation Rejected")], default="text", max_length=40)),
                ("content", models.TextField()),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("offer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="messages", to="bookings.offer")),
                ("product_offer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="messages", to="bookings.productoffer")),
                ("sender", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="booking_messages", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("offer__isnull", False), ("product_offer__isnull", True)),
                            models.Q(("offer__isnull", True), ("product_offer__isnull", False)),
                            _connector="OR",
                        ),
                        name="booking_message_single_thread",
                    ),
                ],
            },
        ),
    ]
