"""
Abstract model mixins combined with core.models.BaseModel.

Available Mixins:
    UUIDPrimaryKeyMixin: Use a random UUID as primary key
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a UUID primary key instead of an auto-increment integer.

    Payment, cancellation and settlement ids appear in URLs and in gateway
    metadata, so they must not reveal record counts or be guessable.

    Usage:
        class Payment(UUIDPrimaryKeyMixin, BaseModel):
            amount = models.PositiveBigIntegerField()
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier (UUID4)",
    )

    class Meta:
        abstract = True
