"""
Refund policy engine.

calculate_refund() turns a cancellation into a refund amount. It reads no
database rows and holds no state: the tier table and the exception-reason
set arrive in an immutable RefundPolicy built by the caller (see
payments.services.refund_policy_service for where policies come from).

Decision order:
    1. The booked service has already started -> nothing is refunded
       automatically, an admin decides (the clock is read live, not taken
       from the cancellation date)
    2. The guide cancels -> full refund, no review
    3. The reason is an exception reason (disaster, medical emergency, ...)
       -> full refund, held for admin review
    4. Otherwise the first tier whose threshold the days-before-trip value
       reaches sets the percentage; the last tier is the floor

Usage:
    policy = RefundPolicy(
        tiers=(
            RefundPolicyTier(7, 100, "7+ days"),
            RefundPolicyTier(3, 50, "3-6 days"),
            RefundPolicyTier(0, 0, "under 3 days"),
        ),
        exception_reasons=frozenset({CancellationReason.NATURAL_DISASTER}),
    )
    result = calculate_refund(
        amount=100000,
        trip_start=trip.start_date,
        cancellation_date=timezone.now(),
        requester_type=RequesterType.TRAVELER,
        reason_type=CancellationReason.SCHEDULE_CHANGE,
        policy=policy,
    )
    result.refund_amount  # 50000 when cancelling 5 days out
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from typing import TYPE_CHECKING

from django.db import models
from django.utils import timezone

from payments.exceptions import RefundPolicyViolationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from typing import Any


POST_TRIP_LABEL = "post-trip, manual review"
GUIDE_CANCELLATION_LABEL = "guide cancellation, full refund"
EXCEPTION_REASON_LABEL = "exception reason, admin review"


class RequesterType(models.TextChoices):
    TRAVELER = "traveler", "Traveler"
    GUIDE = "guide", "Guide"


class CancellationReason(models.TextChoices):
    SCHEDULE_CHANGE = "schedule_change", "Schedule change"
    BOOKING_MISMATCH = "booking_mismatch", "Booking does not match the offer"
    GUIDE_UNRESPONSIVE = "guide_unresponsive", "Guide unresponsive"
    GUIDE_UNAVAILABLE = "guide_unavailable", "Guide unavailable"
    TRAVELER_REQUEST = "traveler_request", "Traveler asked to cancel"
    TRAVELER_UNRESPONSIVE = "traveler_unresponsive", "Traveler unresponsive"
    FACILITY_UNAVAILABLE = "facility_unavailable", "Facility unavailable"
    NATURAL_DISASTER = "natural_disaster", "Natural disaster"
    MEDICAL_EMERGENCY = "medical_emergency", "Medical emergency"
    OTHER = "other", "Other"


class ReasonCategory(models.TextChoices):
    """How the policy treats a reason: priced by tiers, or escalated."""

    ORDINARY = "ordinary", "Ordinary"
    EXCEPTION = "exception", "Exception"


# Reasons each side may give.
TRAVELER_REASONS = frozenset(
    {
        CancellationReason.SCHEDULE_CHANGE,
        CancellationReason.BOOKING_MISMATCH,
        CancellationReason.GUIDE_UNRESPONSIVE,
        CancellationReason.GUIDE_UNAVAILABLE,
        CancellationReason.NATURAL_DISASTER,
        CancellationReason.MEDICAL_EMERGENCY,
        CancellationReason.OTHER,
    }
)
GUIDE_REASONS = frozenset(
    {
        CancellationReason.TRAVELER_REQUEST,
        CancellationReason.TRAVELER_UNRESPONSIVE,
        CancellationReason.FACILITY_UNAVAILABLE,
        CancellationReason.GUIDE_UNAVAILABLE,
        CancellationReason.NATURAL_DISASTER,
        CancellationReason.MEDICAL_EMERGENCY,
        CancellationReason.OTHER,
    }
)


def reasons_for(requester_type: str) -> frozenset[str]:
    if requester_type == RequesterType.GUIDE:
        return GUIDE_REASONS
    return TRAVELER_REASONS


# =============================================================================
# Policy Data
# =============================================================================


@dataclass(frozen=True)
class RefundPolicyTier:
    """Cancelling at least ``days_from_trip_start`` days out refunds ``refund_percentage``."""

    days_from_trip_start: int
    refund_percentage: int
    label: str

    def __post_init__(self):
        if self.days_from_trip_start < 0:
            raise ValueError("days_from_trip_start must not be negative")
        if not 0 <= self.refund_percentage <= 100:
            raise ValueError("refund_percentage must be between 0 and 100")


@dataclass(frozen=True)
class RefundPolicy:
    """
    Immutable refund policy: tiers sorted by descending threshold plus the
    reasons that always go to an admin.

    Raises:
        ValueError: If tiers are empty or not strictly descending
    """

    tiers: tuple[RefundPolicyTier, ...]
    exception_reasons: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self):
        tiers = tuple(self.tiers)
        if not tiers:
            raise ValueError("A refund policy needs at least one tier")
        thresholds = [tier.days_from_trip_start for tier in tiers]
        if any(a <= b for a, b in zip(thresholds, thresholds[1:])):
            raise ValueError(
                "Refund tiers must be sorted by strictly descending days_from_trip_start"
            )
        object.__setattr__(self, "tiers", tiers)
        object.__setattr__(self, "exception_reasons", frozenset(self.exception_reasons))

    @classmethod
    def from_config(
        cls,
        tiers: Iterable[Mapping[str, Any]],
        exception_reasons: Iterable[str] = (),
    ) -> RefundPolicy:
        """Build a policy from settings-style dicts."""
        return cls(
            tiers=tuple(
                RefundPolicyTier(
                    days_from_trip_start=int(tier["days_from_trip_start"]),
                    refund_percentage=int(tier["refund_percentage"]),
                    label=str(tier["label"]),
                )
                for tier in tiers
            ),
            exception_reasons=frozenset(exception_reasons),
        )

    def categorize(self, reason_type: str) -> ReasonCategory:
        if reason_type in self.exception_reasons:
            return ReasonCategory.EXCEPTION
        return ReasonCategory.ORDINARY

    def select_tier(self, days_before_trip: int) -> RefundPolicyTier:
        """First tier whose threshold is reached; the last tier otherwise."""
        for tier in self.tiers:
            if days_before_trip >= tier.days_from_trip_start:
                return tier
        return self.tiers[-1]


@dataclass(frozen=True)
class RefundCalculation:
    """Outcome of calculate_refund(). All amounts in minor units."""

    original_amount: int
    refund_amount: int
    refund_percentage: int
    deduction_amount: int
    days_before_trip: int
    policy_label: str
    requires_admin_approval: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Engine
# =============================================================================


def _local_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            return timezone.localtime(value).date()
        return value.date()
    return value


def _has_started(trip_start: date | datetime, now: datetime) -> bool:
    if not isinstance(trip_start, datetime):
        trip_start = datetime.combine(trip_start, time.min)
    if timezone.is_naive(trip_start):
        trip_start = timezone.make_aware(trip_start)
    return trip_start <= now


def calculate_refund(
    amount: int,
    trip_start: date | datetime,
    cancellation_date: date | datetime,
    requester_type: str,
    reason_type: str,
    policy: RefundPolicy,
    now: datetime | None = None,
) -> RefundCalculation:
    """
    Compute the refund for cancelling a booking.

    Args:
        amount: Paid amount in minor units
        trip_start: Start of the booked service
        cancellation_date: When the cancellation is requested
        requester_type: RequesterType value
        reason_type: CancellationReason value
        policy: Tiers and exception reasons to apply
        now: Clock used for the "already started" check (defaults to now)

    Returns:
        RefundCalculation with 0 <= refund_amount <= amount

    Raises:
        ValueError: If amount is negative
    """
    if amount < 0:
        raise ValueError("amount must not be negative")

    now = now or timezone.now()
    days_before_trip = (_local_date(trip_start) - _local_date(cancellation_date)).days

    if _has_started(trip_start, now):
        return _result(amount, 0, days_before_trip, POST_TRIP_LABEL, True)

    if requester_type == RequesterType.GUIDE:
        return _result(amount, 100, days_before_trip, GUIDE_CANCELLATION_LABEL, False)

    if policy.categorize(reason_type) == ReasonCategory.EXCEPTION:
        return _result(amount, 100, days_before_trip, EXCEPTION_REASON_LABEL, True)

    tier = policy.select_tier(days_before_trip)
    return _result(amount, tier.refund_percentage, days_before_trip, tier.label, False)


def _result(
    amount: int,
    percentage: int,
    days_before_trip: int,
    label: str,
    requires_admin_approval: bool,
) -> RefundCalculation:
    refund_amount = amount * percentage // 100
    return RefundCalculation(
        original_amount=amount,
        refund_amount=refund_amount,
        refund_percentage=percentage,
        deduction_amount=amount - refund_amount,
        days_before_trip=days_before_trip,
        policy_label=label,
        requires_admin_approval=requires_admin_approval,
    )


def validate_refund_amount(refund_amount: int, refundable_amount: int) -> None:
    """
    Raises:
        RefundPolicyViolationError: Unless 0 <= refund_amount <= refundable_amount
    """
    if refund_amount < 0 or refund_amount > refundable_amount:
        raise RefundPolicyViolationError(
            "Refund amount must be between 0 and the refundable amount",
            details={
                "refund_amount": refund_amount,
                "refundable_amount": refundable_amount,
            },
        )


def describe_policy(policy: RefundPolicy) -> list[str]:
    """Human-readable policy lines, most generous first."""
    lines = []
    for tier in policy.tiers:
        if tier.days_from_trip_start:
            window = f"{tier.days_from_trip_start}+ days before start"
        else:
            window = "on the day of the start"
        lines.append(f"{tier.label}: {tier.refund_percentage}% refund ({window})")
    lines.append("After the start: reviewed by an administrator")
    lines.append("Cancelled by the guide: 100% refund")
    if policy.exception_reasons:
        reasons = ", ".join(sorted(policy.exception_reasons))
        lines.append(f"Exception reasons ({reasons}): 100% refund after review")
    return lines
