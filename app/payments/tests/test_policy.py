"""
Tests for the refund policy engine.

Days are counted between local calendar dates (TIME_ZONE is Asia/Seoul),
so the fixtures build aware datetimes in that zone.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from django.test import override_settings
from freezegun import freeze_time

from payments.exceptions import RefundPolicyViolationError
from payments.models import RefundPolicyRule
from payments.policy import (
    EXCEPTION_REASON_LABEL,
    GUIDE_CANCELLATION_LABEL,
    POST_TRIP_LABEL,
    CancellationReason,
    ReasonCategory,
    RefundPolicy,
    RefundPolicyTier,
    RequesterType,
    calculate_refund,
    describe_policy,
    reasons_for,
    validate_refund_amount,
)
from payments.services import default_refund_policy, load_refund_policy
from payments.state_machines import PolicyApplicability

SEOUL = ZoneInfo("Asia/Seoul")


def kst(year, month, day, hour=12, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=SEOUL)


def refund_for(days_before, policy, amount=100000, requester=RequesterType.TRAVELER,
               reason=CancellationReason.SCHEDULE_CHANGE):
    cancellation = kst(2026, 3, 1, 9)
    trip_start = cancellation + timedelta(days=days_before, hours=6)
    return calculate_refund(
        amount=amount,
        trip_start=trip_start,
        cancellation_date=cancellation,
        requester_type=requester,
        reason_type=reason,
        policy=policy,
        now=cancellation,
    )


# =============================================================================
# Tier Selection
# =============================================================================


class TestDefaultTiers:
    """30:100, 20:90, 6:85, 1:80, 0:50 from REFUND_POLICY_TIERS."""

    @pytest.mark.parametrize(
        "days_before,percentage",
        [
            (45, 100),
            (30, 100),
            (29, 90),
            (20, 90),
            (19, 85),
            (6, 85),
            (5, 80),
            (1, 80),
            (0, 50),
        ],
    )
    def test_tier_boundaries(self, days_before, percentage):
        result = refund_for(days_before, default_refund_policy())

        assert result.refund_percentage == percentage
        assert result.refund_amount == 100000 * percentage // 100
        assert result.deduction_amount == 100000 - result.refund_amount
        assert result.days_before_trip == days_before
        assert result.requires_admin_approval is False

    def test_refund_is_floored(self):
        result = refund_for(10, default_refund_policy(), amount=33333)

        # 85% of 33333 = 28333.05
        assert result.refund_amount == 28333
        assert result.deduction_amount == 5000

    def test_days_counted_on_local_dates(self):
        """23:30 on Feb 28 to 00:30 on Mar 30 (KST) is 30 days, not 29."""
        cancellation = kst(2026, 2, 28, 23, 30)
        trip_start = kst(2026, 3, 30, 0, 30)

        result = calculate_refund(
            amount=100000,
            trip_start=trip_start,
            cancellation_date=cancellation,
            requester_type=RequesterType.TRAVELER,
            reason_type=CancellationReason.SCHEDULE_CHANGE,
            policy=default_refund_policy(),
            now=cancellation,
        )

        assert result.days_before_trip == 30
        assert result.refund_percentage == 100

    def test_below_lowest_threshold_uses_last_tier(self):
        policy = RefundPolicy(
            tiers=(RefundPolicyTier(10, 100, "10+"), RefundPolicyTier(5, 50, "5-9"))
        )

        result = refund_for(2, policy)

        assert result.refund_percentage == 50
        assert result.policy_label == "5-9"


# =============================================================================
# Decision Order
# =============================================================================


class TestDecisionOrder:
    def test_started_trip_goes_to_admin(self, simple_policy):
        trip_start = kst(2026, 3, 1, 8)

        result = calculate_refund(
            amount=100000,
            trip_start=trip_start,
            cancellation_date=kst(2026, 3, 1, 9),
            requester_type=RequesterType.TRAVELER,
            reason_type=CancellationReason.SCHEDULE_CHANGE,
            policy=simple_policy,
            now=kst(2026, 3, 1, 9),
        )

        assert result.refund_amount == 0
        assert result.requires_admin_approval is True
        assert result.policy_label == POST_TRIP_LABEL

    def test_started_trip_wins_over_guide(self, simple_policy):
        result = calculate_refund(
            amount=100000,
            trip_start=kst(2026, 2, 20),
            cancellation_date=kst(2026, 3, 1),
            requester_type=RequesterType.GUIDE,
            reason_type=CancellationReason.GUIDE_UNAVAILABLE,
            policy=simple_policy,
            now=kst(2026, 3, 1),
        )

        assert result.requires_admin_approval is True
        assert result.refund_amount == 0
        assert result.days_before_trip == -9

    def test_started_check_uses_live_clock(self, simple_policy):
        """A back-dated cancellation date does not hide a started trip."""
        with freeze_time("2026-03-10T00:00:00Z"):
            result = calculate_refund(
                amount=100000,
                trip_start=kst(2026, 3, 5),
                cancellation_date=kst(2026, 2, 1),
                requester_type=RequesterType.TRAVELER,
                reason_type=CancellationReason.SCHEDULE_CHANGE,
                policy=simple_policy,
            )

        assert result.requires_admin_approval is True
        assert result.policy_label == POST_TRIP_LABEL

    def test_guide_cancellation_full_refund_without_review(self, simple_policy):
        result = refund_for(
            1,
            simple_policy,
            requester=RequesterType.GUIDE,
            reason=CancellationReason.TRAVELER_UNRESPONSIVE,
        )

        assert result.refund_amount == 100000
        assert result.refund_percentage == 100
        assert result.requires_admin_approval is False
        assert result.policy_label == GUIDE_CANCELLATION_LABEL

    def test_traveler_same_window_gets_tier(self, simple_policy):
        result = refund_for(1, simple_policy)

        assert result.refund_amount == 0
        assert result.policy_label == "under 3 days"

    def test_exception_reason_full_refund_with_review(self, simple_policy):
        result = refund_for(1, simple_policy, reason=CancellationReason.NATURAL_DISASTER)

        assert result.refund_amount == 100000
        assert result.requires_admin_approval is True
        assert result.policy_label == EXCEPTION_REASON_LABEL

    def test_zero_amount(self, simple_policy):
        result = refund_for(10, simple_policy, amount=0)

        assert result.refund_amount == 0
        assert result.deduction_amount == 0

    def test_negative_amount_rejected(self, simple_policy):
        with pytest.raises(ValueError):
            refund_for(10, simple_policy, amount=-1)


# =============================================================================
# Policy Construction
# =============================================================================


class TestRefundPolicy:
    def test_tiers_must_descend(self):
        with pytest.raises(ValueError):
            RefundPolicy(
                tiers=(RefundPolicyTier(3, 50, "a"), RefundPolicyTier(7, 100, "b"))
            )

    def test_tiers_required(self):
        with pytest.raises(ValueError):
            RefundPolicy(tiers=())

    def test_percentage_bounds(self):
        with pytest.raises(ValueError):
            RefundPolicyTier(5, 120, "too generous")

    def test_categorize(self, simple_policy):
        assert simple_policy.categorize("natural_disaster") == ReasonCategory.EXCEPTION
        assert simple_policy.categorize("schedule_change") == ReasonCategory.ORDINARY

    def test_from_config(self):
        policy = RefundPolicy.from_config(
            [{"days_from_trip_start": "7", "refund_percentage": "60", "label": "week"}],
            ["medical_emergency"],
        )

        assert policy.tiers == (RefundPolicyTier(7, 60, "week"),)
        assert policy.exception_reasons == frozenset({"medical_emergency"})

    @override_settings(CANCELLATION_EXCEPTION_REASONS=["other"])
    def test_default_policy_reads_settings(self):
        policy = default_refund_policy()

        assert policy.tiers[0] == RefundPolicyTier(30, 100, "30+ days before start")
        assert policy.exception_reasons == frozenset({"other"})

    def test_describe_policy(self, simple_policy):
        lines = describe_policy(simple_policy)

        assert lines[0] == "7+ days: 100% refund (7+ days before start)"
        assert lines[2] == "under 3 days: 0% refund (on the day of the start)"
        assert "Cancelled by the guide: 100% refund" in lines
        assert lines[-1] == "Exception reasons (natural_disaster): 100% refund after review"


@pytest.mark.django_db
class TestLoadRefundPolicy:
    def test_falls_back_to_settings(self):
        assert load_refund_policy(PolicyApplicability.TRIP) == default_refund_policy()

    def test_active_rules_replace_settings(self):
        RefundPolicyRule.objects.create(
            applicable_to=PolicyApplicability.PRODUCT,
            days_from_trip_start=3,
            refund_percentage=70,
            label="3+ days",
        )
        RefundPolicyRule.objects.create(
            applicable_to=PolicyApplicability.PRODUCT,
            days_from_trip_start=0,
            refund_percentage=0,
            label="last minute",
        )
        RefundPolicyRule.objects.create(
            applicable_to=PolicyApplicability.PRODUCT,
            days_from_trip_start=10,
            refund_percentage=100,
            label="retired",
            is_active=False,
        )

        policy = load_refund_policy(PolicyApplicability.PRODUCT)

        assert [t.days_from_trip_start for t in policy.tiers] == [3, 0]
        assert load_refund_policy(PolicyApplicability.TRIP) == default_refund_policy()


# =============================================================================
# Helpers
# =============================================================================


class TestReasonsAndValidation:
    def test_reasons_per_side(self):
        assert CancellationReason.SCHEDULE_CHANGE in reasons_for(RequesterType.TRAVELER)
        assert CancellationReason.SCHEDULE_CHANGE not in reasons_for(RequesterType.GUIDE)
        assert CancellationReason.TRAVELER_UNRESPONSIVE in reasons_for(RequesterType.GUIDE)
        assert CancellationReason.NATURAL_DISASTER in reasons_for(RequesterType.GUIDE)

    @pytest.mark.parametrize("amount", [0, 50000, 100000])
    def test_validate_refund_amount_accepts(self, amount):
        validate_refund_amount(amount, 100000)

    @pytest.mark.parametrize("amount", [-1, 100001])
    def test_validate_refund_amount_rejects(self, amount):
        with pytest.raises(RefundPolicyViolationError):
            validate_refund_amount(amount, 100000)


# =============================================================================
# Refund Bounds
# =============================================================================


class TestRefundBounds:
    """Every requester, reason, amount and lead time stays inside the paid amount."""

    @pytest.mark.parametrize("amount", [0, 1, 999, 33333, 100000])
    @pytest.mark.parametrize("days_before", [-1, 0, 1, 5, 6, 19, 20, 29, 30, 90])
    @pytest.mark.parametrize("requester", RequesterType.values)
    @pytest.mark.parametrize("reason", CancellationReason.values)
    def test_refund_within_amount(self, amount, days_before, requester, reason):
        result = refund_for(
            days_before,
            default_refund_policy(),
            amount=amount,
            requester=requester,
            reason=reason,
        )

        assert 0 <= result.refund_amount <= amount
        assert result.refund_amount + result.deduction_amount == amount
        if days_before < 0:
            assert result.refund_amount == 0
            assert result.requires_admin_approval
        elif requester == RequesterType.GUIDE:
            assert result.refund_amount == amount
            assert not result.requires_admin_approval
