"""
Pytest fixtures for payment tests.

Payments in a given status are built through the factories rather than
by running transitions, since the status field is protected.

Usage:
    def test_refund(completed_payment, mock_gateway):
        mock_gateway.cancel_payment.return_value = ...
"""

from unittest.mock import MagicMock

import pytest

from bookings.models import OfferStatus, TripStatus
from bookings.tests.factories import AdminUserFactory, UserFactory
from payments.policy import RefundPolicy, RefundPolicyTier
from payments.services import CancellationService, PaymentService
from payments.tests.factories import (
    CompletedPaymentFactory,
    PaymentFactory,
)


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def admin_user(db):
    return AdminUserFactory()


# =============================================================================
# Payments
# =============================================================================


@pytest.fixture
def pending_payment(db):
    """Trip payment waiting for the gateway."""
    return PaymentFactory()


@pytest.fixture
def completed_payment(db):
    """Completed trip payment with its booking accepted."""
    payment = CompletedPaymentFactory()
    payment.trip.status = TripStatus.ACCEPTED
    payment.trip.save()
    payment.offer.status = OfferStatus.ACCEPTED
    payment.offer.save()
    return payment


# =============================================================================
# Policy
# =============================================================================


@pytest.fixture
def simple_policy():
    """Three tiers: 7+ days 100%, 3-6 days 50%, under 3 days nothing."""
    return RefundPolicy(
        tiers=(
            RefundPolicyTier(7, 100, "7+ days"),
            RefundPolicyTier(3, 50, "3-6 days"),
            RefundPolicyTier(0, 0, "under 3 days"),
        ),
        exception_reasons=frozenset({"natural_disaster"}),
    )


# =============================================================================
# Gateway
# =============================================================================


@pytest.fixture
def mock_gateway():
    """
    Inject a MagicMock as the gateway adapter of both services.

    Reset after the test so the real adapter is used again.
    """
    adapter = MagicMock()
    CancellationService.set_gateway_adapter(adapter)
    PaymentService.set_gateway_adapter(adapter)
    yield adapter
    CancellationService.set_gateway_adapter(None)
    PaymentService.set_gateway_adapter(None)
