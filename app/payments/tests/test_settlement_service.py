"""Tests for SettlementService and split_amount."""

import pytest
from django.test import override_settings

from payments.models import Settlement
from payments.services import SettlementService, split_amount
from payments.state_machines import SettlementStatus
from payments.tests.factories import CompletedPaymentFactory


class TestSplitAmount:
    @pytest.mark.parametrize(
        "amount,commission,tax,settlement",
        [
            (100000, 10000, 3300, 86700),
            (12345, 1234, 407, 10704),
            (1, 0, 0, 1),
        ],
    )
    def test_parts_add_up(self, amount, commission, tax, settlement):
        assert split_amount(amount, 1000, 330) == (commission, tax, settlement)
        assert commission + tax + settlement == amount

    def test_zero_rates(self):
        assert split_amount(5000, 0, 0) == (0, 0, 5000)


@pytest.mark.django_db
class TestEnsureSettlement:
    def test_uses_configured_rates(self):
        payment = CompletedPaymentFactory(amount=100000)

        settlement = SettlementService.ensure_settlement(payment)

        assert settlement.total_amount == 100000
        assert settlement.commission_rate_bps == 1000
        assert settlement.tax_rate_bps == 330
        assert settlement.settlement_amount == 86700
        assert settlement.status == SettlementStatus.PENDING

    @override_settings(SETTLEMENT_COMMISSION_RATE_BPS=1500, SETTLEMENT_TAX_RATE_BPS=0)
    def test_rates_from_settings(self):
        settlement = SettlementService.ensure_settlement(
            CompletedPaymentFactory(amount=20000)
        )

        assert settlement.commission_amount == 3000
        assert settlement.settlement_amount == 17000

    def test_second_call_returns_existing(self):
        payment = CompletedPaymentFactory()

        first = SettlementService.ensure_settlement(payment)
        second = SettlementService.ensure_settlement(
            payment, commission_rate_bps=2000, tax_rate_bps=0
        )

        assert first.pk == second.pk
        assert second.commission_rate_bps == 1000
        assert Settlement.objects.filter(payment=payment).count() == 1


@pytest.mark.django_db
class TestMarkSettlementCompleted:
    def test_mark_completed(self):
        settlement = SettlementService.ensure_settlement(CompletedPaymentFactory())

        SettlementService.mark_completed(settlement)

        stored = Settlement.objects.get(pk=settlement.pk)
        assert stored.status == SettlementStatus.COMPLETED
        assert stored.settled_at is not None

    def test_mark_completed_twice_keeps_first_timestamp(self):
        settlement = SettlementService.ensure_settlement(CompletedPaymentFactory())
        SettlementService.mark_completed(settlement)
        settled_at = settlement.settled_at

        SettlementService.mark_completed(settlement)

        assert Settlement.objects.get(pk=settlement.pk).settled_at == settled_at
