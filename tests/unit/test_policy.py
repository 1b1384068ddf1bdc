"""Unit tests for BillingPolicy tariff resolution."""

from decimal import Decimal

import pytest

from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.values import Money


class TestBillingPolicy:

    @pytest.mark.parametrize(
        "category, expected",
        [
            ("premium", "5000"),
            (" PREMIUM ", "5000"),
            ("standard", "3000"),
            ("basic", "3000"),
            (None, "3000"),
        ],
    )
    def test_kes_daily_rate(self, category, expected):
        assert BillingPolicy().kes_daily_rate(category) == Decimal(expected)

    def test_usd_case_uses_default_rate(self):
        assert BillingPolicy().daily_rate("premium", "USD") == Money.of("130", "USD")

    def test_usd_case_rate_wins(self):
        rate = BillingPolicy().daily_rate("standard", "USD", Decimal("95"))
        assert rate == Money.of("95", "USD")

    def test_custom_tariffs(self):
        policy = BillingPolicy(
            category_rates_kes={"premium": Decimal("6000"), "basic": Decimal("2000")},
            fallback_daily_rate_kes=Decimal("3500"),
        )
        assert policy.daily_rate("basic", "KES") == Money.of("2000", "KES")
        assert policy.daily_rate("standard", "KES") == Money.of("3500", "KES")

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="persistence_max_attempts"):
            BillingPolicy(persistence_max_attempts=0)

    def test_rejects_negative_threshold(self):
        with pytest.raises(ValueError, match="history_threshold"):
            BillingPolicy(history_threshold=Decimal("-0.01"))
