"""
Unit tests for fractional-day storage accrual.

Verifies:
- Exact fractional days (36 hours == 1.5 days)
- Zero accrual when the end precedes the start
- Linear scaling with the daily rate
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from hypothesis import given
from hypothesis import strategies as st

from mortuary_kernel.domain.accrual import accrued_storage_charge, elapsed_days

T0 = datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


class TestElapsedDays:

    def test_whole_days(self):
        assert elapsed_days(T0, T0 + timedelta(days=2)) == Decimal("2")

    def test_fractional_days(self):
        assert elapsed_days(T0, T0 + timedelta(hours=36)) == Decimal("1.5")

    def test_microsecond_resolution(self):
        result = elapsed_days(T0, T0 + timedelta(microseconds=1))
        assert result == Decimal(1) / Decimal(86_400_000_000)

    def test_end_before_start_is_zero(self):
        assert elapsed_days(T0, T0 - timedelta(hours=5)) == Decimal("0")

    def test_same_instant_is_zero(self):
        assert elapsed_days(T0, T0) == Decimal("0")

    def test_naive_datetimes_are_treated_as_utc(self):
        naive_start = T0.replace(tzinfo=None)
        assert elapsed_days(naive_start, T0 + timedelta(days=1)) == Decimal("1")


class TestAccruedStorageCharge:

    def test_two_days_at_standard_rate(self):
        accrual = accrued_storage_charge(T0, T0 + timedelta(days=2), Decimal("3000"))
        assert accrual.days == Decimal("2")
        assert accrual.amount == Decimal("6000")

    def test_day_and_a_half_in_usd(self):
        accrual = accrued_storage_charge(T0, T0 + timedelta(hours=36), Decimal("130"))
        assert accrual.amount == Decimal("195.0")

    def test_as_of_before_admission_accrues_nothing(self):
        accrual = accrued_storage_charge(T0, T0 - timedelta(days=3), Decimal("3000"))
        assert accrual.amount == Decimal("0")
        assert accrual.days == Decimal("0")

    @given(
        offset_seconds=st.integers(min_value=-10**8, max_value=10**8),
        rate=st.decimals(min_value=0, max_value=100_000, places=2),
    )
    def test_never_negative(self, offset_seconds, rate):
        accrual = accrued_storage_charge(T0, T0 + timedelta(seconds=offset_seconds), rate)
        assert accrual.amount >= 0
        assert accrual.days >= 0
