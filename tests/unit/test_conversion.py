"""
Unit tests for KES <-> USD conversion.

Rates are quoted as KES per 1 USD.
"""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from mortuary_kernel.domain.conversion import convert, convert_money, parse_rate
from mortuary_kernel.domain.values import Money
from mortuary_kernel.exceptions import InvalidCurrencyError, InvalidRateError


class TestParseRate:

    @pytest.mark.parametrize("rate", ["130", 130, Decimal("129.75")])
    def test_accepts_positive_numbers(self, rate):
        assert parse_rate(rate) == Decimal(str(rate))

    @pytest.mark.parametrize("rate", [0, "0", "-1", Decimal("-130"), "abc", None, True, 130.0])
    def test_rejects_unusable_rates(self, rate):
        with pytest.raises(InvalidRateError):
            parse_rate(rate, "USD", "KES")

    def test_error_carries_pair(self):
        with pytest.raises(InvalidRateError) as exc_info:
            parse_rate("0", "USD", "KES")
        assert exc_info.value.from_currency == "USD"
        assert exc_info.value.to_currency == "KES"
        assert exc_info.value.code == "INVALID_RATE"


class TestConvert:

    def test_usd_to_kes_multiplies(self):
        assert convert(Decimal("200"), "USD", "KES", "130") == Decimal("26000")

    def test_kes_to_usd_divides(self):
        assert convert(Decimal("13000"), "KES", "USD", "130") == Decimal("100")

    def test_same_currency_ignores_rate(self):
        assert convert(Decimal("42.50"), "KES", "KES", None) == Decimal("42.50")

    def test_currency_codes_are_normalized(self):
        assert convert(Decimal("1"), "usd", " kes ", "130") == Decimal("130")

    def test_zero_rate_rejected(self):
        with pytest.raises(InvalidRateError):
            convert(Decimal("100"), "USD", "KES", 0)

    def test_unknown_currency_rejected(self):
        with pytest.raises(InvalidCurrencyError):
            convert(Decimal("100"), "EUR", "KES", "130")

    def test_result_is_not_rounded(self):
        result = convert(Decimal("100"), "KES", "USD", "3")
        assert result != result.quantize(Decimal("0.01"))

    def test_convert_money(self):
        result = convert_money(Money.of("10", "USD"), "KES", "130")
        assert result == Money.of("1300", "KES")

    @given(
        amount=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("10000000"), places=2),
        rate=st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("10000"), places=4),
    )
    def test_round_trip_within_tolerance(self, amount, rate):
        there = convert(amount, "KES", "USD", rate)
        back = convert(there, "USD", "KES", rate)
        assert abs(back - amount) <= Decimal("0.000001")
