"""
Unit tests for the pure charge aggregator.

Verifies:
- Storage accrual per currency and rate category
- Coffin conversion and FX-rate fallbacks
- Cancelled extras contribute nothing
- Dirty values become zero with a warning
- balance == total_charge - total_payments, exactly
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from mortuary_kernel.domain.charges import compute_case_charges, should_record_increment
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.types import CaseTerms, CoffinLine, ExtraChargeLine, PaymentLine
from mortuary_kernel.exceptions import InvalidCurrencyError

T0 = datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)
POLICY = BillingPolicy()


def _terms(**overrides) -> CaseTerms:
    values = {
        "case_id": "MC-001",
        "currency": "KES",
        "rate_category": "standard",
        "admitted_at": T0,
    }
    values.update(overrides)
    return CaseTerms(**values)


def _compute(terms=None, coffins=(), extras=(), payments=(), as_of=None, policy=POLICY):
    return compute_case_charges(
        terms or _terms(),
        coffins,
        extras,
        payments,
        as_of or T0 + timedelta(days=2),
        policy,
    )


class TestStorage:

    def test_standard_kes_two_days(self):
        result = _compute()
        assert result.daily_rate == Decimal("3000")
        assert result.storage_days == Decimal("2")
        assert result.storage_total == Decimal("6000")
        assert result.total_charge == Decimal("6000")
        assert result.balance == Decimal("6000")

    def test_premium_rate(self):
        result = _compute(_terms(rate_category="premium"))
        assert result.daily_rate == Decimal("5000")
        assert result.storage_total == Decimal("10000")

    def test_unknown_category_uses_fallback(self):
        result = _compute(_terms(rate_category="vip"))
        assert result.daily_rate == Decimal("3000")

    def test_usd_day_and_a_half_at_default_rate(self):
        result = _compute(
            _terms(currency="USD"), as_of=T0 + timedelta(hours=36)
        )
        assert result.currency == "USD"
        assert result.storage_total == Decimal("195.00")

    def test_usd_case_rate_overrides_default(self):
        result = _compute(_terms(currency="USD", daily_rate_usd=Decimal("100")))
        assert result.storage_total == Decimal("200")

    def test_partial_day_rounds_half_up(self):
        result = _compute(
            _terms(currency="USD"), as_of=T0 + timedelta(hours=8)
        )
        assert result.storage_total == Decimal("43.33")

    def test_as_of_before_admission_is_zero(self):
        result = _compute(as_of=T0 - timedelta(days=1))
        assert result.storage_total == Decimal("0")
        assert result.total_charge == Decimal("0")

    def test_invalid_currency_raises(self):
        with pytest.raises(InvalidCurrencyError):
            _compute(_terms(currency="EUR"))


class TestIncrementalStorage:

    def test_increment_since_last_update(self):
        result = _compute(_terms(last_charge_update=T0 + timedelta(days=1)))
        assert result.incremental_days == Decimal("1")
        assert result.incremental_storage == Decimal("3000")
        # Cumulative storage is still measured from admission.
        assert result.storage_total == Decimal("6000")
        assert result.storage_description == "Daily mortuary charge (1.0000 days)"

    def test_last_update_before_admission_is_clamped(self):
        result = _compute(_terms(last_charge_update=T0 - timedelta(days=5)))
        assert result.incremental_days == Decimal("2")

    def test_no_last_update_starts_at_admission(self):
        result = _compute(_terms(last_charge_update=None))
        assert result.incremental_storage == Decimal("6000")

    def test_last_update_after_as_of_is_zero(self):
        result = _compute(_terms(last_charge_update=T0 + timedelta(days=3)))
        assert result.incremental_storage == Decimal("0")


class TestShouldRecordIncrement:

    @pytest.mark.parametrize(
        "amount, expected",
        [("0.001", False), ("0.01", False), ("0.011", True), ("50", True), ("0", False)],
    )
    def test_threshold(self, amount, expected):
        assert should_record_increment(Decimal(amount), Decimal("0.01")) is expected


class TestCoffins:

    def test_same_currency_coffin(self):
        result = _compute(
            coffins=[CoffinLine(line_id="a1", unit_price=Decimal("25000"), currency="KES")]
        )
        assert result.coffin_total == Decimal("25000")
        assert result.total_charge == Decimal("31000")

    def test_usd_coffin_on_kes_case_uses_default_fx(self):
        result = _compute(
            coffins=[CoffinLine(line_id="a1", unit_price=Decimal("200"), currency="USD")]
        )
        assert result.coffin_total == Decimal("26000")

    def test_case_fx_preferred_over_default(self):
        result = _compute(
            _terms(fx_rate_kes_per_usd=Decimal("120")),
            coffins=[CoffinLine(line_id="a1", unit_price=Decimal("200"), currency="USD")],
        )
        assert result.coffin_total == Decimal("24000")

    def test_line_fx_preferred_over_case_fx(self):
        result = _compute(
            _terms(fx_rate_kes_per_usd=Decimal("120")),
            coffins=[
                CoffinLine(
                    line_id="a1",
                    unit_price=Decimal("200"),
                    currency="USD",
                    fx_rate_kes_per_usd=Decimal("140"),
                )
            ],
        )
        assert result.coffin_total == Decimal("28000")

    def test_kes_coffin_on_usd_case(self):
        result = _compute(
            _terms(currency="USD"),
            coffins=[CoffinLine(line_id="a1", unit_price=Decimal("13000"), currency="KES")],
        )
        assert result.coffin_total == Decimal("100")

    def test_quantity_multiplies(self):
        result = _compute(
            coffins=[
                CoffinLine(line_id="a1", unit_price=Decimal("1000"), currency="KES", quantity=2)
            ]
        )
        assert result.coffin_total == Decimal("2000")

    def test_bad_line_fx_skips_only_that_coffin(self):
        result = _compute(
            coffins=[
                CoffinLine(
                    line_id="bad",
                    unit_price=Decimal("200"),
                    currency="USD",
                    fx_rate_kes_per_usd="0",
                ),
                CoffinLine(line_id="good", unit_price=Decimal("5000"), currency="KES"),
            ]
        )
        assert result.coffin_total == Decimal("5000")
        assert len(result.skipped_components) == 1
        skipped = result.skipped_components[0]
        assert skipped.record_id == "bad"
        assert skipped.error_code == "INVALID_RATE"
        assert result.balance == result.total_charge - result.total_payments

    def test_bad_case_fx_falls_back_to_default_with_warning(self):
        result = _compute(
            _terms(fx_rate_kes_per_usd="-3"),
            coffins=[CoffinLine(line_id="a1", unit_price=Decimal("200"), currency="USD")],
        )
        assert result.coffin_total == Decimal("26000")
        assert [w.field for w in result.warnings] == ["fx_rate_kes_per_usd"]


class TestExtrasAndPayments:

    def test_reference_scenario(self):
        result = _compute(
            extras=[ExtraChargeLine(line_id="x1", amount=Decimal("4000"))],
            payments=[PaymentLine(line_id="p1", amount=Decimal("2000"))],
        )
        assert result.storage_total == Decimal("6000")
        assert result.extras_total == Decimal("4000")
        assert result.total_charge == Decimal("10000")
        assert result.total_payments == Decimal("2000")
        assert result.balance == Decimal("8000")

    @pytest.mark.parametrize("status", ["cancelled", "CANCELLED", " Cancelled "])
    def test_cancelled_extras_excluded(self, status):
        result = _compute(
            extras=[
                ExtraChargeLine(line_id="x1", amount=Decimal("4000"), status=status),
                ExtraChargeLine(line_id="x2", amount=Decimal("500"), status="invoiced"),
            ]
        )
        assert result.extras_total == Decimal("500")

    def test_embalming_included(self):
        result = _compute(_terms(embalming_cost=Decimal("7500")))
        assert result.embalming == Decimal("7500")
        assert result.total_charge == Decimal("13500")

    def test_overpayment_gives_negative_balance(self):
        result = _compute(payments=[PaymentLine(line_id="p1", amount=Decimal("10000"))])
        assert result.balance == Decimal("-4000")


class TestDirtyValues:

    def test_unusable_values_become_zero_with_warnings(self):
        result = _compute(
            extras=[
                ExtraChargeLine(line_id="x1", amount="abc"),
                ExtraChargeLine(line_id="x2", amount=None),
            ],
            payments=[PaymentLine(line_id="p1", amount=Decimal("-50"))],
        )
        assert result.extras_total == Decimal("0")
        assert result.total_payments == Decimal("0")
        reasons = {(w.source, w.record_id): w.reason for w in result.warnings}
        assert reasons == {
            ("extra_charge", "x1"): "non-numeric amount",
            ("extra_charge", "x2"): "missing amount",
            ("payment", "p1"): "negative amount",
        }

    def test_missing_embalming_is_not_a_warning(self):
        result = _compute(_terms(embalming_cost=None))
        assert result.warnings == ()

    def test_string_amounts_are_accepted(self):
        result = _compute(extras=[ExtraChargeLine(line_id="x1", amount="1500.50")])
        assert result.extras_total == Decimal("1500.50")
        assert result.warnings == ()

    def test_invalid_usd_rate_falls_back_to_default(self):
        result = _compute(_terms(currency="USD", daily_rate_usd="zero"))
        assert result.daily_rate == Decimal("130")
        assert result.warnings[0].field == "daily_rate_usd"
        assert result.warnings[0].reason == "not a positive number"


_amounts = st.decimals(
    min_value=Decimal("-1000"), max_value=Decimal("100000"), places=2
)


class TestAggregateProperties:

    @settings(max_examples=60, deadline=None)
    @given(
        currency=st.sampled_from(["KES", "USD"]),
        hours=st.integers(min_value=-48, max_value=24 * 90),
        extras=st.lists(_amounts, max_size=5),
        payments=st.lists(_amounts, max_size=5),
        embalming=st.one_of(st.none(), _amounts),
    )
    def test_balance_identity_and_non_negative_total(
        self, currency, hours, extras, payments, embalming
    ):
        result = compute_case_charges(
            _terms(currency=currency, embalming_cost=embalming),
            [],
            [ExtraChargeLine(line_id=f"x{i}", amount=a) for i, a in enumerate(extras)],
            [PaymentLine(line_id=f"p{i}", amount=a) for i, a in enumerate(payments)],
            T0 + timedelta(hours=hours),
            POLICY,
        )
        assert result.total_charge >= 0
        assert result.total_payments >= 0
        assert result.balance == result.total_charge - result.total_payments
        assert result.total_charge == (
            result.storage_total + result.coffin_total + result.extras_total + result.embalming
        )
