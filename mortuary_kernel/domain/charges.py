"""
Charges -- pure charge aggregation for one case.

Responsibility:
    Combines cumulative storage accrual, coffin cost (converted into the
    case currency), non-cancelled extra charges and embalming into a total
    charge, then subtracts payments to get the balance.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O. The reconciliation
    service feeds it row snapshots and persists what it returns.

Invariants enforced:
    - Storage is recomputed from admission on every pass, never summed from
      history, so repeated runs cannot compound.
    - Each component is rounded to currency precision before summing, so
      ``balance == total_charge - total_payments`` holds exactly.
    - Cancelled extra charges contribute zero.
    - ``total_charge >= 0``: negative source amounts are treated as dirty.

Failure modes:
    - Unusable source values become zero and are reported as
      ``DataIntegrityWarning`` entries.
    - A coffin line whose FX rate is invalid is skipped for this pass and
      reported as a ``SkippedComponent``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from mortuary_kernel.domain.accrual import accrued_storage_charge
from mortuary_kernel.domain.clock import as_utc
from mortuary_kernel.domain.conversion import convert
from mortuary_kernel.domain.currency import CurrencyRegistry
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.types import (
    CaseTerms,
    CoffinLine,
    DataIntegrityWarning,
    ExtraChargeLine,
    ExtraChargeStatus,
    PaymentLine,
    SkippedComponent,
)
from mortuary_kernel.domain.values import Money
from mortuary_kernel.exceptions import CurrencyError

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ChargeBreakdown:
    """Every figure produced by one aggregation pass, in the case currency."""

    case_id: str
    currency: str
    as_of: datetime
    daily_rate: Decimal
    storage_days: Decimal
    storage_total: Decimal
    incremental_days: Decimal
    incremental_storage: Decimal
    coffin_total: Decimal
    extras_total: Decimal
    embalming: Decimal
    total_charge: Decimal
    total_payments: Decimal
    balance: Decimal
    warnings: tuple[DataIntegrityWarning, ...] = field(default_factory=tuple)
    skipped_components: tuple[SkippedComponent, ...] = field(default_factory=tuple)

    @property
    def storage_description(self) -> str:
        return f"Daily mortuary charge ({self.incremental_days:.4f} days)"


class _Sanitizer:
    """Collects integrity warnings while coercing raw source values."""

    def __init__(self) -> None:
        self.warnings: list[DataIntegrityWarning] = []

    def _warn(self, source: str, record_id: str, field_name: str, value: Any, reason: str) -> None:
        self.warnings.append(
            DataIntegrityWarning(
                source=source,
                record_id=record_id,
                field=field_name,
                value=repr(value),
                reason=reason,
            )
        )

    def amount(
        self,
        value: Any,
        source: str,
        record_id: str,
        field_name: str,
        *,
        missing_ok: bool = False,
    ) -> Decimal:
        """Coerce a stored amount to a non-negative Decimal, zero if unusable."""
        if value is None:
            if not missing_ok:
                self._warn(source, record_id, field_name, value, "missing amount")
            return _ZERO
        parsed = _to_decimal(value)
        if parsed is None:
            self._warn(source, record_id, field_name, value, "non-numeric amount")
            return _ZERO
        if parsed < 0:
            self._warn(source, record_id, field_name, value, "negative amount")
            return _ZERO
        return parsed

    def optional_positive(
        self, value: Any, source: str, record_id: str, field_name: str
    ) -> Decimal | None:
        """Return a positive Decimal, or None when absent or unusable."""
        if value is None:
            return None
        parsed = _to_decimal(value)
        if parsed is None or parsed <= 0:
            self._warn(source, record_id, field_name, value, "not a positive number")
            return None
        return parsed


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        # Legacy rows may carry floats or strings; go through str so the
        # float's repr, not its binary expansion, is what gets kept.
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def should_record_increment(amount: Decimal, threshold: Decimal) -> bool:
    """True when an incremental storage charge is worth a history entry."""
    return amount > threshold


def compute_case_charges(
    terms: CaseTerms,
    coffins: Iterable[CoffinLine],
    extras: Iterable[ExtraChargeLine],
    payments: Iterable[PaymentLine],
    as_of: datetime,
    policy: BillingPolicy,
) -> ChargeBreakdown:
    """Aggregate one case's charges as of ``as_of``."""
    as_of = as_utc(as_of)
    currency = CurrencyRegistry.validate(terms.currency)
    sanitizer = _Sanitizer()
    skipped: list[SkippedComponent] = []

    # 1-2. Storage, cumulative and incremental.
    usd_rate = sanitizer.optional_positive(
        terms.daily_rate_usd, "case", terms.case_id, "daily_rate_usd"
    )
    daily_rate = policy.daily_rate(terms.rate_category, currency, usd_rate).amount
    admitted_at = as_utc(terms.admitted_at)
    cumulative = accrued_storage_charge(admitted_at, as_of, daily_rate)

    since = as_utc(terms.last_charge_update) if terms.last_charge_update else admitted_at
    if since < admitted_at:
        since = admitted_at
    incremental = accrued_storage_charge(since, as_of, daily_rate)

    # 3. Coffins, converted into the case currency.
    case_fx = sanitizer.optional_positive(
        terms.fx_rate_kes_per_usd, "case", terms.case_id, "fx_rate_kes_per_usd"
    )
    coffin_total = Money.zero(currency)
    for line in coffins:
        price = sanitizer.amount(line.unit_price, "coffin_assignment", line.line_id, "unit_price")
        quantity = _coffin_quantity(line, sanitizer)
        rate = _first_present(line.fx_rate_kes_per_usd, case_fx, policy.default_fx_rate_kes_per_usd)
        try:
            converted = convert(price, line.currency, currency, rate)
        except CurrencyError as exc:
            skipped.append(
                SkippedComponent(
                    source="coffin_assignment",
                    record_id=line.line_id,
                    error_code=exc.code,
                    reason=str(exc),
                )
            )
            continue
        coffin_total = coffin_total + Money.of(converted * quantity, currency).round()

    # 4. Extra charges, cancelled ones excluded.
    extras_total = Money.zero(currency)
    for extra in extras:
        if (extra.status or "").strip().lower() == ExtraChargeStatus.CANCELLED.value:
            continue
        amount = sanitizer.amount(extra.amount, "extra_charge", extra.line_id, "amount")
        extras_total = extras_total + Money.of(amount, currency).round()

    # 5. Embalming.
    embalming = Money.of(
        sanitizer.amount(
            terms.embalming_cost, "case", terms.case_id, "embalming_cost", missing_ok=True
        ),
        currency,
    ).round()

    # 6-8. Totals.
    storage_total = Money.of(cumulative.amount, currency).round()
    total_charge = storage_total + coffin_total + extras_total + embalming

    total_payments = Money.zero(currency)
    for payment in payments:
        amount = sanitizer.amount(payment.amount, "payment", payment.line_id, "amount")
        total_payments = total_payments + Money.of(amount, currency).round()

    balance = total_charge - total_payments

    return ChargeBreakdown(
        case_id=terms.case_id,
        currency=currency,
        as_of=as_of,
        daily_rate=daily_rate,
        storage_days=cumulative.days,
        storage_total=storage_total.amount,
        incremental_days=incremental.days,
        incremental_storage=incremental.amount,
        coffin_total=coffin_total.amount,
        extras_total=extras_total.amount,
        embalming=embalming.amount,
        total_charge=total_charge.amount,
        total_payments=total_payments.amount,
        balance=balance.amount,
        warnings=tuple(sanitizer.warnings),
        skipped_components=tuple(skipped),
    )


def _coffin_quantity(line: CoffinLine, sanitizer: _Sanitizer) -> Decimal:
    if line.quantity is None:
        return Decimal("1")
    return sanitizer.amount(line.quantity, "coffin_assignment", line.line_id, "quantity")


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None
