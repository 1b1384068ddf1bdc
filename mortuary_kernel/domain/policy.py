"""
Policy -- tariff and threshold settings the billing engine runs against.

``BillingPolicy`` is built from configuration by
``mortuary_config.bridges.build_billing_policy``; the defaults below are the
house tariffs so that the kernel works without any config file.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from mortuary_kernel.domain.currency import BillingCurrency
from mortuary_kernel.domain.values import Money


def _default_category_rates() -> dict[str, Decimal]:
    return {"premium": Decimal("5000")}


@dataclass(frozen=True)
class BillingPolicy:
    """Tariffs, defaults and thresholds for one reconciliation run."""

    category_rates_kes: dict[str, Decimal] = field(default_factory=_default_category_rates)
    fallback_daily_rate_kes: Decimal = Decimal("3000")
    default_daily_rate_usd: Decimal = Decimal("130")
    default_fx_rate_kes_per_usd: Decimal = Decimal("130")
    history_threshold: Decimal = Decimal("0.01")
    persistence_max_attempts: int = 2
    persistence_backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.persistence_max_attempts < 1:
            raise ValueError("persistence_max_attempts must be at least 1")
        if self.history_threshold < 0:
            raise ValueError("history_threshold must not be negative")

    def kes_daily_rate(self, rate_category: str | None) -> Decimal:
        """Daily KES rate for a category; unknown categories use the fallback."""
        key = (rate_category or "").strip().lower()
        return self.category_rates_kes.get(key, self.fallback_daily_rate_kes)

    def daily_rate(
        self,
        rate_category: str | None,
        currency: str,
        daily_rate_usd: Decimal | None = None,
    ) -> Money:
        """Resolve the daily storage rate for a case.

        USD cases are billed at their own daily USD rate (or the default);
        KES cases by rate category.
        """
        if currency == BillingCurrency.USD.value:
            rate = daily_rate_usd if daily_rate_usd is not None else self.default_daily_rate_usd
            return Money.of(rate, BillingCurrency.USD.value)
        return Money.of(self.kes_daily_rate(rate_category), BillingCurrency.KES.value)
