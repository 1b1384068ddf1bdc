"""
BillingConfig schema.

The parsed, validated form of a billing configuration file.  YAML is read
by the loader and turned into these frozen types; nothing downstream sees
raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class StorageTariff:
    """Daily KES storage rate for one rate category."""

    category: str
    daily_rate_kes: Decimal


@dataclass(frozen=True)
class BillingConfig:
    """Complete billing configuration, identified by ``checksum``."""

    config_id: str
    version: int
    tariffs: tuple[StorageTariff, ...]
    fallback_daily_rate_kes: Decimal
    default_daily_rate_usd: Decimal
    default_fx_rate_kes_per_usd: Decimal
    history_threshold: Decimal
    reconcile_cron: str
    startup_delay_seconds: float
    scheduler_tick_seconds: float
    persistence_max_attempts: int
    persistence_backoff_seconds: float
    summary_cache_ttl_seconds: float
    checksum: str = ""
    source_path: str | None = field(default=None, compare=False)

    def tariff_for(self, category: str) -> Decimal:
        for tariff in self.tariffs:
            if tariff.category == category:
                return tariff.daily_rate_kes
        return self.fallback_daily_rate_kes
