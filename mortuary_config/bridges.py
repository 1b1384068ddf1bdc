"""
Config -> Kernel Bridges.

Functions that convert a ``BillingConfig`` into kernel inputs.  These live
in mortuary_config (the producer) because the kernel must never import
mortuary_config.

Usage:
    from mortuary_config import get_active_config
    from mortuary_config.bridges import build_billing_policy

    policy = build_billing_policy(get_active_config())
"""

from __future__ import annotations

from mortuary_config.schema import BillingConfig
from mortuary_kernel.domain.policy import BillingPolicy


def build_billing_policy(config: BillingConfig) -> BillingPolicy:
    """Build the kernel ``BillingPolicy`` from a loaded config."""
    return BillingPolicy(
        category_rates_kes={t.category: t.daily_rate_kes for t in config.tariffs},
        fallback_daily_rate_kes=config.fallback_daily_rate_kes,
        default_daily_rate_usd=config.default_daily_rate_usd,
        default_fx_rate_kes_per_usd=config.default_fx_rate_kes_per_usd,
        history_threshold=config.history_threshold,
        persistence_max_attempts=config.persistence_max_attempts,
        persistence_backoff_seconds=config.persistence_backoff_seconds,
    )
