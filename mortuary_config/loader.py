"""
Configuration Loader (``mortuary_config.loader``).

Loads a billing YAML file and parses it into a frozen ``BillingConfig``.
The single public entry point for runtime config is
``mortuary_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Bad values (non-numeric, non-positive rates, bad cron)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from mortuary_config.schema import BillingConfig, StorageTariff


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, key: str, *, positive: bool = False) -> Decimal:
    """Parse a Decimal from YAML; floats go through ``str`` first."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{key}: expected a number, got {value!r}")
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key}: expected a number, got {value!r}") from None
    if not parsed.is_finite():
        raise ValueError(f"{key}: must be finite")
    if positive and parsed <= 0:
        raise ValueError(f"{key}: must be positive, got {parsed}")
    if parsed < 0:
        raise ValueError(f"{key}: must not be negative, got {parsed}")
    return parsed


def parse_tariffs(data: Any) -> tuple[StorageTariff, ...]:
    """Parse the ``tariffs`` list; categories are case-insensitive and unique."""
    if not isinstance(data, list):
        raise ValueError("tariffs: expected a list")
    tariffs: list[StorageTariff] = []
    seen: set[str] = set()
    for entry in data:
        category = str(entry["category"]).strip().lower()
        if category in seen:
            raise ValueError(f"tariffs: duplicate category {category!r}")
        seen.add(category)
        tariffs.append(
            StorageTariff(
                category=category,
                daily_rate_kes=parse_decimal(
                    entry["daily_rate_kes"], f"tariffs.{category}", positive=True
                ),
            )
        )
    return tuple(tariffs)


def parse_billing_config(data: dict[str, Any], source_path: str | None = None) -> BillingConfig:
    """Parse a ``BillingConfig`` from a dict."""
    from mortuary_batch.domain.schedule import parse_cron
    from mortuary_kernel.exceptions import InvalidCronExpressionError

    cron = str(data["reconcile_cron"])
    try:
        parse_cron(cron)
    except InvalidCronExpressionError as exc:
        raise ValueError(f"reconcile_cron: {exc}") from exc

    attempts = int(data["persistence_max_attempts"])
    if attempts < 1:
        raise ValueError("persistence_max_attempts: must be at least 1")

    return BillingConfig(
        config_id=str(data.get("config_id", "mortuary-billing")),
        version=int(data.get("version", 1)),
        tariffs=parse_tariffs(data["tariffs"]),
        fallback_daily_rate_kes=parse_decimal(
            data["fallback_daily_rate_kes"], "fallback_daily_rate_kes", positive=True
        ),
        default_daily_rate_usd=parse_decimal(
            data["default_daily_rate_usd"], "default_daily_rate_usd", positive=True
        ),
        default_fx_rate_kes_per_usd=parse_decimal(
            data["default_fx_rate_kes_per_usd"], "default_fx_rate_kes_per_usd", positive=True
        ),
        history_threshold=parse_decimal(data["history_threshold"], "history_threshold"),
        reconcile_cron=cron,
        startup_delay_seconds=float(
            parse_decimal(data["startup_delay_seconds"], "startup_delay_seconds")
        ),
        scheduler_tick_seconds=float(
            parse_decimal(data["scheduler_tick_seconds"], "scheduler_tick_seconds", positive=True)
        ),
        persistence_max_attempts=attempts,
        persistence_backoff_seconds=float(
            parse_decimal(data["persistence_backoff_seconds"], "persistence_backoff_seconds")
        ),
        summary_cache_ttl_seconds=float(
            parse_decimal(
                data["summary_cache_ttl_seconds"], "summary_cache_ttl_seconds", positive=True
            )
        ),
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def load_billing_config(path: Path) -> BillingConfig:
    """Load and parse one YAML file."""
    return parse_billing_config(load_yaml_file(path), source_path=str(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
