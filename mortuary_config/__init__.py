"""
mortuary_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains tariffs,
    FX defaults, thresholds and schedule settings.  It reads the file named
    by ``MORTUARY_BILLING_CONFIG`` (or an explicit path), falling back to the
    ``defaults.yaml`` shipped with the package.

Architecture position:
    Sits above ``mortuary_kernel``.  The kernel never imports from here;
    ``bridges`` converts the config into a kernel ``BillingPolicy``.

Audit relevance:
    Every successful call emits a ``BILLING_CONFIG_TRACE`` log entry with
    the config id, version, checksum and source path, tying balances back
    to the tariffs that produced them.
"""

from __future__ import annotations

import os
from pathlib import Path

from mortuary_config.loader import load_billing_config
from mortuary_config.schema import BillingConfig, StorageTariff
from mortuary_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "MORTUARY_BILLING_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

__all__ = [
    "BillingConfig",
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "StorageTariff",
    "get_active_config",
]


def get_active_config(path: Path | str | None = None) -> BillingConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then ``$MORTUARY_BILLING_CONFIG``,
    then the packaged defaults.

    Raises:
        FileNotFoundError: the chosen file does not exist.
        ValueError: the file parses but a value is invalid.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    source = Path(path) if path is not None else Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    config = load_billing_config(source)

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source_path": str(source),
            "tariff_count": len(config.tariffs),
            "reconcile_cron": config.reconcile_cron,
        },
    )
    return config
