"""
Accrual -- fractional-day storage charges.

A day is 86,400 seconds. Durations are measured to the microsecond and
expressed as a Decimal number of days, so a body stored for 36 hours
accrues exactly 1.5 days.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from mortuary_kernel.domain.clock import as_utc

MICROSECONDS_PER_DAY = Decimal(86_400_000_000)


@dataclass(frozen=True)
class StorageAccrual:
    """Days elapsed and the storage amount they accrue."""

    days: Decimal
    amount: Decimal


def elapsed_days(start: datetime, end: datetime) -> Decimal:
    """Fractional days from ``start`` to ``end``; zero when ``end <= start``."""
    delta = as_utc(end) - as_utc(start)
    micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    if micros <= 0:
        return Decimal("0")
    return Decimal(micros) / MICROSECONDS_PER_DAY


def accrued_storage_charge(
    start: datetime, as_of: datetime, daily_rate: Decimal
) -> StorageAccrual:
    """Storage charge accrued between ``start`` and ``as_of`` at ``daily_rate``.

    Never negative: a clock that runs backwards or an ``as_of`` before
    admission yields zero.
    """
    days = elapsed_days(start, as_of)
    amount = days * daily_rate
    if amount < 0:
        amount = Decimal("0")
    return StorageAccrual(days=days, amount=amount)
