"""
Pure domain layer.

No ORM, database, wall clock or I/O: money, conversion, accrual, charge
aggregation and the billing policy.  Everything here is deterministic.
"""

from mortuary_kernel.domain.accrual import StorageAccrual, accrued_storage_charge, elapsed_days
from mortuary_kernel.domain.charges import (
    ChargeBreakdown,
    compute_case_charges,
    should_record_increment,
)
from mortuary_kernel.domain.clock import Clock, DeterministicClock, SystemClock, as_utc
from mortuary_kernel.domain.conversion import convert, convert_money, parse_rate
from mortuary_kernel.domain.currency import BillingCurrency, CurrencyRegistry
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.values import Currency, Money, parse_amount

__all__ = [
    "BillingCurrency",
    "BillingPolicy",
    "ChargeBreakdown",
    "Clock",
    "Currency",
    "CurrencyRegistry",
    "DeterministicClock",
    "Money",
    "StorageAccrual",
    "SystemClock",
    "accrued_storage_charge",
    "as_utc",
    "compute_case_charges",
    "convert",
    "convert_money",
    "elapsed_days",
    "parse_amount",
    "parse_rate",
    "should_record_increment",
]
