"""
mortuary_kernel.domain.types -- Status enums and frozen DTOs. ZERO I/O.

Rows read from the database are copied into these dataclasses before any
billing arithmetic runs, so the aggregator never touches the ORM.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class RateCategory(str, Enum):
    PREMIUM = "premium"
    STANDARD = "standard"
    BASIC = "basic"


class CaseStatus(str, Enum):
    """Case lifecycle. Only ``complete`` is terminal."""

    ADMITTED = "admitted"
    IN_STORAGE = "in_storage"
    PENDING_RELEASE = "pending_release"
    COMPLETE = "complete"


class ExtraChargeStatus(str, Enum):
    PENDING = "pending"
    INVOICED = "invoiced"
    PAID = "paid"
    CANCELLED = "cancelled"


# Allowed extra charge status moves; ``paid`` and ``cancelled`` are terminal.
EXTRA_CHARGE_TRANSITIONS: dict[ExtraChargeStatus, frozenset[ExtraChargeStatus]] = {
    ExtraChargeStatus.PENDING: frozenset(
        {ExtraChargeStatus.INVOICED, ExtraChargeStatus.CANCELLED}
    ),
    ExtraChargeStatus.INVOICED: frozenset(
        {ExtraChargeStatus.PAID, ExtraChargeStatus.CANCELLED}
    ),
    ExtraChargeStatus.PAID: frozenset(),
    ExtraChargeStatus.CANCELLED: frozenset(),
}


class ChargeType(str, Enum):
    """Charge history entry types."""

    DAILY_STORAGE = "daily_storage"


# =============================================================================
# Aggregator inputs
# =============================================================================


@dataclass(frozen=True)
class CaseTerms:
    """Billing-relevant snapshot of a case row.

    Amount fields are typed ``Any`` on purpose: they are copied straight
    from storage and sanitized by the aggregator.
    """

    case_id: str
    currency: str
    rate_category: str | None
    admitted_at: datetime
    last_charge_update: datetime | None = None
    daily_rate_usd: Any = None
    fx_rate_kes_per_usd: Any = None
    embalming_cost: Any = None


@dataclass(frozen=True)
class CoffinLine:
    line_id: str
    unit_price: Any
    currency: str
    quantity: Any = 1
    fx_rate_kes_per_usd: Any = None


@dataclass(frozen=True)
class ExtraChargeLine:
    line_id: str
    amount: Any
    status: str | None = ExtraChargeStatus.PENDING.value


@dataclass(frozen=True)
class PaymentLine:
    line_id: str
    amount: Any


# =============================================================================
# Diagnostics
# =============================================================================


@dataclass(frozen=True)
class DataIntegrityWarning:
    """A source value that could not be used and was treated as zero."""

    source: str  # "case", "coffin_assignment", "extra_charge", "payment"
    record_id: str
    field: str
    value: str
    reason: str


@dataclass(frozen=True)
class SkippedComponent:
    """A charge component left out of this pass (e.g. bad FX rate)."""

    source: str
    record_id: str
    error_code: str
    reason: str


# =============================================================================
# Service results
# =============================================================================


@dataclass(frozen=True)
class CaseReconciliation:
    """Outcome of reconciling one case."""

    case_pk: UUID
    case_id: str
    currency: str
    as_of: datetime
    total_charge: Decimal
    total_payments: Decimal
    balance: Decimal
    incremental_storage: Decimal
    storage_days: Decimal
    storage_total: Decimal
    coffin_total: Decimal
    extras_total: Decimal
    embalming: Decimal
    history_recorded: bool
    audit_logged: bool = True
    warnings: tuple[DataIntegrityWarning, ...] = field(default_factory=tuple)
    skipped_components: tuple[SkippedComponent, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CaseBalance:
    """What ``reconcile_one`` hands back to the caller."""

    case_id: str
    currency: str
    total_charge: Decimal
    balance: Decimal
    as_of: datetime


@dataclass(frozen=True)
class LedgerWriteResult:
    """A recorded mutation plus the balance refresh that followed it.

    ``refresh_error`` is set when the mutation was stored but the balance
    could not be recomputed; ``balance`` is then the last stored value.
    """

    record_id: UUID
    case_id: str
    balance: Decimal | None
    refresh_error: str | None = None

    @property
    def balance_is_fresh(self) -> bool:
        return self.refresh_error is None


@dataclass(frozen=True)
class CaseFinancialSummary:
    """Read model of a case's stored financial position."""

    case_pk: UUID
    case_id: str
    full_name: str
    status: str | None
    currency: str
    rate_category: str | None
    admitted_at: datetime
    last_charge_update: datetime | None
    total_charge: Decimal
    balance: Decimal
    total_payments: Decimal
    extra_charges_total: Decimal
    embalming_cost: Decimal
    payment_count: int


@dataclass(frozen=True)
class ChargeHistoryRecord:
    entry_id: UUID
    case_id: str
    charge_type: str
    amount: Decimal
    currency: str
    description: str
    recorded_at: datetime
