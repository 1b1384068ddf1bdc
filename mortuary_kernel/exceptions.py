"""
Typed exception hierarchy for the mortuary billing kernel.

Every error carries a machine-readable ``code`` class attribute and the
structured data needed to act on it, so callers catch by type and never
parse messages.

    MortuaryBillingError (base)
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |   +-- InvalidRateError
    |   +-- UnsupportedConversionError
    |
    +-- CaseError
    |   +-- CaseNotFoundError
    |   +-- CaseAlreadyExistsError
    |   +-- CaseClosedError
    |
    +-- ChargeError
    |   +-- ExtraChargeNotFoundError
    |   +-- InvalidChargeTransitionError
    |   +-- InvalidAmountError
    |
    +-- CoffinError
    |   +-- CoffinNotFoundError
    |   +-- CoffinOutOfStockError
    |
    +-- PersistenceError
    |   +-- PersistenceFailureError
    |   +-- AuditLogFailureError
    |   +-- BalanceRefreshError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- BatchError
    |   +-- BatchJobNotFoundError
    |   +-- BatchAlreadyRunningError
    |   +-- BatchIdempotencyError
    |   +-- TaskNotRegisteredError
    |
    +-- ScheduleError
        +-- InvalidCronExpressionError

Retry guidance:
    - PersistenceFailureError: already retried once by the reconciliation
      service; the next scheduled run retries again.
    - AuditLogFailureError: never surfaced to callers of the reconciler; the
      balance update stands and the failure is logged.
    - Everything else: fix the input.
"""

from decimal import Decimal


class MortuaryBillingError(Exception):
    """Base exception for all mortuary billing errors."""

    code: str = "MORTUARY_BILLING_ERROR"


# Currency


class CurrencyError(MortuaryBillingError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Currency code is not one the billing engine understands."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: '{currency}'")


class InvalidRateError(CurrencyError):
    """Exchange rate is missing, non-numeric, zero or negative."""

    code: str = "INVALID_RATE"

    def __init__(self, rate: object, from_currency: str = "", to_currency: str = ""):
        self.rate = str(rate)
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(
            f"Invalid exchange rate {rate!r} for {from_currency}->{to_currency}: "
            "rate must be a positive number"
        )


class UnsupportedConversionError(CurrencyError):
    """Conversion requested between currencies with no defined rule."""

    code: str = "UNSUPPORTED_CONVERSION"

    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(f"No conversion rule for {from_currency}->{to_currency}")


# Cases


class CaseError(MortuaryBillingError):
    """Base exception for case-related errors."""

    code: str = "CASE_ERROR"


class CaseNotFoundError(CaseError):
    """Case with given identifier was not found."""

    code: str = "CASE_NOT_FOUND"

    def __init__(self, case_id: str):
        self.case_id = case_id
        super().__init__(f"Case not found: {case_id}")


class CaseAlreadyExistsError(CaseError):
    code: str = "CASE_ALREADY_EXISTS"

    def __init__(self, case_id: str):
        self.case_id = case_id
        super().__init__(f"Case already exists: {case_id}")


class CaseClosedError(CaseError):
    """Case is complete; its charges are frozen."""

    code: str = "CASE_CLOSED"

    def __init__(self, case_id: str, status: str):
        self.case_id = case_id
        self.status = status
        super().__init__(f"Case {case_id} is {status} and can no longer be billed")


# Charges


class ChargeError(MortuaryBillingError):
    """Base exception for charge-related errors."""

    code: str = "CHARGE_ERROR"


class ExtraChargeNotFoundError(ChargeError):
    code: str = "EXTRA_CHARGE_NOT_FOUND"

    def __init__(self, charge_id: str):
        self.charge_id = charge_id
        super().__init__(f"Extra charge not found: {charge_id}")


class InvalidChargeTransitionError(ChargeError):
    """Extra charge status change is not allowed."""

    code: str = "INVALID_CHARGE_TRANSITION"

    def __init__(self, charge_id: str, from_status: str, to_status: str):
        self.charge_id = charge_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Extra charge {charge_id} cannot move from {from_status} to {to_status}"
        )


class InvalidAmountError(ChargeError):
    """Monetary amount is missing, non-numeric or out of range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


# Coffins


class CoffinError(MortuaryBillingError):
    """Base exception for coffin inventory errors."""

    code: str = "COFFIN_ERROR"


class CoffinNotFoundError(CoffinError):
    code: str = "COFFIN_NOT_FOUND"

    def __init__(self, coffin_id: str):
        self.coffin_id = coffin_id
        super().__init__(f"Coffin not found: {coffin_id}")


class CoffinOutOfStockError(CoffinError):
    code: str = "COFFIN_OUT_OF_STOCK"

    def __init__(self, coffin_id: str, available: int, requested: int):
        self.coffin_id = coffin_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Coffin {coffin_id} has {available} in stock, {requested} requested"
        )


# Persistence


class PersistenceError(MortuaryBillingError):
    """Base exception for storage failures."""

    code: str = "PERSISTENCE_ERROR"


class PersistenceFailureError(PersistenceError):
    """Writing reconciled totals failed after all retry attempts."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, case_id: str, attempts: int, reason: str):
        self.case_id = case_id
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Failed to persist totals for case {case_id} after "
            f"{attempts} attempt(s): {reason}"
        )


class AuditLogFailureError(PersistenceError):
    """Appending to the charge history failed."""

    code: str = "AUDIT_LOG_FAILURE"

    def __init__(self, case_id: str, reason: str):
        self.case_id = case_id
        self.reason = reason
        super().__init__(f"Charge history append failed for case {case_id}: {reason}")


class BalanceRefreshError(PersistenceError):
    """On-demand reconciliation failed; the stored balance may be stale."""

    code: str = "BALANCE_REFRESH_FAILED"

    def __init__(
        self,
        case_id: str,
        reason: str,
        last_known_balance: Decimal | None = None,
    ):
        self.case_id = case_id
        self.reason = reason
        self.last_known_balance = last_known_balance
        super().__init__(f"Balance refresh failed for case {case_id}: {reason}")


# Immutability


class ImmutabilityError(MortuaryBillingError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    Payments and charge history rows are immutable after creation; extra
    charges become immutable once paid.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Batch


class BatchError(MortuaryBillingError):
    """Base exception for batch job errors."""

    code: str = "BATCH_ERROR"


class BatchJobNotFoundError(BatchError):
    code: str = "BATCH_JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Batch job not found: {job_id}")


class BatchAlreadyRunningError(BatchError):
    code: str = "BATCH_ALREADY_RUNNING"

    def __init__(self, job_name: str, running_job_id: str):
        self.job_name = job_name
        self.running_job_id = running_job_id
        super().__init__(
            f"Batch job '{job_name}' is already running as {running_job_id}"
        )


class BatchIdempotencyError(BatchError):
    """A job with this idempotency key already exists."""

    code: str = "BATCH_IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_job_id: str):
        self.idempotency_key = idempotency_key
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Idempotency key '{idempotency_key}' already used by job {existing_job_id}"
        )


class TaskNotRegisteredError(BatchError):
    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str, available: list[str] | None = None):
        self.task_type = task_type
        self.available = list(available or [])
        super().__init__(
            f"Batch task '{task_type}' is not registered "
            f"(available: {', '.join(self.available) or 'none'})"
        )


class ScheduleError(MortuaryBillingError):
    """Base exception for job schedule errors."""

    code: str = "SCHEDULE_ERROR"


class InvalidCronExpressionError(ScheduleError):
    code: str = "INVALID_CRON_EXPRESSION"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")
