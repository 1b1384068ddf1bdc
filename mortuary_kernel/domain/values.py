"""
Money value objects.

A ``Money`` always knows its currency, and arithmetic or comparison across
currencies raises instead of silently adding shillings to dollars.
Conversion between the two is explicit, through ``domain.conversion``.

Amounts are never floats.  Rounding is explicit too: ``round()`` is called
where a component is finalized, not on every operation.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable

from mortuary_kernel.domain.currency import CurrencyRegistry
from mortuary_kernel.exceptions import InvalidAmountError


@dataclass(frozen=True, slots=True)
class Currency:
    code: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", CurrencyRegistry.validate(self.code))

    @property
    def quantum(self) -> Decimal:
        return CurrencyRegistry.lookup(self.code).quantum

    def __str__(self) -> str:
        return self.code


def _coerce_amount(value: object) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (float, bool)):
        raise ValueError(f"Money amount must not be a {type(value).__name__}: {value!r}")
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount


def _same_currency(op_name: str, compare: Callable[[Decimal, Decimal], bool]):
    def method(self: Money, other: object) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, op_name)
        return compare(self.amount, other.amount)

    return method


@dataclass(frozen=True, slots=True)
class Money:
    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _coerce_amount(self.amount))
        if not isinstance(self.currency, Currency):
            object.__setattr__(self, "currency", Currency(self.currency))

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        return cls(amount, currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        return cls(Decimal("0"), currency)

    @property
    def is_zero(self) -> bool:
        return self.amount.is_zero()

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def round(self) -> Money:
        """Round half-up to the currency's minor unit (cents)."""
        return Money(
            self.amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP),
            self.currency,
        )

    def _check_currency(self, other: Money, op_name: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {op_name} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: object) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: object) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __mul__(self, factor: object) -> Money:
        if isinstance(factor, (int, str)) and not isinstance(factor, bool):
            factor = Decimal(str(factor))
        if not isinstance(factor, Decimal):
            return NotImplemented
        return Money(self.amount * factor, self.currency)

    __rmul__ = __mul__

    __lt__ = _same_currency("compare", operator.lt)
    __le__ = _same_currency("compare", operator.le)
    __gt__ = _same_currency("compare", operator.gt)
    __ge__ = _same_currency("compare", operator.ge)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


def parse_amount(value: object, field: str) -> Decimal:
    """Strictly parse a caller-supplied amount.

    Stored rows may be dirty and the aggregator tolerates that; writes do
    not.  Anything other than a finite Decimal, int or numeric string is
    rejected.
    """
    if value is None or isinstance(value, (bool, float)):
        raise InvalidAmountError(field, value, "must be a Decimal, int or numeric string")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except ArithmeticError as exc:
        raise InvalidAmountError(field, value, "not a number") from exc
    if not amount.is_finite():
        raise InvalidAmountError(field, value, "not a finite number")
    return amount
