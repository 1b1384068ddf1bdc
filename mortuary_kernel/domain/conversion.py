"""
Conversion -- KES <-> USD amount conversion.

Rates are always quoted as KES per 1 USD. KES -> USD divides by the rate,
USD -> KES multiplies. Results are NOT rounded here; the aggregator rounds
each charge component once, at the currency boundary.
"""

from decimal import Decimal, InvalidOperation

from mortuary_kernel.domain.currency import BillingCurrency, CurrencyRegistry
from mortuary_kernel.domain.values import Money
from mortuary_kernel.exceptions import InvalidRateError, UnsupportedConversionError


def parse_rate(rate: object, from_currency: str = "", to_currency: str = "") -> Decimal:
    """Coerce a rate to a positive Decimal or raise InvalidRateError."""
    if rate is None or isinstance(rate, (bool, float)):
        raise InvalidRateError(rate, from_currency, to_currency)
    try:
        value = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidRateError(rate, from_currency, to_currency) from exc
    if not value.is_finite() or value <= 0:
        raise InvalidRateError(rate, from_currency, to_currency)
    return value


def convert(
    amount: Decimal,
    from_currency: str,
    to_currency: str,
    rate: Decimal | str | int | None,
) -> Decimal:
    """
    Convert ``amount`` between KES and USD.

    Args:
        amount: Amount denominated in ``from_currency``.
        from_currency: Source currency code.
        to_currency: Target currency code.
        rate: KES per 1 USD. Ignored when the currencies match.

    Raises:
        InvalidCurrencyError: Unknown currency code.
        InvalidRateError: Rate missing, non-numeric, zero or negative.
        UnsupportedConversionError: Currency pair has no rule.
    """
    source = CurrencyRegistry.validate(from_currency)
    target = CurrencyRegistry.validate(to_currency)
    if source == target:
        return amount

    kes_per_usd = parse_rate(rate, source, target)
    if source == BillingCurrency.KES.value and target == BillingCurrency.USD.value:
        return amount / kes_per_usd
    if source == BillingCurrency.USD.value and target == BillingCurrency.KES.value:
        return amount * kes_per_usd
    raise UnsupportedConversionError(source, target)


def convert_money(
    money: Money, to_currency: str, rate: Decimal | str | int | None
) -> Money:
    """Money-typed wrapper around :func:`convert`."""
    converted = convert(money.amount, money.currency.code, to_currency, rate)
    return Money.of(converted, to_currency)
