"""The two billing currencies and their minor-unit precision."""

from decimal import Decimal
from enum import Enum

from mortuary_kernel.exceptions import InvalidCurrencyError


class BillingCurrency(str, Enum):
    KES = "KES"
    USD = "USD"

    @property
    def minor_units(self) -> int:
        return _MINOR_UNITS[self]

    @property
    def quantum(self) -> Decimal:
        """Smallest billable unit, for ``Decimal.quantize``."""
        return Decimal(1).scaleb(-self.minor_units)


# Shillings and dollars are both billed to the cent.
_MINOR_UNITS = {BillingCurrency.KES: 2, BillingCurrency.USD: 2}


class CurrencyRegistry:
    """Lookup and normalization of currency codes coming from storage or callers."""

    @staticmethod
    def lookup(code: object) -> BillingCurrency:
        if isinstance(code, BillingCurrency):
            return code
        if isinstance(code, str):
            try:
                return BillingCurrency(code.strip().upper())
            except ValueError:
                pass
        raise InvalidCurrencyError(str(code))

    @classmethod
    def validate(cls, code: object) -> str:
        """Normalized code (``" kes "`` -> ``"KES"``); raises InvalidCurrencyError."""
        return cls.lookup(code).value

    @classmethod
    def get_decimal_places(cls, code: object) -> int:
        return cls.lookup(code).minor_units

    @staticmethod
    def all_codes() -> frozenset[str]:
        return frozenset(c.value for c in BillingCurrency)
