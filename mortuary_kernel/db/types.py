"""
Module: mortuary_kernel.db.types
Responsibility: Annotated column type aliases shared by every model, so that
    amounts, rates and currency codes are stored with identical precision.
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
MoneyAmount = Annotated[Decimal, Numeric(38, 9)]

# KES per USD; rates get more fractional digits than amounts
Rate = Annotated[Decimal, Numeric(38, 18)]

CurrencyCode = Annotated[str, String(3)]
