"""
Mortuary Kernel -- billing reconciliation core.

- Fractional-day storage accrual in KES or USD
- Decimal-only money arithmetic with explicit rounding
- Per-case row locking and SAVEPOINT-isolated writes
- Append-only payments and charge history
"""

__version__ = "0.1.0"
