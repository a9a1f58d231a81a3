"""
Money and term arithmetic for positions.

Pure functions, no I/O.  Amounts are Decimal end to end; anything else is
converted through ``str`` so binary float artefacts never reach the ledger.
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

# Matches the Numeric(38, 9) storage scale.
MONEY_QUANTUM = Decimal("0.000000001")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def expected_profit(amount: Decimal, rate: Decimal) -> Decimal:
    """Profit over the whole term: ``amount * rate / 100``."""
    return quantize_money(to_decimal(amount) * to_decimal(rate) / Decimal("100"))


def maturity_date(start: datetime, duration_days: int) -> datetime:
    return start + timedelta(days=duration_days)
