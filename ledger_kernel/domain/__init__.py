"""Pure domain helpers: clock and money arithmetic."""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.values import (
    expected_profit,
    maturity_date,
    quantize_money,
    to_decimal,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "expected_profit",
    "maturity_date",
    "quantize_money",
    "to_decimal",
]
