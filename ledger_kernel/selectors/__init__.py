"""Read-only selectors."""

from ledger_kernel.selectors.settlement_selector import (
    SettlementSelector,
    SettlementStats,
)

__all__ = ["SettlementSelector", "SettlementStats"]
