"""ORM models for the ledger store."""

from ledger_kernel.models.plan import (
    InvestmentPlan,
    PlanStatus,
    PlanVisibility,
    RiskLevel,
)
from ledger_kernel.models.position import Position, PositionStatus
from ledger_kernel.models.transaction import (
    Transaction,
    TransactionEndpoint,
    TransactionStatus,
    TransactionType,
)
from ledger_kernel.models.wallet import DEFAULT_CURRENCY, Wallet

__all__ = [
    "DEFAULT_CURRENCY",
    "InvestmentPlan",
    "PlanStatus",
    "PlanVisibility",
    "Position",
    "PositionStatus",
    "RiskLevel",
    "Transaction",
    "TransactionEndpoint",
    "TransactionStatus",
    "TransactionType",
    "Wallet",
]
