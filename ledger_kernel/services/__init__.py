"""Write services.  Each flushes on the caller's session and never commits."""

from ledger_kernel.services.investment_service import InvestmentService
from ledger_kernel.services.plan_service import PlanService
from ledger_kernel.services.position_service import (
    ActionCheck,
    PositionAction,
    PositionService,
)
from ledger_kernel.services.settlement_service import (
    SettlementDisposition,
    SettlementOutcome,
    SettlementService,
)
from ledger_kernel.services.transaction_ledger import TransactionLedger
from ledger_kernel.services.wallet_service import WalletService

__all__ = [
    "ActionCheck",
    "InvestmentService",
    "PlanService",
    "PositionAction",
    "PositionService",
    "SettlementDisposition",
    "SettlementOutcome",
    "SettlementService",
    "TransactionLedger",
    "WalletService",
]
