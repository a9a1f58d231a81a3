"""Settlement executor and scheduler."""

from ledger_batch.services.executor import SettlementExecutor
from ledger_batch.services.scheduler import SettlementScheduler

__all__ = ["SettlementExecutor", "SettlementScheduler"]
