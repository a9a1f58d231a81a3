"""ORM models for settlement run persistence."""

from ledger_batch.models.run import SettlementItemModel, SettlementRunModel

__all__ = ["SettlementItemModel", "SettlementRunModel"]
