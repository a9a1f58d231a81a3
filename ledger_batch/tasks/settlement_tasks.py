"""
Batch task: settle matured positions.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.selectors.settlement_selector import SettlementSelector
from ledger_kernel.services.settlement_service import SettlementService

from ledger_batch.domain.types import SettlementItemStatus
from ledger_batch.tasks.base import BatchItemInput, BatchTaskResult


class MaturedPositionSettlementTask:
    """Credits profit and principal for every active position past its end date."""

    def __init__(self, clock: Clock | None = None, actor_id: UUID | None = None):
        self._clock = clock
        self._actor_id = actor_id

    @property
    def task_type(self) -> str:
        return "investments.settle_matured"

    @property
    def description(self) -> str:
        return "Credit profit and return principal for matured positions"

    def prepare_items(
        self,
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        position_ids = SettlementSelector(session).matured_position_ids(as_of)
        return tuple(
            BatchItemInput(item_index=i, item_key=str(position_id))
            for i, position_id in enumerate(position_ids)
        )

    def execute_item(
        self,
        item: BatchItemInput,
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        service = SettlementService(session, clock=self._clock)
        outcome = service.settle_position(UUID(item.item_key), self._actor_id)
        return BatchTaskResult(
            status=(
                SettlementItemStatus.SKIPPED
                if outcome.skipped
                else SettlementItemStatus.SUCCEEDED
            ),
            result_data=outcome.to_dict(),
        )
