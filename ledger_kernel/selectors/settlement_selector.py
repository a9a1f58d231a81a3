"""
Module: ledger_kernel.selectors.settlement_selector
Responsibility: Read-side queries for the settlement process: the matured
    position snapshot scanned by each run and the operational stats.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - The matured filter (active, end_date <= as_of, at least one
      settlement flag still false) is evaluated in SQL so the batch and the
      stats agree on what "matured" means.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select

from ledger_kernel.models.position import Position, PositionStatus
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class SettlementStats:
    total_active_investments: int
    matured_but_not_credited: int
    matured_but_not_principal_returned: int
    due_in_next_24_hours: int
    total_profit_pending: Decimal
    total_principal_pending: Decimal

    def to_dict(self) -> dict:
        return {
            "total_active_investments": self.total_active_investments,
            "matured_but_not_credited": self.matured_but_not_credited,
            "matured_but_not_principal_returned": self.matured_but_not_principal_returned,
            "due_in_next_24_hours": self.due_in_next_24_hours,
            "total_profit_pending": str(self.total_profit_pending),
            "total_principal_pending": str(self.total_principal_pending),
        }


class SettlementSelector(BaseSelector[Position]):

    def matured_position_ids(self, as_of: datetime) -> list[UUID]:
        """Point-in-time snapshot of positions due for settlement, oldest maturity first."""
        rows = self.session.execute(
            select(Position.id)
            .where(
                Position.status == PositionStatus.ACTIVE.value,
                Position.end_date <= as_of,
                or_(
                    Position.is_profit_credited.is_(False),
                    Position.is_principal_returned.is_(False),
                ),
            )
            .order_by(Position.end_date, Position.id)
        ).scalars()
        return list(rows)

    def get_stats(
        self, as_of: datetime, due_window_hours: int = 24
    ) -> SettlementStats:
        """
        Operational counters for the settlement process.

        ``due_in_next_24_hours`` counts active positions whose profit is
        not yet credited and which mature by ``as_of + due_window_hours``,
        so already-overdue positions are included.
        """
        active = Position.status == PositionStatus.ACTIVE.value
        matured = Position.end_date <= as_of
        not_credited = Position.is_profit_credited.is_(False)
        not_returned = Position.is_principal_returned.is_(False)

        def count(*criteria) -> int:
            return self.session.execute(
                select(func.count(Position.id)).where(*criteria)
            ).scalar_one()

        def total(column, *criteria) -> Decimal:
            value = self.session.execute(
                select(func.coalesce(func.sum(column), 0)).where(*criteria)
            ).scalar_one()
            return Decimal(str(value))

        horizon = as_of + timedelta(hours=due_window_hours)

        return SettlementStats(
            total_active_investments=count(active),
            matured_but_not_credited=count(active, matured, not_credited),
            matured_but_not_principal_returned=count(active, matured, not_returned),
            due_in_next_24_hours=count(
                active, Position.end_date <= horizon, not_credited
            ),
            total_profit_pending=total(Position.expected_profit, active, not_credited),
            total_principal_pending=total(Position.amount, active, not_returned),
        )
