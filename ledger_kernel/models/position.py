"""
Module: ledger_kernel.models.position
Responsibility: ORM persistence for positions, a user's single investment
    into a plan, and the lifecycle/settlement flags that gate re-processing.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status only moves active -> completed or active -> cancelled
      (PositionService / SettlementService).
    - is_profit_credited and is_principal_returned are set true only after
      the matching wallet credit succeeded in the same unit of work.
    - is_frozen is orthogonal to status and blocks completion.

Audit relevance:
    The two idempotency flags plus their *_at stamps are what makes a second
    settlement run a no-op for an already-settled position.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class PositionStatus(str, Enum):
    """Lifecycle status of a position.

    Contract: ACTIVE is initial; COMPLETED and CANCELLED are terminal.
    """

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Position(TrackedBase):
    """
    A user's investment of ``amount`` into a plan for a fixed term.

    Contract:
        end_date = start_date + plan.duration_days and
        expected_profit = amount * plan.rate / 100, both fixed at creation.
        actual_profit stays 0 until settlement sets it to expected_profit;
        admins may adjust it after completion.
    """

    __tablename__ = "positions"

    __table_args__ = (
        Index("idx_position_user", "user_id"),
        Index("idx_position_plan", "plan_id"),
        Index("idx_position_status_end", "status", "end_date"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    plan_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("investment_plans.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    end_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    expected_profit: Mapped[Decimal] = mapped_column(nullable=False)

    actual_profit: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PositionStatus.ACTIVE.value
    )

    # Settlement idempotency flags
    is_profit_credited: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    profit_credited_at: Mapped[datetime | None] = mapped_column(nullable=True)

    is_principal_returned: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    principal_returned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Administrative lock
    is_frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frozen_at: Mapped[datetime | None] = mapped_column(nullable=True)
    frozen_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    freeze_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    manually_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    completed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE.value

    @property
    def is_settled(self) -> bool:
        return self.is_profit_credited and self.is_principal_returned

    def __repr__(self) -> str:
        return f"<Position {self.id} {self.status} amount={self.amount}>"
