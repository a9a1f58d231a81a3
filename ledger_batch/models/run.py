"""
ORM models for settlement run persistence.

Contract:
    SettlementRunModel records one batch run (trigger, counts, timing);
    SettlementItemModel records the outcome for each position the run
    attempted.  Both convert to the frozen DTOs in ledger_batch.domain.types.

Architecture: ledger_batch/models.  Imports from ledger_kernel.db.base only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from ledger_batch.domain.types import SettlementItemResult, SettlementRun


class SettlementRunModel(TrackedBase):
    """Persistent record of one settlement batch run."""

    __tablename__ = "settlement_runs"

    __table_args__ = (
        Index("ix_settlement_runs_status", "status"),
        Index("ix_settlement_runs_started_at", "started_at"),
    )

    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["SettlementItemModel"]] = relationship(
        "SettlementItemModel",
        back_populates="run",
        foreign_keys="SettlementItemModel.run_id",
        order_by="SettlementItemModel.item_index",
    )

    def to_dto(self, include_items: bool = False) -> SettlementRun:
        from ledger_batch.domain.types import (
            RunTrigger,
            SettlementRun,
            SettlementRunStatus,
        )

        return SettlementRun(
            run_id=self.id,
            trigger=RunTrigger(self.trigger),
            status=SettlementRunStatus(self.status),
            total_items=self.total_items,
            processed_items=self.processed_items,
            failed_items=self.failed_items,
            skipped_items=self.skipped_items,
            started_at=self.started_at,
            completed_at=self.completed_at,
            correlation_id=self.correlation_id,
            error_summary=self.error_summary,
            item_results=(
                tuple(item.to_dto() for item in self.items) if include_items else ()
            ),
        )


class SettlementItemModel(TrackedBase):
    """Outcome for one position within a run."""

    __tablename__ = "settlement_items"

    __table_args__ = (
        Index("ix_settlement_items_run_status", "run_id", "status"),
        Index("ix_settlement_items_position", "position_id"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    position_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    run: Mapped["SettlementRunModel"] = relationship(
        "SettlementRunModel",
        back_populates="items",
        foreign_keys=[run_id],
    )

    def to_dto(self) -> SettlementItemResult:
        from ledger_batch.domain.types import (
            SettlementItemResult,
            SettlementItemStatus,
        )

        return SettlementItemResult(
            item_index=self.item_index,
            position_id=self.position_id,
            status=SettlementItemStatus(self.status),
            error_code=self.error_code,
            error_message=self.error_message,
            result_data=self.result_data,
            duration_ms=self.duration_ms,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

    @classmethod
    def from_dto(
        cls, dto: SettlementItemResult, run_id: UUID, created_by_id: UUID | None,
    ) -> SettlementItemModel:
        return cls(
            run_id=run_id,
            item_index=dto.item_index,
            position_id=dto.position_id,
            status=dto.status.value,
            error_code=dto.error_code,
            error_message=dto.error_message,
            result_data=dto.result_data,
            duration_ms=dto.duration_ms,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            created_by_id=created_by_id,
        )
