"""
ledger_batch.domain.types -- Pure frozen dataclasses for the settlement batch.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - processed + failed + skipped == total_items for every finished run
      except a STOPPED one, which leaves the rest for the next run.
    - Frozen positions are SKIPPED, never FAILED.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class SettlementRunStatus(str, Enum):
    """Run-level lifecycle status."""

    RUNNING = "running"
    COMPLETED = "completed"  # No position failed
    PARTIALLY_COMPLETED = "partially_completed"  # Some failed, some settled
    FAILED = "failed"  # Nothing settled and at least one failure, or scan failed
    STOPPED = "stopped"  # Stop requested before every position was attempted


class SettlementItemStatus(str, Enum):
    """Per-position outcome within a run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Frozen, or no longer active when re-read


class RunTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


# =============================================================================
# Result DTOs
# =============================================================================


@dataclass(frozen=True)
class SettlementItemResult:
    """Immutable result of settling one position.

    Each position runs in its own SAVEPOINT; a failure rolls back only that
    position's writes.
    """

    item_index: int
    position_id: str
    status: SettlementItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class SettlementRunResult:
    """Immutable result of one settlement batch run.

    ``processed`` counts positions settled successfully, ``failed`` those
    whose SAVEPOINT was rolled back, ``skipped`` frozen or already-closed
    positions.
    """

    run_id: UUID
    trigger: RunTrigger
    status: SettlementRunStatus
    total_items: int
    processed: int
    failed: int
    skipped: int
    item_results: tuple[SettlementItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    stopped_early: bool = False
    error_summary: str | None = None

    def as_dict(self) -> dict[str, int]:
        """Counts returned to the manual trigger's caller."""
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class SettlementRun:
    """Immutable snapshot of a persisted run record."""

    run_id: UUID
    trigger: RunTrigger
    status: SettlementRunStatus
    total_items: int = 0
    processed_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    correlation_id: str | None = None
    error_summary: str | None = None
    item_results: tuple[SettlementItemResult, ...] = field(default_factory=tuple)
