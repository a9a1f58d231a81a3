"""
BatchTask protocol and its input/result types.

Contract:
    A task splits a run into items (``prepare_items``) and processes one item
    at a time (``execute_item``).  The executor owns the SAVEPOINT around
    each item and the run bookkeeping; tasks never commit.

Architecture:
    ledger_batch/tasks.  Imports only ledger_batch.domain and SQLAlchemy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from ledger_batch.domain.types import SettlementItemStatus


@dataclass(frozen=True)
class BatchItemInput:
    """One unit of work produced by ``prepare_items()``."""

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchTaskResult:
    """Returned by ``execute_item()``.  SUCCEEDED keeps the SAVEPOINT, anything else rolls it back."""

    status: SettlementItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None


@runtime_checkable
class BatchTask(Protocol):
    """Interface the executor drives.

    Non-goals:
        - Does NOT manage transactions.
        - Does NOT retry; the next scheduled run picks up what is left.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        """Point-in-time snapshot of the items this run will process."""
        ...

    def execute_item(
        self,
        item: BatchItemInput,
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        """Process one item inside the SAVEPOINT the executor opened.

        May raise; the executor records the exception as a failed item.
        """
        ...
