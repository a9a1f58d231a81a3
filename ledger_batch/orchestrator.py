"""
SettlementOrchestrator -- DI container for the settlement batch.

Contract:
    Wires the settlement task, SettlementExecutor and SettlementScheduler
    with one shared Clock and actor.  Single place where the batch
    dependencies are composed; the CLI and tests build through it.

Invariants enforced:
    - Clock injection: task, executor and scheduler receive the same Clock.
    - The kernel never imports ledger_batch; composition lives here.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.settlement_selector import (
    SettlementSelector,
    SettlementStats,
)

from ledger_batch.services.executor import SettlementExecutor
from ledger_batch.services.scheduler import DEFAULT_CRON, SettlementScheduler
from ledger_batch.tasks.settlement_tasks import MaturedPositionSettlementTask

if TYPE_CHECKING:
    from ledger_config.schema import LedgerConfig

logger = get_logger("batch.orchestrator")


class SettlementOrchestrator:
    """DI container for the settlement batch.

    Non-goals:
        - Does NOT start the scheduler automatically; the caller decides.
        - Does NOT own the engine; it is handed a session factory.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        cron_expression: str = DEFAULT_CRON,
        poll_interval_seconds: float = 30,
        due_window_hours: int = 24,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._cron_expression = cron_expression
        self._poll_interval = poll_interval_seconds
        self._due_window_hours = due_window_hours
        self._scheduler: SettlementScheduler | None = None

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ) -> SettlementOrchestrator:
        return cls(
            session_factory=session_factory,
            clock=clock,
            actor_id=actor_id,
            cron_expression=config.scheduler.cron_expression,
            poll_interval_seconds=config.scheduler.poll_interval_seconds,
            due_window_hours=config.settlement.due_window_hours,
        )

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    def create_task(self) -> MaturedPositionSettlementTask:
        return MaturedPositionSettlementTask(clock=self._clock, actor_id=self._actor_id)

    def create_executor(self, session: Session) -> SettlementExecutor:
        return SettlementExecutor(
            session=session,
            task=self.create_task(),
            clock=self._clock,
            actor_id=self._actor_id,
        )

    @property
    def scheduler(self) -> SettlementScheduler:
        """The single scheduler for this orchestrator, created on first use.

        Manual triggers and the cron loop must share it so they share its
        run lock.
        """
        if self._scheduler is None:
            self._scheduler = SettlementScheduler(
                session_factory=self._session_factory,
                executor_factory=self.create_executor,
                clock=self._clock,
                cron_expression=self._cron_expression,
                poll_interval_seconds=self._poll_interval,
                actor_id=self._actor_id,
            )
        return self._scheduler

    # -------------------------------------------------------------------------
    # Convenience
    # -------------------------------------------------------------------------

    def get_stats(self, as_of: datetime | None = None) -> SettlementStats:
        session = self._session_factory()
        try:
            return SettlementSelector(session).get_stats(
                as_of or self._clock.now(),
                due_window_hours=self._due_window_hours,
            )
        finally:
            session.close()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def actor_id(self) -> UUID | None:
        return self._actor_id
