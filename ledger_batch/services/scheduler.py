"""
SettlementScheduler -- in-process cron scheduler with run mutual exclusion.

Contract:
    Polls on a fixed interval, fires the settlement batch when the cron
    expression is due, and exposes ``run_settlement_batch()`` as the manual
    trigger.  Both paths run the identical executor routine.

Architecture: ledger_batch/services.  Uses ledger_batch.domain.schedule for
    pure cron evaluation and SettlementExecutor for execution.

Invariants enforced:
    - At most one run at a time per scheduler.  A scheduled tick that finds
      a run in progress skips; a manual trigger waits for it (or raises
      SettlementAlreadyRunningError when asked not to wait).
    - Each run gets its own session and commits exactly once.
    - Graceful shutdown: stop() is honoured between positions of a
      scheduled run.  Manual runs always settle every matured position,
      whether or not the polling loop is running.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import SettlementAlreadyRunningError
from ledger_kernel.logging_config import get_logger

from ledger_batch.domain.schedule import next_fire_time, parse_cron, should_fire
from ledger_batch.domain.types import RunTrigger, SettlementRunResult
from ledger_batch.services.executor import SettlementExecutor

logger = get_logger("batch.scheduler")

DEFAULT_CRON = "0 0 * * *"


class SettlementScheduler:
    """Owns the "is a run in progress" state for the settlement batch.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Run one
          scheduler per database.
        - Does NOT handle timezone conversions; cron is evaluated against
          the clock's own time (UTC for SystemClock).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor_factory: Callable[[Session], SettlementExecutor],
        clock: Clock | None = None,
        cron_expression: str = DEFAULT_CRON,
        poll_interval_seconds: float = 30,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._executor_factory = executor_factory
        self._clock = clock or SystemClock()
        self._cron = parse_cron(cron_expression)
        self._poll_interval = poll_interval_seconds
        self._actor_id = actor_id
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._next_run_at: datetime | None = None
        self._last_result: SettlementRunResult | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run_settlement_batch(
        self,
        trigger: RunTrigger | str = RunTrigger.MANUAL,
        wait: bool = True,
    ) -> SettlementRunResult | None:
        """Run the settlement batch now.

        Manual triggers wait for an in-progress run and then run.  Scheduled
        triggers skip and return None when a run is in progress.

        Raises:
            SettlementAlreadyRunningError: Manual trigger with ``wait=False``
                while a run is in progress.
        """
        trigger = RunTrigger(trigger)
        blocking = wait and trigger is RunTrigger.MANUAL

        if not self._run_lock.acquire(blocking=blocking):
            logger.info(
                "settlement_run_skipped",
                extra={"trigger": trigger.value, "reason": "run_in_progress"},
            )
            if trigger is RunTrigger.MANUAL:
                raise SettlementAlreadyRunningError(trigger.value)
            return None

        try:
            result = self._execute(trigger)
            self._last_result = result
            return result
        finally:
            self._run_lock.release()

    def tick(self) -> bool:
        """Fire the scheduled run if due (public for testing).

        The first tick only arms the schedule; it does not fire.  Returns
        True when a run was started by this tick.
        """
        now = self._clock.now()
        if self._next_run_at is None:
            self._next_run_at = next_fire_time(self._cron, now)
            logger.info(
                "settlement_schedule_armed",
                extra={"next_run_at": self._next_run_at, "cron": self._cron.expression},
            )
            return False

        if not should_fire(self._next_run_at, now):
            return False

        due_at = self._next_run_at
        self._next_run_at = next_fire_time(self._cron, now)

        try:
            result = self.run_settlement_batch(trigger=RunTrigger.SCHEDULED)
        except Exception:
            logger.exception(
                "settlement_scheduled_run_failed", extra={"due_at": due_at},
            )
            return False
        return result is not None

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="settlement-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={"poll_interval": self._poll_interval, "cron": self._cron.expression},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Stop polling and wait for the thread (and any scheduled run) to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_busy(self) -> bool:
        """True while a settlement run holds the run lock."""
        return self._run_lock.locked()

    @property
    def next_run_at(self) -> datetime | None:
        return self._next_run_at

    @property
    def last_result(self) -> SettlementRunResult | None:
        return self._last_result

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._poll_interval)

    def _execute(self, trigger: RunTrigger) -> SettlementRunResult:
        # stop() ends the polling loop and its scheduled run only
        should_stop = (
            self._stop_event.is_set if trigger is RunTrigger.SCHEDULED else None
        )
        session = self._session_factory()
        try:
            executor = self._executor_factory(session)
            result = executor.run(trigger=trigger, should_stop=should_stop)
            session.commit()
            return result
        except Exception:
            session.rollback()
            logger.exception(
                "settlement_run_aborted", extra={"trigger": trigger.value},
            )
            raise
        finally:
            session.close()
