"""
SettlementExecutor -- SAVEPOINT-per-position batch execution.

Contract:
    ``run()`` takes a point-in-time snapshot of matured positions, settles
    each in its own SAVEPOINT, persists a run record plus one item record
    per position, and returns counts.  One position's failure never aborts
    the batch.

Architecture: ledger_batch/services.  Imports from ledger_batch.domain,
    ledger_batch.models, ledger_batch.tasks and the kernel.

Invariants enforced:
    - SAVEPOINT isolation per position: a failing position leaves no
      partial writes (no half-credited wallet, no dangling transaction).
    - Every exception from a position is caught here, logged and counted
      as failed.  Nothing else in the settlement path swallows errors.
    - All timestamps from the injected Clock.
    - A stop signal is honoured between positions, never inside one.
    - Never commits: the caller (SettlementScheduler) commits once per run.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import SettlementRunNotFoundError
from ledger_kernel.logging_config import LogContext, get_logger

from ledger_batch.domain.types import (
    RunTrigger,
    SettlementItemResult,
    SettlementItemStatus,
    SettlementRun,
    SettlementRunResult,
    SettlementRunStatus,
)
from ledger_batch.models.run import SettlementItemModel, SettlementRunModel
from ledger_batch.tasks.base import BatchItemInput, BatchTask

logger = get_logger("batch.executor")


class SettlementExecutor:
    """Runs one BatchTask over its items with per-item SAVEPOINTs.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT enforce mutual exclusion between runs; the scheduler does.
    """

    def __init__(
        self,
        session: Session,
        task: BatchTask,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        self._session = session
        self._task = task
        self._clock = clock or SystemClock()
        self._actor_id = actor_id

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def run(
        self,
        trigger: RunTrigger | str = RunTrigger.MANUAL,
        should_stop: Callable[[], bool] | None = None,
        correlation_id: str | None = None,
    ) -> SettlementRunResult:
        """Settle every position matured as of now.

        Args:
            trigger: What started the run; recorded on the run row.
            should_stop: Polled between positions; True ends the run early.
            correlation_id: Propagated into the run row and log context.
        """
        trigger = RunTrigger(trigger)
        start_time = time.monotonic()
        as_of = self._clock.now()
        run_id = uuid4()
        correlation_id = correlation_id or str(run_id)

        run_model = SettlementRunModel(
            id=run_id,
            trigger=trigger.value,
            status=SettlementRunStatus.RUNNING.value,
            as_of=as_of,
            started_at=as_of,
            correlation_id=correlation_id,
            created_by_id=self._actor_id,
        )
        self._session.add(run_model)
        self._session.flush()

        with LogContext.bind(run_id=str(run_id), correlation_id=correlation_id):
            logger.info(
                "settlement_run_started",
                extra={"trigger": trigger.value, "as_of": as_of},
            )

            try:
                items = self._task.prepare_items(session=self._session, as_of=as_of)
            except Exception as exc:
                logger.exception("settlement_scan_failed")
                return self._fail_run(
                    run_model, trigger, f"scan failed: {exc}", start_time,
                )

            run_model.total_items = len(items)
            self._session.flush()

            processed = 0
            failed = 0
            skipped = 0
            stopped_early = False
            item_results: list[SettlementItemResult] = []

            for item in items:
                if should_stop is not None and should_stop():
                    stopped_early = True
                    logger.warning(
                        "settlement_run_stop_requested",
                        extra={"remaining": len(items) - len(item_results)},
                    )
                    break

                item_result = self._execute_item(item, as_of)
                if item_result.status == SettlementItemStatus.SUCCEEDED:
                    processed += 1
                elif item_result.status == SettlementItemStatus.SKIPPED:
                    skipped += 1
                else:
                    failed += 1
                item_results.append(item_result)

                self._session.add(
                    SettlementItemModel.from_dto(
                        item_result, run_id=run_id, created_by_id=self._actor_id,
                    )
                )

            run_model.processed_items = processed
            run_model.failed_items = failed
            run_model.skipped_items = skipped

            if stopped_early:
                status = SettlementRunStatus.STOPPED
            elif failed == 0:
                status = SettlementRunStatus.COMPLETED
            elif processed == 0:
                status = SettlementRunStatus.FAILED
            else:
                status = SettlementRunStatus.PARTIALLY_COMPLETED
            run_model.status = status.value

            summary = []
            if failed:
                summary.append(f"{failed} position(s) failed")
            if stopped_early:
                summary.append(
                    f"stopped after {len(item_results)} of {len(items)} position(s)"
                )
            run_model.error_summary = "; ".join(summary) or None

            completed_at = self._clock.now()
            run_model.completed_at = completed_at
            self._session.flush()

            duration_ms = int((time.monotonic() - start_time) * 1000)
            logger.info(
                "settlement_run_completed",
                extra={
                    "trigger": trigger.value,
                    "status": status.value,
                    "total": len(items),
                    "processed": processed,
                    "failed": failed,
                    "skipped": skipped,
                    "duration_ms": duration_ms,
                },
            )

            return SettlementRunResult(
                run_id=run_id,
                trigger=trigger,
                status=status,
                total_items=len(items),
                processed=processed,
                failed=failed,
                skipped=skipped,
                item_results=tuple(item_results),
                started_at=as_of,
                completed_at=completed_at,
                duration_ms=duration_ms,
                stopped_early=stopped_early,
                error_summary=run_model.error_summary,
            )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> SettlementRun:
        model = self._session.get(SettlementRunModel, run_id)
        if model is None:
            raise SettlementRunNotFoundError(str(run_id))
        return model.to_dto(include_items=True)

    def list_runs(self, limit: int = 20) -> tuple[SettlementRun, ...]:
        """Most recent runs first."""
        models = self._session.execute(
            select(SettlementRunModel)
            .order_by(SettlementRunModel.started_at.desc())
            .limit(limit)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _execute_item(
        self, item: BatchItemInput, as_of: datetime
    ) -> SettlementItemResult:
        item_start = time.monotonic()
        started_at = self._clock.now()

        savepoint = self._session.begin_nested()
        try:
            result = self._task.execute_item(
                item=item, session=self._session, as_of=as_of,
            )
        except Exception as exc:
            savepoint.rollback()
            error_code = getattr(exc, "code", "UNHANDLED_EXCEPTION")
            logger.warning(
                "settlement_item_failed",
                extra={
                    "position_id": item.item_key,
                    "error_code": error_code,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return SettlementItemResult(
                item_index=item.item_index,
                position_id=item.item_key,
                status=SettlementItemStatus.FAILED,
                error_code=error_code,
                error_message=str(exc),
                duration_ms=int((time.monotonic() - item_start) * 1000),
                started_at=started_at,
                completed_at=self._clock.now(),
            )

        if result.status == SettlementItemStatus.SUCCEEDED:
            savepoint.commit()
        else:
            savepoint.rollback()
            if result.status == SettlementItemStatus.SKIPPED:
                logger.info(
                    "settlement_item_skipped",
                    extra={"position_id": item.item_key},
                )
            else:
                logger.warning(
                    "settlement_item_failed",
                    extra={
                        "position_id": item.item_key,
                        "error_code": result.error_code,
                        "error": result.error_message,
                    },
                )

        return SettlementItemResult(
            item_index=item.item_index,
            position_id=item.item_key,
            status=result.status,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=result.result_data,
            duration_ms=int((time.monotonic() - item_start) * 1000),
            started_at=started_at,
            completed_at=self._clock.now(),
        )

    def _fail_run(
        self,
        run_model: SettlementRunModel,
        trigger: RunTrigger,
        error_summary: str,
        start_time: float,
    ) -> SettlementRunResult:
        run_model.status = SettlementRunStatus.FAILED.value
        run_model.completed_at = self._clock.now()
        run_model.error_summary = error_summary
        self._session.flush()

        return SettlementRunResult(
            run_id=run_model.id,
            trigger=trigger,
            status=SettlementRunStatus.FAILED,
            total_items=0,
            processed=0,
            failed=0,
            skipped=0,
            started_at=run_model.started_at,
            completed_at=run_model.completed_at,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            error_summary=error_summary,
        )
