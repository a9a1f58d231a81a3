"""
Tests for ledger_batch.services.scheduler.

Validates SettlementScheduler: run mutual exclusion (scheduled skips,
manual waits or raises), tick() arming and firing, commit/rollback per run,
start/stop lifecycle and graceful shutdown.

Concurrency tests use fake sessions and executors so no database
connection is shared between threads.  The end-to-end test runs the real
executor against the in-memory SQLite fixtures.
"""

import threading
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import SettlementAlreadyRunningError
from ledger_kernel.models.wallet import Wallet

from ledger_batch.domain.types import (
    RunTrigger,
    SettlementRunResult,
    SettlementRunStatus,
)
from ledger_batch.orchestrator import SettlementOrchestrator
from ledger_batch.services.scheduler import SettlementScheduler


# =============================================================================
# Fakes
# =============================================================================


class FakeSession:

    def __init__(self):
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


class RecordingExecutors:
    """executor_factory that records runs and can hold them open."""

    def __init__(self, block: bool = False, fail: bool = False):
        self.release = threading.Event()
        self.started = threading.Event()
        self.block = block
        self.fail = fail
        self.sessions: list[FakeSession] = []
        self.triggers: list[RunTrigger] = []
        self.stop_flags: list[bool] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def session_factory(self) -> FakeSession:
        session = FakeSession()
        self.sessions.append(session)
        return session

    def __call__(self, session):
        return _FakeExecutor(self)


class _FakeExecutor:

    def __init__(self, owner: RecordingExecutors):
        self._owner = owner

    def run(self, trigger, should_stop=None):
        owner = self._owner
        with owner._lock:
            owner.active += 1
            owner.max_active = max(owner.max_active, owner.active)
        owner.triggers.append(trigger)
        owner.stop_flags.append(bool(should_stop and should_stop()))
        owner.started.set()
        try:
            if owner.block:
                owner.release.wait(timeout=5)
            if owner.fail:
                raise RuntimeError("executor exploded")
            return SettlementRunResult(
                run_id=uuid4(),
                trigger=trigger,
                status=SettlementRunStatus.COMPLETED,
                total_items=0,
                processed=0,
                failed=0,
                skipped=0,
            )
        finally:
            with owner._lock:
                owner.active -= 1


def _scheduler(executors: RecordingExecutors, clock, **kwargs) -> SettlementScheduler:
    return SettlementScheduler(
        session_factory=executors.session_factory,
        executor_factory=executors,
        clock=clock,
        **kwargs,
    )


# =============================================================================
# Manual trigger
# =============================================================================


class TestRunSettlementBatch:

    def test_manual_run_commits_and_closes(self, clock):
        executors = RecordingExecutors()
        scheduler = _scheduler(executors, clock)

        result = scheduler.run_settlement_batch()

        assert result.status is SettlementRunStatus.COMPLETED
        assert executors.triggers == [RunTrigger.MANUAL]
        assert executors.sessions[0].committed
        assert executors.sessions[0].closed
        assert scheduler.last_result is result
        assert not scheduler.is_busy

    def test_executor_error_rolls_back_and_propagates(self, clock, captured_logs):
        executors = RecordingExecutors(fail=True)
        scheduler = _scheduler(executors, clock)

        with pytest.raises(RuntimeError):
            scheduler.run_settlement_batch()

        session = executors.sessions[0]
        assert session.rolled_back and session.closed and not session.committed
        assert not scheduler.is_busy
        assert "settlement_run_aborted" in [r["message"] for r in captured_logs()]

    def test_stop_signal_reaches_scheduled_run(self, clock):
        executors = RecordingExecutors()
        scheduler = _scheduler(executors, clock)

        scheduler.stop()
        scheduler.run_settlement_batch(trigger="scheduled")

        assert executors.stop_flags == [True]

    def test_manual_run_after_stop_is_not_cut_short(self, clock):
        executors = RecordingExecutors()
        scheduler = _scheduler(executors, clock, poll_interval_seconds=0.01)
        scheduler.start()
        scheduler.stop(timeout=5)

        scheduler.run_settlement_batch()

        assert executors.triggers == [RunTrigger.MANUAL]
        assert executors.stop_flags == [False]


class TestMutualExclusion:

    def _hold_run(self, scheduler, executors):
        thread = threading.Thread(target=scheduler.run_settlement_batch)
        thread.start()
        assert executors.started.wait(timeout=5)
        return thread

    def test_scheduled_run_skips_while_busy(self, clock, captured_logs):
        executors = RecordingExecutors(block=True)
        scheduler = _scheduler(executors, clock)
        holder = self._hold_run(scheduler, executors)

        try:
            assert scheduler.is_busy
            assert scheduler.run_settlement_batch(trigger="scheduled") is None
        finally:
            executors.release.set()
            holder.join(timeout=5)

        assert executors.triggers == [RunTrigger.MANUAL]
        skipped = [r for r in captured_logs() if r["message"] == "settlement_run_skipped"]
        assert skipped[0]["trigger"] == "scheduled"

    def test_manual_without_wait_raises_while_busy(self, clock):
        executors = RecordingExecutors(block=True)
        scheduler = _scheduler(executors, clock)
        holder = self._hold_run(scheduler, executors)

        try:
            with pytest.raises(SettlementAlreadyRunningError):
                scheduler.run_settlement_batch(wait=False)
        finally:
            executors.release.set()
            holder.join(timeout=5)

    def test_manual_waits_for_running_batch(self, clock):
        executors = RecordingExecutors(block=True)
        scheduler = _scheduler(executors, clock)
        holder = self._hold_run(scheduler, executors)

        results = []
        waiter = threading.Thread(
            target=lambda: results.append(scheduler.run_settlement_batch())
        )
        waiter.start()
        waiter.join(timeout=0.2)
        assert waiter.is_alive()

        executors.release.set()
        holder.join(timeout=5)
        waiter.join(timeout=5)

        assert len(results) == 1
        assert len(executors.triggers) == 2
        assert executors.max_active == 1


# =============================================================================
# Cron ticks
# =============================================================================


class TestTick:

    def test_first_tick_only_arms(self, clock):
        executors = RecordingExecutors()
        scheduler = _scheduler(executors, clock, cron_expression="0 0 * * *")

        assert scheduler.tick() is False
        assert scheduler.next_run_at == datetime(2024, 6, 2, 0, 0)
        assert executors.triggers == []

    def test_fires_when_due_and_rearms(self, clock):
        executors = RecordingExecutors()
        scheduler = _scheduler(executors, clock, cron_expression="0 0 * * *")
        scheduler.tick()

        clock.set_time(datetime(2024, 6, 2, 0, 0, 10))
        assert scheduler.tick() is True
        assert executors.triggers == [RunTrigger.SCHEDULED]
        assert scheduler.next_run_at == datetime(2024, 6, 3, 0, 0)

        assert scheduler.tick() is False
        assert len(executors.triggers) == 1

    def test_not_due_yet(self, clock):
        executors = RecordingExecutors()
        scheduler = _scheduler(executors, clock)
        scheduler.tick()

        clock.advance(60)
        assert scheduler.tick() is False
        assert executors.triggers == []

    def test_failed_scheduled_run_is_logged_not_raised(self, clock, captured_logs):
        executors = RecordingExecutors(fail=True)
        scheduler = _scheduler(executors, clock, cron_expression="* * * * *")
        scheduler.tick()
        clock.advance(120)

        assert scheduler.tick() is False
        messages = [r["message"] for r in captured_logs()]
        assert "settlement_scheduled_run_failed" in messages

    def test_invalid_cron_rejected(self, clock):
        with pytest.raises(ValueError):
            _scheduler(RecordingExecutors(), clock, cron_expression="bad")


class TestLifecycle:

    def test_start_and_stop(self, clock):
        scheduler = _scheduler(
            RecordingExecutors(), clock, poll_interval_seconds=0.01,
        )
        scheduler.start()
        try:
            assert scheduler.is_running
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_start_is_idempotent(self, clock):
        scheduler = _scheduler(
            RecordingExecutors(), clock, poll_interval_seconds=0.01,
        )
        scheduler.start()
        first = scheduler._thread
        scheduler.start()
        try:
            assert scheduler._thread is first
        finally:
            scheduler.stop(timeout=5)


# =============================================================================
# End to end
# =============================================================================


class TestEndToEnd:

    def test_manual_run_commits_settlement(
        self, session, session_factory, clock, make_wallet, make_plan, make_position
    ):
        wallet = make_wallet()
        make_position(wallet.user_id, make_plan(rate=Decimal("15")), amount=Decimal("1000"))
        frozen_wallet = make_wallet()
        make_position(
            frozen_wallet.user_id, make_plan(), matured_days_ago=2, is_frozen=True,
        )
        session.commit()

        orchestrator = SettlementOrchestrator(session_factory, clock=clock)
        result = orchestrator.scheduler.run_settlement_batch()

        assert result.as_dict() == {"processed": 1, "failed": 0, "skipped": 1}

        check = session_factory()
        try:
            balance = check.get(Wallet, wallet.id).balance
            runs = orchestrator.create_executor(check).list_runs()
        finally:
            check.close()
        assert balance == Decimal("1150")
        assert runs[0].trigger is RunTrigger.MANUAL

    def test_manual_run_after_scheduler_stopped_settles(
        self, session, session_factory, clock, make_wallet, make_plan, make_position
    ):
        wallet = make_wallet()
        make_position(wallet.user_id, make_plan(rate=Decimal("15")), amount=Decimal("1000"))
        session.commit()

        orchestrator = SettlementOrchestrator(
            session_factory, clock=clock, poll_interval_seconds=0.01,
        )
        scheduler = orchestrator.scheduler
        scheduler.start()
        scheduler.stop(timeout=5)

        result = scheduler.run_settlement_batch()

        assert result.status is SettlementRunStatus.COMPLETED
        assert result.stopped_early is False
        assert result.as_dict() == {"processed": 1, "failed": 0, "skipped": 0}
        session.expire_all()
        assert session.get(Wallet, wallet.id).balance == Decimal("1150")

    def test_scheduled_tick_settles_matured_positions(
        self, session, session_factory, clock, make_wallet, make_plan, make_position
    ):
        wallet = make_wallet()
        position = make_position(wallet.user_id, make_plan(), matured_days_ago=-1)
        session.commit()

        orchestrator = SettlementOrchestrator(
            session_factory, clock=clock, cron_expression="0 0 * * *",
        )
        scheduler = orchestrator.scheduler
        scheduler.tick()

        clock.advance(2 * 24 * 3600)
        assert scheduler.tick() is True
        assert scheduler.last_result.processed == 1

        session.expire_all()
        assert session.get(type(position), position.id).status == "completed"
