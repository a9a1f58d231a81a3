"""Tests for SettlementOrchestrator wiring."""

from decimal import Decimal

from ledger_config import get_active_config

from ledger_batch.orchestrator import SettlementOrchestrator
from ledger_batch.services.executor import SettlementExecutor


class TestWiring:

    def test_from_config(self, session_factory, clock, test_actor_id):
        config = get_active_config(
            environ={
                "LEDGER_SETTLEMENT_CRON": "15 3 * * *",
                "LEDGER_POLL_INTERVAL_SECONDS": "5",
            }
        )

        orchestrator = SettlementOrchestrator.from_config(
            config, session_factory, clock=clock, actor_id=test_actor_id,
        )

        assert orchestrator.clock is clock
        assert orchestrator.actor_id == test_actor_id
        orchestrator.scheduler.tick()
        assert orchestrator.scheduler.next_run_at.hour == 3
        assert orchestrator.scheduler.next_run_at.minute == 15

    def test_scheduler_is_shared(self, session_factory, clock):
        orchestrator = SettlementOrchestrator(session_factory, clock=clock)
        assert orchestrator.scheduler is orchestrator.scheduler

    def test_create_executor(self, session, session_factory, clock):
        orchestrator = SettlementOrchestrator(session_factory, clock=clock)
        executor = orchestrator.create_executor(session)
        assert isinstance(executor, SettlementExecutor)
        assert orchestrator.create_task().task_type == "investments.settle_matured"


class TestStats:

    def test_get_stats_reads_committed_positions(
        self, session, session_factory, clock, make_wallet, make_plan, make_position
    ):
        make_position(make_wallet().user_id, make_plan(rate=Decimal("10")))
        session.commit()

        stats = SettlementOrchestrator(session_factory, clock=clock).get_stats()

        assert stats.total_active_investments == 1
        assert stats.matured_but_not_credited == 1
        assert stats.total_profit_pending == Decimal("100")


class TestCreateTables:

    def test_run_tables_created_once_batch_models_imported(self):
        import ledger_batch.models  # noqa: F401
        from sqlalchemy import inspect

        from ledger_kernel.db.engine import create_tables, init_engine_from_url, reset_engine

        engine = init_engine_from_url("sqlite://")
        try:
            create_tables()
            tables = set(inspect(engine).get_table_names())
        finally:
            reset_engine()

        assert {"wallets", "positions", "ledger_transactions"} <= tables
        assert {"settlement_runs", "settlement_items"} <= tables
