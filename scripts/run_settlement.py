#!/usr/bin/env python3
"""
Run the investment maturity settlement from the command line.

Usage:
    python3 scripts/run_settlement.py init-db           # create tables
    python3 scripts/run_settlement.py run               # one manual batch run
    python3 scripts/run_settlement.py stats             # settlement stats as JSON
    python3 scripts/run_settlement.py runs --limit 5    # recent run records
    python3 scripts/run_settlement.py serve             # cron scheduler until Ctrl-C

Configuration comes from ledger_config.get_active_config(); pass --config to
overlay a YAML file.  DATABASE_URL overrides the database URL.
"""

import argparse
import json
import logging
import signal
import sys
import threading

import ledger_batch.models  # noqa: F401
from ledger_batch.orchestrator import SettlementOrchestrator
from ledger_config import get_active_config
from ledger_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from ledger_kernel.logging_config import configure_logging


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_init_db(orchestrator: SettlementOrchestrator, args) -> int:
    create_tables()
    print("Tables created.")
    return 0


def cmd_run(orchestrator: SettlementOrchestrator, args) -> int:
    result = orchestrator.scheduler.run_settlement_batch(trigger="manual")
    _print_json({**result.as_dict(), "run_id": str(result.run_id), "status": result.status.value})
    return 0


def cmd_stats(orchestrator: SettlementOrchestrator, args) -> int:
    _print_json(orchestrator.get_stats().to_dict())
    return 0


def cmd_runs(orchestrator: SettlementOrchestrator, args) -> int:
    session = get_session_factory()()
    try:
        runs = orchestrator.create_executor(session).list_runs(limit=args.limit)
    finally:
        session.close()
    _print_json([
        {
            "run_id": str(r.run_id),
            "trigger": r.trigger.value,
            "status": r.status.value,
            "total": r.total_items,
            "processed": r.processed_items,
            "failed": r.failed_items,
            "skipped": r.skipped_items,
            "started_at": r.started_at,
            "completed_at": r.completed_at,
            "error_summary": r.error_summary,
        }
        for r in runs
    ])
    return 0


def cmd_serve(orchestrator: SettlementOrchestrator, args, stop_timeout: float) -> int:
    scheduler = orchestrator.scheduler
    done = threading.Event()

    def _shutdown(signum, frame):
        done.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    scheduler.start()
    print("Settlement scheduler running. Ctrl-C to stop.", file=sys.stderr)
    done.wait()
    scheduler.stop(timeout=stop_timeout)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Investment maturity settlement")
    parser.add_argument("--config", help="YAML file overlaid on the defaults")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create all ledger tables")
    sub.add_parser("run", help="Run one settlement batch now (manual trigger)")
    sub.add_parser("stats", help="Print settlement stats")
    runs = sub.add_parser("runs", help="List recent settlement runs")
    runs.add_argument("--limit", type=int, default=20)
    sub.add_parser("serve", help="Run the cron scheduler in the foreground")
    args = parser.parse_args()

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    configure_logging(level=logging.getLevelName(config.logging.level.upper()))
    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=db.pool_pre_ping,
        pool_recycle=db.pool_recycle,
    )
    orchestrator = SettlementOrchestrator.from_config(config, get_session_factory())

    if args.command == "init-db":
        return cmd_init_db(orchestrator, args)
    if args.command == "run":
        return cmd_run(orchestrator, args)
    if args.command == "stats":
        return cmd_stats(orchestrator, args)
    if args.command == "runs":
        return cmd_runs(orchestrator, args)
    if not config.scheduler.enabled:
        print("ERROR: scheduler.enabled is false", file=sys.stderr)
        return 1
    return cmd_serve(orchestrator, args, config.scheduler.stop_timeout_seconds)


if __name__ == "__main__":
    sys.exit(main())
