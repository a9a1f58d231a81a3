"""
ledger_batch -- maturity settlement batch.

Finds matured positions, settles each in its own SAVEPOINT, records the run
and its per-position outcomes, and runs on a cron schedule or on demand.
"""
