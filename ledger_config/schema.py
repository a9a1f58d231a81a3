"""
LedgerConfig schema.

Frozen dataclasses parsed from YAML by the loader.  Runtime code receives a
``LedgerConfig`` from ``ledger_config.get_active_config()`` and never reads
files or environment variables itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Engine settings passed to ``init_engine_from_url``."""

    url: str
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10
    pool_pre_ping: bool = True
    pool_recycle: int = 1800


@dataclass(frozen=True)
class SchedulerConfig:
    """Settlement scheduler timing."""

    enabled: bool = True
    cron_expression: str = "0 0 * * *"  # Daily at midnight UTC
    poll_interval_seconds: float = 30
    stop_timeout_seconds: float = 30


@dataclass(frozen=True)
class SettlementConfig:
    due_window_hours: int = 24


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class LedgerConfig:
    """Root configuration object."""

    database: DatabaseConfig
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
