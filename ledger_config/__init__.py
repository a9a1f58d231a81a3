"""
ledger_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way runtime code obtains
    configuration.  No other component reads configuration files or
    environment variables.

Resolution order (later wins):
    1. ``ledger_config/defaults.yaml``
    2. The YAML file passed as ``path`` (or named by ``LEDGER_CONFIG``)
    3. Environment overrides: DATABASE_URL, LEDGER_SETTLEMENT_CRON,
       LEDGER_POLL_INTERVAL_SECONDS

Failure modes:
    - ``FileNotFoundError`` -- the requested overlay file does not exist.
    - ``ValueError`` -- unknown keys, bad values or an unparsable cron.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from ledger_config.loader import (
    DEFAULTS_PATH,
    apply_env_overrides,
    load_yaml_file,
    merge,
    parse_config,
)
from ledger_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    SchedulerConfig,
    SettlementConfig,
)
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

__all__ = [
    "DatabaseConfig",
    "LedgerConfig",
    "LoggingConfig",
    "SchedulerConfig",
    "SettlementConfig",
    "get_active_config",
]


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerConfig:
    """Load, merge and validate the active configuration.

    Args:
        path: Optional YAML overlay.  Defaults to ``$LEDGER_CONFIG`` if set.
        environ: Environment mapping; defaults to ``os.environ``.
    """
    env = os.environ if environ is None else environ

    data = load_yaml_file(DEFAULTS_PATH)
    overlay_path = path or env.get("LEDGER_CONFIG")
    if overlay_path:
        data = merge(data, load_yaml_file(Path(overlay_path)))
    data = apply_env_overrides(data, env)

    config = parse_config(data)

    _logger.info(
        "ledger_config_loaded",
        extra={
            "overlay": str(overlay_path) if overlay_path else None,
            "checksum": config.checksum,
            "cron": config.scheduler.cron_expression,
        },
    )
    return config
