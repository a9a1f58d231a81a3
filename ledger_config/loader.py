"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Reads YAML files, merges overlays and environment overrides, and parses
the result into the frozen dataclasses of ``ledger_config.schema``.
Runtime callers go through ``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with descriptive messages; unknown
  sections and keys are rejected rather than ignored.
* The cron expression is parsed eagerly, so a bad schedule fails at
  startup instead of at midnight.
* ``compute_checksum`` gives a deterministic SHA-256 of the merged
  configuration for the startup trace.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from ledger_batch.domain.schedule import parse_cron
from ledger_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    SchedulerConfig,
    SettlementConfig,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

# env var -> (section, key, parser)
ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "DATABASE_URL": ("database", "url", str),
    "LEDGER_SETTLEMENT_CRON": ("scheduler", "cron_expression", str),
    "LEDGER_POLL_INTERVAL_SECONDS": ("scheduler", "poll_interval_seconds", float),
}

_SECTIONS = {
    "database": DatabaseConfig,
    "scheduler": SchedulerConfig,
    "settlement": SettlementConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; ``overlay`` wins on conflicts."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(
    data: dict[str, Any], environ: Mapping[str, str]
) -> dict[str, Any]:
    result = {section: dict(values or {}) for section, values in data.items()}
    for var, (section, key, parser) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            result.setdefault(section, {})[key] = parser(raw)
        except ValueError:
            raise ValueError(f"Invalid value for {var}: {raw!r}") from None
    return result


def _parse_section(name: str, data: Any) -> Any:
    cls = _SECTIONS[name]
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(
            f"Unknown key(s) in config section '{name}': {', '.join(sorted(unknown))}"
        )
    return cls(**data)


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """Build and validate a LedgerConfig from a merged dict."""
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

    if not (data.get("database") or {}).get("url"):
        raise ValueError("database.url is required")

    config = LedgerConfig(
        database=_parse_section("database", data.get("database")),
        scheduler=_parse_section("scheduler", data.get("scheduler")),
        settlement=_parse_section("settlement", data.get("settlement")),
        logging=_parse_section("logging", data.get("logging")),
        checksum=compute_checksum(data),
    )
    validate_config(config)
    return config


def validate_config(config: LedgerConfig) -> None:
    try:
        parse_cron(config.scheduler.cron_expression)
    except ValueError as exc:
        raise ValueError(f"scheduler.cron_expression: {exc}") from exc
    if config.scheduler.poll_interval_seconds <= 0:
        raise ValueError("scheduler.poll_interval_seconds must be positive")
    if config.scheduler.stop_timeout_seconds < 0:
        raise ValueError("scheduler.stop_timeout_seconds must be >= 0")
    if config.settlement.due_window_hours < 1:
        raise ValueError("settlement.due_window_hours must be >= 1")
    if config.database.pool_size < 1:
        raise ValueError("database.pool_size must be >= 1")
    if not isinstance(logging.getLevelName(config.logging.level.upper()), int):
        raise ValueError(f"logging.level is not a logging level: {config.logging.level!r}")


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
