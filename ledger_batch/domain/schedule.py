"""
Pure cron evaluation for the settlement scheduler.

Contract:
    ``parse_cron``, ``matches_cron``, ``next_fire_time`` and ``should_fire``
    are PURE: no I/O, no clock reads.  The scheduler passes the current time
    in.

Architecture: ledger_batch/domain.  ZERO I/O.

Supported syntax, five fields ``minute hour day_of_month month day_of_week``:
    *          every value
    N          single value
    N-M        inclusive range
    */S, N-M/S, N/S   stepped values
    a,b,c      lists of any of the above
Day of week uses cron numbering: 0 (or 7) = Sunday.  When both day fields
are restricted a day matches if EITHER matches, as in Vixie cron.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

# Covers the 29 February gap between leap years.
_MAX_DAYS_AHEAD = 366 * 5


# =============================================================================
# CronSpec
# =============================================================================


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression.  Each field is the frozenset of allowed values."""

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]
    dom_restricted: bool = False
    dow_restricted: bool = False

    def matches_day(self, dt: datetime) -> bool:
        if dt.month not in self.months:
            return False
        # datetime.weekday(): 0=Monday; cron: 0=Sunday
        cron_dow = (dt.weekday() + 1) % 7
        dom_ok = dt.day in self.days_of_month
        dow_ok = cron_dow in self.days_of_week
        if self.dom_restricted and self.dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok


def _parse_int(token: str, field_name: str) -> int:
    try:
        return int(token)
    except ValueError:
        raise ValueError(f"Invalid {field_name} value: '{token}'") from None


def _parse_field(
    field_str: str, field_name: str, min_val: int, max_val: int
) -> frozenset[int]:
    """Parse one cron field into its set of allowed values.

    Raises:
        ValueError: Malformed syntax or values outside [min_val, max_val].
    """
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty {field_name} list element in '{field_str}'")

        step = 1
        stepped = "/" in part
        if stepped:
            part, step_str = part.split("/", 1)
            step = _parse_int(step_str, field_name)
            if step <= 0:
                raise ValueError(f"{field_name} step must be positive: {step}")

        if part == "*":
            start, end = min_val, max_val
        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = _parse_int(s, field_name), _parse_int(e, field_name)
            if start > end:
                raise ValueError(f"{field_name} range start > end: {start}-{end}")
        else:
            start = _parse_int(part, field_name)
            # "N/S" runs from N to the end of the range
            end = max_val if stepped else start

        if start < min_val or end > max_val:
            raise ValueError(
                f"{field_name} value outside [{min_val}, {max_val}]: '{field_str}'"
            )
        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression.

    Raises:
        ValueError: If the expression is malformed.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(
            f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'"
        )

    dow = _parse_field(parts[4], "day_of_week", 0, 7)
    if 7 in dow:
        dow = (dow - {7}) | {0}

    return CronSpec(
        expression=expression.strip(),
        minutes=_parse_field(parts[0], "minute", 0, 59),
        hours=_parse_field(parts[1], "hour", 0, 23),
        days_of_month=_parse_field(parts[2], "day_of_month", 1, 31),
        months=_parse_field(parts[3], "month", 1, 12),
        days_of_week=frozenset(dow),
        dom_restricted=not parts[2].startswith("*"),
        dow_restricted=not parts[4].startswith("*"),
    )


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and spec.matches_day(dt)
    )


# =============================================================================
# Evaluation
# =============================================================================


def next_fire_time(spec: CronSpec | str, after: datetime) -> datetime:
    """First minute strictly after ``after`` that matches ``spec``.

    tzinfo of ``after`` is preserved.

    Raises:
        ValueError: If no match exists within five years (e.g. ``0 0 31 2 *``).
    """
    if isinstance(spec, str):
        spec = parse_cron(spec)

    start = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    hours = sorted(spec.hours)
    minutes = sorted(spec.minutes)

    day = start.replace(hour=0, minute=0)
    for offset in range(_MAX_DAYS_AHEAD):
        if offset:
            day += timedelta(days=1)
        if not spec.matches_day(day):
            continue
        for hour in hours:
            for minute in minutes:
                candidate = day.replace(hour=hour, minute=minute)
                if candidate >= start:
                    return candidate

    raise ValueError(
        f"No match for cron '{spec.expression}' within {_MAX_DAYS_AHEAD} days "
        f"after {after.isoformat()}"
    )


def should_fire(next_run_at: datetime | None, as_of: datetime) -> bool:
    """A schedule fires once ``as_of`` has reached its next run time."""
    if next_run_at is None:
        return False
    return as_of >= next_run_at
