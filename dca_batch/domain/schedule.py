"""
Pure schedule evaluation functions.

Contract:
    ``parse_interval()``, ``should_fire(job, as_of)`` and
    ``compute_next_run()`` are PURE -- no I/O, no side effects.  The
    scheduler reads ``next_run_at`` and the current clock and decides.

Architecture: dca_batch/domain.  ZERO I/O.

Invariants enforced:
    - All timestamps come from the caller (no datetime.now() calls).
    - Disabled or locked jobs never fire.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from dca_batch.domain.types import ScheduledOperation

_UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
    "week": 7 * 24 * 60 * 60,
}

_UNIT_ALIASES = {
    "s": "second",
    "sec": "second",
    "m": "minute",
    "min": "minute",
    "h": "hour",
    "d": "day",
    "w": "week",
}

_INTERVAL_RE = re.compile(r"^\s*(?:(\d+)\s*)?([a-zA-Z]+)\s*$")


def parse_interval(interval: str) -> timedelta:
    """Parse a human interval such as ``"15 minutes"``, ``"1 hour"`` or ``"2d"``.

    A bare unit (``"hour"``) means one of it.

    Raises:
        ValueError: If the interval is malformed or not positive.
    """
    if not isinstance(interval, str):
        raise ValueError(f"Interval must be a string, got {type(interval).__name__}")

    match = _INTERVAL_RE.match(interval)
    if match is None:
        raise ValueError(f"Unrecognized interval: '{interval}'")

    count = int(match.group(1)) if match.group(1) else 1
    unit = match.group(2).lower()
    if unit not in _UNIT_ALIASES and unit.endswith("s"):
        unit = unit[:-1]
    unit = _UNIT_ALIASES.get(unit, unit)

    if unit not in _UNIT_SECONDS:
        raise ValueError(f"Unknown interval unit '{match.group(2)}' in '{interval}'")
    if count <= 0:
        raise ValueError(f"Interval must be positive: '{interval}'")

    return timedelta(seconds=count * _UNIT_SECONDS[unit])


def is_lock_stale(
    locked_at: datetime | None,
    as_of: datetime,
    lock_lifetime_seconds: int,
) -> bool:
    """A lock older than its lifetime belongs to a crashed worker."""
    if locked_at is None:
        return True
    return as_of - locked_at >= timedelta(seconds=lock_lifetime_seconds)


def should_fire(
    job: ScheduledOperation,
    as_of: datetime,
    lock_lifetime_seconds: int | None = None,
) -> bool:
    """Determine if a job should fire at the given time.

    Rules:
        - Disabled jobs never fire.
        - A job holding a fresh lock is still running and never fires.
        - A job that never ran fires immediately.
        - Otherwise fires once ``as_of >= next_run_at``.
    """
    if not job.enabled:
        return False

    if job.locked_at is not None:
        if lock_lifetime_seconds is None:
            return False
        if not is_lock_stale(job.locked_at, as_of, lock_lifetime_seconds):
            return False

    if job.next_run_at is None:
        return True

    return as_of >= job.next_run_at


def compute_next_run(
    interval: str,
    last_run_at: datetime | None,
    base_time: datetime | None = None,
) -> datetime | None:
    """Compute the next fire time.

    Args:
        interval: Human interval string (see ``parse_interval``).
        last_run_at: When the job last fired (None if never).
        base_time: Reference time (defaults to ``last_run_at``).

    Returns:
        Next fire datetime, or None when there is no reference time.
    """
    base = base_time or last_run_at
    if base is None:
        return None
    return base + parse_interval(interval)
