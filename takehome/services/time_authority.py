"""Server-side clock for take-home deadlines.

All functions are pure: they look only at stored timestamps and the ``now``
they are given. Client-reported durations never enter these computations.
"""
from __future__ import annotations

import datetime as dt
import math
from typing import Optional

from takehome.db.models.submission import Submission


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def elapsed_minutes(started_at: Optional[dt.datetime], now: dt.datetime) -> float:
    """Minutes between start and now, never negative."""
    if started_at is None:
        return 0.0
    delta = as_utc(now) - as_utc(started_at)
    return max(0.0, delta.total_seconds() / 60.0)


def remaining_minutes(submission: Submission, now: dt.datetime) -> Optional[float]:
    """Minutes left on the clock, or None before start or for untimed assessments."""
    if submission.started_at is None or submission.time_limit_minutes is None:
        return None
    return max(0.0, submission.time_limit_minutes - elapsed_minutes(submission.started_at, now))


def is_overdue(submission: Submission, now: dt.datetime) -> bool:
    remaining = remaining_minutes(submission, now)
    return remaining is not None and remaining <= 0


def time_spent_minutes(started_at: Optional[dt.datetime], finished_at: dt.datetime) -> Optional[int]:
    """Whole minutes from start to finish, floored."""
    if started_at is None:
        return None
    return int(math.floor(elapsed_minutes(started_at, finished_at)))
