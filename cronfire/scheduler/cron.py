"""
CRON matching — decides whether a 5-field expression matches a minute.

    minute  hour  day-of-month  month  day-of-week
    0-59    0-23  1-31          1-12   0-6 (0 = Sunday)

Supported per field: "*", exact values, ranges ("1-5"), steps ("*/15",
"10/5", "0-30/10") and comma lists of any of those. Day-of-month and
day-of-week are ANDed like every other field (no Vixie-cron OR rule).

Matching never raises: a malformed field simply does not match.
Use validate_expression() to reject bad expressions up front.

Usage:
    cron_matches_date("0 9 * * 1-5", datetime(2026, 10, 19, 9, 0))  # True
    is_trigger_due("*/5 * * * *", last_fired_at=None)
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from cronfire.core.errors import CronExpressionError

# (name, max value) per field, in expression order
FIELDS = (
    ("minute", 59),
    ("hour", 23),
    ("day-of-month", 31),
    ("month", 12),
    ("day-of-week", 6),
)

DEFAULT_HORIZON_MINUTES = (366 + 1) * 24 * 60

_NUMERIC_FIELD = re.compile(r"^[0-9*,/-]+$")


def _to_int(text: str) -> int | None:
    try:
        return int(text)
    except ValueError:
        return None


def matches_field(field: str, value: int, max_value: int) -> bool:
    """Return True if `value` satisfies one CRON field.

    `max_value` only closes open-ended steps ("*/5", "10/5"); literals
    outside the field's domain are not rejected, they just never match.
    """
    if field == "*":
        return True

    for part in field.split(","):
        if "/" in part:
            base, _, step_text = part.partition("/")
            step = _to_int(step_text)
            if step is None or step <= 0:
                continue

            start: int | None = 0
            end: int | None = max_value
            if base != "*":
                if "-" in base:
                    bounds = base.split("-")
                    start, end = _to_int(bounds[0]), _to_int(bounds[1])
                else:
                    start = _to_int(base)
            if start is None or end is None:
                continue

            if start <= value <= end and (value - start) % step == 0:
                return True
            continue

        if "-" in part:
            bounds = part.split("-")
            start, end = _to_int(bounds[0]), _to_int(bounds[1])
            if start is not None and end is not None and start <= value <= end:
                return True
            continue

        if _to_int(part) == value:
            return True

    return False


def date_fields(date: datetime) -> tuple[int, int, int, int, int]:
    """(minute, hour, day-of-month, month, day-of-week) with Sunday = 0."""
    return (
        date.minute,
        date.hour,
        date.day,
        date.month,
        date.isoweekday() % 7,
    )


def cron_matches_date(expression: str, date: datetime) -> bool:
    """True iff all five fields of `expression` match `date` (local time)."""
    parts = expression.split()
    if len(parts) != len(FIELDS):
        return False

    return all(
        matches_field(part, value, max_value)
        for part, value, (_, max_value) in zip(parts, date_fields(date), FIELDS)
    )


def same_minute(a: datetime, b: datetime) -> bool:
    return a.replace(second=0, microsecond=0) == b.replace(second=0, microsecond=0)


def is_trigger_due(
    expression: str,
    last_fired_at: datetime | None,
    now: datetime | None = None,
) -> bool:
    """
    A trigger is due when:
    1. `now` matches the expression, and
    2. it has not already fired during the same calendar minute.

    Missed minutes are never replayed; only `now` is checked.
    """
    now = now or datetime.now()

    if not cron_matches_date(expression, now):
        return False

    if last_fired_at is not None and same_minute(last_fired_at, now):
        return False

    return True


def next_match(
    expression: str,
    after: datetime,
    horizon_minutes: int = DEFAULT_HORIZON_MINUTES,
) -> datetime | None:
    """First minute strictly after `after` that matches, or None within the horizon."""
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(horizon_minutes):
        if cron_matches_date(expression, candidate):
            return candidate
        candidate += timedelta(minutes=1)
    return None


def validate_expression(expression: str) -> None:
    """
    Raise CronExpressionError unless `expression` is a well-formed
    5-field CRON string.
    """
    from croniter import croniter

    parts = expression.split()
    if len(parts) != len(FIELDS):
        raise CronExpressionError(
            f"Expected 5 fields (minute hour day-of-month month day-of-week), "
            f"got {len(parts)}: {expression!r}",
            expression=expression,
        )
    if not croniter.is_valid(expression):
        raise CronExpressionError(
            f"Invalid CRON expression: {expression!r}",
            expression=expression,
        )

    # croniter also accepts names, "7" for Sunday, "L", "#" and "?",
    # none of which matches_field() understands
    for part, (name, max_value) in zip(parts, FIELDS):
        if not _NUMERIC_FIELD.match(part):
            raise CronExpressionError(
                f"Unsupported {name} field {part!r}: only digits, '*', ',', '-' and '/' are allowed",
                expression=expression,
            )
        for item in part.split(","):
            base = item.partition("/")[0]
            for bound in base.split("-"):
                if bound.isdigit() and int(bound) > max_value:
                    raise CronExpressionError(
                        f"Value {bound} out of range for {name} field (max {max_value})",
                        expression=expression,
                    )
