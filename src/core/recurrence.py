"""Recurrence generator — materializes future occurrences of a recurring event.

Uses ``dateutil.relativedelta`` for monthly stepping so that a day-of-month
missing from the target month clamps to the month's last day
(Jan 31 + 1 month = Feb 28/29). Each step starts from the previous
occurrence, so once clamped the shorter day persists (Feb 29 → Mar 29).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from src.core.errors import ValidationError

logger = logging.getLogger(__name__)

RECURRENCE_PATTERNS = ("daily", "weekly", "monthly", "custom")

DEFAULT_OCCURRENCE_COUNT = 10
MAX_OCCURRENCE_COUNT = 52  # one year of weekly events


@dataclass(frozen=True)
class Occurrence:
    start: datetime
    end: datetime
    index: int  # 1-based; index 0 is the origin event


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def parse_start_date(value: datetime | str | None) -> datetime:
    """Parse an ISO-8601 string (or pass a datetime through).

    Start dates are local wall-clock times, so values carrying a UTC offset
    are rejected. Raises ValidationError if the value is missing, malformed
    or offset-aware.
    """
    if isinstance(value, datetime):
        start = value
    elif not value or not isinstance(value, str):
        raise ValidationError("Start date is required", field="start_date")
    else:
        try:
            start = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"Invalid start date: {value!r}", field="start_date") from None
    if start.tzinfo is not None:
        raise ValidationError(
            f"Start date must be a local time without a UTC offset: {value!r}",
            field="start_date",
        )
    return start


def validate_recurrence(
    start_date: datetime | str | None,
    pattern: str | None,
    interval: int | None = None,
    count: int | None = None,
    duration_minutes: int | None = None,
) -> datetime:
    """Validate a recurrence configuration and return the parsed start date."""
    start = parse_start_date(start_date)

    if pattern not in RECURRENCE_PATTERNS:
        raise ValidationError(
            f"Unknown recurrence pattern {pattern!r}. "
            f"Allowed: {', '.join(RECURRENCE_PATTERNS)}",
            field="recurrence_pattern",
        )

    if pattern == "custom" and not _is_positive_int(interval):
        raise ValidationError(
            "Custom recurrence needs a positive whole number of days",
            field="recurrence_interval",
        )

    if count is not None:
        if not _is_positive_int(count):
            raise ValidationError(
                "Occurrence count must be a positive integer", field="recurrence_count",
            )
        if count > MAX_OCCURRENCE_COUNT:
            raise ValidationError(
                f"At most {MAX_OCCURRENCE_COUNT} occurrences can be generated",
                field="recurrence_count",
            )

    if duration_minutes is not None and not _is_positive_int(duration_minutes):
        raise ValidationError("Duration must be a positive number of minutes", field="duration")

    return start


def next_occurrence(current: datetime, pattern: str, interval: int | None = None) -> datetime:
    """Step one occurrence forward from ``current``."""
    if pattern == "daily":
        return current + timedelta(days=1)
    if pattern == "weekly":
        return current + timedelta(days=7)
    if pattern == "monthly":
        return current + relativedelta(months=1)
    if pattern == "custom":
        if not _is_positive_int(interval):
            raise ValidationError(
                "Custom recurrence needs a positive whole number of days",
                field="recurrence_interval",
            )
        return current + timedelta(days=interval)
    raise ValidationError(f"Unknown recurrence pattern {pattern!r}", field="recurrence_pattern")


def generate_occurrences(
    start_date: datetime | str,
    pattern: str,
    duration_minutes: int,
    interval: int | None = None,
    count: int | None = None,
) -> list[Occurrence]:
    """Return the occurrences following the origin event.

    Produces ``min(count, MAX_OCCURRENCE_COUNT)`` items with indices 1..count.
    The result is a fresh list on every call.
    """
    current = validate_recurrence(start_date, pattern, interval, count, duration_minutes)
    total = min(count if count is not None else DEFAULT_OCCURRENCE_COUNT, MAX_OCCURRENCE_COUNT)
    length = timedelta(minutes=duration_minutes)

    occurrences: list[Occurrence] = []
    for index in range(1, total + 1):
        current = next_occurrence(current, pattern, interval)
        occurrences.append(Occurrence(start=current, end=current + length, index=index))

    logger.debug(
        "Generated %d %s occurrences from %s", len(occurrences), pattern, start_date,
    )
    return occurrences


def describe_pattern(pattern: str, interval: int | None = None) -> str:
    """Human-readable label for a recurrence pattern."""
    if pattern == "daily":
        return "Daily"
    if pattern == "weekly":
        return "Weekly"
    if pattern == "monthly":
        return "Monthly"
    if pattern == "custom":
        if interval == 1:
            return "Every day"
        if interval:
            return f"Every {interval} days"
        return "Custom interval"
    return "Unknown pattern"
