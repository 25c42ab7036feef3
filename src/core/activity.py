"""Activity aggregation over the XP activity log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable

from src.core.errors import ValidationError
from src.core.gamification import ActionType
from src.data.models import ActivityLog

PERIOD_DAYS = {"week": 7, "month": 30}


@dataclass
class DailyActivity:
    date: str  # YYYY-MM-DD
    completed_reminders: int = 0
    xp_earned: int = 0


@dataclass
class ActivityData:
    period: str
    start_date: str
    end_date: str
    activities: list[DailyActivity] = field(default_factory=list)
    total_completed: int = 0
    total_xp: int = 0


def period_bounds(period: str, today: date | datetime) -> tuple[date, date]:
    """Return the inclusive (first day, last day) window for a period ending today."""
    if period not in PERIOD_DAYS:
        raise ValidationError(
            f"Unknown period {period!r}. Allowed: {', '.join(PERIOD_DAYS)}", field="period",
        )
    end = today.date() if isinstance(today, datetime) else today
    return end - timedelta(days=PERIOD_DAYS[period] - 1), end


def aggregate_activity(
    logs: Iterable[ActivityLog], period: str, today: date | datetime,
) -> ActivityData:
    """Bucket log entries by calendar day, one entry per day including empty days."""
    start, end = period_bounds(period, today)

    daily: dict[date, DailyActivity] = {}
    day = start
    while day <= end:
        daily[day] = DailyActivity(date=day.isoformat())
        day += timedelta(days=1)

    data = ActivityData(period=period, start_date=start.isoformat(), end_date=end.isoformat())
    for log in logs:
        bucket = daily.get(log.created_at.date())
        if bucket is None:
            continue
        if log.action == ActionType.REMINDER_COMPLETED.value:
            bucket.completed_reminders += 1
            data.total_completed += 1
        bucket.xp_earned += log.xp_awarded
        data.total_xp += log.xp_awarded

    data.activities = list(daily.values())
    return data
