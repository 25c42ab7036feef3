"""Gamification engine — streaks, XP, levels and achievements.

Pure functions over in-memory records: callers load the user, apply these
functions while holding the user's lock, and persist the result in one
transaction (see ``src.core.action_service``).

Level curve: level = floor(sqrt(total_xp / 100)) + 1, so level L starts at
(L - 1)^2 * 100 XP and level L + 1 at L^2 * 100 XP.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable

from src.core.errors import ValidationError
from src.data.models import Achievement, AchievementCriteria, ActivityLog, User, UserAchievement

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    CONTACT_ADDED = "CONTACT_ADDED"
    REMINDER_COMPLETED = "REMINDER_COMPLETED"
    STREAK_MAINTAINED = "STREAK_MAINTAINED"
    ACHIEVEMENT_UNLOCKED = "ACHIEVEMENT_UNLOCKED"


XP_REWARDS: dict[ActionType, int] = {
    ActionType.CONTACT_ADDED: 10,
    ActionType.REMINDER_COMPLETED: 20,
    ActionType.STREAK_MAINTAINED: 5,
    ActionType.ACHIEVEMENT_UNLOCKED: 50,
}


@dataclass
class UserStats:
    """Snapshot of everything achievement criteria can look at."""

    current_streak: int
    level: int
    total_xp: int
    contact_count: int
    completed_reminders: int


@dataclass
class AchievementUnlock:
    user_achievement: UserAchievement
    achievement: Achievement
    log: ActivityLog


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


def _day(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def update_streak(user: User, today: date | datetime) -> User:
    """Advance the user's day streak for activity on ``today``.

    Same day: unchanged. Next day: +1. Longer gap: back to 1. The longest
    streak never decreases. Always records ``today`` as the last activity.
    """
    today = _day(today)
    last = user.last_activity_date

    if last is None:
        user.current_streak = 1
        user.longest_streak = max(1, user.longest_streak)
    else:
        days_since = (today - _day(last)).days
        if days_since == 0:
            pass
        elif days_since == 1:
            user.current_streak += 1
            user.longest_streak = max(user.current_streak, user.longest_streak)
        else:
            user.current_streak = 1
            user.longest_streak = max(1, user.longest_streak)

    user.last_activity_date = today
    return user


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------


def level_for_xp(total_xp: int) -> int:
    return math.isqrt(max(0, int(total_xp)) // 100) + 1


def xp_for_level(level: int) -> int:
    """XP at which ``level`` is left behind, i.e. where level + 1 starts."""
    return level * level * 100


def level_progress(total_xp: int) -> float:
    """Fraction of the way from the current level's floor to the next level."""
    level = level_for_xp(total_xp)
    floor_xp = xp_for_level(level - 1)
    ceiling_xp = xp_for_level(level)
    fraction = (total_xp - floor_xp) / (ceiling_xp - floor_xp)
    return min(1.0, max(0.0, fraction))


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------


def award_xp(
    user: User,
    action: ActionType | str,
    now: datetime,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog:
    """Add the action's XP to the user, recompute the level, and return the log entry."""
    try:
        action = ActionType(action)
    except ValueError:
        raise ValidationError(f"Unknown action type: {action!r}", field="action") from None

    amount = XP_REWARDS[action]
    previous_level = user.level
    user.total_xp += amount
    user.level = level_for_xp(user.total_xp)

    if user.level > previous_level:
        logger.info("User %d reached level %d", user.id, user.level)

    return ActivityLog(
        user_id=user.id,
        action=action.value,
        xp_awarded=amount,
        created_at=now,
        metadata=dict(metadata) if metadata else None,
    )


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


def criteria_met(criteria: AchievementCriteria, stats: UserStats) -> bool:
    """True when every threshold present on ``criteria`` is satisfied."""
    checks = (
        (criteria.min_streak, stats.current_streak),
        (criteria.min_level, stats.level),
        (criteria.min_xp, stats.total_xp),
        (criteria.min_contacts, stats.contact_count),
        (criteria.min_reminders_completed, stats.completed_reminders),
    )
    return all(actual >= threshold for threshold, actual in checks if threshold is not None)


def check_achievements(
    user: User,
    catalog: Iterable[Achievement],
    unlocked_ids: set[int],
    stats: UserStats,
    now: datetime,
) -> list[AchievementUnlock]:
    """Unlock every achievement the user now qualifies for.

    Each unlock awards ``ACHIEVEMENT_UNLOCKED`` XP to ``user``. Newly crossed
    level boundaries do not trigger another evaluation pass here.
    ``unlocked_ids`` is updated in place so a repeated call is a no-op.
    """
    unlocks: list[AchievementUnlock] = []
    for achievement in catalog:
        if achievement.id in unlocked_ids:
            continue
        if not criteria_met(achievement.criteria, stats):
            continue

        unlocked_ids.add(achievement.id)
        log = award_xp(
            user,
            ActionType.ACHIEVEMENT_UNLOCKED,
            now,
            {"achievement_id": achievement.id, "achievement_code": achievement.code},
        )
        unlocks.append(AchievementUnlock(
            user_achievement=UserAchievement(
                id=0, user_id=user.id, achievement_id=achievement.id, unlocked_at=now,
            ),
            achievement=achievement,
            log=log,
        ))
        logger.info("User %d unlocked achievement %s", user.id, achievement.code)
    return unlocks


def stats_for(user: User, contact_count: int, completed_reminders: int) -> UserStats:
    return UserStats(
        current_streak=user.current_streak,
        level=user.level,
        total_xp=user.total_xp,
        contact_count=contact_count,
        completed_reminders=completed_reminders,
    )
