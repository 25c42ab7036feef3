"""Default achievement catalog, seeded once into an empty achievements table."""

from __future__ import annotations

import logging

from src.data.models import Achievement, AchievementCriteria

logger = logging.getLogger(__name__)


def _a(code: str, name: str, description: str, icon: str, xp: int, **criteria: int) -> Achievement:
    return Achievement(
        id=0, code=code, name=name, description=description, icon=icon,
        xp_reward=xp, criteria=AchievementCriteria(**criteria),
    )


ACHIEVEMENT_CATALOG: list[Achievement] = [
    _a("FIRST_CONTACT", "First contact", "Add your first contact", "👤", 10, min_contacts=1),
    _a("SOCIAL_BUTTERFLY", "Social butterfly", "Add 10 contacts", "🦋", 50, min_contacts=10),
    _a("NETWORK_MASTER", "Network master", "Add 50 contacts", "🌐", 200, min_contacts=50),
    _a("FIRST_REMINDER", "First reminder", "Complete your first reminder", "✅", 20,
       min_reminders_completed=1),
    _a("CONSISTENT_COMMUNICATOR", "Consistent communicator", "Complete 10 reminders", "💬", 100,
       min_reminders_completed=10),
    _a("CONNECTION_CHAMPION", "Connection champion", "Complete 50 reminders", "🏆", 300,
       min_reminders_completed=50),
    _a("STREAK_STARTER", "Streak starter", "Reach a 3-day streak", "🔥", 30, min_streak=3),
    _a("WEEK_WARRIOR", "Week warrior", "Reach a 7-day streak", "⚡", 100, min_streak=7),
    _a("MONTH_MASTER", "Month master", "Reach a 30-day streak", "🌟", 500, min_streak=30),
    _a("LEVEL_5", "Level 5", "Reach level 5", "⭐", 50, min_level=5),
    _a("LEVEL_10", "Level 10", "Reach level 10", "🌠", 150, min_level=10),
    _a("XP_COLLECTOR", "XP collector", "Earn 1000 XP", "💎", 100, min_xp=1000),
    _a("XP_MASTER", "XP master", "Earn 5000 XP", "💠", 500, min_xp=5000),
]


def seed_achievements(achievement_db) -> int:
    """Insert the default catalog if none exists yet."""
    inserted = achievement_db.seed(ACHIEVEMENT_CATALOG)
    if inserted:
        logger.info("Achievement catalog ready (%d entries)", inserted)
    return inserted
