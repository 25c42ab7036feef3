"""Tests for src.core.gamification — streaks, levels, XP and achievements."""

from datetime import date, datetime

import pytest

from src.core.errors import ValidationError
from src.core.gamification import (
    ActionType,
    UserStats,
    award_xp,
    check_achievements,
    criteria_met,
    level_for_xp,
    level_progress,
    update_streak,
    xp_for_level,
)
from src.data.models import Achievement, AchievementCriteria, User

NOW = datetime(2026, 3, 10, 12, 0)


def _user(**overrides) -> User:
    defaults = dict(id=1, telegram_id=100, display_name="Alice")
    defaults.update(overrides)
    return User(**defaults)


def _achievement(aid: int, code: str, **criteria) -> Achievement:
    return Achievement(
        id=aid, code=code, name=code.title(), description="", icon="*",
        xp_reward=10, criteria=AchievementCriteria(**criteria),
    )


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class TestUpdateStreak:
    def test_first_activity(self):
        u = update_streak(_user(), date(2026, 3, 10))
        assert (u.current_streak, u.longest_streak) == (1, 1)
        assert u.last_activity_date == date(2026, 3, 10)

    def test_same_day_unchanged(self):
        u = _user(current_streak=4, longest_streak=6, last_activity_date=date(2026, 3, 10))
        update_streak(u, datetime(2026, 3, 10, 23, 0))
        assert (u.current_streak, u.longest_streak) == (4, 6)

    def test_next_day_increments(self):
        u = _user(current_streak=6, longest_streak=6, last_activity_date=date(2026, 3, 9))
        update_streak(u, date(2026, 3, 10))
        assert (u.current_streak, u.longest_streak) == (7, 7)

    def test_gap_resets_but_keeps_longest(self):
        u = _user(current_streak=5, longest_streak=9, last_activity_date=date(2026, 3, 1))
        update_streak(u, date(2026, 3, 10))
        assert (u.current_streak, u.longest_streak) == (1, 9)

    def test_longest_never_below_current(self):
        u = _user()
        for day in range(1, 15):
            update_streak(u, date(2026, 3, day))
            assert u.longest_streak >= u.current_streak >= 0


# ---------------------------------------------------------------------------
# Levels
# ---------------------------------------------------------------------------


class TestLevels:
    @pytest.mark.parametrize("xp,level", [
        (0, 1), (99, 1), (100, 2), (399, 2), (400, 3), (899, 3), (900, 4), (10_000, 11),
    ])
    def test_level_boundaries(self, xp, level):
        assert level_for_xp(xp) == level

    def test_negative_xp_is_level_one(self):
        assert level_for_xp(-50) == 1

    def test_xp_for_level(self):
        assert xp_for_level(1) == 100
        assert xp_for_level(2) == 400
        assert xp_for_level(3) == 900

    def test_progress(self):
        assert level_progress(0) == 0.0
        assert level_progress(250) == pytest.approx(0.5)
        assert 0.0 <= level_progress(399) < 1.0


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------


class TestAwardXp:
    @pytest.mark.parametrize("action,amount", [
        (ActionType.CONTACT_ADDED, 10),
        (ActionType.REMINDER_COMPLETED, 20),
        (ActionType.STREAK_MAINTAINED, 5),
        (ActionType.ACHIEVEMENT_UNLOCKED, 50),
    ])
    def test_rewards(self, action, amount):
        u = _user()
        log = award_xp(u, action, NOW)
        assert u.total_xp == amount
        assert log.xp_awarded == amount
        assert log.action == action.value
        assert log.created_at == NOW

    def test_string_action(self):
        log = award_xp(_user(), "CONTACT_ADDED", NOW, {"contact_id": 4})
        assert log.metadata == {"contact_id": 4}

    def test_level_recomputed(self):
        u = _user(total_xp=90)
        award_xp(u, ActionType.REMINDER_COMPLETED, NOW)
        assert (u.total_xp, u.level) == (110, 2)

    def test_unknown_action(self):
        u = _user(total_xp=40)
        with pytest.raises(ValidationError):
            award_xp(u, "FLEW_TO_MOON", NOW)
        assert u.total_xp == 40


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class TestAchievements:
    def _stats(self, **overrides) -> UserStats:
        defaults = dict(current_streak=0, level=1, total_xp=0, contact_count=0,
                        completed_reminders=0)
        defaults.update(overrides)
        return UserStats(**defaults)

    def test_criteria_all_must_hold(self):
        c = AchievementCriteria(min_streak=3, min_contacts=2)
        assert criteria_met(c, self._stats(current_streak=3, contact_count=2))
        assert not criteria_met(c, self._stats(current_streak=3, contact_count=1))

    def test_empty_criteria_always_met(self):
        assert criteria_met(AchievementCriteria(), self._stats())

    def test_unlock_awards_fixed_xp(self):
        u = _user()
        catalog = [_achievement(1, "FIRST_CONTACT", min_contacts=1)]
        unlocks = check_achievements(u, catalog, set(), self._stats(contact_count=1), NOW)
        assert [x.achievement.code for x in unlocks] == ["FIRST_CONTACT"]
        assert u.total_xp == 50
        assert unlocks[0].user_achievement.achievement_id == 1
        assert unlocks[0].log.action == "ACHIEVEMENT_UNLOCKED"

    def test_exactly_once(self):
        u = _user()
        catalog = [_achievement(1, "FIRST_CONTACT", min_contacts=1)]
        unlocked: set[int] = set()
        stats = self._stats(contact_count=5)
        assert len(check_achievements(u, catalog, unlocked, stats, NOW)) == 1
        assert check_achievements(u, catalog, unlocked, stats, NOW) == []
        assert unlocked == {1}
        assert u.total_xp == 50

    def test_already_unlocked_skipped(self):
        u = _user()
        catalog = [_achievement(1, "A", min_contacts=1), _achievement(2, "B", min_contacts=1)]
        unlocks = check_achievements(u, catalog, {1}, self._stats(contact_count=1), NOW)
        assert [x.achievement.id for x in unlocks] == [2]

    def test_not_met(self):
        catalog = [_achievement(1, "STREAK", min_streak=3)]
        assert check_achievements(_user(), catalog, set(), self._stats(current_streak=2), NOW) == []
