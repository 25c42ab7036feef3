"""Tests for src.core.reminders — due checks and completion."""

from datetime import date, datetime

from src.core.reminders import (
    complete_reminder,
    due_subset,
    is_due,
    next_due_date,
    refresh_next_reminder,
)
from src.data.models import Contact, Reminder


def _contact(**overrides) -> Contact:
    defaults = dict(
        id=1,
        user_id=1,
        name="Bob",
        cadence="weekly",
        tracked=True,
        created_at=datetime(2026, 3, 1, 12, 0),
    )
    defaults.update(overrides)
    return Contact(**defaults)


# ---------------------------------------------------------------------------
# next_due_date / is_due
# ---------------------------------------------------------------------------


class TestNextDueDate:
    def test_from_created_at(self):
        assert next_due_date(_contact()) == datetime(2026, 3, 8, 12, 0)

    def test_from_last_contact(self):
        c = _contact(last_contact_date=datetime(2026, 3, 5, 18, 30))
        assert next_due_date(c) == datetime(2026, 3, 12, 18, 30)

    def test_custom_days(self):
        c = _contact(cadence="custom", custom_days=3)
        assert next_due_date(c) == datetime(2026, 3, 4, 12, 0)

    def test_refresh_sets_cached_date(self):
        c = refresh_next_reminder(_contact(cadence="monthly"))
        assert c.next_reminder_date == datetime(2026, 3, 31, 12, 0)


class TestIsDue:
    def test_day_before_not_due(self):
        c = _contact(next_reminder_date=datetime(2026, 3, 8, 12, 0))
        assert is_due(c, date(2026, 3, 7)) is False

    def test_same_day_due_regardless_of_time(self):
        c = _contact(next_reminder_date=datetime(2026, 3, 8, 23, 59))
        assert is_due(c, datetime(2026, 3, 8, 0, 1)) is True

    def test_overdue(self):
        c = _contact(next_reminder_date=datetime(2026, 3, 8, 12, 0))
        assert is_due(c, date(2026, 4, 1)) is True

    def test_untracked_never_due(self):
        c = _contact(tracked=False, next_reminder_date=datetime(2026, 1, 1))
        assert is_due(c, date(2026, 4, 1)) is False

    def test_missing_cache_uses_cadence(self):
        c = _contact(next_reminder_date=None)
        assert is_due(c, date(2026, 3, 7)) is False
        assert is_due(c, date(2026, 3, 8)) is True

    def test_due_subset_keeps_order(self):
        a = _contact(id=1, next_reminder_date=datetime(2026, 3, 1))
        b = _contact(id=2, next_reminder_date=datetime(2026, 3, 20))
        c = _contact(id=3, next_reminder_date=datetime(2026, 3, 2))
        assert [x.id for x in due_subset([a, b, c], date(2026, 3, 10))] == [1, 3]


# ---------------------------------------------------------------------------
# complete_reminder
# ---------------------------------------------------------------------------


class TestCompleteReminder:
    def test_completion_rolls_contact_forward(self):
        now = datetime(2026, 3, 10, 15, 0)
        reminder = Reminder(id=5, user_id=1, contact_id=1, due_date=date(2026, 3, 8))
        result = complete_reminder(reminder, _contact(), now)

        assert result.already_completed is False
        assert result.reminder.completed is True
        assert result.reminder.completed_at == now
        assert result.contact.last_contact_date == now
        assert result.contact.next_reminder_date == datetime(2026, 3, 17, 15, 0)

    def test_inputs_are_not_mutated(self):
        reminder = Reminder(id=5, user_id=1, contact_id=1, due_date=date(2026, 3, 8))
        contact = _contact()
        complete_reminder(reminder, contact, datetime(2026, 3, 10))
        assert reminder.completed is False
        assert contact.last_contact_date is None

    def test_second_completion_is_noop(self):
        first_time = datetime(2026, 3, 10, 15, 0)
        reminder = Reminder(
            id=5, user_id=1, contact_id=1, due_date=date(2026, 3, 8),
            completed=True, completed_at=first_time,
        )
        contact = _contact(last_contact_date=first_time)
        result = complete_reminder(reminder, contact, datetime(2026, 3, 11))

        assert result.already_completed is True
        assert result.reminder.completed_at == first_time
        assert result.contact is contact
