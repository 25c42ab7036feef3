"""Tests for src.data.db — SQLite repositories."""

import sqlite3
from datetime import date, datetime, timedelta

import pytest

from src.data.models import ActivityLog, Contact, Event, NotificationSettings, UserAchievement
from src.data.seeds import ACHIEVEMENT_CATALOG, seed_achievements

NOW = datetime(2026, 3, 10, 9, 0)


def _contact(user_id: int, **overrides) -> Contact:
    defaults = dict(id=0, user_id=user_id, name="Bob", cadence="weekly", tracked=True,
                    created_at=NOW, next_reminder_date=NOW + timedelta(days=7))
    defaults.update(overrides)
    return Contact(**defaults)


def _event(organizer_id: int, start: datetime, **overrides) -> Event:
    defaults = dict(id=0, organizer_id=organizer_id, title="Call", event_type="call",
                    start_date=start, end_date=start + timedelta(minutes=30),
                    duration_minutes=30)
    defaults.update(overrides)
    return Event(**defaults)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUserDB:
    def test_add_and_get(self, storage):
        u = storage.users.add_user(555, "Dana", NOW)
        assert storage.users.get_user(u.id).display_name == "Dana"
        assert storage.users.get_by_telegram_id(555).id == u.id
        assert storage.users.get_by_telegram_id(999) is None

    def test_duplicate_telegram_id(self, storage):
        storage.users.add_user(555, "Dana", NOW)
        with pytest.raises(sqlite3.IntegrityError):
            storage.users.add_user(555, "Dana again", NOW)

    def test_save_progress(self, storage, user):
        user.total_xp, user.level, user.current_streak, user.longest_streak = 150, 2, 3, 4
        user.last_activity_date = date(2026, 3, 10)
        storage.users.save_progress(user)
        loaded = storage.users.get_user(user.id)
        assert (loaded.total_xp, loaded.level, loaded.current_streak, loaded.longest_streak) == (150, 2, 3, 4)
        assert loaded.last_activity_date == date(2026, 3, 10)


# ---------------------------------------------------------------------------
# Contacts and reminders
# ---------------------------------------------------------------------------


class TestContactDB:
    def test_roundtrip(self, storage, user):
        saved = storage.contacts.add_contact(_contact(user.id, cadence="custom", custom_days=5))
        loaded = storage.contacts.get_contact(saved.id)
        assert loaded.cadence == "custom"
        assert loaded.custom_days == 5
        assert loaded.tracked is True
        assert loaded.next_reminder_date == NOW + timedelta(days=7)

    def test_tracked_filter(self, storage, user):
        storage.contacts.add_contact(_contact(user.id, name="A"))
        storage.contacts.add_contact(_contact(user.id, name="B", tracked=False))
        assert [c.name for c in storage.contacts.list_for_user(user.id)] == ["A", "B"]
        assert [c.name for c in storage.contacts.list_for_user(user.id, tracked_only=True)] == ["A"]
        assert storage.contacts.count_for_user(user.id) == 2

    def test_delete_cascades_to_reminders(self, storage, user):
        c = storage.contacts.add_contact(_contact(user.id))
        r = storage.reminders.create(user.id, c.id, date(2026, 3, 10))
        assert storage.contacts.delete_contact(c.id) is True
        assert storage.reminders.get(r.id) is None


class TestReminderDB:
    def test_one_open_reminder_per_day(self, storage, user):
        c = storage.contacts.add_contact(_contact(user.id))
        storage.reminders.create(user.id, c.id, date(2026, 3, 10))
        with pytest.raises(sqlite3.IntegrityError):
            storage.reminders.create(user.id, c.id, date(2026, 3, 10))

    def test_find_open_and_complete(self, storage, user):
        c = storage.contacts.add_contact(_contact(user.id))
        r = storage.reminders.create(user.id, c.id, date(2026, 3, 10))
        assert storage.reminders.find_open(c.id, date(2026, 3, 10)).id == r.id

        r.completed, r.completed_at = True, NOW
        storage.reminders.save(r)
        assert storage.reminders.find_open(c.id, date(2026, 3, 10)) is None
        assert storage.reminders.count_completed(user.id) == 1
        assert storage.reminders.list_open(user.id) == []

    def test_mark_notification_sent(self, storage, user):
        c = storage.contacts.add_contact(_contact(user.id))
        r = storage.reminders.create(user.id, c.id, date(2026, 3, 10))
        storage.reminders.mark_notification_sent([r.id])
        assert storage.reminders.get(r.id).notification_sent is True


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEventDB:
    def test_transition_is_guarded(self, storage, user):
        e = storage.events.add_event(_event(user.id, NOW))
        assert storage.events.transition_status([e.id], "scheduled", "in_progress") == 1
        assert storage.events.transition_status([e.id], "scheduled", "in_progress") == 0
        assert storage.events.get_event(e.id).status == "in_progress"

    def test_list_active_and_upcoming(self, storage, user):
        past = storage.events.add_event(_event(user.id, NOW - timedelta(hours=1)))
        future = storage.events.add_event(_event(user.id, NOW + timedelta(hours=1)))
        storage.events.add_event(_event(user.id, NOW + timedelta(hours=2), status="cancelled"))
        assert {e.id for e in storage.events.list_active()} == {past.id, future.id}
        assert [e.id for e in storage.events.list_upcoming_scheduled(NOW)] == [future.id]

    def test_series_ids(self, storage, user):
        parent = storage.events.add_event(_event(user.id, NOW + timedelta(days=1)))
        later = storage.events.add_event(
            _event(user.id, NOW + timedelta(days=3), parent_event_id=parent.id),
        )
        sooner = storage.events.add_event(
            _event(user.id, NOW + timedelta(days=2), parent_event_id=parent.id),
        )
        storage.events.add_event(_event(user.id, NOW + timedelta(days=2)))
        assert storage.events.series_ids(parent.id) == [parent.id, sooner.id, later.id]

    def test_reminder_recipients(self, storage, user):
        friend = storage.users.add_user(2002, "Bob", NOW)
        stranger = storage.contacts.add_contact(_contact(user.id, name="Zed"))
        linked = storage.contacts.add_contact(_contact(user.id, linked_user_id=friend.id))
        e = storage.events.add_event(_event(user.id, NOW + timedelta(hours=1)))
        storage.events.add_participant(e.id, stranger.id)
        storage.events.add_participant(e.id, linked.id)

        assert storage.events.reminder_recipients(e) == [user.id]

        storage.events.set_participant_status(e.id, [linked.id, stranger.id], "accepted", NOW)
        assert storage.events.reminder_recipients(e) == [user.id, friend.id]

    def test_invitations(self, storage, user):
        friend = storage.users.add_user(2002, "Bob", NOW)
        e = storage.events.add_event(_event(user.id, NOW + timedelta(hours=1)))
        inv = storage.events.add_invitation(e.id, user.id, friend.id)
        assert [i.id for i in storage.events.list_pending_invitations(friend.id)] == [inv.id]

        inv.status, inv.responded_at = "declined", NOW
        storage.events.save_invitation(inv)
        assert storage.events.list_pending_invitations(friend.id) == []
        assert storage.events.get_invitation(inv.id).status == "declined"


# ---------------------------------------------------------------------------
# Achievements and activity
# ---------------------------------------------------------------------------


class TestAchievementDB:
    def test_seed_once(self, storage):
        assert seed_achievements(storage.achievements) == len(ACHIEVEMENT_CATALOG) == 13
        assert seed_achievements(storage.achievements) == 0
        codes = [a.code for a in storage.achievements.list_all()]
        assert codes[0] == "FIRST_CONTACT"
        assert storage.achievements.list_all()[0].criteria.min_contacts == 1

    def test_unlock_exactly_once(self, seeded_storage, user):
        achievement = seeded_storage.achievements.list_all()[0]
        ua = UserAchievement(id=0, user_id=user.id, achievement_id=achievement.id, unlocked_at=NOW)
        assert seeded_storage.achievements.unlock(ua) is not None
        assert seeded_storage.achievements.unlock(ua) is None
        assert seeded_storage.achievements.unlocked_ids(user.id) == {achievement.id}
        unlocked = seeded_storage.achievements.list_unlocked(user.id)
        assert unlocked[0][0].code == achievement.code


class TestActivityDB:
    def test_append_and_since(self, storage, user):
        storage.activity.append(ActivityLog(user.id, "CONTACT_ADDED", 10, NOW - timedelta(days=10)))
        saved = storage.activity.append(
            ActivityLog(user.id, "REMINDER_COMPLETED", 20, NOW, metadata={"reminder_id": 1}),
        )
        assert saved.id is not None
        recent = storage.activity.list_for_user(user.id, since=date(2026, 3, 4))
        assert [log.action for log in recent] == ["REMINDER_COMPLETED"]
        assert recent[0].metadata == {"reminder_id": 1}
        assert len(storage.activity.list_for_user(user.id)) == 2


class TestNotificationSettingsDB:
    def test_defaults_without_row(self, storage, user):
        prefs = storage.notification_settings.get(user.id)
        assert prefs == NotificationSettings(user_id=user.id)

    def test_save_then_update(self, storage, user):
        prefs = NotificationSettings(user_id=user.id, event_reminders=False, updated_at=NOW)
        storage.notification_settings.save(prefs)
        assert storage.notification_settings.get(user.id).event_reminders is False

        prefs.event_reminders, prefs.default_reminder_minutes = True, 15
        storage.notification_settings.save(prefs)
        saved = storage.notification_settings.get(user.id)
        assert (saved.event_reminders, saved.default_reminder_minutes) == (True, 15)
        assert saved.updated_at == NOW


class TestTransaction:
    def test_rollback_on_error(self, storage, user):
        with pytest.raises(RuntimeError):
            with storage.transaction() as conn:
                user.total_xp = 500
                storage.users.save_progress(user, conn)
                raise RuntimeError("boom")
        assert storage.users.get_user(user.id).total_xp == 0

    def test_commit(self, storage, user):
        with storage.transaction() as conn:
            user.total_xp = 500
            storage.users.save_progress(user, conn)
        assert storage.users.get_user(user.id).total_xp == 500
