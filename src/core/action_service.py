"""
Keep In Touch — UI-Agnostic Action Service.

Orchestrates the use cases behind every user action: validate input, load
state, run the pure engines, persist the result. The Telegram bot (or any
other adapter) calls this service and renders the returned objects.

Gamification updates for one user are serialized with ``UserLocks`` and
written in a single storage transaction, so streak, XP, activity log and
achievement unlocks land together or not at all.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from src.core.activity import ActivityData, aggregate_activity, period_bounds
from src.core.errors import NotFoundError, ValidationError
from src.core.events import (
    EventRequest,
    EventSeries,
    apply_event_update,
    build_event_series,
    cancel_event,
    respond_to_invitation,
)
from src.core.frequency import CADENCES
from src.core.gamification import (
    AchievementUnlock,
    ActionType,
    award_xp,
    check_achievements,
    level_for_xp,
    level_progress,
    stats_for,
    update_streak,
    xp_for_level,
)
from src.core.reminders import complete_reminder, next_due_date
from src.data.models import (
    Achievement,
    ActivityLog,
    Contact,
    Event,
    Invitation,
    NotificationSettings,
    Reminder,
    User,
)

if TYPE_CHECKING:
    from src.core.locks import UserLocks
    from src.data.db import Storage

logger = logging.getLogger(__name__)

REMINDER_MINUTE_OPTIONS = (15, 30, 60, 1440)


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


@dataclass
class GamificationOutcome:
    """What an action did to the user's progress."""

    user: User
    xp_awarded: int = 0
    unlocked: list[Achievement] = field(default_factory=list)
    leveled_up: bool = False


@dataclass
class ContactAdded:
    contact: Contact
    progress: GamificationOutcome


@dataclass
class ReminderCompleted:
    reminder: Reminder
    contact: Contact
    already_completed: bool
    progress: GamificationOutcome | None = None


@dataclass
class EventCreated:
    series: EventSeries
    invitations: list[Invitation] = field(default_factory=list)


@dataclass
class StatsView:
    user: User
    progress: float
    next_level_xp: int
    xp_to_next_level: int
    achievements_unlocked: int
    achievements_total: int


# ---------------------------------------------------------------------------
# ActionService
# ---------------------------------------------------------------------------


def validate_cadence(cadence: str, custom_days: int | None) -> None:
    if cadence not in CADENCES:
        raise ValidationError(
            f"Unknown cadence {cadence!r}. Allowed: {', '.join(CADENCES)}", field="cadence",
        )
    if cadence == "custom" and (
        not isinstance(custom_days, int) or isinstance(custom_days, bool) or custom_days <= 0
    ):
        raise ValidationError(
            "Custom cadence needs a positive number of days", field="custom_days",
        )


class ActionService:
    """Use-case layer over the storage collaborator.

    Never reads the system clock: every time-dependent call takes ``now``.
    """

    def __init__(self, storage: Storage, locks: UserLocks) -> None:
        self._storage = storage
        self._locks = locks

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def register_user(self, telegram_id: int, display_name: str, now: datetime) -> User:
        """Return the user for a Telegram id, registering them on first contact."""
        existing = self._storage.users.get_by_telegram_id(telegram_id)
        if existing is not None:
            return existing
        return self._storage.users.add_user(telegram_id, display_name, now)

    def _require_user(self, user_id: int, conn: sqlite3.Connection | None = None) -> User:
        user = self._storage.users.get_user(user_id, conn)
        if user is None:
            raise NotFoundError(f"User #{user_id} not found")
        return user

    # ------------------------------------------------------------------
    # Gamification plumbing
    # ------------------------------------------------------------------

    def _finish_progress(
        self,
        conn: sqlite3.Connection,
        user: User,
        logs: list[ActivityLog],
        starting_level: int,
        now: datetime,
    ) -> GamificationOutcome:
        """Evaluate achievements and write every progress change on ``conn``."""
        stats = stats_for(
            user,
            contact_count=self._storage.contacts.count_for_user(user.id, conn),
            completed_reminders=self._storage.reminders.count_completed(user.id, conn),
        )
        unlocked_ids = self._storage.achievements.unlocked_ids(user.id, conn)
        catalog = self._storage.achievements.list_all(conn)
        unlocks = check_achievements(user, catalog, unlocked_ids, stats, now)

        achieved: list[Achievement] = []
        for unlock in unlocks:
            if self._record_unlock(conn, user, unlock):
                logs.append(unlock.log)
                achieved.append(unlock.achievement)

        for log in logs:
            self._storage.activity.append(log, conn)
        self._storage.users.save_progress(user, conn)

        return GamificationOutcome(
            user=user,
            xp_awarded=sum(log.xp_awarded for log in logs),
            unlocked=achieved,
            leveled_up=user.level > starting_level,
        )

    def _record_unlock(
        self, conn: sqlite3.Connection, user: User, unlock: AchievementUnlock,
    ) -> bool:
        saved = self._storage.achievements.unlock(unlock.user_achievement, conn)
        if saved is not None:
            return True
        # Someone else recorded this unlock first; take back the XP we added.
        logger.warning(
            "Achievement %s already unlocked for user %d, skipping reward",
            unlock.achievement.code, user.id,
        )
        user.total_xp -= unlock.log.xp_awarded
        user.level = level_for_xp(user.total_xp)
        return False

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def add_contact(
        self,
        user_id: int,
        name: str,
        now: datetime,
        cadence: str = "monthly",
        custom_days: int | None = None,
        tracked: bool = True,
        username: str | None = None,
        linked_user_id: int | None = None,
    ) -> ContactAdded:
        """Create a contact and award CONTACT_ADDED XP."""
        if not name or not name.strip():
            raise ValidationError("Contact name is required", field="name")
        validate_cadence(cadence, custom_days)

        contact = Contact(
            id=0,
            user_id=user_id,
            name=name.strip(),
            cadence=cadence,
            custom_days=custom_days if cadence == "custom" else None,
            tracked=tracked,
            created_at=now,
            username=username,
            linked_user_id=linked_user_id,
        )
        if tracked:
            contact = replace(contact, next_reminder_date=next_due_date(contact))

        async with self._locks.hold(user_id):
            with self._storage.transaction() as conn:
                user = self._require_user(user_id, conn)
                starting_level = user.level
                contact = self._storage.contacts.add_contact(contact, conn)
                logs = [award_xp(user, ActionType.CONTACT_ADDED, now, {"contact_id": contact.id})]
                progress = self._finish_progress(conn, user, logs, starting_level, now)

        return ContactAdded(contact=contact, progress=progress)

    def update_contact(
        self,
        user_id: int,
        contact_id: int,
        *,
        cadence: str | None = None,
        custom_days: int | None = None,
        tracked: bool | None = None,
        name: str | None = None,
    ) -> Contact:
        """Change tracking settings; the cached next reminder date is recomputed."""
        contact = self._require_contact(user_id, contact_id)

        new_cadence = cadence if cadence is not None else contact.cadence
        new_days = custom_days if custom_days is not None else contact.custom_days
        validate_cadence(new_cadence, new_days)

        updated = replace(
            contact,
            cadence=new_cadence,
            custom_days=new_days if new_cadence == "custom" else None,
            tracked=contact.tracked if tracked is None else tracked,
        )
        if name is not None:
            if not name.strip():
                raise ValidationError("Contact name is required", field="name")
            updated = replace(updated, name=name.strip())
        updated = replace(
            updated, next_reminder_date=next_due_date(updated) if updated.tracked else None,
        )
        self._storage.contacts.update_contact(updated)
        logger.info("Contact #%d updated (%s, tracked=%s)", contact_id, updated.cadence, updated.tracked)
        return updated

    def link_contact(self, user_id: int, contact_id: int, telegram_id: int) -> Contact:
        """Point a contact at the registered user behind a Telegram id."""
        contact = self._require_contact(user_id, contact_id)
        linked = self._storage.users.get_by_telegram_id(telegram_id)
        if linked is None:
            raise NotFoundError(f"No registered user with Telegram id {telegram_id}")
        if linked.id == user_id:
            raise ValidationError("You cannot link a contact to yourself", field="telegram_id")
        updated = replace(contact, linked_user_id=linked.id)
        self._storage.contacts.update_contact(updated)
        logger.info("Contact #%d linked to user #%d", contact_id, linked.id)
        return updated

    def delete_contact(self, user_id: int, contact_id: int) -> Contact:
        """Remove a contact together with its reminders and event participation.

        XP and activity already earned through the contact are kept.
        """
        contact = self._require_contact(user_id, contact_id)
        self._storage.contacts.delete_contact(contact.id)
        return contact

    def _require_contact(self, user_id: int, contact_id: int) -> Contact:
        contact = self._storage.contacts.get_contact(contact_id)
        if contact is None or contact.user_id != user_id:
            raise NotFoundError(f"Contact #{contact_id} not found")
        return contact

    # ------------------------------------------------------------------
    # Notification settings
    # ------------------------------------------------------------------

    def get_notification_settings(self, user_id: int) -> NotificationSettings:
        self._require_user(user_id)
        return self._storage.notification_settings.get(user_id)

    def update_notification_settings(
        self,
        user_id: int,
        now: datetime,
        *,
        enabled: bool | None = None,
        contact_reminders: bool | None = None,
        event_reminders: bool | None = None,
        invitations: bool | None = None,
        default_reminder_minutes: int | None = None,
    ) -> NotificationSettings:
        """Change only the given switches. ``enabled`` flips every kind at once."""
        if (
            default_reminder_minutes is not None
            and default_reminder_minutes not in REMINDER_MINUTE_OPTIONS
        ):
            raise ValidationError(
                "Reminder time must be one of "
                f"{', '.join(str(m) for m in REMINDER_MINUTE_OPTIONS)} minutes",
                field="default_reminder_minutes",
            )
        prefs = self.get_notification_settings(user_id)
        if enabled is not None:
            prefs = replace(
                prefs, contact_reminders=enabled, event_reminders=enabled, invitations=enabled,
            )
        changes = {
            "contact_reminders": contact_reminders,
            "event_reminders": event_reminders,
            "invitations": invitations,
            "default_reminder_minutes": default_reminder_minutes,
        }
        prefs = replace(
            prefs, updated_at=now, **{k: v for k, v in changes.items() if v is not None},
        )
        self._storage.notification_settings.save(prefs)
        logger.info("Notification settings updated for user %d", user_id)
        return prefs

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def complete_reminder(
        self, user_id: int, reminder_id: int, now: datetime,
    ) -> ReminderCompleted:
        """Complete a reminder: roll the contact forward, update streak and XP.

        Completing twice returns the stored state and changes nothing.
        """
        async with self._locks.hold(user_id):
            with self._storage.transaction() as conn:
                reminder = self._storage.reminders.get(reminder_id, conn)
                if reminder is None or reminder.user_id != user_id:
                    raise NotFoundError(f"Reminder #{reminder_id} not found")
                contact = self._storage.contacts.get_contact(reminder.contact_id, conn)
                if contact is None:
                    raise NotFoundError(f"Contact #{reminder.contact_id} not found")

                outcome = complete_reminder(reminder, contact, now)
                if outcome.already_completed:
                    logger.info("Reminder #%d was already completed", reminder_id)
                    return ReminderCompleted(
                        reminder=outcome.reminder,
                        contact=outcome.contact,
                        already_completed=True,
                    )

                self._storage.reminders.save(outcome.reminder, conn)
                self._storage.contacts.update_contact(outcome.contact, conn)

                user = self._require_user(user_id, conn)
                starting_level = user.level
                had_activity = user.last_activity_date is not None
                previous_streak = user.current_streak
                update_streak(user, now)

                logs = [award_xp(
                    user, ActionType.REMINDER_COMPLETED, now,
                    {"reminder_id": reminder.id, "contact_id": contact.id},
                )]
                if had_activity and user.current_streak == previous_streak + 1:
                    logs.append(award_xp(
                        user, ActionType.STREAK_MAINTAINED, now, {"streak": user.current_streak},
                    ))
                progress = self._finish_progress(conn, user, logs, starting_level, now)

        logger.info(
            "Reminder #%d completed by user %d (+%d XP, streak %d)",
            reminder_id, user_id, progress.xp_awarded, progress.user.current_streak,
        )
        return ReminderCompleted(
            reminder=outcome.reminder,
            contact=outcome.contact,
            already_completed=False,
            progress=progress,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def create_event(self, organizer_id: int, request: EventRequest, now: datetime) -> EventCreated:
        """Validate and persist an event, its occurrences, participants and invitations.

        Participant rows are copied onto every occurrence, but each linked
        contact gets a single invitation for the parent event.
        """
        participants = [
            self._require_contact(organizer_id, cid) for cid in request.participant_contact_ids
        ]
        if request.reminder_minutes is None:
            prefs = self._storage.notification_settings.get(organizer_id)
            request = replace(request, reminder_minutes=prefs.default_reminder_minutes)
        series = build_event_series(request, organizer_id, now)

        invitations: list[Invitation] = []
        with self._storage.transaction() as conn:
            parent = self._storage.events.add_event(series.parent, conn)
            children = [
                self._storage.events.add_event(replace(child, parent_event_id=parent.id), conn)
                for child in series.children
            ]
            for event in [parent, *children]:
                for contact in participants:
                    self._storage.events.add_participant(event.id, contact.id, conn)
            for contact in participants:
                if contact.linked_user_id is not None:
                    invitations.append(self._storage.events.add_invitation(
                        parent.id, organizer_id, contact.linked_user_id, conn,
                    ))

        logger.info(
            "Event #%d '%s' created with %d occurrences and %d participants",
            parent.id, parent.title, len(children), len(participants),
        )
        return EventCreated(series=EventSeries(parent=parent, children=children), invitations=invitations)

    def _require_event(self, organizer_id: int, event_id: int) -> Event:
        event = self._storage.events.get_event(event_id)
        if event is None or event.organizer_id != organizer_id:
            raise NotFoundError(f"Event #{event_id} not found")
        return event

    def update_event(self, organizer_id: int, event_id: int, changes: dict, now: datetime) -> Event:
        event = self._require_event(organizer_id, event_id)
        updated = apply_event_update(event, changes, now)
        self._storage.events.update_event(updated)
        logger.info("Event #%d updated: %s", event_id, ", ".join(sorted(changes)))
        return updated

    def cancel_event(self, organizer_id: int, event_id: int) -> Event:
        event = self._require_event(organizer_id, event_id)
        cancelled = cancel_event(event)
        self._storage.events.update_event(cancelled)
        logger.info("Event #%d cancelled", event_id)
        return cancelled

    def respond_to_invitation(
        self, user_id: int, invitation_id: int, status: str, now: datetime,
    ) -> Invitation:
        """Accept or decline; the responder's participant rows follow the answer
        on the invited event and every occurrence of its series."""
        with self._storage.transaction() as conn:
            invitation = self._storage.events.get_invitation(invitation_id, conn)
            if invitation is None:
                raise NotFoundError(f"Invitation #{invitation_id} not found")
            event = self._storage.events.get_event(invitation.event_id, conn)
            if event is None:
                raise NotFoundError(f"Event #{invitation.event_id} not found")

            answered = respond_to_invitation(invitation, event, user_id, status, now)
            self._storage.events.save_invitation(answered, conn)

            contact_ids = [
                c.id for c in self._storage.contacts.list_for_user(event.organizer_id)
                if c.linked_user_id == user_id
            ]
            for event_id in self._storage.events.series_ids(event.id, conn):
                self._storage.events.set_participant_status(event_id, contact_ids, status, now, conn)

        logger.info("Invitation #%d %s by user %d", invitation_id, status, user_id)
        return answered

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_stats(self, user_id: int) -> StatsView:
        user = self._require_user(user_id)
        next_level_xp = xp_for_level(user.level)
        return StatsView(
            user=user,
            progress=level_progress(user.total_xp),
            next_level_xp=next_level_xp,
            xp_to_next_level=max(0, next_level_xp - user.total_xp),
            achievements_unlocked=len(self._storage.achievements.unlocked_ids(user_id)),
            achievements_total=len(self._storage.achievements.list_all()),
        )

    def get_activity(self, user_id: int, period: str, today: date) -> ActivityData:
        start, _ = period_bounds(period, today)
        logs = self._storage.activity.list_for_user(user_id, since=start)
        return aggregate_activity(logs, period, today)

    def upcoming_events(self, organizer_id: int, now: datetime, days: int = 7) -> list[Event]:
        horizon = now + timedelta(days=days)
        return [
            e for e in self._storage.events.list_for_organizer(organizer_id, since=now)
            if e.start_date <= horizon
        ]
