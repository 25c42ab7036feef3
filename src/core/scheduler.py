"""
Keep In Touch — Periodic jobs.

Contact reminder scan: once a day, find each user's tracked contacts that
are due, make sure an open reminder exists for today, and send one
notification listing them.

Event status update: every minute, move scheduled events to in_progress
and in_progress (or overdue scheduled) events to completed.

Event reminders: every minute, notify the organizer and accepted
participants once an event enters its reminder window.

Users who switched a notification kind off still get their reminders
created, but are not messaged.

Every driver takes the clock as an argument and isolates failures per
user or per event: one bad record is logged and the scan moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from src.core.event_status import EventStatus, classify
from src.core.notifications import NotificationKind
from src.core.reminders import due_subset

if TYPE_CHECKING:
    from src.core.notifications import NotificationService
    from src.core.sent_cache import SentNotificationCache
    from src.data.db import Storage
    from src.data.models import Event, User

logger = logging.getLogger(__name__)


@dataclass
class ReminderScanResult:
    users_scanned: int = 0
    reminders_created: int = 0
    notified: int = 0
    muted: int = 0
    failed: int = 0
    errors: int = 0


@dataclass
class StatusUpdateResult:
    to_in_progress: int = 0
    to_completed: int = 0

    @property
    def total(self) -> int:
        return self.to_in_progress + self.to_completed


@dataclass
class EventReminderResult:
    checked: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


# ---------------------------------------------------------------------------
# Contact reminder scan
# ---------------------------------------------------------------------------


async def run_reminder_scan(
    storage: Storage,
    notifications: NotificationService,
    today: date,
) -> ReminderScanResult:
    """Create today's reminders for due contacts and notify each user once."""
    result = ReminderScanResult()

    for user in storage.users.list_users():
        result.users_scanned += 1
        try:
            await _scan_user(storage, notifications, user, today, result)
        except Exception as exc:
            result.errors += 1
            logger.error("Reminder scan failed for user %d: %s", user.id, exc)

    logger.info(
        "Reminder scan done: %d users, %d reminders created, %d notified, %d muted, %d failed",
        result.users_scanned, result.reminders_created, result.notified, result.muted,
        result.failed,
    )
    return result


async def _scan_user(
    storage: Storage,
    notifications: NotificationService,
    user: User,
    today: date,
    result: ReminderScanResult,
) -> None:
    due = due_subset(storage.contacts.list_for_user(user.id, tracked_only=True), today)
    if not due:
        return

    pending = []
    for contact in due:
        reminder = storage.reminders.find_open(contact.id, today)
        if reminder is None:
            reminder = storage.reminders.create(user.id, contact.id, today)
            result.reminders_created += 1
        if not reminder.notification_sent:
            pending.append((reminder, contact))

    if not pending:
        logger.debug("User %d already notified for today's reminders", user.id)
        return
    if not storage.notification_settings.get(user.id).contact_reminders:
        result.muted += 1
        return

    outcome = await notifications.send(
        user.telegram_id,
        NotificationKind.CONTACT_REMINDER,
        {"contacts": [contact.name for _, contact in pending]},
    )
    if outcome.success:
        storage.reminders.mark_notification_sent(r.id for r, _ in pending)
        result.notified += 1
    else:
        result.failed += 1


# ---------------------------------------------------------------------------
# Event status transitions
# ---------------------------------------------------------------------------


def run_event_status_update(storage: Storage, now: datetime) -> StatusUpdateResult:
    """Apply the time-driven status transitions to every active event."""
    scan = classify(storage.events.list_active(), now)
    result = StatusUpdateResult()
    if scan.empty:
        return result

    scheduled_done = [e.id for e in scan.to_completed if e.status == EventStatus.SCHEDULED.value]
    running_done = [e.id for e in scan.to_completed if e.status == EventStatus.IN_PROGRESS.value]

    result.to_completed += storage.events.transition_status(
        scheduled_done, EventStatus.SCHEDULED.value, EventStatus.COMPLETED.value,
    )
    result.to_completed += storage.events.transition_status(
        running_done, EventStatus.IN_PROGRESS.value, EventStatus.COMPLETED.value,
    )
    result.to_in_progress += storage.events.transition_status(
        [e.id for e in scan.to_in_progress],
        EventStatus.SCHEDULED.value, EventStatus.IN_PROGRESS.value,
    )

    logger.info(
        "Event status update: %d started, %d completed",
        result.to_in_progress, result.to_completed,
    )
    return result


# ---------------------------------------------------------------------------
# Event reminders
# ---------------------------------------------------------------------------


def in_reminder_window(event: Event, now: datetime) -> bool:
    """True from ``reminder_minutes`` before the start until the start itself."""
    window_start = event.start_date - timedelta(minutes=event.reminder_minutes)
    return window_start <= now < event.start_date


async def run_event_reminders(
    storage: Storage,
    notifications: NotificationService,
    sent_cache: SentNotificationCache,
    now: datetime,
    cache_ttl: timedelta = timedelta(hours=24),
) -> EventReminderResult:
    """Send each recipient at most one reminder per event."""
    result = EventReminderResult()

    for event in storage.events.list_upcoming_scheduled(now):
        if not in_reminder_window(event, now):
            continue
        result.checked += 1
        try:
            await _remind_event(storage, notifications, sent_cache, event, now, result)
        except Exception as exc:
            result.failed += 1
            logger.error("Event reminder failed for event %d: %s", event.id, exc)

    evicted = sent_cache.clear_older_than(now - cache_ttl)
    if evicted:
        logger.debug("Evicted %d sent-reminder records", evicted)

    if result.sent or result.failed:
        logger.info(
            "Event reminders: %d events, %d sent, %d failed, %d skipped",
            result.checked, result.sent, result.failed, result.skipped,
        )
    return result


async def _remind_event(
    storage: Storage,
    notifications: NotificationService,
    sent_cache: SentNotificationCache,
    event: Event,
    now: datetime,
    result: EventReminderResult,
) -> None:
    for user_id in storage.events.reminder_recipients(event):
        if sent_cache.has_sent(event.id, user_id):
            result.skipped += 1
            continue
        user = storage.users.get_user(user_id)
        if user is None or not storage.notification_settings.get(user_id).event_reminders:
            result.skipped += 1
            continue

        outcome = await notifications.send(
            user.telegram_id, NotificationKind.EVENT_REMINDER, {"event": event},
        )
        if outcome.success:
            sent_cache.mark_sent(event.id, user_id, now)
            result.sent += 1
        else:
            result.failed += 1
