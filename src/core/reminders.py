"""Reminder due engine — pure business logic.

Decides whether a tracked contact needs a "reach out" reminder on a given
day and computes the next reminder date after a completion.

No I/O: this module only transforms data. Callers own persistence and must
check for an existing open reminder before creating a new one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Iterable

from src.core.frequency import days_for_cadence
from src.data.models import Contact, Reminder

logger = logging.getLogger(__name__)


@dataclass
class ReminderCompletion:
    """Outcome of completing a reminder."""

    reminder: Reminder
    contact: Contact
    already_completed: bool = False


def next_due_date(contact: Contact) -> datetime:
    """Return base date + cadence days, where base is the last contact or creation time."""
    base = contact.last_contact_date or contact.created_at
    return base + timedelta(days=days_for_cadence(contact.cadence, contact.custom_days))


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def is_due(contact: Contact, today: date | datetime) -> bool:
    """True if a tracked contact's reminder date is today or earlier.

    Only calendar dates are compared; time of day is ignored on both sides.
    """
    if not contact.tracked:
        return False
    due = contact.next_reminder_date or next_due_date(contact)
    return _as_date(due) <= _as_date(today)


def due_subset(contacts: Iterable[Contact], today: date | datetime) -> list[Contact]:
    """Filter contacts down to those due, preserving input order."""
    return [c for c in contacts if is_due(c, today)]


def refresh_next_reminder(contact: Contact) -> Contact:
    """Return a copy with ``next_reminder_date`` recomputed from the cadence."""
    return replace(contact, next_reminder_date=next_due_date(contact))


def complete_reminder(
    reminder: Reminder, contact: Contact, now: datetime,
) -> ReminderCompletion:
    """Mark a reminder complete and roll the contact's next reminder forward.

    Completing an already-completed reminder is a no-op that returns the
    existing state with ``already_completed=True``.
    """
    if reminder.completed:
        return ReminderCompletion(reminder=reminder, contact=contact, already_completed=True)

    done = replace(reminder, completed=True, completed_at=now)
    touched = replace(contact, last_contact_date=now)
    touched = replace(touched, next_reminder_date=next_due_date(touched))
    logger.debug(
        "Reminder #%d completed, contact #%d next due %s",
        reminder.id, contact.id, touched.next_reminder_date,
    )
    return ReminderCompletion(reminder=done, contact=touched)
