"""
Keep In Touch — Data Models.

Plain dataclasses shared by the core engines and the SQLite store. The core
computes derived fields (next reminder date, event status, level, unlocks);
the store persists whatever the core hands back.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Any


@dataclass
class User:
    """A registered bot user together with their gamification counters."""

    id: int
    telegram_id: int
    display_name: str
    current_streak: int = 0
    longest_streak: int = 0
    total_xp: int = 0
    level: int = 1
    last_activity_date: date | None = None
    created_at: datetime | None = None


@dataclass
class Contact:
    """A tracked relationship.

    ``next_reminder_date`` is a cache; when it is missing the due engine
    derives it from ``last_contact_date`` (or ``created_at``) plus the cadence.
    """

    id: int
    user_id: int
    name: str
    cadence: str = "monthly"             # weekly | monthly | quarterly | custom
    custom_days: int | None = None       # required when cadence == "custom"
    tracked: bool = False
    last_contact_date: datetime | None = None
    next_reminder_date: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime(1970, 1, 1))
    username: str | None = None          # Telegram @username, if known
    linked_user_id: int | None = None    # set when the contact is also a user


@dataclass
class Reminder:
    """A "reach out to this contact" reminder for one due day."""

    id: int
    user_id: int
    contact_id: int
    due_date: date
    completed: bool = False
    completed_at: datetime | None = None
    notification_sent: bool = False


@dataclass
class Event:
    """A calendar event. Generated occurrences point back via parent_event_id."""

    id: int
    organizer_id: int
    title: str
    event_type: str                      # meeting | call | trip | other
    start_date: datetime
    end_date: datetime
    duration_minutes: int
    status: str = "scheduled"            # scheduled | in_progress | completed | cancelled
    custom_type: str | None = None
    description: str | None = None
    is_recurring: bool = False
    recurrence_pattern: str | None = None   # daily | weekly | monthly | custom
    recurrence_interval: int | None = None  # days, custom pattern only
    parent_event_id: int | None = None
    reminder_minutes: int = 60


@dataclass
class EventParticipant:
    id: int
    event_id: int
    contact_id: int
    status: str = "pending"              # pending | accepted | declined
    responded_at: datetime | None = None


@dataclass
class Invitation:
    id: int
    event_id: int
    inviter_id: int
    invitee_id: int
    status: str = "pending"              # pending | accepted | declined
    responded_at: datetime | None = None


@dataclass(frozen=True)
class AchievementCriteria:
    """Thresholds an achievement requires. Absent thresholds are ignored."""

    min_streak: int | None = None
    min_level: int | None = None
    min_xp: int | None = None
    min_contacts: int | None = None
    min_reminders_completed: int | None = None

    def to_dict(self) -> dict[str, int]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AchievementCriteria:
        known = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in data.items() if k in known and v is not None})


@dataclass
class Achievement:
    id: int
    code: str
    name: str
    description: str
    icon: str
    xp_reward: int
    criteria: AchievementCriteria


@dataclass
class UserAchievement:
    id: int
    user_id: int
    achievement_id: int
    unlocked_at: datetime


@dataclass(frozen=True)
class ActivityLog:
    """An immutable record of XP awarded for an action.

    The activity log is the source of truth for activity aggregation, so
    entries are never updated once written.
    """

    user_id: int
    action: str
    xp_awarded: int
    created_at: datetime
    metadata: dict[str, Any] | None = None
    id: int | None = None


@dataclass
class NotificationSettings:
    """Per-user notification switches. Users without a stored row get these defaults."""

    user_id: int
    contact_reminders: bool = True
    event_reminders: bool = True
    invitations: bool = True
    default_reminder_minutes: int = 60   # 15 | 30 | 60 | 1440
    updated_at: datetime | None = None

    @property
    def muted(self) -> bool:
        return not (self.contact_reminders or self.event_reminders or self.invitations)
