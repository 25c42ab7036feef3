"""
Keep In Touch — Event rules.

Validation of create/update requests, materialization of recurring series,
cancellation, and invitation responses. Everything here is pure: it either
returns new records for the store to persist or raises a typed error before
anything is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from src.core.errors import ConflictError, NotFoundError, ValidationError
from src.core.event_status import TERMINAL_STATUSES, EventStatus
from src.core.recurrence import generate_occurrences, parse_start_date, validate_recurrence
from src.data.models import Event, Invitation

logger = logging.getLogger(__name__)

EVENT_TYPES = ("meeting", "call", "trip", "other")
RESPONSE_STATUSES = ("accepted", "declined")

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 1440  # 24 hours
MAX_TITLE_LENGTH = 255
MAX_CUSTOM_TYPE_LENGTH = 100
DEFAULT_REMINDER_MINUTES = 60


@dataclass
class EventRequest:
    """Input for creating an event (and, when recurring, its series)."""

    title: str
    event_type: str
    start_date: datetime | str
    duration_minutes: int
    custom_type: str | None = None
    description: str | None = None
    is_recurring: bool = False
    recurrence_pattern: str | None = None
    recurrence_interval: int | None = None
    recurrence_count: int | None = None
    reminder_minutes: int | None = None  # None: DEFAULT_REMINDER_MINUTES
    participant_contact_ids: list[int] = field(default_factory=list)


@dataclass
class EventSeries:
    """The origin event plus generated children, not yet persisted.

    Children carry ``parent_event_id=None`` until the store has assigned the
    parent's id.
    """

    parent: Event
    children: list[Event] = field(default_factory=list)

    def __len__(self) -> int:
        return 1 + len(self.children)


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------


def _validate_title(title: str | None) -> str:
    if not title or not title.strip():
        raise ValidationError("Title is required", field="title")
    title = title.strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"Title must be at most {MAX_TITLE_LENGTH} characters", field="title",
        )
    return title


def _validate_type(event_type: str | None, custom_type: str | None) -> str | None:
    """Validate the type pair and return the normalized custom type."""
    if not event_type:
        raise ValidationError("Event type is required", field="event_type")
    if event_type not in EVENT_TYPES:
        raise ValidationError(
            f"Unknown event type {event_type!r}. Allowed: {', '.join(EVENT_TYPES)}",
            field="event_type",
        )
    if event_type != "other":
        return None
    if not custom_type or not custom_type.strip():
        raise ValidationError('Describe the event type when using "other"', field="custom_type")
    custom_type = custom_type.strip()
    if len(custom_type) > MAX_CUSTOM_TYPE_LENGTH:
        raise ValidationError(
            f"Custom type must be at most {MAX_CUSTOM_TYPE_LENGTH} characters",
            field="custom_type",
        )
    return custom_type


def _validate_start(start_date: datetime | str | None, now: datetime) -> datetime:
    start = parse_start_date(start_date)
    if start <= now:
        raise ValidationError("Event must start in the future", field="start_date")
    return start


def _validate_duration(duration: int | None) -> int:
    if not isinstance(duration, int) or isinstance(duration, bool):
        raise ValidationError("Duration must be a whole number of minutes", field="duration")
    if not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
        raise ValidationError(
            f"Duration must be between {MIN_DURATION_MINUTES} and "
            f"{MAX_DURATION_MINUTES} minutes",
            field="duration",
        )
    return duration


def _validate_reminder_minutes(minutes: int | None) -> int:
    if minutes is None:
        return DEFAULT_REMINDER_MINUTES
    if not isinstance(minutes, int) or isinstance(minutes, bool) or minutes < 0:
        raise ValidationError(
            "Reminder minutes must be a non-negative integer", field="reminder_minutes",
        )
    return minutes


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def validate_event_request(request: EventRequest, now: datetime) -> datetime:
    """Validate a create request. Returns the parsed start date."""
    _validate_title(request.title)
    _validate_type(request.event_type, request.custom_type)
    start = _validate_start(request.start_date, now)
    _validate_duration(request.duration_minutes)
    _validate_reminder_minutes(request.reminder_minutes)
    if request.is_recurring:
        validate_recurrence(
            start,
            request.recurrence_pattern,
            request.recurrence_interval,
            request.recurrence_count,
            request.duration_minutes,
        )
    return start


def build_event_series(request: EventRequest, organizer_id: int, now: datetime) -> EventSeries:
    """Validate ``request`` and build the parent event plus its occurrences."""
    start = validate_event_request(request, now)
    duration = request.duration_minutes

    parent = Event(
        id=0,
        organizer_id=organizer_id,
        title=_validate_title(request.title),
        event_type=request.event_type,
        custom_type=_validate_type(request.event_type, request.custom_type),
        description=(request.description or "").strip() or None,
        start_date=start,
        end_date=start + timedelta(minutes=duration),
        duration_minutes=duration,
        status=EventStatus.SCHEDULED.value,
        is_recurring=request.is_recurring,
        recurrence_pattern=request.recurrence_pattern if request.is_recurring else None,
        recurrence_interval=(
            request.recurrence_interval
            if request.is_recurring and request.recurrence_pattern == "custom"
            else None
        ),
        reminder_minutes=_validate_reminder_minutes(request.reminder_minutes),
    )
    series = EventSeries(parent=parent)
    if not request.is_recurring:
        return series

    for occurrence in generate_occurrences(
        start,
        request.recurrence_pattern,
        duration,
        interval=request.recurrence_interval,
        count=request.recurrence_count,
    ):
        series.children.append(replace(
            parent,
            start_date=occurrence.start,
            end_date=occurrence.end,
            is_recurring=False,
            recurrence_pattern=None,
            recurrence_interval=None,
        ))

    logger.info(
        "Built %s series '%s' with %d occurrences", request.recurrence_pattern,
        parent.title, len(series),
    )
    return series


# ---------------------------------------------------------------------------
# Update / cancel
# ---------------------------------------------------------------------------


def _ensure_mutable(event: Event) -> None:
    if EventStatus(event.status) in TERMINAL_STATUSES:
        raise ConflictError(f"Event #{event.id} is {event.status} and can no longer be changed")


def apply_event_update(event: Event, changes: dict, now: datetime) -> Event:
    """Return ``event`` with the given field changes applied and re-validated.

    Supported keys: title, event_type, custom_type, description, start_date,
    duration_minutes, reminder_minutes. ``end_date`` is always recomputed.
    """
    _ensure_mutable(event)

    allowed = {
        "title", "event_type", "custom_type", "description",
        "start_date", "duration_minutes", "reminder_minutes",
    }
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    updated = event
    if "title" in changes:
        updated = replace(updated, title=_validate_title(changes["title"]))
    if "event_type" in changes or "custom_type" in changes:
        event_type = changes.get("event_type", updated.event_type)
        custom_type = _validate_type(event_type, changes.get("custom_type", updated.custom_type))
        updated = replace(updated, event_type=event_type, custom_type=custom_type)
    if "description" in changes:
        updated = replace(updated, description=(changes["description"] or "").strip() or None)
    if "start_date" in changes:
        updated = replace(updated, start_date=_validate_start(changes["start_date"], now))
    if "duration_minutes" in changes:
        updated = replace(updated, duration_minutes=_validate_duration(changes["duration_minutes"]))
    if "reminder_minutes" in changes:
        updated = replace(
            updated, reminder_minutes=_validate_reminder_minutes(changes["reminder_minutes"]),
        )

    return replace(
        updated, end_date=updated.start_date + timedelta(minutes=updated.duration_minutes),
    )


def cancel_event(event: Event) -> Event:
    """Move an event to ``cancelled``. Terminal events cannot be cancelled."""
    if event.status == EventStatus.CANCELLED.value:
        raise ConflictError(f"Event #{event.id} is already cancelled")
    _ensure_mutable(event)
    return replace(event, status=EventStatus.CANCELLED.value)


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


def respond_to_invitation(
    invitation: Invitation,
    event: Event,
    responder_id: int,
    status: str,
    now: datetime,
) -> Invitation:
    """Accept or decline an invitation exactly once."""
    if status not in RESPONSE_STATUSES:
        raise ValidationError('Status must be "accepted" or "declined"', field="status")
    if invitation.invitee_id != responder_id:
        raise NotFoundError(f"Invitation #{invitation.id} not found")
    if invitation.status != "pending":
        raise ConflictError(f"Invitation #{invitation.id} was already {invitation.status}")
    if event.status == EventStatus.CANCELLED.value:
        raise ConflictError(f"Event #{event.id} was cancelled")
    return replace(invitation, status=status, responded_at=now)


def event_type_label(event: Event) -> str:
    if event.event_type == "other" and event.custom_type:
        return event.custom_type
    return event.event_type
