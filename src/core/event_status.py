"""Event status state machine.

Time-driven transitions: scheduled → in_progress → completed. ``completed``
and ``cancelled`` are terminal; ``cancelled`` is only ever set by an explicit
user action, never here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Protocol, TypeVar


class EventStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({EventStatus.COMPLETED, EventStatus.CANCELLED})


class _Timed(Protocol):
    status: str
    start_date: datetime
    end_date: datetime


E = TypeVar("E", bound=_Timed)


@dataclass
class StatusScan:
    """Events partitioned by the transition they need."""

    to_in_progress: list = field(default_factory=list)
    to_completed: list = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.to_in_progress and not self.to_completed


def determine_transition(event: _Timed, now: datetime) -> EventStatus | None:
    """Return the status an event should move to at ``now``, or None.

    A scheduled event whose end has already passed goes straight to
    completed; the end check runs before the start check.
    """
    status = EventStatus(event.status)
    if status in TERMINAL_STATUSES:
        return None

    if status is EventStatus.SCHEDULED:
        if now >= event.end_date:
            return EventStatus.COMPLETED
        if now >= event.start_date:
            return EventStatus.IN_PROGRESS
        return None

    # in_progress
    if now >= event.end_date:
        return EventStatus.COMPLETED
    return None


def classify(events: Iterable[E], now: datetime) -> StatusScan:
    """Split events into those entering in_progress and those completing."""
    scan = StatusScan()
    for event in events:
        target = determine_transition(event, now)
        if target is EventStatus.IN_PROGRESS:
            scan.to_in_progress.append(event)
        elif target is EventStatus.COMPLETED:
            scan.to_completed.append(event)
    return scan


def is_valid_transition(from_status: str, to_status: str) -> bool:
    """Check whether an automatic transition is allowed."""
    source = EventStatus(from_status)
    target = EventStatus(to_status)
    if source is target or source in TERMINAL_STATUSES:
        return False
    if source is EventStatus.SCHEDULED:
        return target in (EventStatus.IN_PROGRESS, EventStatus.COMPLETED)
    return target is EventStatus.COMPLETED
