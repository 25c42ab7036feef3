"""Tests for src.core.event_status — time-driven event transitions."""

from datetime import datetime, timedelta

import pytest

from src.core.event_status import (
    EventStatus,
    classify,
    determine_transition,
    is_valid_transition,
)
from src.data.models import Event

START = datetime(2026, 5, 1, 14, 0)


def _event(status="scheduled", event_id=1, minutes=60) -> Event:
    return Event(
        id=event_id,
        organizer_id=1,
        title="Coffee",
        event_type="meeting",
        start_date=START,
        end_date=START + timedelta(minutes=minutes),
        duration_minutes=minutes,
        status=status,
    )


class TestDetermineTransition:
    def test_before_start(self):
        assert determine_transition(_event(), START - timedelta(minutes=1)) is None

    def test_at_start(self):
        assert determine_transition(_event(), START) is EventStatus.IN_PROGRESS

    def test_at_end_from_in_progress(self):
        e = _event(status="in_progress")
        assert determine_transition(e, START + timedelta(minutes=60)) is EventStatus.COMPLETED

    def test_in_progress_before_end(self):
        e = _event(status="in_progress")
        assert determine_transition(e, START + timedelta(minutes=30)) is None

    def test_scheduled_past_end_goes_straight_to_completed(self):
        assert determine_transition(_event(), START + timedelta(hours=5)) is EventStatus.COMPLETED

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_terminal_states_never_move(self, status):
        assert determine_transition(_event(status=status), START + timedelta(days=1)) is None


class TestClassify:
    def test_partition(self):
        events = [
            _event(event_id=1),
            _event(event_id=2, status="in_progress", minutes=15),
            _event(event_id=3, status="cancelled"),
        ]
        scan = classify(events, START + timedelta(minutes=20))
        assert [e.id for e in scan.to_in_progress] == [1]
        assert [e.id for e in scan.to_completed] == [2]

    def test_empty(self):
        assert classify([], START).empty


class TestIsValidTransition:
    def test_allowed(self):
        assert is_valid_transition("scheduled", "in_progress")
        assert is_valid_transition("scheduled", "completed")
        assert is_valid_transition("in_progress", "completed")

    def test_disallowed(self):
        assert not is_valid_transition("in_progress", "scheduled")
        assert not is_valid_transition("completed", "in_progress")
        assert not is_valid_transition("cancelled", "scheduled")
        assert not is_valid_transition("scheduled", "scheduled")
