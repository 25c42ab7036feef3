"""Cadence → day interval mapping for tracked contacts."""

from __future__ import annotations

CADENCE_DAYS: dict[str, int] = {
    "weekly": 7,
    "monthly": 30,
    "quarterly": 90,
}

CADENCES = ("weekly", "monthly", "quarterly", "custom")

DEFAULT_CADENCE_DAYS = 30


def days_for_cadence(cadence: str | None, custom_days: int | None = None) -> int:
    """Return how many days pass between reminders for a cadence.

    Never fails: a ``custom`` cadence without a positive day count, or an
    unknown cadence, falls back to 30 days.
    """
    if cadence == "custom":
        if isinstance(custom_days, int) and not isinstance(custom_days, bool) and custom_days > 0:
            return custom_days
        return DEFAULT_CADENCE_DAYS
    return CADENCE_DAYS.get(cadence or "", DEFAULT_CADENCE_DAYS)
