"""Error taxonomy shared by the core, the store and the bot surface.

Pure components raise these; the scheduler drivers and bot handlers decide
whether an error is reported to the user, logged, or counted in a run summary.
"""

from __future__ import annotations


class KeepInTouchError(Exception):
    """Base class for all domain errors."""


class ValidationError(KeepInTouchError):
    """Malformed or out-of-range input. Raised before any state mutation."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(KeepInTouchError):
    """A referenced contact, event, reminder, user or achievement does not exist."""


class ConflictError(KeepInTouchError):
    """Invalid state transition or double-processing (e.g. responding twice)."""


class TransientDeliveryError(KeepInTouchError):
    """A notification could not be delivered; safe to retry."""
