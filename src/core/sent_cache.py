"""In-memory record of event reminders already delivered.

Best-effort and non-durable: it only stops the per-minute event reminder
job from messaging the same person twice while the process is alive. After
a restart the job re-evaluates due-ness from persisted event times.
"""

from __future__ import annotations

import logging
from datetime import datetime

logger = logging.getLogger(__name__)


class SentNotificationCache:
    """Tracks (event_id, user_id) pairs with the time they were sent."""

    def __init__(self) -> None:
        self._sent: dict[tuple[int, int], datetime] = {}

    def has_sent(self, event_id: int, user_id: int) -> bool:
        return (event_id, user_id) in self._sent

    def mark_sent(self, event_id: int, user_id: int, sent_at: datetime) -> None:
        self._sent[(event_id, user_id)] = sent_at

    def clear_older_than(self, cutoff: datetime) -> int:
        """Drop entries sent before ``cutoff``. Returns how many were removed."""
        stale = [key for key, sent_at in self._sent.items() if sent_at < cutoff]
        for key in stale:
            del self._sent[key]
        if stale:
            logger.debug("Cleared %d sent-reminder records", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._sent.clear()

    def __len__(self) -> int:
        return len(self._sent)
