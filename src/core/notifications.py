"""
Keep In Touch — Notification service.

Decides how each kind of notification reads and delivers it through a
NotificationPort with bounded exponential backoff. The core only decides
*whether* and *to whom* to notify; delivery mechanics live here and in the
adapter.
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from src.core.errors import TransientDeliveryError

if TYPE_CHECKING:
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

EVENT_TYPE_ICONS = {
    "meeting": "🤝",
    "call": "📞",
    "trip": "✈️",
    "other": "📅",
}


class NotificationKind(Enum):
    CONTACT_REMINDER = "contact_reminder"
    EVENT_REMINDER = "event_reminder"
    INVITATION = "invitation"
    EVENT_CANCELLED = "event_cancelled"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"


@dataclass
class NotificationResult:
    """Outcome of a delivery attempt sequence."""

    success: bool
    telegram_id: int
    retry_count: int = 0
    error: str = ""


# ---------------------------------------------------------------------------
# Message formatting
# ---------------------------------------------------------------------------


def _fmt_when(value: Any) -> str:
    return value.strftime("%d %b %Y, %H:%M") if hasattr(value, "strftime") else str(value)


def format_message(kind: NotificationKind, payload: dict[str, Any]) -> str:
    """Render the text for a notification kind. HTML parse mode."""
    esc = html.escape

    if kind is NotificationKind.CONTACT_REMINDER:
        names = payload.get("contacts", [])
        lines = [f"• {esc(name)}" for name in names]
        noun = "person" if len(names) == 1 else "people"
        return (
            f"👋 <b>Time to reach out</b>\n\n"
            f"You planned to stay in touch with {len(names)} {noun} today:\n"
            + "\n".join(lines)
            + "\n\nUse /due to see reminders and /done &lt;id&gt; once you've talked."
        )

    if kind is NotificationKind.EVENT_REMINDER:
        event = payload["event"]
        icon = EVENT_TYPE_ICONS.get(event.event_type, EVENT_TYPE_ICONS["other"])
        text = (
            f"{icon} <b>Event reminder</b>\n\n"
            f"<b>{esc(event.title)}</b>\n"
            f"📅 {_fmt_when(event.start_date)}\n"
            f"⏱ {event.duration_minutes} min"
        )
        if event.description:
            text += f"\n\n📝 {esc(event.description)}"
        return text

    if kind is NotificationKind.INVITATION:
        event = payload["event"]
        inviter = payload.get("inviter_name", "Someone")
        series = "🔁 Repeating event, your answer covers every occurrence.\n" if event.is_recurring else ""
        return (
            f"💌 <b>{esc(inviter)}</b> invited you to <b>{esc(event.title)}</b>\n"
            f"📅 {_fmt_when(event.start_date)}\n{series}\n"
            f"Reply with /accept {payload.get('invitation_id', '')} or "
            f"/decline {payload.get('invitation_id', '')}"
        )

    if kind is NotificationKind.EVENT_CANCELLED:
        event = payload["event"]
        return (
            f"❌ <b>{esc(event.title)}</b> on {_fmt_when(event.start_date)} was cancelled."
        )

    if kind is NotificationKind.ACHIEVEMENT_UNLOCKED:
        achievement = payload["achievement"]
        return (
            f"{achievement.icon} <b>Achievement unlocked: {esc(achievement.name)}</b>\n"
            f"{esc(achievement.description)}"
        )

    raise ValueError(f"Unsupported notification kind: {kind}")


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class NotificationService:
    """Sends notifications with up to ``max_attempts`` tries.

    Only TransientDeliveryError is retried; the delay doubles after every
    failed attempt (base, 2·base, 4·base, ...).
    """

    def __init__(
        self,
        port: NotificationPort,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._port = port
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._sleep = sleep

    async def send(
        self,
        telegram_id: int,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> NotificationResult:
        text = format_message(kind, payload)
        return await self.send_text(telegram_id, text)

    async def send_text(self, telegram_id: int, text: str) -> NotificationResult:
        failures = 0
        last_error = ""
        while failures < self._max_attempts:
            try:
                await self._port.send_message(telegram_id, text)
                return NotificationResult(success=True, telegram_id=telegram_id, retry_count=failures)
            except TransientDeliveryError as exc:
                failures += 1
                last_error = str(exc)
                if failures < self._max_attempts:
                    delay = self._base_delay * 2 ** (failures - 1)
                    logger.warning(
                        "Retry %d/%d for %d in %.1fs: %s",
                        failures, self._max_attempts, telegram_id, delay, exc,
                    )
                    await self._sleep(delay)
            except Exception as exc:
                logger.error("Notification to %d failed permanently: %s", telegram_id, exc)
                return NotificationResult(
                    success=False, telegram_id=telegram_id, retry_count=failures, error=str(exc),
                )

        logger.error(
            "Notification to %d failed after %d attempts: %s",
            telegram_id, failures, last_error,
        )
        return NotificationResult(
            success=False, telegram_id=telegram_id, retry_count=failures, error=last_error,
        )
