"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
Network-level failures are surfaced as TransientDeliveryError so the
notification service can retry them; anything else (blocked bot, bad chat
id) propagates unchanged.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import BadRequest, NetworkError, RetryAfter, TimedOut

from src.core.errors import TransientDeliveryError

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, user_id: int, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=user_id, text=text, parse_mode="HTML")
        except BadRequest:
            # BadRequest subclasses NetworkError but retrying will not help.
            raise
        except (RetryAfter, TimedOut, NetworkError) as exc:
            logger.warning("Telegram delivery to %d failed: %s", user_id, exc)
            raise TransientDeliveryError(str(exc)) from exc
