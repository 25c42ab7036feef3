"""
Keep In Touch — Telegram Bot.

Telegram is the only user interface. Every command registers the sender on
first contact, calls the ActionService, and renders the result. The same
Application owns the JobQueue that drives the periodic scans.

Domain errors become friendly replies; anything else is logged and the
user gets a generic apology.
"""

from __future__ import annotations

import html
import logging
from datetime import datetime, timedelta
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from src.config import settings
from src.core.action_service import ActionService
from src.core.errors import ConflictError, NotFoundError, ValidationError
from src.core.events import EVENT_TYPES, EventRequest, event_type_label
from src.core.frequency import CADENCES, days_for_cadence
from src.core.locks import UserLocks
from src.core.notifications import (
    EVENT_TYPE_ICONS,
    NotificationKind,
    NotificationService,
    format_message,
)
from src.core.recurrence import describe_pattern
from src.core.scheduler import run_event_reminders, run_event_status_update, run_reminder_scan
from src.core.sent_cache import SentNotificationCache
from src.data.db import Storage
from src.data.seeds import seed_achievements

if TYPE_CHECKING:
    from src.data.models import User
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

Handler = Callable[..., Coroutine[Any, Any, None]]


def _now() -> datetime:
    """Wall clock in the configured timezone, as a naive datetime."""
    return datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)


async def _reply(update: Update, text: str) -> None:
    await update.message.reply_text(text, parse_mode="HTML")


# ---------------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------------


def admin_only(func: Handler) -> Handler:
    """Silently ignore commands from anyone not in ADMIN_USER_IDS."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ADMIN_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Non-admin tried an admin command: user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


def with_user(func: Handler) -> Handler:
    """Register the sender if needed and pass their User to the handler.

    Domain errors are answered in the chat; unexpected ones are logged.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        tg_user = update.effective_user
        if tg_user is None or update.message is None:
            return
        service: ActionService = context.bot_data["service"]
        try:
            user = service.register_user(
                tg_user.id, tg_user.full_name or tg_user.username or str(tg_user.id), _now(),
            )
            await func(update, context, user)
        except ValidationError as exc:
            await _reply(update, f"⚠️ {html.escape(str(exc))}")
        except NotFoundError as exc:
            await _reply(update, f"🔍 {html.escape(str(exc))}")
        except ConflictError as exc:
            await _reply(update, f"⛔ {html.escape(str(exc))}")
        except Exception as exc:
            logger.error("/%s error: %s", func.__name__.removeprefix("cmd_"), exc)
            await _reply(update, "Sorry, something went wrong. Please try again.")

    return wrapper


def _int_arg(args: list[str], index: int, what: str) -> int:
    try:
        return int(args[index])
    except (IndexError, ValueError):
        raise ValidationError(f"Please give a numeric {what}") from None


# ---------------------------------------------------------------------------
# Basic commands
# ---------------------------------------------------------------------------

HELP_TEXT = (
    "<b>Contacts</b>\n"
    "/addcontact &lt;name&gt; [weekly|monthly|quarterly|custom &lt;days&gt;]\n"
    "/contacts — list your contacts\n"
    "/track &lt;id&gt; &lt;cadence&gt; [days] — set how often to reach out\n"
    "/untrack &lt;id&gt; — stop reminders for a contact\n"
    "/link &lt;id&gt; &lt;telegram id&gt; — link a contact who uses this bot\n"
    "/deletecontact &lt;id&gt; — remove a contact\n\n"
    "<b>Reminders</b>\n"
    "/due — open reminders\n"
    "/done &lt;reminder id&gt; — mark that you got in touch\n\n"
    "<b>Progress</b>\n"
    "/stats — level, XP and streak\n"
    "/activity [week|month] — daily activity\n"
    "/achievements — unlocked achievements\n\n"
    "<b>Notifications</b>\n"
    "/notify — show settings\n"
    "/notify on|off · /notify reminders|events|invitations on|off\n"
    "/notify default 15|30|60|1440 — reminder time for new events\n\n"
    "<b>Events</b>\n"
    "/newevent &lt;YYYY-MM-DDTHH:MM&gt; &lt;minutes&gt; &lt;type&gt; &lt;title&gt; "
    "[| repeat &lt;pattern&gt; [count] [interval]] [| with &lt;contact ids&gt;]\n"
    "/events — upcoming events and invitations\n"
    "/cancelevent &lt;id&gt;\n"
    "/accept &lt;invitation id&gt; · /decline &lt;invitation id&gt;"
)


@with_user
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /start — register and greet."""
    await _reply(
        update,
        f"Welcome to <b>Keep In Touch</b>, {html.escape(user.display_name)}!\n\n"
        "Add the people you care about, pick how often you want to talk, and "
        "I'll remind you when it's time. Every conversation earns XP.\n\n"
        "Type /help for the full command list.",
    )


@with_user
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    await _reply(update, HELP_TEXT)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


def _parse_cadence_args(args: list[str]) -> tuple[list[str], str | None, int | None]:
    """Split trailing ``<cadence> [days]`` off an argument list."""
    rest = list(args)
    custom_days = None
    if len(rest) >= 2 and rest[-2].lower() == "custom" and rest[-1].isdigit():
        custom_days = int(rest.pop())
    if rest and rest[-1].lower() in CADENCES:
        return rest[:-1], rest[-1].lower(), custom_days
    return rest, None, custom_days


def _cadence_label(cadence: str, custom_days: int | None) -> str:
    if cadence == "custom":
        return f"every {days_for_cadence(cadence, custom_days)} days"
    return cadence


@with_user
async def cmd_addcontact(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /addcontact <name> [cadence] [days]."""
    words, cadence, custom_days = _parse_cadence_args(context.args or [])
    if not words:
        await _reply(update, "Usage: /addcontact &lt;name&gt; [cadence] [days]")
        return

    service: ActionService = context.bot_data["service"]
    added = await service.add_contact(
        user.id, " ".join(words), _now(),
        cadence=cadence or "monthly", custom_days=custom_days,
    )
    contact = added.contact
    lines = [
        f"✅ Added <b>{html.escape(contact.name)}</b> (#{contact.id}), "
        f"{_cadence_label(contact.cadence, contact.custom_days)}.",
        f"Next reminder: {contact.next_reminder_date:%d %b %Y}",
        f"+{added.progress.xp_awarded} XP",
    ]
    lines.extend(_unlock_lines(added.progress.unlocked))
    await _reply(update, "\n".join(lines))


@with_user
async def cmd_contacts(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /contacts — list every contact with its tracking state."""
    storage: Storage = context.bot_data["storage"]
    contacts = storage.contacts.list_for_user(user.id)
    if not contacts:
        await _reply(update, "No contacts yet. Add one with /addcontact.")
        return

    lines = ["<b>Your contacts:</b>\n"]
    for c in contacts:
        if c.tracked and c.next_reminder_date:
            state = f"{_cadence_label(c.cadence, c.custom_days)}, next {c.next_reminder_date:%d %b}"
        else:
            state = "not tracked"
        linked = " 🔗" if c.linked_user_id else ""
        lines.append(f"<code>{c.id}</code> — {html.escape(c.name)}{linked} ({state})")
    await _reply(update, "\n".join(lines))


@with_user
async def cmd_track(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /track <id> <cadence> [days]."""
    args = context.args or []
    contact_id = _int_arg(args, 0, "contact id")
    _, cadence, custom_days = _parse_cadence_args(args[1:])
    if cadence is None:
        await _reply(update, f"Usage: /track &lt;id&gt; &lt;{'|'.join(CADENCES)}&gt; [days]")
        return

    service: ActionService = context.bot_data["service"]
    contact = service.update_contact(
        user.id, contact_id, cadence=cadence, custom_days=custom_days, tracked=True,
    )
    await _reply(
        update,
        f"🔔 Tracking <b>{html.escape(contact.name)}</b> "
        f"{_cadence_label(contact.cadence, contact.custom_days)}. "
        f"Next reminder: {contact.next_reminder_date:%d %b %Y}",
    )


@with_user
async def cmd_untrack(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    contact_id = _int_arg(context.args or [], 0, "contact id")
    service: ActionService = context.bot_data["service"]
    contact = service.update_contact(user.id, contact_id, tracked=False)
    await _reply(update, f"🔕 No more reminders for <b>{html.escape(contact.name)}</b>.")


@with_user
async def cmd_link(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /link <contact id> <telegram id>."""
    args = context.args or []
    contact_id = _int_arg(args, 0, "contact id")
    telegram_id = _int_arg(args, 1, "Telegram id")
    service: ActionService = context.bot_data["service"]
    contact = service.link_contact(user.id, contact_id, telegram_id)
    await _reply(
        update,
        f"🔗 <b>{html.escape(contact.name)}</b> is linked and will get event invitations.",
    )


@with_user
async def cmd_deletecontact(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /deletecontact <id>."""
    contact_id = _int_arg(context.args or [], 0, "contact id")
    service: ActionService = context.bot_data["service"]
    contact = service.delete_contact(user.id, contact_id)
    await _reply(update, f"🗑 Removed <b>{html.escape(contact.name)}</b> and their reminders.")


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


@with_user
async def cmd_due(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /due — list open reminders."""
    storage: Storage = context.bot_data["storage"]
    reminders = storage.reminders.list_open(user.id)
    if not reminders:
        await _reply(update, "Nothing due. 🎉")
        return

    lines = ["<b>Open reminders:</b>\n"]
    for r in reminders:
        contact = storage.contacts.get_contact(r.contact_id)
        name = html.escape(contact.name) if contact else f"contact #{r.contact_id}"
        lines.append(f"<code>{r.id}</code> — {name} (due {r.due_date:%d %b})")
    lines.append("\nMark one done with /done &lt;id&gt;.")
    await _reply(update, "\n".join(lines))


def _unlock_lines(achievements) -> list[str]:
    return [
        "\n" + format_message(NotificationKind.ACHIEVEMENT_UNLOCKED, {"achievement": a})
        for a in achievements
    ]


@with_user
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /done <reminder id>."""
    reminder_id = _int_arg(context.args or [], 0, "reminder id")
    service: ActionService = context.bot_data["service"]
    done = await service.complete_reminder(user.id, reminder_id, _now())

    if done.already_completed:
        await _reply(update, f"Reminder {reminder_id} was already done. 👍")
        return

    progress = done.progress
    lines = [
        f"✅ Nice! You caught up with <b>{html.escape(done.contact.name)}</b>.",
        f"+{progress.xp_awarded} XP · 🔥 streak {progress.user.current_streak}",
        f"Next reminder: {done.contact.next_reminder_date:%d %b %Y}",
    ]
    if progress.leveled_up:
        lines.append(f"⬆️ Level up! You're now level {progress.user.level}.")
    lines.extend(_unlock_lines(progress.unlocked))
    await _reply(update, "\n".join(lines))


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def _progress_bar(fraction: float, width: int = 10) -> str:
    filled = round(fraction * width)
    return "▓" * filled + "░" * (width - filled)


@with_user
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    service: ActionService = context.bot_data["service"]
    stats = service.get_stats(user.id)
    u = stats.user
    await _reply(
        update,
        f"<b>Level {u.level}</b>  {_progress_bar(stats.progress)}  {stats.progress:.0%}\n"
        f"{u.total_xp} XP · {stats.xp_to_next_level} XP to level {u.level + 1}\n"
        f"🔥 Streak: {u.current_streak} (best {u.longest_streak})\n"
        f"🏅 Achievements: {stats.achievements_unlocked}/{stats.achievements_total}",
    )


@with_user
async def cmd_activity(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /activity [week|month]."""
    period = (context.args or ["week"])[0].lower()
    service: ActionService = context.bot_data["service"]
    data = service.get_activity(user.id, period, _now().date())

    lines = [f"<b>Activity, last {period}</b>\n"]
    for day in data.activities:
        if day.completed_reminders or day.xp_earned:
            lines.append(f"{day.date}: {day.completed_reminders} ✅ · {day.xp_earned} XP")
    if len(lines) == 1:
        lines.append("No activity yet.")
    lines.append(f"\nTotal: {data.total_completed} reminders, {data.total_xp} XP")
    await _reply(update, "\n".join(lines))


@with_user
async def cmd_achievements(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    storage: Storage = context.bot_data["storage"]
    unlocked = storage.achievements.list_unlocked(user.id)
    total = len(storage.achievements.list_all())
    if not unlocked:
        await _reply(update, f"No achievements yet (0/{total}). Keep going!")
        return

    lines = [f"<b>Achievements {len(unlocked)}/{total}</b>\n"]
    for achievement, ua in unlocked:
        lines.append(
            f"{achievement.icon} <b>{html.escape(achievement.name)}</b> — "
            f"{html.escape(achievement.description)} ({ua.unlocked_at:%d %b %Y})"
        )
    await _reply(update, "\n".join(lines))


# ---------------------------------------------------------------------------
# Notification settings
# ---------------------------------------------------------------------------

_NOTIFY_KINDS = {
    "reminders": "contact_reminders",
    "events": "event_reminders",
    "invitations": "invitations",
}
_SWITCHES = {"on": True, "off": False}


def _parse_notify_args(args: list[str]) -> dict[str, Any]:
    """Map ``on|off``, ``<kind> on|off`` or ``default <minutes>`` to setting changes."""
    words = [a.lower() for a in args]
    if len(words) == 1 and words[0] in _SWITCHES:
        return {"enabled": _SWITCHES[words[0]]}
    if len(words) == 2 and words[0] in _NOTIFY_KINDS and words[1] in _SWITCHES:
        return {_NOTIFY_KINDS[words[0]]: _SWITCHES[words[1]]}
    if len(words) == 2 and words[0] == "default":
        return {"default_reminder_minutes": _int_arg(words, 1, "reminder time")}
    raise ValidationError(
        "Usage: /notify on|off, /notify reminders|events|invitations on|off, "
        "or /notify default 15|30|60|1440",
    )


def _render_settings(prefs) -> str:
    def flag(value: bool) -> str:
        return "on ✅" if value else "off 🔕"

    if prefs.muted:
        return (
            "🔕 All notifications are off. Turn them back on with /notify on.\n"
            f"New events remind you {prefs.default_reminder_minutes} min before"
        )
    return (
        "<b>Notifications</b>\n"
        f"Contact reminders: {flag(prefs.contact_reminders)}\n"
        f"Event reminders: {flag(prefs.event_reminders)}\n"
        f"Invitations: {flag(prefs.invitations)}\n"
        f"New events remind you {prefs.default_reminder_minutes} min before"
    )


@with_user
async def cmd_notify(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /notify — show or change notification settings."""
    service: ActionService = context.bot_data["service"]
    args = context.args or []
    if not args:
        prefs = service.get_notification_settings(user.id)
    else:
        prefs = service.update_notification_settings(user.id, _now(), **_parse_notify_args(args))
    await _reply(update, _render_settings(prefs))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def _parse_event_args(text: str) -> EventRequest:
    """Parse ``<start> <minutes> <type> <title> [| repeat ...] [| with ...]``."""
    head, *options = [part.strip() for part in text.split("|")]
    words = head.split()
    if len(words) < 4:
        raise ValidationError(
            "Usage: /newevent <YYYY-MM-DDTHH:MM> <minutes> <type> <title>",
        )
    start, minutes, event_type, *title = words
    custom_type = None
    if event_type.startswith("other:"):
        event_type, custom_type = "other", event_type.split(":", 1)[1]
    if event_type not in EVENT_TYPES:
        raise ValidationError(
            f"Event type must be one of: {', '.join(EVENT_TYPES)}", field="event_type",
        )

    request = EventRequest(
        title=" ".join(title),
        event_type=event_type,
        custom_type=custom_type,
        start_date=start,
        duration_minutes=_int_arg([minutes], 0, "duration"),
    )

    for option in options:
        keyword, *values = option.split()
        if keyword == "repeat" and values:
            request.is_recurring = True
            request.recurrence_pattern = values[0]
            if len(values) > 1:
                request.recurrence_count = _int_arg(values, 1, "occurrence count")
            if len(values) > 2:
                request.recurrence_interval = _int_arg(values, 2, "interval")
        elif keyword == "with":
            request.participant_contact_ids = [
                _int_arg(values, i, "contact id") for i in range(len(values))
            ]
        else:
            raise ValidationError(f"Unknown option: {option}")
    return request


@with_user
async def cmd_newevent(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /newevent — create an event, optionally recurring and with participants."""
    request = _parse_event_args(" ".join(context.args or []))
    service: ActionService = context.bot_data["service"]
    created = service.create_event(user.id, request, _now())
    parent = created.series.parent

    lines = [
        f"{EVENT_TYPE_ICONS.get(parent.event_type, '📅')} Created <b>{html.escape(parent.title)}</b> "
        f"(#{parent.id}) on {parent.start_date:%d %b %Y, %H:%M}",
    ]
    if parent.is_recurring:
        lines.append(
            f"🔁 {describe_pattern(parent.recurrence_pattern, parent.recurrence_interval)}, "
            f"{len(created.series.children)} more occurrences",
        )

    notifications: NotificationService = context.bot_data["notifications"]
    storage: Storage = context.bot_data["storage"]
    sent = 0
    for invitation in created.invitations:
        invitee = storage.users.get_user(invitation.invitee_id)
        if invitee is None or not storage.notification_settings.get(invitee.id).invitations:
            continue
        event = storage.events.get_event(invitation.event_id)
        result = await notifications.send(
            invitee.telegram_id,
            NotificationKind.INVITATION,
            {"event": event, "inviter_name": user.display_name, "invitation_id": invitation.id},
        )
        sent += int(result.success)
    if created.invitations:
        lines.append(f"💌 {sent}/{len(created.invitations)} invitations delivered")
    await _reply(update, "\n".join(lines))


@with_user
async def cmd_events(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /events — upcoming events for the next 30 days plus pending invitations."""
    service: ActionService = context.bot_data["service"]
    storage: Storage = context.bot_data["storage"]
    events = service.upcoming_events(user.id, _now(), days=30)
    invitations = storage.events.list_pending_invitations(user.id)

    if not events and not invitations:
        await _reply(update, "No upcoming events.")
        return

    lines = []
    if events:
        lines.append("<b>Upcoming events:</b>\n")
        for e in events:
            icon = EVENT_TYPE_ICONS.get(e.event_type, "📅")
            lines.append(
                f"<code>{e.id}</code> {icon} {e.start_date:%d %b %H:%M} "
                f"{html.escape(e.title)} ({html.escape(event_type_label(e))}, {e.status})"
            )
    if invitations:
        lines.append("\n<b>Pending invitations:</b>\n")
        for inv in invitations:
            event = storage.events.get_event(inv.event_id)
            title = html.escape(event.title) if event else f"event #{inv.event_id}"
            lines.append(f"<code>{inv.id}</code> — {title}")
        lines.append("\nAnswer with /accept &lt;id&gt; or /decline &lt;id&gt;.")
    await _reply(update, "\n".join(lines))


@with_user
async def cmd_cancelevent(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Handle /cancelevent <id> — cancel and tell accepted participants."""
    event_id = _int_arg(context.args or [], 0, "event id")
    service: ActionService = context.bot_data["service"]
    storage: Storage = context.bot_data["storage"]
    notifications: NotificationService = context.bot_data["notifications"]

    event = service.cancel_event(user.id, event_id)
    for recipient_id in storage.events.reminder_recipients(event):
        if recipient_id == user.id:
            continue
        recipient = storage.users.get_user(recipient_id)
        if recipient is not None:
            await notifications.send(
                recipient.telegram_id, NotificationKind.EVENT_CANCELLED, {"event": event},
            )
    await _reply(update, f"❌ Cancelled <b>{html.escape(event.title)}</b>.")


async def _respond(
    update: Update, context: ContextTypes.DEFAULT_TYPE, user: User, status: str,
) -> None:
    invitation_id = _int_arg(context.args or [], 0, "invitation id")
    service: ActionService = context.bot_data["service"]
    service.respond_to_invitation(user.id, invitation_id, status, _now())
    icon = "✅" if status == "accepted" else "🙅"
    await _reply(update, f"{icon} Invitation {invitation_id} {status}.")


@with_user
async def cmd_accept(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    await _respond(update, context, user, "accepted")


@with_user
async def cmd_decline(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    await _respond(update, context, user, "declined")


# ---------------------------------------------------------------------------
# Scheduled jobs (also runnable by admins)
# ---------------------------------------------------------------------------


async def _reminder_scan_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    bd = context.bot_data
    await run_reminder_scan(bd["storage"], bd["notifications"], _now().date())


async def _event_status_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    run_event_status_update(context.bot_data["storage"], _now())


async def _event_reminder_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    bd = context.bot_data
    await run_event_reminders(
        bd["storage"], bd["notifications"], bd["sent_cache"], _now(),
        cache_ttl=timedelta(hours=settings.SENT_CACHE_TTL_HOURS),
    )


@admin_only
async def cmd_runscan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    bd = context.bot_data
    result = await run_reminder_scan(bd["storage"], bd["notifications"], _now().date())
    await _reply(
        update,
        f"Reminder scan: {result.users_scanned} users, {result.reminders_created} created, "
        f"{result.notified} notified, {result.failed} failed, {result.errors} errors",
    )


@admin_only
async def cmd_runstatus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    bd = context.bot_data
    now = _now()
    status = run_event_status_update(bd["storage"], now)
    reminders = await run_event_reminders(
        bd["storage"], bd["notifications"], bd["sent_cache"], now,
        cache_ttl=timedelta(hours=settings.SENT_CACHE_TTL_HOURS),
    )
    await _reply(
        update,
        f"Status update: {status.to_in_progress} started, {status.to_completed} completed\n"
        f"Event reminders: {reminders.sent} sent, {reminders.failed} failed",
    )


# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------

COMMANDS: dict[str, Handler] = {
    "start": cmd_start,
    "help": cmd_help,
    "addcontact": cmd_addcontact,
    "contacts": cmd_contacts,
    "track": cmd_track,
    "untrack": cmd_untrack,
    "link": cmd_link,
    "deletecontact": cmd_deletecontact,
    "due": cmd_due,
    "done": cmd_done,
    "stats": cmd_stats,
    "activity": cmd_activity,
    "achievements": cmd_achievements,
    "notify": cmd_notify,
    "newevent": cmd_newevent,
    "events": cmd_events,
    "cancelevent": cmd_cancelevent,
    "accept": cmd_accept,
    "decline": cmd_decline,
    "runscan": cmd_runscan,
    "runstatus": cmd_runstatus,
}


def build_app(
    storage: Storage | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        storage: Repositories bundle. Defaults to the database at DATABASE_PATH.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if storage is None:
        storage = Storage.open()
    seed_achievements(storage.achievements)

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    # Shared state for handlers and jobs
    app.bot_data["storage"] = storage
    app.bot_data["service"] = ActionService(storage, UserLocks())
    app.bot_data["notifications"] = NotificationService(
        notifier,
        max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
        base_delay=settings.NOTIFICATION_RETRY_BASE_SECONDS,
    )
    app.bot_data["sent_cache"] = SentNotificationCache()

    for name, handler in COMMANDS.items():
        app.add_handler(CommandHandler(name, handler))

    if settings.ENABLE_SCHEDULER:
        _setup_jobs(app)
    else:
        logger.info("Scheduler disabled; use /runscan and /runstatus")

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_jobs(app: Application) -> None:
    """Register the daily reminder scan and the per-minute event jobs."""
    tz = ZoneInfo(settings.TIMEZONE)
    app.job_queue.run_daily(
        _reminder_scan_job,
        time=dt_time(hour=settings.REMINDER_SCAN_HOUR, minute=0, tzinfo=tz),
        name="reminder_scan",
    )
    app.job_queue.run_repeating(
        _event_status_job,
        interval=settings.EVENT_STATUS_INTERVAL_SECONDS,
        first=10,
        name="event_status",
    )
    app.job_queue.run_repeating(
        _event_reminder_job,
        interval=settings.EVENT_REMINDER_INTERVAL_SECONDS,
        first=15,
        name="event_reminders",
    )
    logger.info(
        "Reminder scan scheduled at %02d:00 %s; event jobs every %ds/%ds",
        settings.REMINDER_SCAN_HOUR, settings.TIMEZONE,
        settings.EVENT_STATUS_INTERVAL_SECONDS, settings.EVENT_REMINDER_INTERVAL_SECONDS,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Keep In Touch bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
