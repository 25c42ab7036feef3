"""
Keep In Touch — SQLite storage.

Users, contacts, reminders, events, achievements, notification settings
and the activity log all live in one SQLite file. Each repository class
opens short-lived connections; multi-table writes that must land together
go through ``Storage.transaction()`` and pass its connection to the
repository methods.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Iterator

from src.data.models import (
    Achievement,
    AchievementCriteria,
    ActivityLog,
    Contact,
    Event,
    EventParticipant,
    Invitation,
    NotificationSettings,
    Reminder,
    User,
    UserAchievement,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    telegram_id        INTEGER NOT NULL UNIQUE,
    display_name       TEXT    NOT NULL,
    current_streak     INTEGER NOT NULL DEFAULT 0,
    longest_streak     INTEGER NOT NULL DEFAULT 0,
    total_xp           INTEGER NOT NULL DEFAULT 0,
    level              INTEGER NOT NULL DEFAULT 1,
    last_activity_date TEXT,
    created_at         TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS contacts (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name               TEXT    NOT NULL,
    cadence            TEXT    NOT NULL DEFAULT 'monthly',
    custom_days        INTEGER,
    tracked            INTEGER NOT NULL DEFAULT 0,
    last_contact_date  TEXT,
    next_reminder_date TEXT,
    created_at         TEXT    NOT NULL,
    username           TEXT,
    linked_user_id     INTEGER REFERENCES users(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS reminders (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id           INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    contact_id        INTEGER NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
    due_date          TEXT    NOT NULL,
    completed         INTEGER NOT NULL DEFAULT 0,
    completed_at      TEXT,
    notification_sent INTEGER NOT NULL DEFAULT 0
);

CREATE UNIQUE INDEX IF NOT EXISTS reminders_one_open_per_day
    ON reminders (contact_id, due_date) WHERE completed = 0;

CREATE TABLE IF NOT EXISTS events (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    organizer_id        INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title               TEXT    NOT NULL,
    event_type          TEXT    NOT NULL,
    custom_type         TEXT,
    description         TEXT,
    start_date          TEXT    NOT NULL,
    end_date            TEXT    NOT NULL,
    duration_minutes    INTEGER NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'scheduled',
    is_recurring        INTEGER NOT NULL DEFAULT 0,
    recurrence_pattern  TEXT,
    recurrence_interval INTEGER,
    parent_event_id     INTEGER REFERENCES events(id) ON DELETE CASCADE,
    reminder_minutes    INTEGER NOT NULL DEFAULT 60
);

CREATE TABLE IF NOT EXISTS event_participants (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id     INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    contact_id   INTEGER NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
    status       TEXT    NOT NULL DEFAULT 'pending',
    responded_at TEXT,
    UNIQUE (event_id, contact_id)
);

CREATE TABLE IF NOT EXISTS invitations (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id     INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    inviter_id   INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    invitee_id   INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    status       TEXT    NOT NULL DEFAULT 'pending',
    responded_at TEXT
);

CREATE TABLE IF NOT EXISTS achievements (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    code        TEXT    NOT NULL UNIQUE,
    name        TEXT    NOT NULL,
    description TEXT    NOT NULL,
    icon        TEXT    NOT NULL,
    xp_reward   INTEGER NOT NULL DEFAULT 0,
    criteria    TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS user_achievements (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id        INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    achievement_id INTEGER NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
    unlocked_at    TEXT    NOT NULL,
    UNIQUE (user_id, achievement_id)
);

CREATE TABLE IF NOT EXISTS notification_settings (
    user_id                  INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    contact_reminders        INTEGER NOT NULL DEFAULT 1,
    event_reminders          INTEGER NOT NULL DEFAULT 1,
    invitations              INTEGER NOT NULL DEFAULT 1,
    default_reminder_minutes INTEGER NOT NULL DEFAULT 60,
    updated_at               TEXT
);

CREATE TABLE IF NOT EXISTS activity_logs (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    action     TEXT    NOT NULL,
    xp_awarded INTEGER NOT NULL DEFAULT 0,
    metadata   TEXT,
    created_at TEXT    NOT NULL
);
"""


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _to_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _to_date(value: str | None) -> date | None:
    return date.fromisoformat(value[:10]) if value else None


# ---------------------------------------------------------------------------
# Shared connection handling
# ---------------------------------------------------------------------------


class _SQLiteDB:
    """Connection helpers shared by every repository."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Schema initialized at %s", self._db_path)

    @contextmanager
    def _session(self, conn: sqlite3.Connection | None = None) -> Iterator[sqlite3.Connection]:
        """Reuse the caller's transaction connection, or open a committing one."""
        if conn is not None:
            yield conn
            return
        own = self._connect()
        try:
            with own:
                yield own
        finally:
            own.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """An IMMEDIATE transaction: all writes through it commit or none do."""
        conn = sqlite3.connect(self._db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserDB(_SQLiteDB):
    """Registered users and their gamification counters."""

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            telegram_id=row["telegram_id"],
            display_name=row["display_name"],
            current_streak=row["current_streak"],
            longest_streak=row["longest_streak"],
            total_xp=row["total_xp"],
            level=row["level"],
            last_activity_date=_to_date(row["last_activity_date"]),
            created_at=_to_datetime(row["created_at"]),
        )

    def add_user(self, telegram_id: int, display_name: str, now: datetime) -> User:
        """Register a new user. Raises sqlite3.IntegrityError if already registered."""
        with self._session() as conn:
            cursor = conn.execute(
                "INSERT INTO users (telegram_id, display_name, created_at) VALUES (?, ?, ?)",
                (telegram_id, display_name, now.isoformat()),
            )
            user_id = cursor.lastrowid
        logger.info("User registered: #%d telegram=%d '%s'", user_id, telegram_id, display_name)
        return User(id=user_id, telegram_id=telegram_id, display_name=display_name, created_at=now)

    def get_user(self, user_id: int, conn: sqlite3.Connection | None = None) -> User | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_telegram_id(self, telegram_id: int) -> User | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_id = ?", (telegram_id,),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(self) -> list[User]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(r) for r in rows]

    def save_progress(self, user: User, conn: sqlite3.Connection | None = None) -> None:
        """Persist streak, XP, level and last activity day."""
        with self._session(conn) as c:
            c.execute(
                """
                UPDATE users
                   SET current_streak = ?, longest_streak = ?, total_xp = ?,
                       level = ?, last_activity_date = ?
                 WHERE id = ?
                """,
                (
                    user.current_streak, user.longest_streak, user.total_xp,
                    user.level, _iso(user.last_activity_date), user.id,
                ),
            )


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


class ContactDB(_SQLiteDB):
    """Tracked relationships."""

    @staticmethod
    def _row_to_contact(row: sqlite3.Row) -> Contact:
        return Contact(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            cadence=row["cadence"],
            custom_days=row["custom_days"],
            tracked=bool(row["tracked"]),
            last_contact_date=_to_datetime(row["last_contact_date"]),
            next_reminder_date=_to_datetime(row["next_reminder_date"]),
            created_at=_to_datetime(row["created_at"]),
            username=row["username"],
            linked_user_id=row["linked_user_id"],
        )

    def add_contact(self, contact: Contact, conn: sqlite3.Connection | None = None) -> Contact:
        """Insert a contact and return it with its assigned id."""
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO contacts
                    (user_id, name, cadence, custom_days, tracked, last_contact_date,
                     next_reminder_date, created_at, username, linked_user_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    contact.user_id, contact.name, contact.cadence, contact.custom_days,
                    int(contact.tracked), _iso(contact.last_contact_date),
                    _iso(contact.next_reminder_date), _iso(contact.created_at),
                    contact.username, contact.linked_user_id,
                ),
            )
        saved = replace(contact, id=cursor.lastrowid)
        logger.info("Contact added: #%d '%s' (%s)", saved.id, saved.name, saved.cadence)
        return saved

    def get_contact(self, contact_id: int, conn: sqlite3.Connection | None = None) -> Contact | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM contacts WHERE id = ?", (contact_id,)).fetchone()
        return self._row_to_contact(row) if row else None

    def list_for_user(self, user_id: int, tracked_only: bool = False) -> list[Contact]:
        query = "SELECT * FROM contacts WHERE user_id = ?"
        if tracked_only:
            query += " AND tracked = 1"
        query += " ORDER BY name"
        with self._session() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_contact(r) for r in rows]

    def count_for_user(self, user_id: int, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT COUNT(*) FROM contacts WHERE user_id = ?", (user_id,),
            ).fetchone()
        return row[0]

    def update_contact(self, contact: Contact, conn: sqlite3.Connection | None = None) -> None:
        with self._session(conn) as c:
            c.execute(
                """
                UPDATE contacts
                   SET name = ?, cadence = ?, custom_days = ?, tracked = ?,
                       last_contact_date = ?, next_reminder_date = ?,
                       username = ?, linked_user_id = ?
                 WHERE id = ?
                """,
                (
                    contact.name, contact.cadence, contact.custom_days, int(contact.tracked),
                    _iso(contact.last_contact_date), _iso(contact.next_reminder_date),
                    contact.username, contact.linked_user_id, contact.id,
                ),
            )

    def delete_contact(self, contact_id: int) -> bool:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM contacts WHERE id = ?", (contact_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Contact #%d deleted", contact_id)
        return deleted


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


class ReminderDB(_SQLiteDB):
    """Per-day "reach out" reminders."""

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        return Reminder(
            id=row["id"],
            user_id=row["user_id"],
            contact_id=row["contact_id"],
            due_date=_to_date(row["due_date"]),
            completed=bool(row["completed"]),
            completed_at=_to_datetime(row["completed_at"]),
            notification_sent=bool(row["notification_sent"]),
        )

    def find_open(self, contact_id: int, due_date: date) -> Reminder | None:
        """The incomplete reminder for a contact on a given day, if any."""
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT * FROM reminders
                 WHERE contact_id = ? AND due_date = ? AND completed = 0
                 LIMIT 1
                """,
                (contact_id, due_date.isoformat()),
            ).fetchone()
        return self._row_to_reminder(row) if row else None

    def create(self, user_id: int, contact_id: int, due_date: date) -> Reminder:
        with self._session() as conn:
            cursor = conn.execute(
                "INSERT INTO reminders (user_id, contact_id, due_date) VALUES (?, ?, ?)",
                (user_id, contact_id, due_date.isoformat()),
            )
        logger.info("Reminder #%d created for contact #%d on %s", cursor.lastrowid, contact_id, due_date)
        return Reminder(id=cursor.lastrowid, user_id=user_id, contact_id=contact_id, due_date=due_date)

    def get(self, reminder_id: int, conn: sqlite3.Connection | None = None) -> Reminder | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
        return self._row_to_reminder(row) if row else None

    def list_open(self, user_id: int) -> list[Reminder]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM reminders WHERE user_id = ? AND completed = 0 ORDER BY due_date, id",
                (user_id,),
            ).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def save(self, reminder: Reminder, conn: sqlite3.Connection | None = None) -> None:
        with self._session(conn) as c:
            c.execute(
                """
                UPDATE reminders
                   SET completed = ?, completed_at = ?, notification_sent = ?
                 WHERE id = ?
                """,
                (
                    int(reminder.completed), _iso(reminder.completed_at),
                    int(reminder.notification_sent), reminder.id,
                ),
            )

    def mark_notification_sent(self, reminder_ids: Iterable[int]) -> None:
        ids = list(reminder_ids)
        if not ids:
            return
        with self._session() as conn:
            conn.executemany(
                "UPDATE reminders SET notification_sent = 1 WHERE id = ?",
                [(rid,) for rid in ids],
            )

    def count_completed(self, user_id: int, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT COUNT(*) FROM reminders WHERE user_id = ? AND completed = 1",
                (user_id,),
            ).fetchone()
        return row[0]


# ---------------------------------------------------------------------------
# Events, participants, invitations
# ---------------------------------------------------------------------------


class EventDB(_SQLiteDB):
    """Calendar events with participants and invitations."""

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            organizer_id=row["organizer_id"],
            title=row["title"],
            event_type=row["event_type"],
            custom_type=row["custom_type"],
            description=row["description"],
            start_date=_to_datetime(row["start_date"]),
            end_date=_to_datetime(row["end_date"]),
            duration_minutes=row["duration_minutes"],
            status=row["status"],
            is_recurring=bool(row["is_recurring"]),
            recurrence_pattern=row["recurrence_pattern"],
            recurrence_interval=row["recurrence_interval"],
            parent_event_id=row["parent_event_id"],
            reminder_minutes=row["reminder_minutes"],
        )

    @staticmethod
    def _row_to_participant(row: sqlite3.Row) -> EventParticipant:
        return EventParticipant(
            id=row["id"],
            event_id=row["event_id"],
            contact_id=row["contact_id"],
            status=row["status"],
            responded_at=_to_datetime(row["responded_at"]),
        )

    @staticmethod
    def _row_to_invitation(row: sqlite3.Row) -> Invitation:
        return Invitation(
            id=row["id"],
            event_id=row["event_id"],
            inviter_id=row["inviter_id"],
            invitee_id=row["invitee_id"],
            status=row["status"],
            responded_at=_to_datetime(row["responded_at"]),
        )

    def add_event(self, event: Event, conn: sqlite3.Connection | None = None) -> Event:
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO events
                    (organizer_id, title, event_type, custom_type, description,
                     start_date, end_date, duration_minutes, status, is_recurring,
                     recurrence_pattern, recurrence_interval, parent_event_id,
                     reminder_minutes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.organizer_id, event.title, event.event_type, event.custom_type,
                    event.description, _iso(event.start_date), _iso(event.end_date),
                    event.duration_minutes, event.status, int(event.is_recurring),
                    event.recurrence_pattern, event.recurrence_interval,
                    event.parent_event_id, event.reminder_minutes,
                ),
            )
        return replace(event, id=cursor.lastrowid)

    def get_event(self, event_id: int, conn: sqlite3.Connection | None = None) -> Event | None:
        with self._session(conn) as c:
            row = c.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        return self._row_to_event(row) if row else None

    def update_event(self, event: Event, conn: sqlite3.Connection | None = None) -> None:
        with self._session(conn) as c:
            c.execute(
                """
                UPDATE events
                   SET title = ?, event_type = ?, custom_type = ?, description = ?,
                       start_date = ?, end_date = ?, duration_minutes = ?, status = ?,
                       reminder_minutes = ?
                 WHERE id = ?
                """,
                (
                    event.title, event.event_type, event.custom_type, event.description,
                    _iso(event.start_date), _iso(event.end_date), event.duration_minutes,
                    event.status, event.reminder_minutes, event.id,
                ),
            )

    def series_ids(self, parent_id: int, conn: sqlite3.Connection | None = None) -> list[int]:
        """Ids of an event and every occurrence generated from it."""
        with self._session(conn) as c:
            rows = c.execute(
                "SELECT id FROM events WHERE id = ? OR parent_event_id = ? ORDER BY start_date",
                (parent_id, parent_id),
            ).fetchall()
        return [row[0] for row in rows]

    def list_for_organizer(self, organizer_id: int, since: datetime | None = None) -> list[Event]:
        query = "SELECT * FROM events WHERE organizer_id = ?"
        params: list = [organizer_id]
        if since is not None:
            query += " AND end_date >= ?"
            params.append(since.isoformat())
        query += " ORDER BY start_date"
        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    def list_active(self) -> list[Event]:
        """All events that may still change status automatically."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE status IN ('scheduled', 'in_progress') ORDER BY start_date",
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def list_upcoming_scheduled(self, now: datetime) -> list[Event]:
        """Scheduled events that have not started yet."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE status = 'scheduled' AND start_date > ? ORDER BY start_date",
                (now.isoformat(),),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def transition_status(self, event_ids: Iterable[int], from_status: str, to_status: str) -> int:
        """Move events from one status to another; rows whose status changed meanwhile are skipped."""
        ids = list(event_ids)
        if not ids:
            return 0
        with self._session() as conn:
            changed = 0
            for event_id in ids:
                cursor = conn.execute(
                    "UPDATE events SET status = ? WHERE id = ? AND status = ?",
                    (to_status, event_id, from_status),
                )
                changed += cursor.rowcount
        return changed

    def add_participant(
        self, event_id: int, contact_id: int, conn: sqlite3.Connection | None = None,
    ) -> EventParticipant:
        with self._session(conn) as c:
            cursor = c.execute(
                "INSERT INTO event_participants (event_id, contact_id) VALUES (?, ?)",
                (event_id, contact_id),
            )
        return EventParticipant(id=cursor.lastrowid, event_id=event_id, contact_id=contact_id)

    def list_participants(self, event_id: int) -> list[EventParticipant]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM event_participants WHERE event_id = ? ORDER BY id", (event_id,),
            ).fetchall()
        return [self._row_to_participant(r) for r in rows]

    def set_participant_status(
        self,
        event_id: int,
        contact_ids: Iterable[int],
        status: str,
        now: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn) as c:
            c.executemany(
                """
                UPDATE event_participants SET status = ?, responded_at = ?
                 WHERE event_id = ? AND contact_id = ?
                """,
                [(status, now.isoformat(), event_id, cid) for cid in contact_ids],
            )

    def add_invitation(
        self, event_id: int, inviter_id: int, invitee_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> Invitation:
        with self._session(conn) as c:
            cursor = c.execute(
                "INSERT INTO invitations (event_id, inviter_id, invitee_id) VALUES (?, ?, ?)",
                (event_id, inviter_id, invitee_id),
            )
        return Invitation(
            id=cursor.lastrowid, event_id=event_id, inviter_id=inviter_id, invitee_id=invitee_id,
        )

    def get_invitation(
        self, invitation_id: int, conn: sqlite3.Connection | None = None,
    ) -> Invitation | None:
        with self._session(conn) as c:
            row = c.execute(
                "SELECT * FROM invitations WHERE id = ?", (invitation_id,),
            ).fetchone()
        return self._row_to_invitation(row) if row else None

    def list_pending_invitations(self, invitee_id: int) -> list[Invitation]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM invitations WHERE invitee_id = ? AND status = 'pending' ORDER BY id",
                (invitee_id,),
            ).fetchall()
        return [self._row_to_invitation(r) for r in rows]

    def save_invitation(self, invitation: Invitation, conn: sqlite3.Connection | None = None) -> None:
        with self._session(conn) as c:
            c.execute(
                "UPDATE invitations SET status = ?, responded_at = ? WHERE id = ?",
                (invitation.status, _iso(invitation.responded_at), invitation.id),
            )

    def reminder_recipients(self, event: Event) -> list[int]:
        """Organizer plus accepted participants who are registered users (user ids)."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT c.linked_user_id
                  FROM event_participants p
                  JOIN contacts c ON c.id = p.contact_id
                 WHERE p.event_id = ? AND p.status = 'accepted'
                   AND c.linked_user_id IS NOT NULL
                 ORDER BY p.id
                """,
                (event.id,),
            ).fetchall()
        recipients = [event.organizer_id]
        for row in rows:
            if row[0] not in recipients:
                recipients.append(row[0])
        return recipients


# ---------------------------------------------------------------------------
# Achievements and activity log
# ---------------------------------------------------------------------------


class AchievementDB(_SQLiteDB):
    """Achievement catalog and per-user unlocks."""

    @staticmethod
    def _row_to_achievement(row: sqlite3.Row) -> Achievement:
        return Achievement(
            id=row["id"],
            code=row["code"],
            name=row["name"],
            description=row["description"],
            icon=row["icon"],
            xp_reward=row["xp_reward"],
            criteria=AchievementCriteria.from_dict(json.loads(row["criteria"])),
        )

    def seed(self, catalog: Iterable[Achievement]) -> int:
        """Insert the catalog if the table is empty. Returns rows inserted."""
        with self._session() as conn:
            existing = conn.execute("SELECT COUNT(*) FROM achievements").fetchone()[0]
            if existing:
                logger.info("Achievements already seeded (%d), skipping", existing)
                return 0
            rows = [
                (a.code, a.name, a.description, a.icon, a.xp_reward, json.dumps(a.criteria.to_dict()))
                for a in catalog
            ]
            conn.executemany(
                """
                INSERT INTO achievements (code, name, description, icon, xp_reward, criteria)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        logger.info("Seeded %d achievements", len(rows))
        return len(rows)

    def list_all(self, conn: sqlite3.Connection | None = None) -> list[Achievement]:
        with self._session(conn) as c:
            rows = c.execute("SELECT * FROM achievements ORDER BY id").fetchall()
        return [self._row_to_achievement(r) for r in rows]

    def unlocked_ids(self, user_id: int, conn: sqlite3.Connection | None = None) -> set[int]:
        with self._session(conn) as c:
            rows = c.execute(
                "SELECT achievement_id FROM user_achievements WHERE user_id = ?", (user_id,),
            ).fetchall()
        return {r[0] for r in rows}

    def unlock(
        self, user_achievement: UserAchievement, conn: sqlite3.Connection | None = None,
    ) -> UserAchievement | None:
        """Record an unlock. Returns None if the pair was already unlocked."""
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT OR IGNORE INTO user_achievements (user_id, achievement_id, unlocked_at)
                VALUES (?, ?, ?)
                """,
                (
                    user_achievement.user_id, user_achievement.achievement_id,
                    user_achievement.unlocked_at.isoformat(),
                ),
            )
        if cursor.rowcount == 0:
            return None
        return replace(user_achievement, id=cursor.lastrowid)

    def list_unlocked(self, user_id: int) -> list[tuple[Achievement, UserAchievement]]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT a.*, ua.id AS ua_id, ua.unlocked_at
                  FROM user_achievements ua
                  JOIN achievements a ON a.id = ua.achievement_id
                 WHERE ua.user_id = ?
                 ORDER BY ua.unlocked_at
                """,
                (user_id,),
            ).fetchall()
        return [
            (
                self._row_to_achievement(r),
                UserAchievement(
                    id=r["ua_id"], user_id=user_id, achievement_id=r["id"],
                    unlocked_at=_to_datetime(r["unlocked_at"]),
                ),
            )
            for r in rows
        ]


class ActivityDB(_SQLiteDB):
    """Append-only XP activity log."""

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> ActivityLog:
        return ActivityLog(
            id=row["id"],
            user_id=row["user_id"],
            action=row["action"],
            xp_awarded=row["xp_awarded"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            created_at=_to_datetime(row["created_at"]),
        )

    def append(self, log: ActivityLog, conn: sqlite3.Connection | None = None) -> ActivityLog:
        with self._session(conn) as c:
            cursor = c.execute(
                """
                INSERT INTO activity_logs (user_id, action, xp_awarded, metadata, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    log.user_id, log.action, log.xp_awarded,
                    json.dumps(log.metadata) if log.metadata else None,
                    log.created_at.isoformat(),
                ),
            )
        return replace(log, id=cursor.lastrowid)

    def list_for_user(self, user_id: int, since: date | None = None) -> list[ActivityLog]:
        query = "SELECT * FROM activity_logs WHERE user_id = ?"
        params: list = [user_id]
        if since is not None:
            query += " AND created_at >= ?"
            params.append(since.isoformat())
        query += " ORDER BY created_at, id"
        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_log(r) for r in rows]


# ---------------------------------------------------------------------------
# Notification settings
# ---------------------------------------------------------------------------


class NotificationSettingsDB(_SQLiteDB):
    """One optional row per user; a missing row means everything is on."""

    @staticmethod
    def _row_to_settings(row: sqlite3.Row) -> NotificationSettings:
        return NotificationSettings(
            user_id=row["user_id"],
            contact_reminders=bool(row["contact_reminders"]),
            event_reminders=bool(row["event_reminders"]),
            invitations=bool(row["invitations"]),
            default_reminder_minutes=row["default_reminder_minutes"],
            updated_at=_to_datetime(row["updated_at"]),
        )

    def get(self, user_id: int) -> NotificationSettings:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM notification_settings WHERE user_id = ?", (user_id,),
            ).fetchone()
        return self._row_to_settings(row) if row else NotificationSettings(user_id=user_id)

    def save(self, prefs: NotificationSettings) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO notification_settings
                    (user_id, contact_reminders, event_reminders, invitations,
                     default_reminder_minutes, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    contact_reminders = excluded.contact_reminders,
                    event_reminders = excluded.event_reminders,
                    invitations = excluded.invitations,
                    default_reminder_minutes = excluded.default_reminder_minutes,
                    updated_at = excluded.updated_at
                """,
                (
                    prefs.user_id, int(prefs.contact_reminders), int(prefs.event_reminders),
                    int(prefs.invitations), prefs.default_reminder_minutes,
                    _iso(prefs.updated_at),
                ),
            )


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


@dataclass
class Storage:
    """All repositories over one database file."""

    users: UserDB
    contacts: ContactDB
    reminders: ReminderDB
    events: EventDB
    achievements: AchievementDB
    activity: ActivityDB
    notification_settings: NotificationSettingsDB

    @classmethod
    def open(cls, db_path: str | None = None) -> Storage:
        return cls(
            users=UserDB(db_path),
            contacts=ContactDB(db_path),
            reminders=ReminderDB(db_path),
            events=EventDB(db_path),
            achievements=AchievementDB(db_path),
            activity=ActivityDB(db_path),
            notification_settings=NotificationSettingsDB(db_path),
        )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.users.transaction() as conn:
            yield conn
