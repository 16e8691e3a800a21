"""SQLite-backed store for messages, events and the ignore ledger.

The public API is async: each call runs the blocking SQLite work in a worker
thread with `asyncio.to_thread`, so many pipeline tasks can share one store.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import structlog

from email_event_extractor.exceptions import StoreError
from email_event_extractor.models import (
    Event,
    EventSource,
    IgnoredMessage,
    Message,
    MessageStatus,
    Sender,
)
from email_event_extractor.utils import as_utc

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

_EVENT_COLUMNS = """
    ev.id,
    ev.title,
    ev.date_time,
    ev.location,
    ev.organizer,
    ev.duration_minutes,
    ev.source,
    ev.text,
    ev.anchor_message_id,
    m.received_at AS anchor_received_at
"""

_MESSAGE_COLUMNS = """
    m.message_id,
    m.scraped_by,
    m.uid,
    m.subject,
    m.body,
    m.received_at,
    m.in_reply_to_id,
    m.status,
    m.extractor_version,
    s.email AS sender_email,
    s.name AS sender_name
"""


def _iso_utc(value: datetime) -> str:
    return as_utc(value).isoformat()


@dataclass(frozen=True)
class StoreStats:
    """High-level counts for the store."""

    total_messages: int
    processed_messages: int
    total_events: int
    ignored_messages: int


class EventStore:
    """Repository for messages, senders, events and ignored messages."""

    def __init__(self, db_path: Path) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = db_path

    def initialize(self) -> None:
        """Create or upgrade the schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("event_store_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise StoreError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    # Messages

    async def get_message(self, message_id: str) -> Message | None:
        return await asyncio.to_thread(self._get_message_sync, message_id)

    async def upsert_message(self, message: Message) -> None:
        """Insert a message (and its sender), or update the status of an existing one.

        Content columns of an existing message are never rewritten.
        """
        await asyncio.to_thread(self._upsert_message_sync, message)

    async def mark_processed(self, message_id: str, version: str) -> None:
        await asyncio.to_thread(
            self._set_status_sync, message_id, MessageStatus.PROCESSED, version
        )

    async def processed_uids(self, scraped_by: str, version: str, since: datetime) -> set[str]:
        """UIDs of this scraper's messages fully processed by ``version``."""
        return await asyncio.to_thread(self._processed_uids_sync, scraped_by, version, since)

    async def stale_messages(self, scraped_by: str, version: str, since: datetime) -> list[Message]:
        """Stored messages not yet processed by ``version``, oldest first."""
        return await asyncio.to_thread(self._stale_messages_sync, scraped_by, version, since)

    # Ignore ledger

    async def ignore(self, ignored: IgnoredMessage) -> None:
        """Record a tombstone. Recording the same (scraper, uid) twice is a no-op."""
        await asyncio.to_thread(self._ignore_sync, ignored)

    async def ignored_uids(self, scraped_by: str, since: datetime) -> set[str]:
        return await asyncio.to_thread(self._ignored_uids_sync, scraped_by, since)

    # Events

    async def get_event(self, event_id: int) -> Event | None:
        return await asyncio.to_thread(self._get_event_sync, event_id)

    async def events_for_anchor(self, anchor_message_id: str) -> list[Event]:
        return await asyncio.to_thread(self._events_for_anchor_sync, anchor_message_id)

    async def insert_event(self, event: Event) -> Event:
        """Insert ``event`` and return it with its assigned id."""
        return await asyncio.to_thread(self._insert_event_sync, event)

    async def update_event(self, event_id: int, event: Event) -> Event:
        """Overwrite the stored event ``event_id`` with the data of ``event``."""
        return await asyncio.to_thread(self._update_event_sync, event_id, event)

    async def delete_events_for_anchor(self, anchor_message_id: str) -> int:
        return await asyncio.to_thread(self._delete_events_for_anchor_sync, anchor_message_id)

    # Reporting

    def list_events(self, limit: int = 50) -> list[Event]:
        """Return the most recent events by start time."""

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM events ev
                LEFT JOIN messages m ON m.message_id = ev.anchor_message_id
                ORDER BY ev.date_time DESC
                LIMIT ?;
                """,
                (limit,),
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def stats(self) -> StoreStats:
        """Compute high-level store stats."""

        with self._connect() as conn:
            total, processed = conn.execute(
                """
                SELECT COUNT(*), SUM(CASE WHEN status = ? THEN 1 ELSE 0 END)
                FROM messages;
                """,
                (MessageStatus.PROCESSED.value,),
            ).fetchone()
            (events,) = conn.execute("SELECT COUNT(*) FROM events;").fetchone()
            (ignored,) = conn.execute("SELECT COUNT(*) FROM ignored_messages;").fetchone()

        return StoreStats(
            total_messages=int(total or 0),
            processed_messages=int(processed or 0),
            total_events=int(events or 0),
            ignored_messages=int(ignored or 0),
        )

    # Synchronous implementations

    def _get_message_sync(self, message_id: str) -> Message | None:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m
                JOIN senders s ON s.email = m.sender_email
                WHERE m.message_id = ?;
                """,
                (message_id,),
            ).fetchone()
        return self._row_to_message(row) if row is not None else None

    def _upsert_message_sync(self, message: Message) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO senders (email, name) VALUES (?, ?)
                ON CONFLICT(email) DO NOTHING;
                """,
                (message.sender.email, message.sender.name),
            )
            conn.execute(
                """
                INSERT INTO messages (
                    message_id,
                    scraped_by,
                    uid,
                    sender_email,
                    subject,
                    body,
                    received_at,
                    in_reply_to_id,
                    status,
                    extractor_version
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    status=excluded.status,
                    extractor_version=excluded.extractor_version;
                """,
                (
                    message.message_id,
                    message.scraped_by,
                    message.uid,
                    message.sender.email,
                    message.subject,
                    message.body,
                    _iso_utc(message.received_at),
                    message.in_reply_to_id,
                    message.status.value,
                    message.extractor_version,
                ),
            )
            conn.commit()

    def _set_status_sync(self, message_id: str, status: MessageStatus, version: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE messages SET status = ?, extractor_version = ? WHERE message_id = ?;",
                (status.value, version, message_id),
            )
            conn.commit()
        if cursor.rowcount == 0:
            raise StoreError(f"Message {message_id!r} is not stored")

    def _processed_uids_sync(self, scraped_by: str, version: str, since: datetime) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT uid FROM messages
                WHERE scraped_by = ? AND status = ? AND extractor_version = ? AND received_at >= ?;
                """,
                (scraped_by, MessageStatus.PROCESSED.value, version, _iso_utc(since)),
            ).fetchall()
        return {row["uid"] for row in rows}

    def _stale_messages_sync(self, scraped_by: str, version: str, since: datetime) -> list[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m
                JOIN senders s ON s.email = m.sender_email
                WHERE m.scraped_by = ?
                  AND m.received_at >= ?
                  AND NOT (m.status = ? AND COALESCE(m.extractor_version, '') = ?)
                ORDER BY m.received_at ASC;
                """,
                (scraped_by, _iso_utc(since), MessageStatus.PROCESSED.value, version),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def _ignore_sync(self, ignored: IgnoredMessage) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO ignored_messages (scraped_by, uid, received_at)
                VALUES (?, ?, ?)
                ON CONFLICT(scraped_by, uid) DO NOTHING;
                """,
                (ignored.scraped_by, ignored.uid, _iso_utc(ignored.received_at)),
            )
            conn.commit()

    def _ignored_uids_sync(self, scraped_by: str, since: datetime) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT uid FROM ignored_messages WHERE scraped_by = ? AND received_at >= ?;",
                (scraped_by, _iso_utc(since)),
            ).fetchall()
        return {row["uid"] for row in rows}

    def _get_event_sync(self, event_id: int) -> Event | None:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM events ev
                LEFT JOIN messages m ON m.message_id = ev.anchor_message_id
                WHERE ev.id = ?;
                """,
                (event_id,),
            ).fetchone()
        return self._row_to_event(row) if row is not None else None

    def _events_for_anchor_sync(self, anchor_message_id: str) -> list[Event]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM events ev
                LEFT JOIN messages m ON m.message_id = ev.anchor_message_id
                WHERE ev.anchor_message_id = ?
                ORDER BY ev.id;
                """,
                (anchor_message_id,),
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def _insert_event_sync(self, event: Event) -> Event:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events (
                    title, date_time, location, organizer, duration_minutes, source, text,
                    anchor_message_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                self._event_params(event),
            )
            conn.commit()
            event_id = int(cursor.lastrowid)
        stored = self._get_event_sync(event_id)
        assert stored is not None
        return stored

    def _update_event_sync(self, event_id: int, event: Event) -> Event:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE events SET
                    title = ?,
                    date_time = ?,
                    location = ?,
                    organizer = ?,
                    duration_minutes = ?,
                    source = ?,
                    text = ?,
                    anchor_message_id = ?
                WHERE id = ?;
                """,
                (*self._event_params(event), event_id),
            )
            conn.commit()
        if cursor.rowcount == 0:
            raise StoreError(f"Event {event_id} is not stored")
        stored = self._get_event_sync(event_id)
        assert stored is not None
        return stored

    def _delete_events_for_anchor_sync(self, anchor_message_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM events WHERE anchor_message_id = ?;", (anchor_message_id,)
            )
            conn.commit()
        return int(cursor.rowcount)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=30)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
        finally:
            conn.close()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS senders (
                email TEXT PRIMARY KEY,
                name TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                message_id TEXT PRIMARY KEY,
                scraped_by TEXT NOT NULL,
                uid TEXT NOT NULL,
                sender_email TEXT NOT NULL REFERENCES senders(email),
                subject TEXT NOT NULL,
                body TEXT NOT NULL,
                received_at TEXT NOT NULL,
                in_reply_to_id TEXT,
                status TEXT NOT NULL,
                extractor_version TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_messages_scraped_by_received
                ON messages(scraped_by, received_at);

            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                date_time TEXT NOT NULL,
                location TEXT NOT NULL,
                organizer TEXT NOT NULL,
                duration_minutes INTEGER NOT NULL,
                source TEXT NOT NULL,
                text TEXT NOT NULL,
                anchor_message_id TEXT NOT NULL REFERENCES messages(message_id)
            );

            CREATE INDEX IF NOT EXISTS idx_events_anchor
                ON events(anchor_message_id);

            CREATE TABLE IF NOT EXISTS ignored_messages (
                scraped_by TEXT NOT NULL,
                uid TEXT NOT NULL,
                received_at TEXT NOT NULL,
                PRIMARY KEY (scraped_by, uid)
            );
            """
        )

    def _event_params(self, event: Event) -> tuple:
        return (
            event.title,
            event.date_time.isoformat(),
            event.location,
            event.organizer,
            event.duration_minutes,
            event.source.value,
            event.text,
            event.anchor_message_id,
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            message_id=row["message_id"],
            scraped_by=row["scraped_by"],
            uid=row["uid"],
            sender=Sender(email=row["sender_email"], name=row["sender_name"]),
            subject=row["subject"],
            body=row["body"],
            received_at=datetime.fromisoformat(row["received_at"]),
            in_reply_to_id=row["in_reply_to_id"],
            status=MessageStatus(row["status"]),
            extractor_version=row["extractor_version"],
        )

    def _row_to_event(self, row: sqlite3.Row) -> Event:
        anchor_received = row["anchor_received_at"]
        return Event(
            id=row["id"],
            title=row["title"],
            date_time=datetime.fromisoformat(row["date_time"]),
            location=row["location"],
            organizer=row["organizer"],
            duration_minutes=row["duration_minutes"],
            source=EventSource(row["source"]),
            text=row["text"],
            anchor_message_id=row["anchor_message_id"],
            anchor_received_at=datetime.fromisoformat(anchor_received) if anchor_received else None,
        )
