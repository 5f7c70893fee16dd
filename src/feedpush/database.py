"""SQLite storage for channels, items, and per-user subscriptions."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime

from feedpush.errors import StoreError
from feedpush.models import (
    Channel,
    Item,
    SubscribedFeed,
    SubscribedItem,
    User,
    Watermark,
    utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS channels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    feed_link TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    site_link TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL,
    error_count INTEGER DEFAULT 0,
    last_error TEXT
);

CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel_id INTEGER NOT NULL REFERENCES channels(id) ON DELETE CASCADE,
    guid TEXT NOT NULL,
    title TEXT NOT NULL,
    link TEXT NOT NULL,
    summary TEXT,
    content TEXT,
    published_at TEXT,
    updated_at TEXT,
    fetched_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(channel_id, guid)
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS subscriptions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    channel_id INTEGER NOT NULL REFERENCES channels(id) ON DELETE CASCADE,
    unseen_count INTEGER NOT NULL DEFAULT 0,
    UNIQUE(user_id, channel_id)
);

CREATE TABLE IF NOT EXISTS subscribed_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    item_id INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    seen INTEGER NOT NULL DEFAULT 0,
    UNIQUE(user_id, item_id)
);

CREATE INDEX IF NOT EXISTS idx_items_channel_id ON items(channel_id);
CREATE INDEX IF NOT EXISTS idx_items_published_at ON items(published_at);
CREATE INDEX IF NOT EXISTS idx_subscriptions_channel_id ON subscriptions(channel_id);
CREATE INDEX IF NOT EXISTS idx_subscribed_items_user_seen ON subscribed_items(user_id, seen);
"""

# Recomputes every unseen_count of one user from the subscribed_items rows.
RECOUNT_UNSEEN_SQL = """
UPDATE subscriptions SET unseen_count = (
    SELECT COUNT(*) FROM subscribed_items
    JOIN items ON items.id = subscribed_items.item_id
    WHERE subscribed_items.user_id = subscriptions.user_id
      AND items.channel_id = subscriptions.channel_id
      AND subscribed_items.seen = 0
) WHERE user_id = ?
"""


class Database:
    """SQLite database manager for channels, items, and subscriptions.

    The connection is shared between worker threads; every operation holds
    ``_lock`` for its whole duration, and writes run in one transaction each.
    Any ``sqlite3.Error`` is re-raised as ``StoreError``.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Could not open database {self.db_path}: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def _transaction(self):
        with self._lock:
            try:
                with self.conn as conn:
                    yield conn
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    @contextmanager
    def _reading(self):
        with self._lock:
            try:
                yield self.conn
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    # --- Channel operations ---

    def channel_exists(self, feed_link: str) -> bool:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT 1 FROM channels WHERE feed_link = ?", (feed_link,)
            ).fetchone()
        return row is not None

    def find_or_create_channel(self, channel: Channel) -> tuple[Channel, bool]:
        """Insert a channel unless its feed link is already registered.

        Returns:
            Tuple of (stored Channel with id, whether it was created now).
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO channels (feed_link, title, description,
                   site_link, updated_at) VALUES (?, ?, ?, ?, ?)""",
                (
                    channel.feed_link,
                    channel.title,
                    channel.description,
                    channel.site_link,
                    _dt_to_str(channel.updated_at),
                ),
            )
            row = conn.execute(
                "SELECT * FROM channels WHERE feed_link = ?", (channel.feed_link,)
            ).fetchone()
        return _row_to_channel(row), cursor.rowcount == 1

    def get_channel(self, channel_id: int) -> Channel | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM channels WHERE id = ?", (channel_id,)
            ).fetchone()
        return _row_to_channel(row) if row else None

    def get_channel_by_link(self, feed_link: str) -> Channel | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT * FROM channels WHERE feed_link = ?", (feed_link,)
            ).fetchone()
        return _row_to_channel(row) if row else None

    def get_channels(self) -> list[Channel]:
        """Return all channels (for polling)."""
        with self._reading() as conn:
            rows = conn.execute("SELECT * FROM channels ORDER BY id").fetchall()
        return [_row_to_channel(r) for r in rows]

    def find_channels_by_identifier(self, identifier: str) -> list[Channel]:
        """Find channels by feed link or case-insensitive title substring."""
        with self._reading() as conn:
            rows = conn.execute(
                """SELECT * FROM channels
                   WHERE feed_link = ? OR title LIKE ? COLLATE NOCASE
                   ORDER BY id""",
                (identifier, f"%{identifier}%"),
            ).fetchall()
        return [_row_to_channel(r) for r in rows]

    def mark_channel_synced(self, channel_id: int, timestamp: datetime) -> None:
        """Record a successful sync and clear the error counters."""
        with self._transaction() as conn:
            conn.execute(
                """UPDATE channels SET updated_at = ?, error_count = 0,
                   last_error = NULL WHERE id = ?""",
                (_dt_to_str(timestamp), channel_id),
            )

    def record_channel_error(self, feed_link: str, error_message: str) -> None:
        """Increment error count and store error message for a channel."""
        with self._transaction() as conn:
            conn.execute(
                """UPDATE channels SET error_count = error_count + 1, last_error = ?
                   WHERE feed_link = ?""",
                (error_message, feed_link),
            )

    # --- Item operations ---

    def existing_guids(self, channel_id: int) -> set[str]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT guid FROM items WHERE channel_id = ?", (channel_id,)
            ).fetchall()
        return {r["guid"] for r in rows}

    def watermark(self, channel_id: int) -> Watermark:
        """Known guids and newest published date of a channel."""
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT guid, published_at FROM items WHERE channel_id = ?",
                (channel_id,),
            ).fetchall()
        dates = [_str_to_dt(r["published_at"]) for r in rows if r["published_at"]]
        return Watermark(
            latest_published=max(dates) if dates else None,
            guids={r["guid"] for r in rows},
        )

    def insert_items(self, channel_id: int, items: list[Item]) -> list[Item]:
        """Insert a batch of items and fan them out to every subscriber.

        The whole batch is one transaction: either every item is stored and
        every subscriber gets an unseen row for it, or nothing is written.

        Returns:
            The stored items with their ids, in input order.
        """
        if not items:
            return []

        stored = []
        with self._transaction() as conn:
            for item in items:
                cursor = conn.execute(
                    """INSERT INTO items (channel_id, guid, title, link, summary,
                       content, published_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        channel_id,
                        item.guid,
                        item.title,
                        item.link,
                        item.summary,
                        item.content,
                        _dt_to_str(item.published_at),
                        _dt_to_str(item.updated_at),
                    ),
                )
                stored.append(replace(item, id=cursor.lastrowid, channel_id=channel_id))

            subscribers = [
                r["user_id"]
                for r in conn.execute(
                    "SELECT user_id FROM subscriptions WHERE channel_id = ?",
                    (channel_id,),
                )
            ]
            conn.executemany(
                """INSERT OR IGNORE INTO subscribed_items (user_id, item_id, seen)
                   VALUES (?, ?, 0)""",
                [(user_id, item.id) for user_id in subscribers for item in stored],
            )
            conn.execute(
                """UPDATE subscriptions SET unseen_count = unseen_count + ?
                   WHERE channel_id = ?""",
                (len(stored), channel_id),
            )

        logger.debug(
            "Stored %d items for channel %d (%d subscribers)",
            len(stored), channel_id, len(subscribers),
        )
        return stored

    def get_items(self, channel_id: int, limit: int = 50) -> list[Item]:
        """Get items for a channel, newest first."""
        with self._reading() as conn:
            rows = conn.execute(
                """SELECT * FROM items WHERE channel_id = ?
                   ORDER BY published_at DESC, id DESC LIMIT ?""",
                (channel_id, limit),
            ).fetchall()
        return [_row_to_item(r) for r in rows]

    def get_item_count(self, channel_id: int) -> int:
        """Get the number of items stored for a channel."""
        with self._reading() as conn:
            row = conn.execute(
                "SELECT COUNT(*) as cnt FROM items WHERE channel_id = ?", (channel_id,)
            ).fetchone()
        return row["cnt"] if row else 0

    # --- User and subscription operations ---

    def get_or_create_user(self, username: str) -> User:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO users (username) VALUES (?)", (username,)
            )
            row = conn.execute(
                "SELECT * FROM users WHERE username = ?", (username,)
            ).fetchone()
        return User(username=row["username"], id=row["id"])

    def subscribe(self, user_id: int, channel_id: int) -> SubscribedFeed:
        """Subscribe a user to a channel. Subscribing twice is a no-op.

        Every item the channel already holds becomes an unseen item for the
        user; items the user has already seen stay seen.
        """
        with self._transaction() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO subscriptions (user_id, channel_id)
                   VALUES (?, ?)""",
                (user_id, channel_id),
            )
            conn.execute(
                """INSERT OR IGNORE INTO subscribed_items (user_id, item_id, seen)
                   SELECT ?, id, 0 FROM items WHERE channel_id = ?""",
                (user_id, channel_id),
            )
            conn.execute(RECOUNT_UNSEEN_SQL, (user_id,))

        subscribed = self.get_subscribed_feed(user_id, channel_id)
        if subscribed is None:
            raise StoreError(f"Channel {channel_id} does not exist")
        return subscribed

    def subscribed_channel_ids(self, user_id: int) -> set[int]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT channel_id FROM subscriptions WHERE user_id = ?", (user_id,)
            ).fetchall()
        return {r["channel_id"] for r in rows}

    def get_subscribed_feed(self, user_id: int, channel_id: int) -> SubscribedFeed | None:
        with self._reading() as conn:
            row = conn.execute(
                """SELECT channels.*, subscriptions.user_id, subscriptions.unseen_count
                   FROM subscriptions
                   JOIN channels ON channels.id = subscriptions.channel_id
                   WHERE subscriptions.user_id = ? AND subscriptions.channel_id = ?""",
                (user_id, channel_id),
            ).fetchone()
        return _row_to_subscribed_feed(row) if row else None

    def get_subscribed_feeds(self, user_id: int) -> list[SubscribedFeed]:
        with self._reading() as conn:
            rows = conn.execute(
                """SELECT channels.*, subscriptions.user_id, subscriptions.unseen_count
                   FROM subscriptions
                   JOIN channels ON channels.id = subscriptions.channel_id
                   WHERE subscriptions.user_id = ?
                   ORDER BY channels.title COLLATE NOCASE""",
                (user_id,),
            ).fetchall()
        return [_row_to_subscribed_feed(r) for r in rows]

    def get_subscribed_items(
        self,
        user_id: int,
        channel_id: int | None = None,
        unseen_only: bool = False,
        limit: int = 20,
    ) -> list[SubscribedItem]:
        """Get a user's items, newest first, optionally filtered."""
        query = """
            SELECT items.*, subscribed_items.user_id, subscribed_items.seen
            FROM subscribed_items
            JOIN items ON items.id = subscribed_items.item_id
            WHERE subscribed_items.user_id = ?
        """
        params: list = [user_id]

        if channel_id is not None:
            query += " AND items.channel_id = ?"
            params.append(channel_id)
        if unseen_only:
            query += " AND subscribed_items.seen = 0"

        query += " ORDER BY items.published_at DESC, items.id DESC LIMIT ?"
        params.append(limit)

        with self._reading() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            SubscribedItem(item=_row_to_item(r), user_id=r["user_id"], seen=bool(r["seen"]))
            for r in rows
        ]

    def mark_items_seen(self, user_id: int, item_ids: list[int]) -> int:
        """Mark specific items as seen. Returns count of affected rows."""
        if not item_ids:
            return 0
        placeholders = ",".join("?" for _ in item_ids)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""UPDATE subscribed_items SET seen = 1
                    WHERE user_id = ? AND item_id IN ({placeholders}) AND seen = 0""",
                [user_id, *item_ids],
            )
            conn.execute(RECOUNT_UNSEEN_SQL, (user_id,))
        return cursor.rowcount

    def mark_channel_seen(self, user_id: int, channel_id: int) -> int:
        """Mark every item of a channel as seen. Returns count of affected rows."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE subscribed_items SET seen = 1
                   WHERE user_id = ? AND seen = 0 AND item_id IN
                   (SELECT id FROM items WHERE channel_id = ?)""",
                (user_id, channel_id),
            )
            conn.execute(
                """UPDATE subscriptions SET unseen_count = 0
                   WHERE user_id = ? AND channel_id = ?""",
                (user_id, channel_id),
            )
        return cursor.rowcount


# --- Helper functions ---


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _row_to_channel(row: sqlite3.Row) -> Channel:
    """Convert a database row to a Channel dataclass."""
    return Channel(
        id=row["id"],
        feed_link=row["feed_link"],
        title=row["title"],
        description=row["description"],
        site_link=row["site_link"],
        updated_at=_str_to_dt(row["updated_at"]) or utcnow(),
        error_count=row["error_count"],
        last_error=row["last_error"],
    )


def _row_to_item(row: sqlite3.Row) -> Item:
    """Convert a database row to an Item dataclass."""
    return Item(
        id=row["id"],
        channel_id=row["channel_id"],
        guid=row["guid"],
        title=row["title"],
        link=row["link"],
        summary=row["summary"],
        content=row["content"],
        published_at=_str_to_dt(row["published_at"]),
        updated_at=_str_to_dt(row["updated_at"]),
    )


def _row_to_subscribed_feed(row: sqlite3.Row) -> SubscribedFeed:
    return SubscribedFeed(
        channel=_row_to_channel(row),
        user_id=row["user_id"],
        unseen_count=row["unseen_count"],
    )
