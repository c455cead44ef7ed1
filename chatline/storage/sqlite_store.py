"""
SQLite storage for conversations.
This is the source of truth. One row per conversation, keyed by title,
holding the JSON record plus an indexed copy of its timestamp so load()
can enumerate newest-first straight from the index.

Single portable file. Cross-process exclusion is the job of StoreLock;
within a process, call the store from one thread.
"""

import sqlite3
import logging
from pathlib import Path
from contextlib import contextmanager

from chatline.errors import ConversationNotFound, DuplicateTitleError, StoreDecodeError
from chatline.storage.models import ConversationRecord

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS conversations (
    title TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    time INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_time
    ON conversations(time);
"""


class SQLiteStore:
    """Title-keyed conversation store with a time index."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def load(self) -> list[ConversationRecord]:
        """
        Every decodable record, newest first.
        Malformed rows are logged and skipped so one bad record
        never blocks the rest of the history.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT title, value FROM conversations ORDER BY time DESC, title"
            ).fetchall()

        records = []
        for row in rows:
            try:
                records.append(ConversationRecord.from_json(row["title"], row["value"]))
            except StoreDecodeError as e:
                logger.warning("Skipping record: %s", e)
        logger.info("Loaded %d conversation(s) (%d skipped)", len(records), len(rows) - len(records))
        return records

    def get(self, title: str) -> ConversationRecord | None:
        """Fetch one record, or None if absent or undecodable."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM conversations WHERE title = ?", (title,)
            ).fetchone()
        if row is None:
            return None
        try:
            return ConversationRecord.from_json(title, row["value"])
        except StoreDecodeError as e:
            logger.warning("Ignoring record: %s", e)
            return None

    def exists(self, title: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM conversations WHERE title = ?", (title,)
            ).fetchone()
        return row is not None

    def set(self, record: ConversationRecord):
        """Upsert a record. Overwrites whatever is stored under the title."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO conversations (title, value, time) VALUES (?, ?, ?)",
                (record.title, record.to_json(), record.time),
            )
        logger.debug("Stored %r (%d messages)", record.title, len(record.messages))

    def delete(self, title: str) -> bool:
        """Remove a record. Returns False if nothing was stored under title."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM conversations WHERE title = ?", (title,))
            deleted = cur.rowcount > 0
        if deleted:
            logger.debug("Deleted %r", title)
        return deleted

    def rename(self, old_title: str, new_title: str) -> ConversationRecord:
        """
        Move a record to a new title, keeping its messages and time.
        Insert-new and delete-old commit in one transaction, so an
        interrupted rename never leaves the record under both keys.
        Raises ConversationNotFound or DuplicateTitleError.
        """
        if not new_title:
            raise ValueError("conversation title must be non-empty")

        with self._connect() as conn:
            row = conn.execute(
                "SELECT value, time FROM conversations WHERE title = ?", (old_title,)
            ).fetchone()
            if row is None:
                raise ConversationNotFound(old_title)
            record = ConversationRecord.from_json(old_title, row["value"])
            if new_title == old_title:
                return record

            clash = conn.execute(
                "SELECT 1 FROM conversations WHERE title = ?", (new_title,)
            ).fetchone()
            if clash is not None:
                raise DuplicateTitleError(new_title)

            conn.execute(
                "INSERT INTO conversations (title, value, time) VALUES (?, ?, ?)",
                (new_title, row["value"], row["time"]),
            )
            conn.execute("DELETE FROM conversations WHERE title = ?", (old_title,))

        logger.info("Renamed %r -> %r", old_title, new_title)
        return record.renamed(new_title)

    def get_stats(self) -> dict:
        """Counts for the info command."""
        records = self.load()
        return {
            "conversations": len(records),
            "messages": sum(len(r.messages) for r in records),
            "newest": records[0].title if records else None,
        }

    def export_all_json(self) -> list[dict]:
        """Export every record, newest first, in a portable format."""
        return [
            {
                "title": r.title,
                "time": r.time,
                "messages": [m.to_openai_format() for m in r.messages],
            }
            for r in self.load()
        ]
