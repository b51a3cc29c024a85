"""Persistent store for submissions that have not reached the server yet."""

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from boqsync.config import BoqSyncConfig
from boqsync.error_handling import StorageError
from boqsync.models import (
    FLUSH_ORDER,
    EntityKind,
    QueuedSubmission,
    submission_from_record,
)

logger = logging.getLogger(__name__)


class SubmissionQueue:
    """Durable, ordered queues of shop and material creation requests.

    Each kind is persisted as one named entry (``pendingShopRequests``,
    ``pendingMaterialRequests``) in a small SQLite key-value table. Entries are
    read once on construction and written through on every mutation. Callers
    only ever see tuple snapshots; the lists themselves stay private to the
    store.
    """

    def __init__(self, config: BoqSyncConfig):
        self.config = config
        self.db_path = config.queue_db_path
        self._entries: dict[EntityKind, list[QueuedSubmission]] = {
            kind: [] for kind in EntityKind
        }
        self._init_database()
        self._load()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection that is properly closed with transaction support."""
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize the SQLite database."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._get_connection() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS queue_entries (
                        name TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                    """,
                )
        except (OSError, sqlite3.Error) as e:
            msg = f"Cannot open queue database: {e}"
            raise StorageError(msg, db_path=self.db_path, original_error=e) from e

    def _load(self) -> None:
        """Read both persisted entries into memory."""
        try:
            with self._get_connection() as conn:
                rows = dict(conn.execute("SELECT name, value FROM queue_entries").fetchall())
        except sqlite3.Error as e:
            msg = f"Cannot read queue database: {e}"
            raise StorageError(msg, db_path=self.db_path, original_error=e) from e

        for kind in EntityKind:
            raw = rows.get(kind.storage_key)
            if raw is None:
                continue
            entries, complete = self._parse_entry(kind, raw)
            self._entries[kind] = entries
            if not complete:
                self._set_aside(kind, raw)

        if not self.is_empty:
            logger.info("Loaded queued submissions: %s", self.get_queue_stats())

    def _parse_entry(self, kind: EntityKind, raw: str) -> tuple[list[QueuedSubmission], bool]:
        """Parse one persisted entry, skipping records that cannot be read.

        Returns the readable submissions and whether every record was readable.
        """
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Unreadable %s entry in %s: %s", kind.storage_key, self.db_path, e)
            return [], False
        if not isinstance(records, list):
            logger.warning("Unreadable %s entry in %s: not a list", kind.storage_key, self.db_path)
            return [], False

        entries: list[QueuedSubmission] = []
        complete = True
        for index, record in enumerate(records):
            try:
                entries.append(submission_from_record(kind, record))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(
                    "Skipping unreadable record %s of %s in %s: %s",
                    index,
                    kind.storage_key,
                    self.db_path,
                    e,
                )
                complete = False
        return entries, complete

    def _set_aside(self, kind: EntityKind, raw: str) -> None:
        """Keep an unreadable entry under a ``.corrupt`` name, then rewrite the readable part."""
        stamp = datetime.now(UTC)
        corrupt_name = f"{kind.storage_key}.corrupt.{stamp.strftime('%Y%m%dT%H%M%S%f')}"
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO queue_entries (name, value, updated_at) VALUES (?, ?, ?)",
                    (corrupt_name, raw, stamp.isoformat()),
                )
        except sqlite3.Error as e:
            msg = f"Cannot set aside unreadable {kind.storage_key}: {e}"
            raise StorageError(msg, db_path=self.db_path, original_error=e) from e

        logger.warning("Moved unreadable %s entry to %s", kind.storage_key, corrupt_name)
        self._persist(kind)

    def _persist(self, kind: EntityKind) -> None:
        """Write one kind's entries through to the database."""
        value = json.dumps([entry.to_record() for entry in self._entries[kind]])
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO queue_entries (name, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (kind.storage_key, value, datetime.now(UTC).isoformat()),
                )
        except sqlite3.Error as e:
            msg = f"Failed to persist {kind.storage_key}: {e}"
            raise StorageError(msg, db_path=self.db_path, original_error=e) from e

    def enqueue(self, submission: QueuedSubmission) -> None:
        """Append a submission to the end of its kind's queue."""
        entries = self._entries[submission.kind]
        entries.append(submission)
        try:
            self._persist(submission.kind)
        except StorageError:
            entries.pop()
            raise
        logger.info("Queued %s for later delivery", submission)

    def pending(self, kind: EntityKind) -> tuple[QueuedSubmission, ...]:
        """Snapshot of one kind's queue in FIFO order."""
        return tuple(self._entries[kind])

    def all_pending(self) -> tuple[QueuedSubmission, ...]:
        """Snapshot of every queued submission, shops first."""
        return tuple(entry for kind in FLUSH_ORDER for entry in self._entries[kind])

    def replace(self, kind: EntityKind, retained: Iterable[QueuedSubmission]) -> None:
        """Replace one kind's queue wholesale.

        Raises:
            ValueError: If an entry of another kind is passed.
        """
        new_entries = list(retained)
        for entry in new_entries:
            if entry.kind is not kind:
                msg = f"Cannot store {entry} in the {kind.value} queue"
                raise ValueError(msg)

        previous = self._entries[kind]
        self._entries[kind] = new_entries
        try:
            self._persist(kind)
        except StorageError:
            self._entries[kind] = previous
            raise
        logger.debug("Replaced %s queue: %s entries", kind.value, len(new_entries))

    def find(self, local_id: str) -> QueuedSubmission | None:
        """Look up a queued submission by local id."""
        for entry in self.all_pending():
            if entry.local_id == local_id:
                return entry
        return None

    def discard(self, local_id: str) -> bool:
        """Drop a queued submission. Returns False if no entry has that id."""
        entry = self.find(local_id)
        if entry is None:
            return False

        self.replace(
            entry.kind,
            [e for e in self._entries[entry.kind] if e.local_id != local_id],
        )
        logger.info("Discarded %s", entry)
        return True

    def clear(self) -> int:
        """Remove every queued submission."""
        count = self.count()
        for kind in EntityKind:
            self.replace(kind, [])
        logger.info("Cleared %s queued submissions", count)
        return count

    def count(self, kind: EntityKind | None = None) -> int:
        if kind is not None:
            return len(self._entries[kind])
        return sum(len(entries) for entries in self._entries.values())

    @property
    def is_empty(self) -> bool:
        return self.count() == 0

    def get_queue_stats(self) -> dict[str, int]:
        """Get the number of queued submissions per kind."""
        return {kind.value: len(self._entries[kind]) for kind in FLUSH_ORDER}

    def check_database_health(self) -> dict[str, Any]:
        """Check database health and return diagnostic information."""
        health_info: dict[str, Any] = {
            "database_exists": self.db_path.exists(),
            "database_readable": False,
            "table_exists": False,
            "entries_present": [],
            "integrity_check": False,
        }

        if not health_info["database_exists"]:
            return health_info

        try:
            with self._get_connection() as conn:
                health_info["database_readable"] = True

                cursor = conn.execute(
                    """
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name='queue_entries'
                """,
                )
                health_info["table_exists"] = cursor.fetchone() is not None

                if health_info["table_exists"]:
                    cursor = conn.execute("SELECT name FROM queue_entries ORDER BY name")
                    health_info["entries_present"] = [row[0] for row in cursor.fetchall()]

                cursor = conn.execute("PRAGMA integrity_check")
                result = cursor.fetchone()
                health_info["integrity_check"] = result[0] == "ok" if result else False

        except sqlite3.Error as e:
            health_info["error"] = str(e)
            logger.exception("Database health check failed")

        return health_info
