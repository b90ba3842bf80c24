"""Local SQLite store for records, steps, photos and the process snapshot."""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config
from .models import (
    Photo,
    ProcessDefinition,
    StepCompletion,
    TimeRecord,
    format_timestamp,
)

__all__ = ["LocalStore", "LocalStoreError", "TodayStats"]

logger = logging.getLogger(__name__)

# Columns callers may change through update_record()
_UPDATABLE_FIELDS = {
    "end_time",
    "duration",
    "comment",
    "steps_completed",
    "object_id",
    "assignment_id",
}


class LocalStoreError(Exception):
    """Storage failure (corrupt file, disk full, constraint violation)."""

    pass


@dataclass
class TodayStats:
    """Finished records started today."""

    tasks: int = 0
    total_seconds: int = 0


def _to_db_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_timestamp(value.astimezone(timezone.utc))


class LocalStore:
    """SQLite-backed offline store.

    Holds four collections: ``records``, ``step_completions``, ``photos`` and
    the cached ``processes`` snapshot. Every operation is local; failures
    are logged and raised as :class:`LocalStoreError`, never retried here.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "chronometry.db"

        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path))
            self._local.connection.row_factory = sqlite3.Row
            self._local.connection.execute("PRAGMA foreign_keys = ON")
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            logger.error(f"Cannot open local store {self.db_path}: {e}")
            raise LocalStoreError(str(e)) from e
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Local store operation failed: {e}")
            raise LocalStoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    process_id INTEGER NOT NULL,
                    object_id INTEGER,
                    assignment_id INTEGER,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    duration INTEGER NOT NULL DEFAULT 0,
                    comment TEXT,
                    steps_completed INTEGER NOT NULL DEFAULT 0,
                    synced INTEGER NOT NULL DEFAULT 0,
                    server_id INTEGER
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_user ON records(user_id)"
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS step_completions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    record_id INTEGER NOT NULL REFERENCES records(id),
                    step_id INTEGER NOT NULL,
                    completed_at TEXT NOT NULL,
                    UNIQUE (record_id, step_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS photos (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    record_id INTEGER NOT NULL REFERENCES records(id),
                    step_id INTEGER,
                    data BLOB NOT NULL,
                    timestamp TEXT NOT NULL,
                    comment TEXT,
                    synced INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_photos_record ON photos(record_id)"
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS processes (
                    id INTEGER PRIMARY KEY,
                    definition TEXT NOT NULL,
                    cached_at TEXT NOT NULL
                )
                """
            )

    # Records

    def add_record(self, record: TimeRecord) -> TimeRecord:
        """Insert a new record.

        Args:
            record: Record to store; its ``id`` is assigned here

        Returns:
            The same record with ``id`` set
        """
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO records (
                    user_id, process_id, object_id, assignment_id, start_time,
                    end_time, duration, comment, steps_completed, synced, server_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    record.process_id,
                    record.object_id,
                    record.assignment_id,
                    _to_db_time(record.start_time),
                    _to_db_time(record.end_time),
                    record.duration,
                    record.comment,
                    record.steps_completed,
                    int(record.synced),
                    record.server_id,
                ),
            )
            record.id = cursor.lastrowid
        logger.debug(f"Stored record {record.id} for process {record.process_id}")
        return record

    def get_record(self, record_id: int) -> Optional[TimeRecord]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM records WHERE id = ?", (record_id,))
            row = cursor.fetchone()
            return TimeRecord.from_row(row) if row else None

    def update_record(self, record_id: int, **fields) -> TimeRecord:
        """Update mutable fields of a record.

        Args:
            record_id: Record to change
            **fields: Any of end_time, duration, comment, steps_completed,
                object_id, assignment_id

        Returns:
            The updated record

        Raises:
            ValueError: For unknown fields
            LocalStoreError: If the record does not exist
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        if fields:
            values = [
                _to_db_time(v) if isinstance(v, datetime) else v
                for v in fields.values()
            ]
            assignments = ", ".join(f"{name} = ?" for name in fields)
            with self._cursor() as cursor:
                cursor.execute(
                    f"UPDATE records SET {assignments} WHERE id = ?",
                    (*values, record_id),
                )

        record = self.get_record(record_id)
        if record is None:
            raise LocalStoreError(f"Record {record_id} not found")
        return record

    def get_active_record(self, user_id: int) -> Optional[TimeRecord]:
        """Get the user's record without an end time, if any."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM records
                WHERE user_id = ? AND end_time IS NULL
                ORDER BY start_time DESC, id DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return TimeRecord.from_row(row) if row else None

    def get_records(self, user_id: int, limit: int = 10) -> list[TimeRecord]:
        """Get the user's last ``limit`` records, newest first."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM records
                WHERE user_id = ?
                ORDER BY start_time DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            return [TimeRecord.from_row(row) for row in cursor.fetchall()]

    def get_unsynced_records(self, user_id: Optional[int] = None) -> list[TimeRecord]:
        """Get finished records that have not reached the server yet."""
        query = "SELECT * FROM records WHERE synced = 0 AND end_time IS NOT NULL"
        params: tuple = ()
        if user_id is not None:
            query += " AND user_id = ?"
            params = (user_id,)
        query += " ORDER BY id ASC"

        with self._cursor() as cursor:
            cursor.execute(query, params)
            return [TimeRecord.from_row(row) for row in cursor.fetchall()]

    def mark_synced(self, record_id: int, server_id: Optional[int] = None) -> None:
        """Flag a record as synced. The flag is never cleared again."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE records
                SET synced = 1, server_id = COALESCE(?, server_id)
                WHERE id = ?
                """,
                (server_id, record_id),
            )

    # Step completions

    def add_step_completion(self, completion: StepCompletion) -> StepCompletion:
        """Append a step completion.

        Raises:
            LocalStoreError: If the step is already completed for the record
        """
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO step_completions (record_id, step_id, completed_at)
                VALUES (?, ?, ?)
                """,
                (
                    completion.record_id,
                    completion.step_id,
                    _to_db_time(completion.completed_at),
                ),
            )
            completion.id = cursor.lastrowid
        return completion

    def get_completed_steps(self, record_id: int) -> list[StepCompletion]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM step_completions
                WHERE record_id = ?
                ORDER BY id ASC
                """,
                (record_id,),
            )
            return [StepCompletion.from_row(row) for row in cursor.fetchall()]

    # Photos

    def add_photo(self, photo: Photo) -> Photo:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO photos (record_id, step_id, data, timestamp, comment, synced)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    photo.record_id,
                    photo.step_id,
                    sqlite3.Binary(photo.data),
                    _to_db_time(photo.timestamp),
                    photo.comment,
                    int(photo.synced),
                ),
            )
            photo.id = cursor.lastrowid
        return photo

    def count_photos(self, record_id: int) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM photos WHERE record_id = ?", (record_id,)
            )
            return cursor.fetchone()[0]

    def count_step_photos(self, record_id: int, step_id: int) -> int:
        """Count photos attached to one step of a record."""
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM photos WHERE record_id = ? AND step_id = ?",
                (record_id, step_id),
            )
            return cursor.fetchone()[0]

    def get_unsynced_photos(self, record_id: int) -> list[Photo]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM photos
                WHERE record_id = ? AND synced = 0
                ORDER BY id ASC
                """,
                (record_id,),
            )
            return [Photo.from_row(row) for row in cursor.fetchall()]

    def get_records_with_unsynced_photos(
        self, user_id: Optional[int] = None
    ) -> list[TimeRecord]:
        """Get synced records whose photos did not all reach the server."""
        query = """
            SELECT DISTINCT r.* FROM records r
            JOIN photos p ON p.record_id = r.id
            WHERE r.synced = 1 AND r.server_id IS NOT NULL AND p.synced = 0
        """
        params: tuple = ()
        if user_id is not None:
            query += " AND r.user_id = ?"
            params = (user_id,)

        with self._cursor() as cursor:
            cursor.execute(query + " ORDER BY r.id ASC", params)
            return [TimeRecord.from_row(row) for row in cursor.fetchall()]

    def mark_photo_synced(self, photo_id: int) -> None:
        with self._cursor() as cursor:
            cursor.execute("UPDATE photos SET synced = 1 WHERE id = ?", (photo_id,))

    # Process snapshot

    def cache_processes(self, processes: list[ProcessDefinition]) -> None:
        """Replace the cached process snapshot."""
        now = datetime.now(timezone.utc).isoformat()
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM processes")
            cursor.executemany(
                """
                INSERT INTO processes (id, definition, cached_at)
                VALUES (?, ?, ?)
                """,
                [(p.id, p.to_json(), now) for p in processes],
            )
        logger.debug(f"Cached {len(processes)} process definitions")

    def get_cached_processes(self) -> list[ProcessDefinition]:
        with self._cursor() as cursor:
            cursor.execute("SELECT definition FROM processes ORDER BY rowid ASC")
            return [
                ProcessDefinition.from_api(json.loads(row["definition"]))
                for row in cursor.fetchall()
            ]

    def get_cached_process(self, process_id: int) -> Optional[ProcessDefinition]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT definition FROM processes WHERE id = ?", (process_id,)
            )
            row = cursor.fetchone()
            if row:
                return ProcessDefinition.from_api(json.loads(row["definition"]))
            return None

    # Stats

    def get_today_stats(self, user_id: int, now: Optional[datetime] = None) -> TodayStats:
        """Count finished records started today (local time) and their total time."""
        now = (now or datetime.now(timezone.utc)).astimezone()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

        # Stored times are UTC ISO strings, so they compare lexicographically
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT COUNT(*), COALESCE(SUM(duration), 0) FROM records
                WHERE user_id = ? AND end_time IS NOT NULL AND start_time >= ?
                """,
                (user_id, _to_db_time(midnight)),
            )
            tasks, total = cursor.fetchone()

        return TodayStats(tasks=tasks, total_seconds=total)

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
