"""SQLite persistence for the Chronometry server."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..sync.models import parse_timestamp

__all__ = ["Database", "DEFAULT_PROCESSES"]

logger = logging.getLogger(__name__)

# Seeded into an empty database by the server entry point
DEFAULT_PROCESSES = [
    {
        "name": "Goods receiving",
        "description": "Unloading and checking deliveries from suppliers",
        "category": "Warehouse",
        "is_sequential": True,
        "steps": [
            {"name": "Unload pallets", "requires_photo": False},
            {
                "name": "Check the delivery note",
                "requires_photo": True,
                "photo_instructions": "Photograph the signed delivery note",
            },
            {"name": "Move goods to storage", "requires_photo": False},
        ],
    },
    {"name": "Shelf stocking", "description": "Placing goods on shelves", "category": "Sales floor"},
    {"name": "Checkout", "description": "Serving customers at the till", "category": "Sales floor"},
    {"name": "Stock count", "description": "Counting and checking inventory", "category": "Warehouse"},
    {"name": "Cleaning", "description": "Keeping the store clean", "category": "Sales floor"},
]

_PROCESS_FIELDS = ("name", "description", "category_id", "estimated_duration", "priority", "is_sequential", "is_active")
_OBJECT_FIELDS = ("name", "address", "description", "is_active")
_ASSIGNMENT_FIELDS = ("user_id", "process_id", "object_id", "due_date", "status", "notes")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_time(value: Optional[str]) -> Optional[str]:
    """Store timestamps as UTC ISO strings so they sort and compare as text."""
    parsed = parse_timestamp(value)
    return parsed.astimezone(timezone.utc).isoformat() if parsed else None


def _duration(start: str, end: str) -> int:
    return max(0, int((parse_timestamp(end) - parse_timestamp(start)).total_seconds()))


def _period_filter(column: str, start_date: Optional[str], end_date: Optional[str]) -> tuple[str, list]:
    clauses, params = [], []
    if start_date:
        clauses.append(f"{column} >= ?")
        params.append(start_date)
    if end_date:
        clauses.append(f"{column} < date(?, '+1 day')")
        params.append(end_date)
    return (" AND " + " AND ".join(clauses)) if clauses else "", params


class Database:
    """Server-side store for users, processes, records and reference data."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            conn = sqlite3.connect(str(self.db_path))
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.connection = conn
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _fetchall(self, query: str, params=()) -> list[dict]:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def _fetchone(self, query: str, params=()) -> Optional[dict]:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row else None

    def _insert(self, query: str, params=()) -> int:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return cursor.lastrowid

    def _execute(self, query: str, params=()) -> int:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return cursor.rowcount

    def _update_fields(self, table: str, row_id: int, allowed: tuple, data: dict) -> int:
        fields = {k: v for k, v in data.items() if k in allowed}
        if not fields:
            return 0
        assignments = ", ".join(f"{name} = ?" for name in fields)
        return self._execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?", (*fields.values(), row_id)
        )

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    password TEXT NOT NULL,
                    first_name TEXT,
                    role TEXT NOT NULL DEFAULT 'user',
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS process_categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    icon TEXT,
                    color TEXT
                );
                CREATE TABLE IF NOT EXISTS processes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT,
                    category_id INTEGER REFERENCES process_categories(id),
                    estimated_duration INTEGER DEFAULT 0,
                    priority INTEGER DEFAULT 0,
                    is_sequential INTEGER DEFAULT 0,
                    is_active INTEGER DEFAULT 1
                );
                CREATE TABLE IF NOT EXISTS process_steps (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    process_id INTEGER NOT NULL REFERENCES processes(id) ON DELETE CASCADE,
                    step_number INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    estimated_duration INTEGER DEFAULT 0,
                    requires_photo INTEGER DEFAULT 0,
                    photo_instructions TEXT,
                    is_required INTEGER DEFAULT 1
                );
                CREATE TABLE IF NOT EXISTS objects (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    address TEXT,
                    description TEXT,
                    is_active INTEGER DEFAULT 1
                );
                CREATE TABLE IF NOT EXISTS assignments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    process_id INTEGER NOT NULL REFERENCES processes(id),
                    object_id INTEGER REFERENCES objects(id) ON DELETE SET NULL,
                    due_date TEXT,
                    status TEXT DEFAULT 'pending',
                    notes TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS time_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    process_id INTEGER NOT NULL REFERENCES processes(id),
                    object_id INTEGER REFERENCES objects(id) ON DELETE SET NULL,
                    assignment_id INTEGER REFERENCES assignments(id) ON DELETE SET NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    duration INTEGER,
                    comment TEXT,
                    steps_completed INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    UNIQUE (user_id, process_id, start_time)
                );
                CREATE INDEX IF NOT EXISTS idx_time_records_user ON time_records(user_id);
                CREATE TABLE IF NOT EXISTS step_completions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    time_record_id INTEGER NOT NULL REFERENCES time_records(id) ON DELETE CASCADE,
                    step_id INTEGER NOT NULL,
                    completed_at TEXT,
                    UNIQUE (time_record_id, step_id)
                );
                CREATE TABLE IF NOT EXISTS step_timings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    time_record_id INTEGER NOT NULL REFERENCES time_records(id) ON DELETE CASCADE,
                    step_id INTEGER NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    duration INTEGER
                );
                CREATE TABLE IF NOT EXISTS photos (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    time_record_id INTEGER NOT NULL REFERENCES time_records(id) ON DELETE CASCADE,
                    step_id INTEGER,
                    data BLOB NOT NULL,
                    comment TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )

    def seed_defaults(self) -> None:
        """Populate an empty database with starter processes."""
        if self._fetchone("SELECT COUNT(*) AS n FROM processes")["n"]:
            return
        for item in DEFAULT_PROCESSES:
            category = self._fetchone(
                "SELECT id FROM process_categories WHERE name = ?", (item["category"],)
            )
            category_id = category["id"] if category else self.create_category(item["category"])
            self.create_process(
                {
                    "name": item["name"],
                    "description": item["description"],
                    "category_id": category_id,
                    "is_sequential": item.get("is_sequential", False),
                },
                item.get("steps", []),
            )
        logger.info(f"Seeded {len(DEFAULT_PROCESSES)} default processes")

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection

    # Users

    def count_users(self) -> int:
        return self._fetchone("SELECT COUNT(*) AS n FROM users")["n"]

    def create_user(
        self,
        username: str,
        password_hash: str,
        first_name: str,
        role: str = "user",
        status: str = "pending",
    ) -> int:
        return self._insert(
            """
            INSERT INTO users (username, password, first_name, role, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (username, password_hash, first_name, role, status, _now()),
        )

    def get_user(self, user_id: int) -> Optional[dict]:
        return self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))

    def get_user_by_username(self, username: str) -> Optional[dict]:
        return self._fetchone("SELECT * FROM users WHERE username = ?", (username,))

    def list_users(self) -> list[dict]:
        return self._fetchall(
            """
            SELECT id, username, first_name, role, status, created_at
            FROM users ORDER BY created_at DESC, id DESC
            """
        )

    def set_user_role(self, user_id: int, role: str) -> int:
        return self._execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))

    def set_user_status(self, user_id: int, status: str) -> int:
        return self._execute("UPDATE users SET status = ? WHERE id = ?", (status, user_id))

    def delete_user(self, user_id: int) -> int:
        return self._execute("DELETE FROM users WHERE id = ?", (user_id,))

    # Categories

    def list_categories(self) -> list[dict]:
        return self._fetchall("SELECT * FROM process_categories ORDER BY name")

    def create_category(self, name: str, icon: Optional[str] = None, color: Optional[str] = None) -> int:
        return self._insert(
            "INSERT INTO process_categories (name, icon, color) VALUES (?, ?, ?)",
            (name, icon, color),
        )

    # Processes

    def _attach_steps(self, processes: list[dict]) -> list[dict]:
        for process in processes:
            process["is_sequential"] = bool(process["is_sequential"])
            process["is_active"] = bool(process["is_active"])
            process["steps"] = [
                {**step, "requires_photo": bool(step["requires_photo"]), "is_required": bool(step["is_required"])}
                for step in self._fetchall(
                    "SELECT * FROM process_steps WHERE process_id = ? ORDER BY step_number",
                    (process["id"],),
                )
            ]
        return processes

    def list_processes(self, active_only: bool = True) -> list[dict]:
        """Processes with category and ordered steps, highest priority first."""
        where = "WHERE p.is_active = 1" if active_only else ""
        return self._attach_steps(
            self._fetchall(
                f"""
                SELECT p.*, c.name AS category_name, c.icon AS category_icon,
                       c.color AS category_color
                FROM processes p
                LEFT JOIN process_categories c ON c.id = p.category_id
                {where}
                ORDER BY p.priority DESC, p.name
                """
            )
        )

    def get_process(self, process_id: int) -> Optional[dict]:
        rows = self._fetchall(
            """
            SELECT p.*, c.name AS category_name, c.icon AS category_icon,
                   c.color AS category_color
            FROM processes p
            LEFT JOIN process_categories c ON c.id = p.category_id
            WHERE p.id = ?
            """,
            (process_id,),
        )
        return self._attach_steps(rows)[0] if rows else None

    def _replace_steps(self, process_id: int, steps: list[dict]) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM process_steps WHERE process_id = ?", (process_id,))
            cursor.executemany(
                """
                INSERT INTO process_steps (
                    process_id, step_number, name, description, estimated_duration,
                    requires_photo, photo_instructions, is_required
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        process_id,
                        step.get("step_number") or index,
                        step["name"],
                        step.get("description"),
                        step.get("estimated_duration") or 0,
                        int(bool(step.get("requires_photo"))),
                        step.get("photo_instructions"),
                        int(step.get("is_required", True)),
                    )
                    for index, step in enumerate(steps, start=1)
                ],
            )

    def create_process(self, data: dict, steps: Optional[list[dict]] = None) -> int:
        process_id = self._insert(
            """
            INSERT INTO processes (
                name, description, category_id, estimated_duration, priority,
                is_sequential, is_active
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["name"],
                data.get("description"),
                data.get("category_id"),
                data.get("estimated_duration") or 0,
                data.get("priority") or 0,
                int(bool(data.get("is_sequential"))),
                int(data.get("is_active", True)),
            ),
        )
        if steps:
            self._replace_steps(process_id, steps)
        return process_id

    def update_process(self, process_id: int, data: dict, steps: Optional[list[dict]] = None) -> int:
        changed = self._update_fields("processes", process_id, _PROCESS_FIELDS, data)
        if steps is not None:
            self._replace_steps(process_id, steps)
        return changed

    def delete_process(self, process_id: int) -> int:
        # Records keep referencing the process, so it is only deactivated
        return self._execute("UPDATE processes SET is_active = 0 WHERE id = ?", (process_id,))

    # Objects

    def list_objects(self, active_only: bool = False) -> list[dict]:
        where = "WHERE is_active = 1" if active_only else ""
        return self._fetchall(f"SELECT * FROM objects {where} ORDER BY name")

    def get_object(self, object_id: int) -> Optional[dict]:
        return self._fetchone("SELECT * FROM objects WHERE id = ?", (object_id,))

    def create_object(self, data: dict) -> int:
        return self._insert(
            "INSERT INTO objects (name, address, description, is_active) VALUES (?, ?, ?, ?)",
            (data["name"], data.get("address"), data.get("description"), int(data.get("is_active", True))),
        )

    def update_object(self, object_id: int, data: dict) -> int:
        return self._update_fields("objects", object_id, _OBJECT_FIELDS, data)

    def delete_object(self, object_id: int) -> int:
        return self._execute("DELETE FROM objects WHERE id = ?", (object_id,))

    # Assignments

    _ASSIGNMENT_SELECT = """
        SELECT a.*, u.username, p.name AS process_name, o.name AS object_name
        FROM assignments a
        JOIN users u ON u.id = a.user_id
        JOIN processes p ON p.id = a.process_id
        LEFT JOIN objects o ON o.id = a.object_id
    """

    def list_assignments(self, user_id: Optional[int] = None) -> list[dict]:
        if user_id is None:
            return self._fetchall(self._ASSIGNMENT_SELECT + " ORDER BY a.due_date, a.id")
        return self._fetchall(
            self._ASSIGNMENT_SELECT
            + " WHERE a.user_id = ? AND a.status != 'completed' ORDER BY a.due_date, a.id",
            (user_id,),
        )

    def get_assignment(self, assignment_id: int) -> Optional[dict]:
        return self._fetchone(self._ASSIGNMENT_SELECT + " WHERE a.id = ?", (assignment_id,))

    def create_assignment(self, data: dict) -> int:
        return self._insert(
            """
            INSERT INTO assignments (user_id, process_id, object_id, due_date, status, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                data["user_id"],
                data["process_id"],
                data.get("object_id"),
                data.get("due_date"),
                data.get("status") or "pending",
                data.get("notes"),
                _now(),
            ),
        )

    def update_assignment(self, assignment_id: int, data: dict) -> int:
        return self._update_fields("assignments", assignment_id, _ASSIGNMENT_FIELDS, data)

    def delete_assignment(self, assignment_id: int) -> int:
        return self._execute("DELETE FROM assignments WHERE id = ?", (assignment_id,))

    # Time records

    def get_record(self, record_id: int) -> Optional[dict]:
        return self._fetchone("SELECT * FROM time_records WHERE id = ?", (record_id,))

    def list_records(self, user_id: int, limit: int = 50) -> list[dict]:
        return self._fetchall(
            """
            SELECT * FROM time_records WHERE user_id = ?
            ORDER BY start_time DESC LIMIT ?
            """,
            (user_id, limit),
        )

    def sync_record(self, user_id: int, record: dict, steps: list[dict]) -> int:
        """Upsert a client record keyed by (user, process, start time).

        Re-sending a record (e.g. after a lost response) updates it in place
        instead of creating a duplicate.
        """
        start_time = _normalize_time(record["start_time"])
        end_time = _normalize_time(record.get("end_time"))
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO time_records (
                    user_id, process_id, object_id, assignment_id, start_time,
                    end_time, duration, comment, steps_completed, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, process_id, start_time) DO UPDATE SET
                    end_time = excluded.end_time,
                    duration = excluded.duration,
                    comment = excluded.comment,
                    steps_completed = excluded.steps_completed,
                    object_id = excluded.object_id,
                    assignment_id = excluded.assignment_id
                """,
                (
                    user_id,
                    record["process_id"],
                    record.get("object_id"),
                    record.get("assignment_id"),
                    start_time,
                    end_time,
                    record.get("duration"),
                    record.get("comment"),
                    record.get("steps_completed") or len(steps),
                    _now(),
                ),
            )
            cursor.execute(
                "SELECT id FROM time_records WHERE user_id = ? AND process_id = ? AND start_time = ?",
                (user_id, record["process_id"], start_time),
            )
            record_id = cursor.fetchone()["id"]
            cursor.executemany(
                """
                INSERT OR IGNORE INTO step_completions (time_record_id, step_id, completed_at)
                VALUES (?, ?, ?)
                """,
                [(record_id, s["step_id"], _normalize_time(s.get("completed_at"))) for s in steps],
            )
        return record_id

    def get_step_completions(self, record_id: int) -> list[dict]:
        return self._fetchall(
            "SELECT * FROM step_completions WHERE time_record_id = ? ORDER BY id",
            (record_id,),
        )

    def start_record(
        self,
        user_id: int,
        process_id: int,
        object_id: Optional[int] = None,
        assignment_id: Optional[int] = None,
    ) -> dict:
        start_time = _now()
        record_id = self._insert(
            """
            INSERT INTO time_records (
                user_id, process_id, object_id, assignment_id, start_time, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, process_id, object_id, assignment_id, start_time, start_time),
        )
        if assignment_id:
            self._execute(
                "UPDATE assignments SET status = 'in_progress' WHERE id = ? AND status = 'pending'",
                (assignment_id,),
            )
        return {"id": record_id, "start_time": start_time}

    def stop_record(self, record_id: int, comment: Optional[str] = None) -> dict:
        record = self.get_record(record_id)
        end_time = _now()
        duration = _duration(record["start_time"], end_time)
        steps_completed = len(self.get_step_completions(record_id))
        self._execute(
            """
            UPDATE time_records
            SET end_time = ?, duration = ?, comment = ?, steps_completed = ?
            WHERE id = ?
            """,
            (end_time, duration, comment, steps_completed, record_id),
        )
        return {"end_time": end_time, "duration": duration}

    # Step timings

    def start_step_timing(self, record_id: int, step_id: int) -> dict:
        start_time = _now()
        timing_id = self._insert(
            "INSERT INTO step_timings (time_record_id, step_id, start_time) VALUES (?, ?, ?)",
            (record_id, step_id, start_time),
        )
        return {"id": timing_id, "start_time": start_time}

    def get_step_timing(self, timing_id: int) -> Optional[dict]:
        return self._fetchone("SELECT * FROM step_timings WHERE id = ?", (timing_id,))

    def stop_step_timing(self, timing_id: int) -> dict:
        timing = self.get_step_timing(timing_id)
        end_time = _now()
        duration = _duration(timing["start_time"], end_time)
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE step_timings SET end_time = ?, duration = ? WHERE id = ?",
                (end_time, duration, timing_id),
            )
            cursor.execute(
                """
                INSERT OR IGNORE INTO step_completions (time_record_id, step_id, completed_at)
                VALUES (?, ?, ?)
                """,
                (timing["time_record_id"], timing["step_id"], end_time),
            )
        return {"end_time": end_time, "duration": duration}

    def list_step_timings(self, record_id: int) -> list[dict]:
        return self._fetchall(
            """
            SELECT t.*, s.name AS step_name, s.step_number
            FROM step_timings t
            LEFT JOIN process_steps s ON s.id = t.step_id
            WHERE t.time_record_id = ?
            ORDER BY t.start_time
            """,
            (record_id,),
        )

    # Photos

    def save_photo(
        self,
        record_id: int,
        data: bytes,
        step_id: Optional[int] = None,
        comment: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> int:
        return self._insert(
            """
            INSERT INTO photos (time_record_id, step_id, data, comment, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (record_id, step_id, sqlite3.Binary(data), comment, _normalize_time(created_at) or _now()),
        )

    def list_photos(self, record_id: int) -> list[dict]:
        return self._fetchall(
            "SELECT * FROM photos WHERE time_record_id = ? ORDER BY id", (record_id,)
        )

    # Stats & analytics

    def record_stats(self, user_id: int, days: int = 7) -> list[dict]:
        """Per-process totals for the user's finished records of the last ``days``."""
        return self._fetchall(
            """
            SELECT p.name, COUNT(*) AS count, COALESCE(SUM(tr.duration), 0) AS total_duration
            FROM time_records tr
            JOIN processes p ON p.id = tr.process_id
            WHERE tr.user_id = ? AND tr.end_time IS NOT NULL
              AND tr.start_time >= datetime('now', ?)
            GROUP BY p.id, p.name
            ORDER BY total_duration DESC
            """,
            (user_id, f"-{int(days)} days"),
        )

    def analytics_summary(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> dict:
        period, params = _period_filter("start_time", start_date, end_date)
        return self._fetchone(
            f"""
            SELECT COUNT(*) AS total_records,
                   COUNT(DISTINCT user_id) AS active_users,
                   COUNT(DISTINCT process_id) AS processes_used,
                   COALESCE(SUM(duration), 0) AS total_duration,
                   COALESCE(AVG(duration), 0) AS avg_duration
            FROM time_records
            WHERE end_time IS NOT NULL {period}
            """,
            params,
        )

    def stats_by_process(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> list[dict]:
        period, params = _period_filter("tr.start_time", start_date, end_date)
        return self._fetchall(
            f"""
            SELECT p.id, p.name, COUNT(tr.id) AS count,
                   COALESCE(SUM(tr.duration), 0) AS total_duration,
                   COALESCE(AVG(tr.duration), 0) AS avg_duration,
                   MIN(tr.duration) AS min_duration, MAX(tr.duration) AS max_duration
            FROM time_records tr
            JOIN processes p ON p.id = tr.process_id
            WHERE tr.end_time IS NOT NULL {period}
            GROUP BY p.id, p.name
            ORDER BY total_duration DESC
            """,
            params,
        )

    def stats_by_user(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> list[dict]:
        period, params = _period_filter("tr.start_time", start_date, end_date)
        return self._fetchall(
            f"""
            SELECT u.id, u.username, u.first_name, COUNT(tr.id) AS count,
                   COALESCE(SUM(tr.duration), 0) AS total_duration,
                   COALESCE(AVG(tr.duration), 0) AS avg_duration
            FROM time_records tr
            JOIN users u ON u.id = tr.user_id
            WHERE tr.end_time IS NOT NULL {period}
            GROUP BY u.id, u.username, u.first_name
            ORDER BY total_duration DESC
            """,
            params,
        )
