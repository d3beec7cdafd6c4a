"""
Persistent record table - SQLite storage for run records.

Every operation opens its own short-lived connection to the database file.
The database runs in WAL mode so the retention thread and request handlers
can read concurrently while SQLite serializes the writers.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Generator, List, Optional, Tuple, Union

from util.logging import logger

from .config import ensure_db_directory
from .errors import ConstraintViolation, StorageUnavailable
from .schema import ListFilters, Record, from_timestamp, parse_time_filter, to_timestamp

TABLE_NAME = "run_records"

SCHEMA_SQL = '''
    CREATE TABLE IF NOT EXISTS run_records (
        id TEXT PRIMARY KEY,
        run_key TEXT NOT NULL UNIQUE,
        payload TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
'''


class RecordTable:
    """Keyed storage of run records with a created_at ordering index."""

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def get_db(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a SQLite connection, translating driver errors into store errors."""
        if self._closed:
            raise StorageUnavailable(f"Record table at {self.db_path} is closed")

        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            logger.error(f"Failed to open database '{self.db_path}': {e}")
            raise StorageUnavailable(str(e)) from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"Database error on '{self.db_path}': {e}")
            raise StorageUnavailable(str(e)) from e
        finally:
            conn.close()

    def init_schema(self):
        """Create the database file, table and indexes if they are missing."""
        ensure_db_directory(self.db_path)
        with self.get_db() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(SCHEMA_SQL)
            # created_at ordering drives both retention and listing
            conn.execute(f'CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_created_at ON {TABLE_NAME}(created_at)')
            conn.commit()

    def close(self):
        """Mark the table closed. Later operations raise StorageUnavailable."""
        self._closed = True

    def health_check(self) -> bool:
        """Check that the handle is open and the table exists."""
        if self._closed:
            return False
        try:
            with self.get_db() as conn:
                row = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
                    (TABLE_NAME,)
                ).fetchone()
                return row is not None
        except StorageUnavailable:
            return False

    # Point lookups

    def get_by_key(self, run_key: str) -> Optional[Record]:
        with self.get_db() as conn:
            row = conn.execute(f"SELECT * FROM {TABLE_NAME} WHERE run_key = ?", (run_key,)).fetchone()
            return _row_to_record(row) if row else None

    def get_by_id(self, record_id: str) -> Optional[Record]:
        with self.get_db() as conn:
            row = conn.execute(f"SELECT * FROM {TABLE_NAME} WHERE id = ?", (record_id,)).fetchone()
            return _row_to_record(row) if row else None

    # Writes

    def insert(self, record: Record):
        """Insert a new record. Raises ConstraintViolation on a duplicate run_key or id."""
        with self.get_db() as conn:
            conn.execute(
                f"INSERT INTO {TABLE_NAME} (id, run_key, payload, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.run_key,
                    json.dumps(record.payload),
                    to_timestamp(record.created_at),
                    to_timestamp(record.updated_at),
                )
            )
            conn.commit()

    def update_payload(self, run_key: str, payload, updated_at: datetime) -> bool:
        """Overwrite the payload for run_key. Returns False when no row matched."""
        with self.get_db() as conn:
            cursor = conn.execute(
                f"UPDATE {TABLE_NAME} SET payload = ?, updated_at = ? WHERE run_key = ?",
                (json.dumps(payload), to_timestamp(updated_at), run_key)
            )
            conn.commit()
            return cursor.rowcount > 0

    def append(self, run_key: str, element, updated_at: datetime) -> Optional[Record]:
        """Append element to the stored payload list inside one write transaction.

        A bare legacy payload is wrapped into a list first. Returns the updated
        record, or None when no row exists for run_key.
        """
        with self.get_db() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(f"SELECT payload FROM {TABLE_NAME} WHERE run_key = ?", (run_key,)).fetchone()
            if row is None:
                conn.rollback()
                return None

            history = _decode_payload(row["payload"])
            if not isinstance(history, list):
                history = [history]
            history.append(element)

            conn.execute(
                f"UPDATE {TABLE_NAME} SET payload = ?, updated_at = ? WHERE run_key = ?",
                (json.dumps(history), to_timestamp(updated_at), run_key)
            )
            updated = conn.execute(f"SELECT * FROM {TABLE_NAME} WHERE run_key = ?", (run_key,)).fetchone()
            conn.commit()
            return _row_to_record(updated)

    def delete(self, run_key: str) -> bool:
        with self.get_db() as conn:
            cursor = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE run_key = ?", (run_key,))
            conn.commit()
            return cursor.rowcount > 0

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete every record created strictly before cutoff."""
        with self.get_db() as conn:
            removed = _delete_older_than(conn, to_timestamp(cutoff))
            conn.commit()
            return removed

    def delete_oldest(self, n: int) -> int:
        """Delete the n oldest records by created_at, ties in insertion order."""
        with self.get_db() as conn:
            removed = _delete_oldest(conn, n)
            conn.commit()
            return removed

    def cleanup(self, cutoff: datetime, max_records: int) -> Tuple[int, int, int]:
        """Run both retention steps in one write transaction.

        Returns (deleted_by_age, deleted_by_count, remaining).
        """
        with self.get_db() as conn:
            conn.execute("BEGIN IMMEDIATE")
            deleted_by_age = _delete_older_than(conn, to_timestamp(cutoff))

            deleted_by_count = 0
            remaining = _count(conn)
            if remaining > max_records:
                deleted_by_count = _delete_oldest(conn, remaining - max_records)
                remaining = _count(conn)

            conn.commit()
            return deleted_by_age, deleted_by_count, remaining

    # Counting and listing

    def count(self) -> int:
        with self.get_db() as conn:
            return _count(conn)

    def count_matching(self, start: Union[str, datetime, None] = None,
                       end: Union[str, datetime, None] = None) -> int:
        """Count records with start <= created_at <= end. Either bound may be omitted.

        Bounds are datetimes or ISO-8601 strings, normalized to the stored form.
        """
        filters = ListFilters(start=parse_time_filter(start), end=parse_time_filter(end))
        where, params = _build_where(filters)
        with self.get_db() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME} {where}", params).fetchone()[0]

    def list(self, filters: ListFilters, limit: int, offset: int) -> Tuple[List[Record], int]:
        """Return one page of matching records (newest first) and the total match count."""
        where, params = _build_where(filters)
        with self.get_db() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME} {where}", params).fetchone()[0]
            rows = conn.execute(f'''
                SELECT * FROM {TABLE_NAME}
                {where}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
            ''', params + [limit, offset]).fetchall()
            return [_row_to_record(row) for row in rows], total

    def oldest_created_at(self) -> Optional[datetime]:
        with self.get_db() as conn:
            row = conn.execute(f"SELECT MIN(created_at) FROM {TABLE_NAME}").fetchone()
            return _decode_timestamp(row[0]) if row and row[0] else None

    def newest_created_at(self) -> Optional[datetime]:
        with self.get_db() as conn:
            row = conn.execute(f"SELECT MAX(created_at) FROM {TABLE_NAME}").fetchone()
            return _decode_timestamp(row[0]) if row and row[0] else None


def _count(conn: sqlite3.Connection) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}").fetchone()[0]


def _delete_older_than(conn: sqlite3.Connection, cutoff: str) -> int:
    return conn.execute(f"DELETE FROM {TABLE_NAME} WHERE created_at < ?", (cutoff,)).rowcount


def _delete_oldest(conn: sqlite3.Connection, n: int) -> int:
    if n <= 0:
        return 0
    cursor = conn.execute(f'''
        DELETE FROM {TABLE_NAME}
        WHERE id IN (
            SELECT id FROM {TABLE_NAME}
            ORDER BY created_at ASC, rowid ASC
            LIMIT ?
        )
    ''', (n,))
    return cursor.rowcount


def _build_where(filters: ListFilters) -> Tuple[str, list]:
    conditions = []
    params = []

    if filters.run_key:
        conditions.append("run_key = ?")
        params.append(filters.run_key)

    if filters.start:
        conditions.append("created_at >= ?")
        params.append(filters.start)

    if filters.end:
        conditions.append("created_at <= ?")
        params.append(filters.end)

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


def _decode_payload(raw: str):
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Corrupt payload in {TABLE_NAME}: {e}")
        raise StorageUnavailable(f"Corrupt payload: {e}") from e


def _decode_timestamp(raw: str) -> datetime:
    try:
        return from_timestamp(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Corrupt timestamp in {TABLE_NAME}: {raw!r}")
        raise StorageUnavailable(f"Corrupt timestamp: {raw!r}") from e


def _row_to_record(row: sqlite3.Row) -> Record:
    return Record(
        id=row["id"],
        run_key=row["run_key"],
        payload=_decode_payload(row["payload"]),
        created_at=_decode_timestamp(row["created_at"]),
        updated_at=_decode_timestamp(row["updated_at"]),
    )
