"""DuckDB-backed deletion schedule for temporal uploads.

The orchestrator schedules a key when an upload carries ``temporal_time``;
a periodic sweep (started by the application lifespan) deletes every key
whose deadline has passed.  Pending deletions survive restarts.

Database Schema:
    scheduled_deletions table:
        - id: Auto-incrementing primary key
        - key: Storage key to delete
        - backend: Backend name the key belongs to
        - due_at: Deadline (UTC, naive)
        - done: Set once the key has been deleted

Thread Safety:
    The DuckDB connection is NOT thread-safe.  Uploads schedule from request
    worker threads while the sweep runs in its own thread, so every
    statement runs under ``_lock``.

Usage:
    service = ExpiryService.get_instance("expiry.duckdb")
    service.schedule("temporal/report.pdf", 600)
    service.sweep(storage)
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import duckdb

from uploader.files.errors import StorageError

from .schemas import ScheduledDeletion

logger = logging.getLogger(__name__)

_COLUMNS = "id, key, backend, due_at, done"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DuckDB."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ExpiryService:
    """Singleton service managing scheduled deletions in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["ExpiryService"] = None
    _db_path: str = "expiry.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Initialize the expiry service.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: Path to DuckDB file. Defaults to "expiry.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ExpiryService":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the schedule table and sequence (idempotent)."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("CREATE SEQUENCE IF NOT EXISTS scheduled_deletions_seq START 1;")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS scheduled_deletions (
                    id INTEGER DEFAULT nextval('scheduled_deletions_seq') PRIMARY KEY,
                    key VARCHAR NOT NULL,
                    backend VARCHAR NOT NULL,
                    due_at TIMESTAMP NOT NULL,
                    done BOOLEAN NOT NULL DEFAULT FALSE
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_deletions_due ON scheduled_deletions(due_at)
            """)

    @staticmethod
    def _row(row) -> ScheduledDeletion:
        return ScheduledDeletion(id=row[0], key=row[1], backend=row[2], due_at=row[3], done=row[4])

    def schedule(self, key: str, delay_seconds: float, backend: str = "local") -> ScheduledDeletion:
        """Schedule *key* for deletion *delay_seconds* from now."""
        due_at = utcnow() + timedelta(seconds=delay_seconds)
        with self._lock:
            row = self._get_connection().execute(
                f"""
                INSERT INTO scheduled_deletions (key, backend, due_at)
                VALUES (?, ?, ?)
                RETURNING {_COLUMNS}
                """,
                [key, backend, due_at],
            ).fetchone()
        entry = self._row(row)
        logger.info("Scheduled deletion of %s at %s (id=%d)", key, due_at.isoformat(), entry.id)
        return entry

    def pending(self, limit: int = 100) -> List[ScheduledDeletion]:
        """Deletions not yet performed, soonest first."""
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_COLUMNS} FROM scheduled_deletions
                WHERE NOT done
                ORDER BY due_at ASC
                LIMIT ?
                """,
                [limit],
            ).fetchall()
        return [self._row(r) for r in rows]

    def due(self, now: Optional[datetime] = None) -> List[ScheduledDeletion]:
        """Pending deletions whose deadline is at or before *now*."""
        now = now or utcnow()
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_COLUMNS} FROM scheduled_deletions
                WHERE NOT done AND due_at <= ?
                ORDER BY due_at ASC
                """,
                [now],
            ).fetchall()
        return [self._row(r) for r in rows]

    def mark_done(self, entry_id: int) -> None:
        with self._lock:
            self._get_connection().execute(
                "UPDATE scheduled_deletions SET done = TRUE WHERE id = ?",
                [entry_id],
            )

    def sweep(self, storage, now: Optional[datetime] = None) -> int:
        """Delete every due key from *storage*.

        Entries of other backends are left alone; failed deletions stay
        pending and are retried by the next sweep.

        Returns:
            Number of keys deleted.
        """
        deleted = 0
        for entry in self.due(now):
            if entry.backend != storage.name:
                continue
            try:
                storage.delete_file(entry.key)
            except StorageError as exc:
                logger.warning("Scheduled deletion of %s failed: %s", entry.key, exc.message)
                continue
            self.mark_done(entry.id)
            deleted += 1

        if deleted:
            logger.info("Expiry sweep deleted %d file(s)", deleted)
        return deleted

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
