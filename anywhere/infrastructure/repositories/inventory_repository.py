"""
SQLite Inventory Repository

Architectural Intent:
- Persistent storage for instance records using SQLite (stdlib, zero external deps)
- Implements InventoryPort; the single shared mutable resource of the orchestrator
- Provides the coarse table-wide lock that serializes check-then-create
- Uses WAL mode for concurrent read/write support

Design Decisions:
- Single database file at configurable path (default: anywhere.db)
- Auto-creates the schema on connect
- Two locks: a connection mutex guarding every statement, and the admission
  lock held by callers across a read-then-insert sequence
- Every UPDATE is guarded by `is_deleted = 0` so a deleted record never changes
- sqlite3.Error is translated into PersistenceError at this boundary
- Timestamps stored as ISO 8601 strings
"""

from __future__ import annotations
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Iterable, Iterator, Optional

from anywhere.domain.entities.instance import (
    ACTIVE_STATUSES,
    InstanceRecord,
    InstanceStatus,
)
from anywhere.domain.errors import PersistenceError

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = tuple(s.value for s in ACTIVE_STATUSES)
_ACTIVE_PLACEHOLDERS = ", ".join("?" for _ in _ACTIVE_VALUES)


def _row_to_record(row: sqlite3.Row) -> InstanceRecord:
    return InstanceRecord(
        id=row["id"],
        uuid=row["uuid"],
        cloud_instance_id=row["cloud_id"] or "",
        region=row["region"],
        public_address=row["public_address"] or "",
        status=InstanceStatus(row["status"]),
        is_deleted=bool(row["is_deleted"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class InventoryRepository:
    """Persistent instance inventory using SQLite."""

    def __init__(self, db_path: str = "anywhere.db"):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._mutex = threading.RLock()
        self._table_lock = threading.Lock()

    def connect(self) -> None:
        """Open database connection and create tables."""
        try:
            self._conn = sqlite3.connect(
                self._db_path,
                check_same_thread=False,
            )
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.row_factory = sqlite3.Row
            self._create_tables()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open inventory {self._db_path}: {e}") from e
        logger.info("Inventory store connected: %s", self._db_path)

    def close(self) -> None:
        """Close database connection."""
        with self._mutex:
            if self._conn:
                self._conn.close()
                self._conn = None

    def _create_tables(self) -> None:
        """Create tables if they don't exist."""
        assert self._conn is not None
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS instances (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                uuid TEXT NOT NULL UNIQUE,
                cloud_id TEXT NOT NULL DEFAULT '',
                region TEXT NOT NULL,
                public_address TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_instances_region ON instances(region, is_deleted);
            CREATE INDEX IF NOT EXISTS idx_instances_cloud_id ON instances(cloud_id);
        """)

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Connection]:
        """Run statements under the connection mutex, committing on success."""
        with self._mutex:
            if self._conn is None:
                raise PersistenceError("inventory store is not connected")
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceError(str(e)) from e

    # -- Admission lock ------------------------------------------------------

    def lock(self) -> None:
        self._table_lock.acquire()

    def unlock(self) -> None:
        self._table_lock.release()

    @contextmanager
    def locked(self) -> Iterator[None]:
        self.lock()
        try:
            yield
        finally:
            self.unlock()

    # -- Instances -----------------------------------------------------------

    def create(self, record: InstanceRecord) -> InstanceRecord:
        """Insert a record. Returns it with the assigned row id."""
        now = datetime.now(UTC).isoformat()
        with self._cursor() as conn:
            cursor = conn.execute(
                """INSERT INTO instances
                   (uuid, cloud_id, region, public_address, status, is_deleted,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (record.uuid, record.cloud_instance_id, record.region,
                 record.public_address, record.status.value, int(record.is_deleted),
                 now, now),
            )
            row_id = cursor.lastrowid
        return InstanceRecord(
            id=row_id,
            uuid=record.uuid,
            cloud_instance_id=record.cloud_instance_id,
            region=record.region,
            public_address=record.public_address,
            status=record.status,
            is_deleted=record.is_deleted,
            created_at=now,
            updated_at=now,
        )

    def get_by_uuid(
        self, uuid: str, include_deleted: bool = False
    ) -> Optional[InstanceRecord]:
        query = "SELECT * FROM instances WHERE uuid = ?"
        if not include_deleted:
            query += " AND is_deleted = 0"
        with self._cursor() as conn:
            row = conn.execute(query, (uuid,)).fetchone()
        return _row_to_record(row) if row else None

    def list_active(self) -> list[InstanceRecord]:
        """All non-deleted records, newest first."""
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT * FROM instances WHERE is_deleted = 0 ORDER BY id DESC"
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def list_all(self, limit: int = 100) -> list[InstanceRecord]:
        """Every record including soft-deleted history, newest first."""
        with self._cursor() as conn:
            rows = conn.execute(
                "SELECT * FROM instances ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def update(
        self, record: InstanceRecord, expected: Optional[InstanceStatus] = None
    ) -> bool:
        """Write the mutable fields of a non-deleted record."""
        query = """UPDATE instances
                   SET cloud_id = ?, public_address = ?, status = ?, updated_at = ?
                   WHERE uuid = ? AND is_deleted = 0"""
        params: list = [record.cloud_instance_id, record.public_address,
                        record.status.value, datetime.now(UTC).isoformat(), record.uuid]
        if expected is not None:
            query += " AND status = ?"
            params.append(expected.value)
        with self._cursor() as conn:
            cursor = conn.execute(query, params)
        return cursor.rowcount > 0

    def update_status(self, uuid: str, status: InstanceStatus) -> bool:
        with self._cursor() as conn:
            cursor = conn.execute(
                """UPDATE instances SET status = ?, updated_at = ?
                   WHERE uuid = ? AND is_deleted = 0""",
                (status.value, datetime.now(UTC).isoformat(), uuid),
            )
        return cursor.rowcount > 0

    def update_status_and_address(
        self, uuid: str, status: InstanceStatus, address: str
    ) -> bool:
        with self._cursor() as conn:
            cursor = conn.execute(
                """UPDATE instances SET status = ?, public_address = ?, updated_at = ?
                   WHERE uuid = ? AND is_deleted = 0""",
                (status.value, address, datetime.now(UTC).isoformat(), uuid),
            )
        return cursor.rowcount > 0

    def set_cloud_instance_id(self, uuid: str, cloud_instance_id: str) -> bool:
        with self._cursor() as conn:
            cursor = conn.execute(
                """UPDATE instances SET cloud_id = ?, updated_at = ?
                   WHERE uuid = ? AND is_deleted = 0""",
                (cloud_instance_id, datetime.now(UTC).isoformat(), uuid),
            )
        return cursor.rowcount > 0

    def transition(
        self,
        uuid: str,
        expected: Iterable[InstanceStatus],
        status: InstanceStatus,
        address: Optional[str] = None,
    ) -> bool:
        """Compare-and-set the status. False if the record moved elsewhere."""
        expected_values = [s.value for s in expected]
        if not expected_values:
            return False
        placeholders = ", ".join("?" for _ in expected_values)
        assignments = "status = ?, updated_at = ?"
        params: list = [status.value, datetime.now(UTC).isoformat()]
        if address is not None:
            assignments += ", public_address = ?"
            params.append(address)
        params.append(uuid)
        params.extend(expected_values)
        with self._cursor() as conn:
            cursor = conn.execute(
                f"""UPDATE instances SET {assignments}
                    WHERE uuid = ? AND is_deleted = 0
                    AND status IN ({placeholders})""",
                params,
            )
        return cursor.rowcount > 0

    def soft_delete(self, uuid: str) -> bool:
        with self._cursor() as conn:
            cursor = conn.execute(
                """UPDATE instances SET status = ?, is_deleted = 1, updated_at = ?
                   WHERE uuid = ? AND is_deleted = 0""",
                (InstanceStatus.DELETED.value, datetime.now(UTC).isoformat(), uuid),
            )
        return cursor.rowcount > 0

    def has_active_in_region(self, region: str) -> bool:
        return self.get_active_in_region(region) is not None

    def get_active_in_region(self, region: str) -> Optional[InstanceRecord]:
        with self._cursor() as conn:
            row = conn.execute(
                f"""SELECT * FROM instances
                    WHERE region = ? AND is_deleted = 0
                    AND status IN ({_ACTIVE_PLACEHOLDERS})
                    ORDER BY id ASC LIMIT 1""",
                (region, *_ACTIVE_VALUES),
            ).fetchone()
        return _row_to_record(row) if row else None

    def count_active_in_region(self, region: str) -> int:
        with self._cursor() as conn:
            row = conn.execute(
                f"""SELECT COUNT(*) FROM instances
                    WHERE region = ? AND is_deleted = 0
                    AND status IN ({_ACTIVE_PLACEHOLDERS})""",
                (region, *_ACTIVE_VALUES),
            ).fetchone()
        return row[0]
