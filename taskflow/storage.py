"""
Storage Backend Module

Provides the abstract storage port and implementations for in-memory (testing)
and SQLite (persistence). Records are plain JSON-compatible dictionaries;
monetary values are stored as Decimal strings and datetimes as ISO strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import StorageUnavailableError


def serialize_value(value: Any) -> Any:
    """Convert enums, datetimes and Decimals (recursively) to JSON-friendly values"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO string (or pass through a datetime) into an aware datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return serialize_value(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data:
            data['created_at'] = parse_datetime(data['created_at'])
        if 'updated_at' in data:
            data['updated_at'] = parse_datetime(data['updated_at'])
        return cls(**data)


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._tx_depth = 0

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                expected: Dict[str, Any]) -> bool:
        """
        Conditionally replace a record.

        The record is written only if it exists and every key in ``expected``
        still holds the given value. Returns True when the write happened.
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Blocks may nest; only the outermost block commits or rolls back. The
        storage lock is held for the whole block, so transactions from
        different threads are serialized.
        """
        with self._lock:
            outermost = self._tx_depth == 0
            if outermost:
                self.begin_transaction()
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                if outermost:
                    self.rollback()
                raise
            self._tx_depth -= 1
            if outermost:
                self.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                expected: Dict[str, Any]) -> bool:
        with self._lock:
            self._ensure_table(table)
            current = self._data[table].get(record_id)
            if current is None or not _matches(current, expected):
                return False
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))
            return True

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            return [
                json.loads(json.dumps(record))
                for record in self._data[table].values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self) -> None:
        """Snapshot all tables so a rollback can restore them"""
        with self._lock:
            self._snapshot = json.loads(json.dumps(self._data))

    def commit(self) -> None:
        with self._lock:
            self._snapshot = None

    def rollback(self) -> None:
        with self._lock:
            if self._snapshot is not None:
                self._data = self._snapshot
                self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        super().__init__()
        self.db_path = str(db_path)
        self._tables = set()
        try:
            # DEFERRED isolation so that writes inside atomic() share one transaction
            self._connection = sqlite3.connect(
                self.db_path, timeout=timeout,
                check_same_thread=False, isolation_level='DEFERRED'
            )
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"cannot open {self.db_path}: {e}", e)
        self._connection.row_factory = sqlite3.Row
        self._in_transaction = False

        if self.db_path != ":memory:":
            with self._guard():
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @contextmanager
    def _guard(self):
        """Hold the lock and map driver failures to StorageUnavailableError"""
        with self._lock:
            if self._connection is None:
                raise StorageUnavailableError("storage is closed")
            try:
                yield self._connection
            except (sqlite3.OperationalError, sqlite3.ProgrammingError) as e:
                raise StorageUnavailableError(str(e), e)

    def _ensure_table(self, conn: sqlite3.Connection, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        if not self._in_transaction:
            conn.commit()
        self._tables.add(table)

    def _write(self, conn: sqlite3.Connection, table: str, record_id: str,
               data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        data_json = json.dumps(data, default=str)
        conn.execute(f"""
            INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
            VALUES (?, ?,
                COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                ?)
        """, (record_id, data_json, record_id, now, now))
        if not self._in_transaction:
            conn.commit()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._guard() as conn:
            self._ensure_table(conn, table)
            self._write(conn, table, record_id, data)

    def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                expected: Dict[str, Any]) -> bool:
        with self._guard() as conn:
            self._ensure_table(conn, table)
            row = conn.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row is None or not _matches(json.loads(row['data']), expected):
                return False
            self._write(conn, table, record_id, data)
            return True

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._guard() as conn:
            self._ensure_table(conn, table)
            row = conn.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guard() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(f"SELECT data FROM {table} ORDER BY created_at, rowid")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._guard() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            if not self._in_transaction:
                conn.commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guard() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guard() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(f"SELECT COUNT(*) as count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guard() as conn:
            self._ensure_table(conn, table)
            conn.execute(f"DELETE FROM {table}")
            if not self._in_transaction:
                conn.commit()

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            # isolation_level='DEFERRED' opens the transaction on the first write
            self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._guard() as conn:
            if self._in_transaction:
                self._in_transaction = False
                conn.commit()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._guard() as conn:
            if self._in_transaction:
                self._in_transaction = False
                conn.rollback()
                # Tables created inside the transaction are gone again
                self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str, timeout: float = 5.0) -> StorageInterface:
    """
    Build a storage backend from a URL.

    ``memory://`` selects InMemoryStorage, ``sqlite:///path`` (or a bare file
    path) selects SQLiteStorage.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:", timeout=timeout)
    if database_url.startswith("sqlite://"):
        return SQLiteStorage(":memory:", timeout=timeout)
    if "://" in database_url:
        raise ValueError(f"Unsupported database URL: {database_url}")
    return SQLiteStorage(database_url, timeout=timeout)
