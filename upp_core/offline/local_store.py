# =============================================================================
# upp_core/offline/local_store.py
# Local SQLite Key-Value Store for Offline Operations
# =============================================================================
"""
LocalStore - SQLite-backed persistent store for the offline layer.

Holds three record shapes:
- cache_entries: last successful remote read per storage key
- sync_queue:    mutations waiting to be replayed, FIFO by sequence number
- app_settings:  small metadata values (e.g. last sync time)

Storage failures (disk full, quota reached, database unopenable) never raise.
They come back as a failed StoreResult, are kept in `last_error`, and are
logged. An unopenable database switches the store to degraded mode, where
every operation is a reported no-op.
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging

import numpy as np
import pandas as pd

from upp_core.errors import (
    PayloadValidationError,
    StorageError,
    StorageQuotaError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

# sqlite3.SQLITE_FULL is only exported on 3.11+
SQLITE_FULL = getattr(sqlite3, "SQLITE_FULL", 13)


# =============================================================================
# RECORDS
# =============================================================================

class OperationType(Enum):
    """Mutation kinds that can be queued for replay."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class CachedEntry:
    """Last successful remote read stored under a caller-chosen key."""
    key: str
    value: Any
    stored_at: datetime


@dataclass(frozen=True)
class QueuedOperation:
    """A mutation recorded while offline. Immutable once queued."""
    id: str
    type: OperationType
    table: str
    data: Dict[str, Any]
    enqueued_at: datetime = field(default_factory=datetime.now)
    seq: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "table": self.table,
            "data": self.data,
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> QueuedOperation:
        return cls(
            id=raw["id"],
            type=OperationType(raw["type"]),
            table=raw["table"],
            data=raw.get("data") or {},
            enqueued_at=datetime.fromisoformat(raw["enqueued_at"]),
            seq=raw.get("seq"),
        )


@dataclass
class StoreResult:
    """Outcome of a store write or queue read. Falsy when it did not complete."""
    ok: bool
    value: Any = None
    error: Optional[StorageError] = None

    def __bool__(self) -> bool:
        return self.ok

    @property
    def quota_exceeded(self) -> bool:
        return isinstance(self.error, StorageQuotaError)

    @classmethod
    def success(cls, value: Any = None) -> StoreResult:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: StorageError) -> StoreResult:
        return cls(ok=False, error=error)


# =============================================================================
# JSON NORMALIZATION
# =============================================================================

def to_json_safe(value: Any) -> Any:
    """
    Convert numpy/pandas/datetime values into JSON-native equivalents.

    NaN and NaT become None. Unknown objects are returned unchanged and will
    fail later in json.dumps.
    """
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(v) for v in value]
    if isinstance(value, np.ndarray):
        return [to_json_safe(v) for v in value.tolist()]
    if isinstance(value, pd.DataFrame):
        return [to_json_safe(row) for row in value.to_dict(orient="records")]
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return None if pd.isna(value) else value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (np.floating, float)):
        return None if np.isnan(value) or np.isinf(value) else float(value)
    if value is pd.NaT or value is pd.NA:
        return None
    return value


def dumps(value: Any, context: str = "") -> str:
    """Serialize a value for storage; malformed values raise PayloadValidationError."""
    try:
        return json.dumps(to_json_safe(value), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise PayloadValidationError(
            f"Value is not JSON-serializable: {e}",
            field=context or None,
            expected="JSON-serializable value",
            actual=type(value).__name__,
        ) from e


# =============================================================================
# STORE
# =============================================================================

class LocalStore:
    """
    Persistent namespaced store for cached reads and the mutation queue.

    One SQLite connection per thread; all writes run in a transaction.
    """

    SCHEMA = {
        "cache_entries": """
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                stored_at TEXT NOT NULL
            )
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                op_id TEXT NOT NULL UNIQUE,
                operation TEXT NOT NULL,
                table_name TEXT NOT NULL,
                data_json TEXT NOT NULL,
                enqueued_at TEXT NOT NULL
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
        """,
    }

    def __init__(
        self,
        db_path: Path,
        max_store_bytes: Optional[int] = None,
        busy_timeout: float = 30.0,
    ):
        """
        Args:
            db_path: Path to the SQLite database file
            max_store_bytes: Optional quota; writes beyond it fail with StorageQuotaError
            busy_timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.max_store_bytes = max_store_bytes
        self.busy_timeout = busy_timeout
        self.last_error: Optional[StorageError] = None
        self.degraded = False
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._initialized = False

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    @property
    def available(self) -> bool:
        return not self.degraded

    @property
    def connection_count(self) -> int:
        """Number of open SQLite handles (0 or 1)."""
        return 0 if self._conn is None else 1

    def _get_connection(self) -> sqlite3.Connection:
        """Get the shared database connection, opening it on first use."""
        with self._lock:
            if self._conn is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=self.busy_timeout,
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row
                if self.max_store_bytes:
                    page_size = conn.execute("PRAGMA page_size").fetchone()[0]
                    max_pages = max(1, self.max_store_bytes // page_size)
                    conn.execute(f"PRAGMA max_page_count = {max_pages}")
                self._conn = conn
            return self._conn

    @contextmanager
    def transaction(self):
        """Context manager for database transactions. Holds the store lock throughout."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> StoreResult:
        """Create the schema. Safe to call repeatedly."""
        if self._initialized:
            return StoreResult.success()
        if self.degraded:
            return StoreResult.failure(self.last_error)

        with self._lock:
            if self._initialized:
                return StoreResult.success()
            try:
                conn = self._get_connection()
                for table_name, schema in self.SCHEMA.items():
                    conn.execute(schema)
                    logger.debug(f"Created/verified table: {table_name}")
                conn.commit()
            except (sqlite3.Error, OSError) as e:
                error = self._classify(e, "initialize")
                if not isinstance(error, StorageQuotaError):
                    error = StorageUnavailableError(
                        f"Local store unavailable: {e}", operation="initialize"
                    )
                self._record(error)
                self.degraded = True
                logger.warning("Local store degraded: offline cache disabled")
                return StoreResult.failure(error)

            self._initialized = True

        logger.info(f"Local store initialized at: {self.db_path}")
        return StoreResult.success()

    def close(self) -> None:
        """Close the shared connection."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._conn = None
            self._initialized = False

    # =========================================================================
    # ERROR HANDLING
    # =========================================================================

    def _classify(self, error: Exception, operation: str, key: Optional[str] = None) -> StorageError:
        message = str(error).lower()
        if isinstance(error, sqlite3.Error):
            if getattr(error, "sqlite_errorcode", None) == SQLITE_FULL or "full" in message:
                return StorageQuotaError(
                    f"Local storage quota exceeded: {error}", operation=operation, key=key
                )
            if any(s in message for s in ("unable to open", "not a database", "malformed", "readonly")):
                return StorageUnavailableError(
                    f"Local storage unavailable: {error}", operation=operation, key=key
                )
        if isinstance(error, OSError):
            return StorageUnavailableError(
                f"Local storage unavailable: {error}", operation=operation, key=key
            )
        return StorageError(f"Local storage error: {error}", operation=operation, key=key)

    def _record(self, error: StorageError) -> None:
        self.last_error = error
        logger.error(str(error))

    def _write(self, operation: str, fn: Callable[[sqlite3.Connection], Any], key: Optional[str] = None) -> StoreResult:
        """Run a write in a transaction, converting storage failures to a StoreResult."""
        ready = self.initialize()
        if not ready:
            return ready
        try:
            with self.transaction() as conn:
                value = fn(conn)
        except (sqlite3.Error, OSError) as e:
            error = self._classify(e, operation, key)
            self._record(error)
            return StoreResult.failure(error)
        return StoreResult.success(value)

    def _read(self, operation: str, fn: Callable[[sqlite3.Connection], Any], default: Any = None, key: Optional[str] = None) -> Any:
        """Run a read; storage failures and corrupt rows yield `default`."""
        if not self.initialize():
            return default
        try:
            with self._lock:
                return fn(self._get_connection())
        except (sqlite3.Error, OSError, ValueError) as e:
            self._record(self._classify(e, operation, key))
            return default

    # =========================================================================
    # KEY-VALUE OPERATIONS
    # =========================================================================

    def get_entry(self, key: str) -> Optional[CachedEntry]:
        """Get a cached entry with its timestamp."""
        def read(conn):
            row = conn.execute(
                "SELECT key, value_json, stored_at FROM cache_entries WHERE key = ?", [key]
            ).fetchone()
            if row is None:
                return None
            return CachedEntry(
                key=row["key"],
                value=json.loads(row["value_json"]),
                stored_at=datetime.fromisoformat(row["stored_at"]),
            )

        return self._read("get", read, key=key)

    def get(self, key: str) -> Any:
        """Get a cached value, or None when absent or unreadable."""
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any) -> StoreResult:
        """Store a value under key, overwriting any previous entry."""
        value_json = dumps(value, context=key)
        stored_at = datetime.now().isoformat()

        result = self._write(
            "set",
            lambda conn: conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value_json, stored_at) VALUES (?, ?, ?)",
                [key, value_json, stored_at],
            ),
            key=key,
        )
        if result:
            logger.debug(f"Saved {key}")
            result.value = None
        return result

    def remove(self, key: str) -> StoreResult:
        """Remove a cached entry. Removing a missing key succeeds."""
        return self._write(
            "remove",
            lambda conn: conn.execute("DELETE FROM cache_entries WHERE key = ?", [key]).rowcount > 0,
            key=key,
        )

    def keys(self) -> List[str]:
        return self._read(
            "keys",
            lambda conn: [r["key"] for r in conn.execute("SELECT key FROM cache_entries ORDER BY key")],
            default=[],
        )

    def is_stale(self, key: str, max_age_seconds: float = 3600) -> bool:
        """True when the entry is missing or older than max_age_seconds."""
        entry = self.get_entry(key)
        if entry is None:
            return True
        return (datetime.now() - entry.stored_at).total_seconds() > max_age_seconds

    # =========================================================================
    # SYNC QUEUE
    # =========================================================================

    def enqueue(self, op: QueuedOperation) -> StoreResult:
        """Persist a queued operation. StoreResult.value is its sequence number."""
        data_json = dumps(op.data, context=f"{op.table}.data")

        return self._write(
            "enqueue",
            lambda conn: conn.execute(
                """
                INSERT INTO sync_queue (op_id, operation, table_name, data_json, enqueued_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [op.id, op.type.value, op.table, data_json, op.enqueued_at.isoformat()],
            ).lastrowid,
            key=op.id,
        )

    def read_queue(self, limit: Optional[int] = None) -> StoreResult:
        """
        Read queued operations in FIFO order without removing them.

        StoreResult.value holds the operations decoded so far. A row that
        cannot be decoded ends the list and fails the result, with the
        offending op_id in error.details["key"].
        """
        ready = self.initialize()
        if not ready:
            return ready

        sql = "SELECT * FROM sync_queue ORDER BY seq ASC"
        params: List[Any] = []
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        try:
            with self._lock:
                rows = self._get_connection().execute(sql, params).fetchall()
        except (sqlite3.Error, OSError) as e:
            error = self._classify(e, "read_queue")
            self._record(error)
            return StoreResult.failure(error)

        operations: List[QueuedOperation] = []
        for row in rows:
            try:
                operations.append(QueuedOperation(
                    id=row["op_id"],
                    type=OperationType(row["operation"]),
                    table=row["table_name"],
                    data=json.loads(row["data_json"]),
                    enqueued_at=datetime.fromisoformat(row["enqueued_at"]),
                    seq=row["seq"],
                ))
            except (ValueError, TypeError) as e:
                error = StorageError(
                    f"Queued operation {row['op_id']} is unreadable: {e}",
                    operation="read_queue",
                    key=row["op_id"],
                )
                self._record(error)
                return StoreResult(ok=False, value=operations, error=error)

        return StoreResult.success(operations)

    def dequeue_all(self, limit: Optional[int] = None) -> List[QueuedOperation]:
        """Return readable queued operations in FIFO order without removing them."""
        return self.read_queue(limit).value or []

    def remove_op(self, op_id: str) -> StoreResult:
        """Remove a replayed operation. StoreResult.value is True if it existed."""
        return self._write(
            "remove_op",
            lambda conn: conn.execute("DELETE FROM sync_queue WHERE op_id = ?", [op_id]).rowcount > 0,
            key=op_id,
        )

    def count_ops(self) -> int:
        return self._read(
            "count_ops",
            lambda conn: conn.execute("SELECT COUNT(*) AS count FROM sync_queue").fetchone()["count"],
            default=0,
        )

    def clear_queue(self) -> StoreResult:
        """Drop every queued operation (caller-initiated clear)."""
        return self._write("clear_queue", lambda conn: conn.execute("DELETE FROM sync_queue").rowcount)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        def read(conn):
            row = conn.execute("SELECT value FROM app_settings WHERE key = ?", [key]).fetchone()
            if row is None or row["value"] is None:
                return default
            return json.loads(row["value"])

        return self._read("get_setting", read, default=default, key=key)

    def set_setting(self, key: str, value: Any) -> StoreResult:
        """Set an app setting."""
        value_json = dumps(value, context=key)
        return self._write(
            "set_setting",
            lambda conn: conn.execute(
                "INSERT OR REPLACE INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)",
                [key, value_json, datetime.now().isoformat()],
            ),
            key=key,
        )

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def clear_all(self) -> StoreResult:
        """Clear cached entries, the queue and settings."""
        def clear(conn):
            for table_name in self.SCHEMA:
                conn.execute(f"DELETE FROM {table_name}")

        result = self._write("clear_all", clear)
        if result:
            logger.info("Cleared all offline data")
        return result

    def export_all(self) -> Dict[str, Any]:
        """Dump everything as plain JSON-compatible data (for backup)."""
        def read(conn):
            cache = {
                row["key"]: {"value": json.loads(row["value_json"]), "stored_at": row["stored_at"]}
                for row in conn.execute("SELECT * FROM cache_entries")
            }
            settings = {
                row["key"]: json.loads(row["value"]) if row["value"] is not None else None
                for row in conn.execute("SELECT * FROM app_settings")
            }
            return {"cache": cache, "settings": settings}

        exported = self._read("export_all", read, default={"cache": {}, "settings": {}})
        exported["queue"] = [op.to_dict() for op in self.dequeue_all()]
        return exported

    def import_data(self, data: Dict[str, Any]) -> StoreResult:
        """Restore a dump produced by export_all(). Existing keys are overwritten."""
        cache = {
            key: (dumps(entry["value"], context=key), entry.get("stored_at") or datetime.now().isoformat())
            for key, entry in data.get("cache", {}).items()
        }
        settings = {key: dumps(value, context=key) for key, value in data.get("settings", {}).items()}
        queue = [QueuedOperation.from_dict(raw) for raw in data.get("queue", [])]
        queue_rows = [
            [op.id, op.type.value, op.table, dumps(op.data, context=op.id), op.enqueued_at.isoformat()]
            for op in queue
        ]

        def write(conn):
            for key, (value_json, stored_at) in cache.items():
                conn.execute(
                    "INSERT OR REPLACE INTO cache_entries (key, value_json, stored_at) VALUES (?, ?, ?)",
                    [key, value_json, stored_at],
                )
            for key, value_json in settings.items():
                conn.execute(
                    "INSERT OR REPLACE INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)",
                    [key, value_json, datetime.now().isoformat()],
                )
            conn.executemany(
                """
                INSERT OR IGNORE INTO sync_queue (op_id, operation, table_name, data_json, enqueued_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                queue_rows,
            )
            return len(cache) + len(settings) + len(queue_rows)

        return self._write("import_data", write)

    def storage_size(self) -> Dict[str, Optional[int]]:
        """Bytes used by the database and the configured quota (None = unlimited)."""
        def read(conn):
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            return page_size * page_count

        return {"usage": self._read("storage_size", read, default=0), "quota": self.max_store_bytes}
