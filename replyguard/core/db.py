"""
Durable key-value store backing the persistent vector cache.
SQLite file with a single namespaced key/value table. Never raises to callers.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Dict, Generator, Iterable, Optional

from util.logging import logger
from .config import CACHE_DB_PATH, CACHE_MAX_BYTES, ensure_db_directory


class DurableStoreError(Exception):
    """Raised internally when the durable store cannot complete an operation."""


class StoreQuotaExceededError(DurableStoreError):
    """Raised internally when a write would exceed the configured byte quota."""


MEMORY_DB = ":memory:"


@contextmanager
def get_db(db_path: str = CACHE_DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


class DurableStore:
    """
    Namespaced string key/value storage.

    Every public method degrades to a no-op when the store is disabled, the
    quota would be exceeded, or SQLite itself fails: reads return None/empty
    and writes return False.
    """

    def __init__(self, db_path: str = CACHE_DB_PATH, enabled: bool = True, max_bytes: int = CACHE_MAX_BYTES):
        self.db_path = db_path
        self.enabled = enabled
        self.max_bytes = max_bytes
        self._initialized = False
        # ":memory:" databases live only as long as their connection, so keep one open
        self._memory_conn: Optional[sqlite3.Connection] = None
        self._memory_lock = threading.Lock()
        self._stats = {
            "reads": 0,
            "writes": 0,
            "failures": 0,
            "quota_rejections": 0,
        }

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        if self.db_path != MEMORY_DB:
            with get_db(self.db_path) as conn:
                yield conn
            return

        with self._memory_lock:
            if self._memory_conn is None:
                self._memory_conn = sqlite3.connect(MEMORY_DB, check_same_thread=False)
            yield self._memory_conn

    def close(self) -> None:
        """Release the in-memory database, if any. Its contents are lost."""
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None
            self._initialized = False

    @property
    def available(self) -> bool:
        """True if the store is enabled and its schema could be created."""
        return self.enabled and self._ensure_initialized()

    def _ensure_initialized(self) -> bool:
        if self._initialized:
            return True
        try:
            self.init_db()
        except (sqlite3.Error, OSError) as e:
            self._stats["failures"] += 1
            logger.log_persistence("init", status="unavailable", details={"error": str(e)})
            return False
        return True

    def init_db(self):
        """Initialize the database with the key/value table."""
        if self.db_path != MEMORY_DB:
            ensure_db_directory(self.db_path)
        with self._connect() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            ''')
            conn.commit()
        self._initialized = True

    def get_item(self, key: str) -> Optional[str]:
        """Read a single value; None when absent or unavailable."""
        return self.get_items([key]).get(key)

    def get_items(self, keys: Iterable[str]) -> Dict[str, str]:
        """Read several values at once."""
        keys = list(keys)
        if not keys or not self.available:
            return {}

        placeholders = ",".join("?" for _ in keys)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT key, value FROM kv_store WHERE key IN ({placeholders})", keys
                ).fetchall()
        except sqlite3.Error as e:
            self._stats["failures"] += 1
            logger.log_persistence("read", status="failed", details={"error": str(e)})
            return {}

        self._stats["reads"] += 1
        return {key: value for key, value in rows}

    def set_item(self, key: str, value: str) -> bool:
        return self.set_items({key: value})

    def set_items(self, items: Dict[str, str]) -> bool:
        """Write all items in one transaction. Returns False if nothing was written."""
        if not items or not self.available:
            return False

        try:
            self._write(items)
        except StoreQuotaExceededError as e:
            self._stats["quota_rejections"] += 1
            logger.log_persistence("write", status="unavailable", details={"reason": "quota_exceeded", "error": str(e)})
            return False
        except sqlite3.Error as e:
            self._stats["failures"] += 1
            logger.log_persistence("write", status="failed", details={"error": str(e)})
            return False

        self._stats["writes"] += 1
        return True

    def _write(self, items: Dict[str, str]) -> None:
        keys = list(items.keys())
        placeholders = ",".join("?" for _ in keys)
        now = time.time()

        with self._connect() as conn:
            with conn:
                # Size of everything that survives this write
                (kept_bytes,) = conn.execute(
                    f"SELECT COALESCE(SUM(LENGTH(value)), 0) FROM kv_store WHERE key NOT IN ({placeholders})",
                    keys,
                ).fetchone()
                incoming_bytes = sum(len(value) for value in items.values())
                if self.max_bytes and kept_bytes + incoming_bytes > self.max_bytes:
                    raise StoreQuotaExceededError(
                        f"write of {incoming_bytes} bytes exceeds quota of {self.max_bytes} bytes"
                    )

                conn.executemany(
                    "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                    [(key, value, now) for key, value in items.items()],
                )

    def remove_items(self, keys: Iterable[str]) -> bool:
        """Delete keys. Returns False when unavailable."""
        keys = list(keys)
        if not keys or not self.available:
            return False

        placeholders = ",".join("?" for _ in keys)
        try:
            with self._connect() as conn:
                with conn:
                    conn.execute(f"DELETE FROM kv_store WHERE key IN ({placeholders})", keys)
        except sqlite3.Error as e:
            self._stats["failures"] += 1
            logger.log_persistence("remove", status="failed", details={"error": str(e)})
            return False
        return True

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def health_check(self) -> Dict[str, object]:
        """Check store connectivity."""
        if not self.enabled:
            return {"status": "disabled", "available": False}

        try:
            self.init_db()
            with self._connect() as conn:
                (count,) = conn.execute("SELECT COUNT(*) FROM kv_store").fetchone()
        except (sqlite3.Error, OSError) as e:
            return {"status": "unavailable", "available": False, "error": str(e)}

        return {"status": "healthy", "available": True, "keys": count, **self._stats}
