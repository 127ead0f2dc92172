"""SQLite storage behind the response and data caches."""

import sqlite3
import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from .config import DB_PATH

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Thread-safe SQLite connection pool.

    SQLite connections may not be shared between threads, and cache I/O runs
    in worker threads via asyncio.to_thread, so each thread gets its own
    connection. Connections of threads that have exited are closed lazily.
    """

    def __init__(self, db_path, max_size: int = 50):
        self._db_path = db_path
        self._max_size = max_size

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._transaction_depth: dict[int, int] = {}
        self._last_cleanup = time.time()
        self._cleanup_interval = 60

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _cleanup_dead_threads(self, force: bool = False):
        now = time.time()
        if not force and now - self._last_cleanup < self._cleanup_interval:
            return

        self._last_cleanup = now
        alive_threads = {t.ident for t in threading.enumerate()}

        for thread_id in set(self._connections) - alive_threads:
            conn = self._connections.pop(thread_id)
            self._transaction_depth.pop(thread_id, None)
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            logger.debug(f"Cleaned up connection for dead thread {thread_id}")

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()

        with self._lock:
            self._cleanup_dead_threads()

            conn = self._connections.get(thread_id)
            if conn is None:
                if len(self._connections) >= self._max_size:
                    self._cleanup_dead_threads(force=True)
                    if len(self._connections) >= self._max_size:
                        raise RuntimeError(
                            f"Connection pool exhausted ({self._max_size} connections). "
                            f"Possible connection leak or too many threads."
                        )

                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")

            return conn

    def enter_transaction(self) -> bool:
        """Track a nested get_db() entry; True for the outermost one."""
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 0)
            self._transaction_depth[thread_id] = depth + 1
            return depth == 0

    def exit_transaction(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")

            self._connections.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get a database connection with transaction handling.

    Only the outermost context commits (unless read_only) or rolls back, so
    helpers can be nested freely.
    """
    pool = _get_pool()
    conn = pool.get_connection()
    is_outermost = pool.enter_transaction()

    try:
        yield conn

        if is_outermost and not read_only:
            conn.commit()

    except Exception:
        if is_outermost:
            conn.rollback()
        raise

    finally:
        pool.exit_transaction()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                cache_name TEXT NOT NULL,
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,   -- JSON
                updated_at TEXT NOT NULL,
                PRIMARY KEY (cache_name, namespace, key)
            );
            CREATE INDEX IF NOT EXISTS idx_cache_entries_namespace
                ON cache_entries(cache_name, namespace);
        """)


def read_entry(cache_name: str, namespace: str, key: str):
    """
    Load a cached JSON value.

    Returns:
        (found, value); value is None when not found
    """
    with get_db(read_only=True) as conn:
        row = conn.execute(
            "SELECT value FROM cache_entries WHERE cache_name = ? AND namespace = ? AND key = ?",
            (cache_name, namespace, key),
        ).fetchone()

    if row is None:
        return False, None
    return True, json.loads(row["value"])


def write_entry(cache_name: str, namespace: str, key: str, value) -> None:
    with get_db() as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO cache_entries (cache_name, namespace, key, value, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (cache_name, namespace, key, json.dumps(value, sort_keys=True), datetime.now().isoformat()),
        )


def list_entries(cache_name: str, namespace: str) -> list:
    """All values in a namespace, ordered by key."""
    with get_db(read_only=True) as conn:
        rows = conn.execute(
            "SELECT value FROM cache_entries WHERE cache_name = ? AND namespace = ? ORDER BY key",
            (cache_name, namespace),
        ).fetchall()
    return [json.loads(row["value"]) for row in rows]


def clear_entries(cache_name: str, namespaces: list[str] | None = None) -> int:
    """Delete a cache's entries, optionally only in some namespaces. Returns the row count."""
    with get_db() as conn:
        if namespaces is None:
            cursor = conn.execute("DELETE FROM cache_entries WHERE cache_name = ?", (cache_name,))
        else:
            placeholders = ",".join("?" * len(namespaces))
            cursor = conn.execute(
                f"DELETE FROM cache_entries WHERE cache_name = ? AND namespace IN ({placeholders})",
                (cache_name, *namespaces),
            )
        return cursor.rowcount


def count_entries(cache_name: str) -> dict[str, int]:
    """Number of entries per namespace."""
    with get_db(read_only=True) as conn:
        rows = conn.execute(
            """
            SELECT namespace, COUNT(*) AS items FROM cache_entries
            WHERE cache_name = ? GROUP BY namespace ORDER BY namespace
            """,
            (cache_name,),
        ).fetchall()
    return {row["namespace"]: row["items"] for row in rows}
