"""
Flat key-value persistence (SQLite).

Persistence style:
- SQLite WAL mode + busy_timeout
- Thread lock around short transactions, ``BEGIN IMMEDIATE`` so another
  process holding the same file is serialized as well
- Async facade via run_in_executor to avoid blocking the asyncio loop

Values are JSON-encoded so booleans, integers and strings round-trip with
their types. Every read-modify-write goes through :meth:`transaction_sync`.
"""

from __future__ import annotations

import asyncio
import json
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class KeyValueView(ABC):
    """Mutable view handed to a transaction callback."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class KeyValueStore(ABC):
    """
    Shared mutable state with atomic read-modify-write.

    Subclasses implement :meth:`transaction_sync`; every other operation is
    expressed as a transaction so a single code path owns atomicity.
    """

    @abstractmethod
    def transaction_sync(self, fn: Callable[[KeyValueView], T]) -> T:
        """Run ``fn`` against a consistent view and commit its writes atomically."""

    def get_sync(self, key: str, default: Any = None) -> Any:
        return self.transaction_sync(lambda view: view.get(key, default))

    def set_sync(self, key: str, value: Any) -> None:
        self.transaction_sync(lambda view: view.set(key, value))

    def delete_sync(self, *keys: str) -> None:
        def _sync(view: KeyValueView) -> None:
            for key in keys:
                view.delete(key)

        self.transaction_sync(_sync)

    def compare_and_swap_sync(self, key: str, expected: Any, new: Any) -> bool:
        """
        Replace ``key`` with ``new`` only if it currently equals ``expected``.

        ``None`` stands for "absent" on both sides, so ``new=None`` deletes.
        """
        def _sync(view: KeyValueView) -> bool:
            if view.get(key) != expected:
                return False
            if new is None:
                view.delete(key)
            else:
                view.set(key, new)
            return True

        return self.transaction_sync(_sync)

    async def run_blocking(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def transaction(self, fn: Callable[[KeyValueView], T]) -> T:
        return await self.run_blocking(lambda: self.transaction_sync(fn))

    async def get(self, key: str, default: Any = None) -> Any:
        return await self.run_blocking(lambda: self.get_sync(key, default))

    async def set(self, key: str, value: Any) -> None:
        await self.run_blocking(lambda: self.set_sync(key, value))

    async def delete(self, *keys: str) -> None:
        await self.run_blocking(lambda: self.delete_sync(*keys))

    async def compare_and_swap(self, key: str, expected: Any, new: Any) -> bool:
        return await self.run_blocking(lambda: self.compare_and_swap_sync(key, expected, new))


class _SQLiteView(KeyValueView):
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get(self, key: str, default: Any = None) -> Any:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable value", key=key)
            return default

    def set(self, key: str, value: Any) -> None:
        self._conn.execute(
            """
            INSERT INTO kv (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, json.dumps(value)),
        )

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))


class SQLiteKeyValueStore(KeyValueStore):
    _CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS kv (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """

    def __init__(self, db_path: Optional[str] = None):
        self._db_path = db_path or os.getenv("CALL_WORKER_DB_PATH", "data/call_worker.db")
        self._lock = threading.Lock()
        self._init_db()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _init_db(self) -> None:
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            Path(db_dir).mkdir(parents=True, exist_ok=True)
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(self._CREATE_TABLE_SQL)
            finally:
                conn.close()
        logger.info("Key-value store initialized", db_path=self._db_path)

    def _get_connection(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        conn = sqlite3.connect(self._db_path, timeout=30.0, check_same_thread=False, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=30000;")
        return conn

    def transaction_sync(self, fn: Callable[[KeyValueView], T]) -> T:
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    result = fn(_SQLiteView(conn))
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
                return result
            finally:
                conn.close()


class _DictView(KeyValueView):
    def __init__(self, data: Dict[str, Any]):
        self._data = data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store with the same transactional contract (tests, ``--ephemeral``)."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def transaction_sync(self, fn: Callable[[KeyValueView], T]) -> T:
        with self._lock:
            # Work on a copy so a failing callback leaves nothing behind.
            staged = dict(self._data)
            result = fn(_DictView(staged))
            self._data = staged
            return result

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._data)
