from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from chat_history.memory.errors import StoreClosedError

IN_MEMORY_DB = ":memory:"


def _is_lock_contention(ex: BaseException) -> bool:
    if not isinstance(ex, sqlite3.OperationalError):
        return False
    text = str(ex).lower()
    return "locked" in text or "busy" in text


_lock_retry = retry(
    retry=retry_if_exception(_is_lock_contention),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    stop=stop_after_attempt(5),
    reraise=True,
)


class MemoryStore:
    """Owns the SQLite connection and schema shared by the history and checkpoint stores.

    A single connection is shared across threads behind a re-entrant lock.
    Writes go through ``transaction()``; reads that must see one consistent
    state (a chain walk issuing several queries) go through ``snapshot()``.
    """

    def __init__(self, db_path: str, *, busy_timeout_seconds: float = 5.0):
        self._db_path = db_path
        if db_path != IN_MEMORY_DB:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False, timeout=busy_timeout_seconds)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._closed = False
        self._conn.execute("PRAGMA foreign_keys = ON")
        if db_path != IN_MEMORY_DB:
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._initialize_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            self._ensure_open()
            return self._conn.execute(query, params)

    def executemany(self, query: str, seq_of_params: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        with self._lock:
            self._ensure_open()
            return self._conn.executemany(query, seq_of_params)

    def fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            self._ensure_open()
            return self._conn.execute(query, params).fetchall()

    def fetch_one(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            self._ensure_open()
            return self._conn.execute(query, params).fetchone()

    def commit(self) -> None:
        with self._lock:
            self._ensure_open()
            self._commit()

    def rollback(self) -> None:
        with self._lock:
            self._ensure_open()
            self._conn.rollback()

    @contextmanager
    def transaction(self) -> Iterator[MemoryStore]:
        """Run a unit of writes atomically.

        Nested use joins the enclosing transaction; only the outermost block
        commits. Any exception rolls the whole unit back.
        """
        with self._lock:
            self._ensure_open()
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0 and not self._closed:
                    self._conn.rollback()
                raise
            self._depth -= 1
            if self._depth == 0:
                try:
                    self._commit()
                except BaseException:
                    self._conn.rollback()
                    raise

    @contextmanager
    def snapshot(self) -> Iterator[MemoryStore]:
        with self._lock:
            self._ensure_open()
            yield self

    @_lock_retry
    def _commit(self) -> None:
        self._conn.commit()

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError(f"Memory store is closed: {self._db_path}")

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                title TEXT NULL,
                created_at INTEGER NOT NULL,
                last_activity INTEGER NULL,
                preview_text TEXT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                previous_message_id TEXT NULL,
                request_json TEXT NOT NULL,
                response_json TEXT NULL,
                prior_state_json TEXT NULL,
                cumulative_input_length INTEGER NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NULL,
                UNIQUE(session_id, seq)
            );

            CREATE TABLE IF NOT EXISTS checkpoints (
                id TEXT PRIMARY KEY,
                session_id TEXT NULL,
                message_id TEXT NOT NULL,
                label TEXT NOT NULL,
                message_json TEXT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                session_id TEXT NULL,
                type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_session_seq
                ON messages(session_id, seq);
            CREATE INDEX IF NOT EXISTS idx_messages_previous
                ON messages(previous_message_id);
            CREATE INDEX IF NOT EXISTS idx_checkpoints_session_created
                ON checkpoints(session_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_events_session_created
                ON events(session_id, created_at);
            """
        )
        self._conn.commit()
