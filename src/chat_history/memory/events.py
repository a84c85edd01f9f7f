from __future__ import annotations

import json
import time
from uuid import uuid4

from chat_history.memory.store import MemoryStore


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class EventEmitter:
    def __init__(self, store: MemoryStore, *, clock=now_ms):
        self._store = store
        self._clock = clock

    def emit(self, session_id: str | None, event_type: str, payload: dict) -> None:
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO events (id, session_id, type, payload_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    str(uuid4()),
                    session_id,
                    event_type,
                    json.dumps(payload, ensure_ascii=True),
                    self._clock(),
                ),
            )

    def list_events(self, session_id: str, *, limit: int = 50) -> list[dict]:
        rows = self._store.fetch_all(
            """
            SELECT type, payload_json, created_at
            FROM events
            WHERE session_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (session_id, max(1, limit)),
        )
        return [
            {"type": row["type"], "payload": json.loads(row["payload_json"]), "created_at": row["created_at"]}
            for row in rows
        ]
