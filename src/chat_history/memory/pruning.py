from __future__ import annotations

from dataclasses import dataclass

from chat_history.memory.events import now_ms
from chat_history.memory.store import MemoryStore

_DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class PruneResult:
    sessions_removed: int
    messages_removed: int


def prune_memory(
    store: MemoryStore,
    *,
    max_sessions: int,
    max_messages_per_session: int,
    retention_days: int,
    clock=now_ms,
) -> PruneResult:
    """Drop stale sessions and the oldest messages beyond the caps.

    Events of removed sessions go with them. Checkpoints are left alone, so a
    checkpoint whose message is pruned becomes dangling and surviving
    messages may point at removed parents.
    """
    sessions_removed = 0
    messages_removed = 0

    with store.transaction():
        before = _count_messages(store)
        if retention_days > 0:
            cutoff = clock() - retention_days * _DAY_MS
            cursor = store.execute(
                "DELETE FROM sessions WHERE COALESCE(last_activity, created_at) < ?",
                (cutoff,),
            )
            sessions_removed += max(0, cursor.rowcount)

        if max_messages_per_session > 0:
            sessions = store.fetch_all("SELECT id FROM sessions")
            for session_row in sessions:
                overflow = store.fetch_all(
                    """
                    SELECT id
                    FROM messages
                    WHERE session_id = ?
                    ORDER BY seq DESC
                    LIMIT -1 OFFSET ?
                    """,
                    (str(session_row["id"]), max_messages_per_session),
                )
                if overflow:
                    store.executemany(
                        "DELETE FROM messages WHERE id = ?",
                        [(str(row["id"]),) for row in overflow],
                    )

        if max_sessions > 0:
            overflow_sessions = store.fetch_all(
                """
                SELECT id
                FROM sessions
                ORDER BY COALESCE(last_activity, created_at) DESC, created_at DESC
                LIMIT -1 OFFSET ?
                """,
                (max_sessions,),
            )
            if overflow_sessions:
                store.executemany(
                    "DELETE FROM sessions WHERE id = ?",
                    [(str(row["id"]),) for row in overflow_sessions],
                )
                sessions_removed += len(overflow_sessions)

        if sessions_removed:
            store.execute(
                "DELETE FROM events WHERE session_id IS NOT NULL AND session_id NOT IN (SELECT id FROM sessions)"
            )

        messages_removed = before - _count_messages(store)

    return PruneResult(sessions_removed=sessions_removed, messages_removed=messages_removed)


def _count_messages(store: MemoryStore) -> int:
    row = store.fetch_one("SELECT COUNT(*) AS c FROM messages")
    return int(row["c"]) if row is not None else 0
