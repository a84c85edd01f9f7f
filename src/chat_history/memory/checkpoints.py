from __future__ import annotations

import json
import sqlite3
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from chat_history.memory.errors import InvalidArgumentError
from chat_history.memory.events import EventEmitter, now_ms
from chat_history.memory.models import DEFAULT_CHECKPOINT_LABEL, Checkpoint, Message
from chat_history.memory.store import MemoryStore


def resolve_label(label: str | None) -> str:
    if label is None or not label.strip():
        return DEFAULT_CHECKPOINT_LABEL
    return label.strip()


def snapshot_message(current_message: Message | Mapping[str, Any] | None) -> Message:
    """Validate the caller's current message and freeze it as a snapshot.

    Accepts a stored ``Message`` or a runtime mapping carrying at least an
    ``"id"``; anything else is rejected before a checkpoint is written.
    """
    if isinstance(current_message, Message):
        if not current_message.id or not str(current_message.id).strip():
            raise InvalidArgumentError("Current message has no id")
        return current_message
    if isinstance(current_message, Mapping):
        message_id = current_message.get("id")
        if message_id is None or not str(message_id).strip():
            raise InvalidArgumentError("Current message has no id")
        try:
            snapshot = Message.from_dict(dict(current_message))
            json.dumps(snapshot.to_dict())
        except (TypeError, ValueError) as ex:
            raise InvalidArgumentError(f"Current message {message_id} is malformed: {ex}") from ex
        return snapshot
    if current_message is None:
        raise InvalidArgumentError("No current message to checkpoint")
    raise InvalidArgumentError(f"Current message must be a Message or mapping, got {type(current_message).__name__}")


def resolve_session(session_id: str | None, snapshot: Message) -> str | None:
    """Session a checkpoint is filed under; it must be the message's own session when both are known."""
    if session_id and snapshot.session_id and session_id != snapshot.session_id:
        raise InvalidArgumentError(
            f"Message {snapshot.id} belongs to session {snapshot.session_id}, not {session_id}"
        )
    return session_id or snapshot.session_id or None


def parse_index(id_or_index: str | int) -> int | None:
    if isinstance(id_or_index, bool):
        return None
    if isinstance(id_or_index, int):
        return id_or_index if id_or_index >= 0 else None
    text = id_or_index.strip()
    if text.isdigit():
        return int(text)
    return None


class SqliteCheckpointStore:
    def __init__(self, store: MemoryStore, events: EventEmitter | None = None, *, clock=now_ms):
        self._store = store
        self._events = events
        self._clock = clock

    def create_checkpoint(
        self,
        label: str | None,
        current_message: Message | Mapping[str, Any] | None,
        session_id: str | None = None,
    ) -> Checkpoint:
        snapshot = snapshot_message(current_message)
        checkpoint = Checkpoint(
            id=str(uuid4()),
            label=resolve_label(label),
            message_id=str(snapshot.id),
            session_id=resolve_session(session_id, snapshot),
            current_message=snapshot,
            created_at=self._clock(),
        )
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO checkpoints (id, session_id, message_id, label, message_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    checkpoint.id,
                    checkpoint.session_id,
                    checkpoint.message_id,
                    checkpoint.label,
                    json.dumps(snapshot.to_dict(), ensure_ascii=True),
                    checkpoint.created_at,
                ),
            )
            if self._events is not None and checkpoint.session_id is not None:
                self._events.emit(
                    checkpoint.session_id,
                    "checkpoint.created",
                    {
                        "session_id": checkpoint.session_id,
                        "checkpoint_id": checkpoint.id,
                        "message_id": checkpoint.message_id,
                    },
                )
        return checkpoint

    def retrieve_checkpoint(self, id_or_index: str | int, session_id: str | None = None) -> Checkpoint | None:
        if not isinstance(id_or_index, bool) and isinstance(id_or_index, (str, int)):
            row = self._store.fetch_one(
                "SELECT * FROM checkpoints WHERE id = ? LIMIT 1",
                (str(id_or_index),),
            )
            if row is not None and (session_id is None or row["session_id"] == session_id):
                return self._row_to_checkpoint(row)

            index = parse_index(id_or_index)
            if index is not None:
                checkpoints = self.list_checkpoint(session_id)
                if index < len(checkpoints):
                    return checkpoints[index]
        return None

    def list_checkpoint(self, session_id: str | None = None) -> list[Checkpoint]:
        if session_id is None:
            rows = self._store.fetch_all(
                "SELECT * FROM checkpoints ORDER BY created_at DESC, rowid DESC"
            )
        else:
            rows = self._store.fetch_all(
                "SELECT * FROM checkpoints WHERE session_id = ? ORDER BY created_at DESC, rowid DESC",
                (session_id,),
            )
        return [self._row_to_checkpoint(row) for row in rows]

    def close(self) -> None:
        self._store.close()

    def _row_to_checkpoint(self, row: sqlite3.Row) -> Checkpoint:
        current_message: Message | None = None
        if row["message_json"]:
            try:
                current_message = Message.from_dict(json.loads(row["message_json"]))
            except (ValueError, KeyError, TypeError):
                current_message = None
        return Checkpoint(
            id=row["id"],
            label=row["label"],
            message_id=row["message_id"],
            session_id=row["session_id"],
            current_message=current_message,
            created_at=int(row["created_at"]),
        )
