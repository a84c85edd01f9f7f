from __future__ import annotations

import json
import sqlite3
from dataclasses import replace
from uuid import uuid4

from chat_history.memory.errors import InvalidArgumentError, NotFoundError
from chat_history.memory.events import EventEmitter, now_ms
from chat_history.memory.models import Message, Payload, Session, default_session_title
from chat_history.memory.store import MemoryStore
from chat_history.memory.threads import (
    BRANCH_POLICY_LATEST,
    check_parent,
    cumulative_length,
    filter_by_keyword,
    preview_text,
    recent_window,
    validate_branch_policy,
    validate_payload,
    walk_chain,
)

_MESSAGE_COLUMNS = (
    "id, session_id, seq, previous_message_id, request_json, response_json, "
    "prior_state_json, cumulative_input_length, created_at, updated_at"
)


class SqliteHistoryStore:
    def __init__(
        self,
        store: MemoryStore,
        events: EventEmitter | None = None,
        *,
        branch_policy: str = BRANCH_POLICY_LATEST,
        clock=now_ms,
    ):
        self._store = store
        self._events = events
        self._branch_policy = validate_branch_policy(branch_policy)
        self._clock = clock

    @property
    def branch_policy(self) -> str:
        return self._branch_policy

    def list_sessions(self) -> list[Session]:
        rows = self._store.fetch_all(
            """
            SELECT id, title, created_at, last_activity, preview_text
            FROM sessions
            ORDER BY COALESCE(last_activity, created_at) DESC, created_at DESC, id ASC
            """
        )
        return [self._row_to_session(row) for row in rows]

    def get_session(self, session_id: str) -> Session | None:
        row = self._fetch_session_row(session_id)
        if row is None:
            return None
        return self._row_to_session(row)

    def get_thread_tree(self, session_id: str) -> list[Message]:
        with self._store.snapshot():
            if self._fetch_session_row(session_id) is None:
                raise NotFoundError(f"Session does not exist: {session_id}")
            return self._load_session_messages(session_id)

    def get_recent_messages(self, session_id: str, limit: int = 10) -> list[Message]:
        if limit <= 0:
            return []
        messages = self._load_session_messages(session_id)
        return recent_window(messages, limit, self._branch_policy)

    def search_messages(self, keyword: str, session_id: str | None = None) -> list[Message]:
        if not keyword or not keyword.strip():
            return []
        if session_id is None:
            rows = self._store.fetch_all(f"SELECT {_MESSAGE_COLUMNS} FROM messages")
            messages = [self._row_to_message(row) for row in rows]
        else:
            messages = self._load_session_messages(session_id)
        return filter_by_keyword(messages, keyword)

    def get_chat_history_by_message_id(self, message_id: str) -> list[Message]:
        with self._store.snapshot():
            return walk_chain(self.get_message, message_id)

    def get_message(self, message_id: str) -> Message | None:
        row = self._store.fetch_one(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? LIMIT 1",
            (message_id,),
        )
        if row is None:
            return None
        return self._row_to_message(row)

    def close(self) -> None:
        self._store.close()

    def create_session(self, session_id: str | None = None, *, title: str | None = None) -> Session:
        sid = session_id or str(uuid4())
        clean_title = title.strip() if title and title.strip() else None
        with self._store.transaction():
            if self._fetch_session_row(sid) is not None:
                raise InvalidArgumentError(f"Session already exists: {sid}")
            now = self._clock()
            self._insert_session(sid, clean_title, now)
        return Session(id=sid, title=clean_title or default_session_title(sid), created_at=now)

    def load_or_create(self, session_id: str) -> Session:
        with self._store.transaction():
            existing = self.get_session(session_id)
            if existing is not None:
                return existing
            return self.create_session(session_id)

    def set_session_title(self, session_id: str, title: str) -> None:
        if not title or not title.strip():
            raise InvalidArgumentError("Session title must not be blank")
        with self._store.transaction():
            if self._fetch_session_row(session_id) is None:
                raise NotFoundError(f"Session does not exist: {session_id}")
            self._store.execute(
                "UPDATE sessions SET title = ? WHERE id = ?",
                (title.strip(), session_id),
            )
            self._emit(session_id, "session.renamed", {"session_id": session_id, "title": title.strip()})

    def append_message(
        self,
        session_id: str,
        request: Payload,
        *,
        previous_message_id: str | None = None,
        response: Payload | None = None,
        prior_state: Payload | None = None,
        cumulative_input_length: int | None = None,
        message_id: str | None = None,
    ) -> Message:
        if not session_id or not str(session_id).strip():
            raise InvalidArgumentError("session_id is required")
        validate_payload("request", request, required=True)
        validate_payload("response", response, required=False)
        validate_payload("prior_state", prior_state, required=False)
        if cumulative_input_length is not None and cumulative_input_length < 0:
            raise InvalidArgumentError("cumulative_input_length must not be negative")

        with self._store.transaction():
            parent: Message | None = None
            if previous_message_id is not None:
                parent = self.get_message(previous_message_id)
                check_parent(parent, previous_message_id, session_id)
            mid = message_id or str(uuid4())
            if self.get_message(mid) is not None:
                raise InvalidArgumentError(f"Message already exists: {mid}")

            now = self._clock()
            if self._fetch_session_row(session_id) is None:
                self._insert_session(session_id, None, now)

            row = self._store.fetch_one(
                """
                SELECT COALESCE(MAX(seq), 0) AS max_seq, COALESCE(MAX(created_at), 0) AS max_created
                FROM messages
                WHERE session_id = ?
                """,
                (session_id,),
            )
            seq = int(row["max_seq"]) + 1
            created_at = max(now, int(row["max_created"]), parent.created_at if parent is not None else 0)
            message = Message(
                id=mid,
                session_id=session_id,
                previous_message_id=previous_message_id,
                request=request,
                response=response,
                prior_state=prior_state,
                cumulative_input_length=(
                    cumulative_input_length
                    if cumulative_input_length is not None
                    else cumulative_length(parent, request)
                ),
                created_at=created_at,
                seq=seq,
            )
            self._store.execute(
                f"""
                INSERT INTO messages ({_MESSAGE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL)
                """,
                (
                    message.id,
                    message.session_id,
                    message.seq,
                    message.previous_message_id,
                    _dump(message.request),
                    _dump(message.response),
                    _dump(message.prior_state),
                    message.cumulative_input_length,
                    message.created_at,
                ),
            )
            self._store.execute(
                """
                UPDATE sessions
                SET last_activity = MAX(COALESCE(last_activity, 0), ?), preview_text = ?
                WHERE id = ?
                """,
                (created_at, preview_text(request) or None, session_id),
            )
            self._emit(
                session_id,
                "message.appended",
                {
                    "session_id": session_id,
                    "message_id": message.id,
                    "previous_message_id": previous_message_id,
                    "seq": seq,
                },
            )
        return message

    def set_response(self, message_id: str, response: Payload, *, prior_state: Payload | None = None) -> Message:
        validate_payload("response", response, required=True)
        validate_payload("prior_state", prior_state, required=False)
        with self._store.transaction():
            existing = self.get_message(message_id)
            if existing is None:
                raise NotFoundError(f"Message does not exist: {message_id}")
            if existing.response is not None:
                raise InvalidArgumentError(f"Message {message_id} already has a response")

            now = max(self._clock(), existing.created_at)
            updated = replace(
                existing,
                response=response,
                prior_state=prior_state if prior_state is not None else existing.prior_state,
                updated_at=now,
            )
            self._store.execute(
                """
                UPDATE messages
                SET response_json = ?, prior_state_json = ?, updated_at = ?
                WHERE id = ?
                """,
                (_dump(updated.response), _dump(updated.prior_state), now, message_id),
            )
            self._store.execute(
                "UPDATE sessions SET last_activity = MAX(COALESCE(last_activity, 0), ?) WHERE id = ?",
                (now, existing.session_id),
            )
            self._emit(
                existing.session_id,
                "message.responded",
                {"session_id": existing.session_id, "message_id": message_id},
            )
        return updated

    def delete_message(self, message_id: str) -> bool:
        with self._store.transaction():
            existing = self.get_message(message_id)
            if existing is None:
                return False
            self._store.execute("DELETE FROM messages WHERE id = ?", (message_id,))
            self._emit(
                existing.session_id,
                "message.deleted",
                {"session_id": existing.session_id, "message_id": message_id},
            )
        return True

    def _insert_session(self, session_id: str, title: str | None, now: int) -> None:
        self._store.execute(
            "INSERT INTO sessions (id, title, created_at, last_activity, preview_text) VALUES (?, ?, ?, NULL, NULL)",
            (session_id, title, now),
        )
        self._emit(session_id, "session.started", {"session_id": session_id})

    def _fetch_session_row(self, session_id: str) -> sqlite3.Row | None:
        return self._store.fetch_one(
            "SELECT id, title, created_at, last_activity, preview_text FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        )

    def _load_session_messages(self, session_id: str) -> list[Message]:
        rows = self._store.fetch_all(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY seq ASC",
            (session_id,),
        )
        return [self._row_to_message(row) for row in rows]

    def _emit(self, session_id: str, event_type: str, payload: dict) -> None:
        if self._events is not None:
            self._events.emit(session_id, event_type, payload)

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        title = row["title"]
        return Session(
            id=row["id"],
            title=title.strip() if isinstance(title, str) and title.strip() else default_session_title(row["id"]),
            created_at=int(row["created_at"]),
            last_activity=row["last_activity"],
            preview_text=row["preview_text"],
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            previous_message_id=row["previous_message_id"],
            request=json.loads(row["request_json"]),
            response=_load(row["response_json"]),
            prior_state=_load(row["prior_state_json"]),
            cumulative_input_length=row["cumulative_input_length"],
            created_at=int(row["created_at"]),
            updated_at=row["updated_at"],
            seq=int(row["seq"]),
        )


def _dump(payload: Payload | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, ensure_ascii=True)


def _load(payload_json: str | None) -> Payload | None:
    if payload_json is None:
        return None
    return json.loads(payload_json)
