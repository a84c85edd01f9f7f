from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any
from uuid import uuid4

from chat_history.memory.checkpoints import parse_index, resolve_label, resolve_session, snapshot_message
from chat_history.memory.errors import InvalidArgumentError, NotFoundError, StoreClosedError
from chat_history.memory.events import now_ms
from chat_history.memory.models import Checkpoint, Message, Payload, Session, default_session_title
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


class InMemoryHistoryStore:
    """History store backed by dicts keyed by id.

    Messages are frozen and replaced wholesale under the lock, so readers
    never observe a partially applied response.
    """

    def __init__(self, *, branch_policy: str = BRANCH_POLICY_LATEST, clock=now_ms):
        self._branch_policy = validate_branch_policy(branch_policy)
        self._clock = clock
        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._messages: dict[str, Message] = {}
        self._closed = False

    @classmethod
    def from_records(
        cls,
        sessions: Iterable[Session],
        messages: Iterable[Message],
        **kwargs: Any,
    ) -> InMemoryHistoryStore:
        """Hydrate a store from exported records as-is, without re-validating links."""
        store = cls(**kwargs)
        for session in sessions:
            store._sessions[session.id] = session
        for message in messages:
            store._messages[message.id] = message
        return store

    @property
    def branch_policy(self) -> str:
        return self._branch_policy

    def list_sessions(self) -> list[Session]:
        with self._lock:
            self._ensure_open()
            sessions = list(self._sessions.values())
        sessions.sort(key=lambda s: s.id)
        sessions.sort(key=lambda s: (s.active_at, s.created_at), reverse=True)
        return sessions

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            self._ensure_open()
            return self._sessions.get(session_id)

    def get_thread_tree(self, session_id: str) -> list[Message]:
        with self._lock:
            self._ensure_open()
            if session_id not in self._sessions:
                raise NotFoundError(f"Session does not exist: {session_id}")
            return self._session_messages(session_id)

    def get_recent_messages(self, session_id: str, limit: int = 10) -> list[Message]:
        if limit <= 0:
            return []
        with self._lock:
            self._ensure_open()
            messages = self._session_messages(session_id)
        return recent_window(messages, limit, self._branch_policy)

    def search_messages(self, keyword: str, session_id: str | None = None) -> list[Message]:
        with self._lock:
            self._ensure_open()
            if session_id is None:
                messages = list(self._messages.values())
            else:
                messages = self._session_messages(session_id)
        return filter_by_keyword(messages, keyword)

    def get_chat_history_by_message_id(self, message_id: str) -> list[Message]:
        with self._lock:
            self._ensure_open()
            return walk_chain(self._messages.get, message_id)

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            self._ensure_open()
            return self._messages.get(message_id)

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def create_session(self, session_id: str | None = None, *, title: str | None = None) -> Session:
        sid = session_id or str(uuid4())
        clean_title = title.strip() if title and title.strip() else None
        with self._lock:
            self._ensure_open()
            if sid in self._sessions:
                raise InvalidArgumentError(f"Session already exists: {sid}")
            session = Session(id=sid, title=clean_title or default_session_title(sid), created_at=self._clock())
            self._sessions[sid] = session
        return session

    def load_or_create(self, session_id: str) -> Session:
        with self._lock:
            existing = self.get_session(session_id)
            if existing is not None:
                return existing
            return self.create_session(session_id)

    def set_session_title(self, session_id: str, title: str) -> None:
        if not title or not title.strip():
            raise InvalidArgumentError("Session title must not be blank")
        with self._lock:
            self._ensure_open()
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session does not exist: {session_id}")
            self._sessions[session_id] = replace(session, title=title.strip())

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

        with self._lock:
            self._ensure_open()
            parent: Message | None = None
            if previous_message_id is not None:
                parent = self._messages.get(previous_message_id)
                check_parent(parent, previous_message_id, session_id)
            mid = message_id or str(uuid4())
            if mid in self._messages:
                raise InvalidArgumentError(f"Message already exists: {mid}")

            now = self._clock()
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(id=session_id, title=default_session_title(session_id), created_at=now)

            siblings = self._session_messages(session_id)
            seq = max((m.seq for m in siblings), default=0) + 1
            created_at = max(
                now,
                max((m.created_at for m in siblings), default=0),
                parent.created_at if parent is not None else 0,
            )
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
            updated_session = replace(
                session,
                last_activity=max(session.last_activity or 0, created_at),
                preview_text=preview_text(request) or None,
            )
            self._sessions[session_id] = updated_session
            self._messages[mid] = message
        return message

    def set_response(self, message_id: str, response: Payload, *, prior_state: Payload | None = None) -> Message:
        validate_payload("response", response, required=True)
        validate_payload("prior_state", prior_state, required=False)
        with self._lock:
            self._ensure_open()
            existing = self._messages.get(message_id)
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
            self._messages[message_id] = updated
            session = self._sessions.get(existing.session_id)
            if session is not None:
                self._sessions[session.id] = replace(session, last_activity=max(session.last_activity or 0, now))
        return updated

    def delete_message(self, message_id: str) -> bool:
        with self._lock:
            self._ensure_open()
            return self._messages.pop(message_id, None) is not None

    def _session_messages(self, session_id: str) -> list[Message]:
        return sorted(
            (m for m in self._messages.values() if m.session_id == session_id),
            key=lambda m: m.seq,
        )

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("In-memory history store is closed")


class InMemoryCheckpointStore:
    def __init__(self, *, clock=now_ms):
        self._clock = clock
        self._lock = threading.RLock()
        self._checkpoints: list[Checkpoint] = []
        self._closed = False

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
        with self._lock:
            self._ensure_open()
            self._checkpoints.append(checkpoint)
        return checkpoint

    def retrieve_checkpoint(self, id_or_index: str | int, session_id: str | None = None) -> Checkpoint | None:
        if isinstance(id_or_index, bool) or not isinstance(id_or_index, (str, int)):
            return None
        with self._lock:
            self._ensure_open()
            for checkpoint in self._checkpoints:
                if checkpoint.id == str(id_or_index) and (session_id is None or checkpoint.session_id == session_id):
                    return checkpoint
        index = parse_index(id_or_index)
        if index is None:
            return None
        checkpoints = self.list_checkpoint(session_id)
        if index < len(checkpoints):
            return checkpoints[index]
        return None

    def list_checkpoint(self, session_id: str | None = None) -> list[Checkpoint]:
        with self._lock:
            self._ensure_open()
            indexed = [
                (position, cp) for position, cp in enumerate(self._checkpoints)
                if session_id is None or cp.session_id == session_id
            ]
        indexed.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [cp for _, cp in indexed]

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("In-memory checkpoint store is closed")
