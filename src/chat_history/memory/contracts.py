from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from chat_history.memory.models import Checkpoint, Message, Payload, Session


@runtime_checkable
class HistoryStore(Protocol):
    def list_sessions(self) -> list[Session]:
        """All sessions, most recently active first. Empty store returns []."""
        ...

    def get_session(self, session_id: str) -> Session | None: ...

    def get_thread_tree(self, session_id: str) -> list[Message]:
        """Every message of the session, in no guaranteed order.

        Callers rebuild branches by indexing on id and previous_message_id
        (see ``threads.build_thread_forest``). Raises NotFoundError only when
        the session itself does not exist.
        """
        ...

    def get_recent_messages(self, session_id: str, limit: int = 10) -> list[Message]:
        """At most ``limit`` messages of one canonical thread, oldest first."""
        ...

    def search_messages(self, keyword: str, session_id: str | None = None) -> list[Message]:
        """Case-insensitive substring match over request and response text."""
        ...

    def get_chat_history_by_message_id(self, message_id: str) -> list[Message]:
        """Ancestor chain of ``message_id``, root first and the message itself last.

        Raises NotFoundError, CycleError or BrokenChainError.
        """
        ...

    def get_message(self, message_id: str) -> Message | None: ...

    def close(self) -> None: ...


@runtime_checkable
class CheckpointStore(Protocol):
    def create_checkpoint(
        self,
        label: str | None,
        current_message: Message | Mapping[str, Any] | None,
        session_id: str | None = None,
    ) -> Checkpoint: ...

    def retrieve_checkpoint(self, id_or_index: str | int, session_id: str | None = None) -> Checkpoint | None:
        """Exact id first, then a 0-based index into ``list_checkpoint``; None when nothing matches."""
        ...

    def list_checkpoint(self, session_id: str | None = None) -> list[Checkpoint]:
        """Checkpoints newest first, optionally limited to one session."""
        ...

    def close(self) -> None: ...


@runtime_checkable
class WritableHistoryStore(HistoryStore, Protocol):
    """A history store that also accepts appends, as both bundled backends do."""

    def create_session(self, session_id: str | None = None, *, title: str | None = None) -> Session: ...

    def load_or_create(self, session_id: str) -> Session: ...

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
    ) -> Message: ...

    def set_response(self, message_id: str, response: Payload, *, prior_state: Payload | None = None) -> Message: ...
