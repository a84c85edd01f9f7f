from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

Payload = Union[str, dict, list]

DEFAULT_CHECKPOINT_LABEL = "New Checkpoint"


def default_session_title(session_id: str) -> str:
    return f"Session {session_id}"


@dataclass(frozen=True)
class Session:
    id: str
    title: str
    created_at: int
    last_activity: int | None = None
    preview_text: str | None = None

    @property
    def active_at(self) -> int:
        return self.last_activity if self.last_activity is not None else self.created_at


@dataclass(frozen=True)
class Message:
    id: str
    session_id: str
    request: Payload
    created_at: int
    previous_message_id: str | None = None
    response: Payload | None = None
    prior_state: Payload | None = None
    cumulative_input_length: int | None = None
    updated_at: int | None = None
    seq: int = 0

    @property
    def touched_at(self) -> int:
        if self.updated_at is None:
            return self.created_at
        return max(self.created_at, self.updated_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "previous_message_id": self.previous_message_id,
            "request": self.request,
            "response": self.response,
            "prior_state": self.prior_state,
            "cumulative_input_length": self.cumulative_input_length,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "seq": self.seq,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        """Build a message from ``to_dict`` output or a looser runtime mapping.

        Missing optional keys fall back to their defaults so snapshots taken
        from partial runtime messages still load.
        """
        previous = data.get("previous_message_id")
        cumulative = data.get("cumulative_input_length")
        updated_at = data.get("updated_at")
        return cls(
            id=str(data["id"]),
            session_id=str(data.get("session_id") or ""),
            request=data.get("request", ""),
            created_at=int(data.get("created_at") or 0),
            previous_message_id=str(previous) if previous is not None else None,
            response=data.get("response"),
            prior_state=data.get("prior_state"),
            cumulative_input_length=int(cumulative) if cumulative is not None else None,
            updated_at=int(updated_at) if updated_at is not None else None,
            seq=int(data.get("seq") or 0),
        )


@dataclass(frozen=True)
class Checkpoint:
    id: str
    label: str
    message_id: str
    created_at: int
    session_id: str | None = None
    current_message: Message | None = field(default=None, compare=False)
