from dataclasses import dataclass

from chat_history.memory.contracts import CheckpointStore, WritableHistoryStore


@dataclass
class ConsoleConfig:
    history: WritableHistoryStore
    checkpoints: CheckpointStore
    session_id: str | None = None
    recent_message_limit: int = 10
