from chat_history.memory.checkpoints import SqliteCheckpointStore
from chat_history.memory.contracts import CheckpointStore, HistoryStore, WritableHistoryStore
from chat_history.memory.errors import (
    BrokenChainError,
    CycleError,
    HistoryStoreError,
    InvalidArgumentError,
    NotFoundError,
    StoreClosedError,
)
from chat_history.memory.events import EventEmitter, now_ms
from chat_history.memory.history_store import SqliteHistoryStore
from chat_history.memory.in_memory import InMemoryCheckpointStore, InMemoryHistoryStore
from chat_history.memory.models import Checkpoint, Message, Session
from chat_history.memory.pruning import PruneResult, prune_memory
from chat_history.memory.restore import RestoreOutcome, RestoreStatus, restore_checkpoint
from chat_history.memory.store import MemoryStore

__all__ = [
    "BrokenChainError",
    "Checkpoint",
    "CheckpointStore",
    "CycleError",
    "EventEmitter",
    "HistoryStore",
    "HistoryStoreError",
    "InMemoryCheckpointStore",
    "InMemoryHistoryStore",
    "InvalidArgumentError",
    "MemoryStore",
    "Message",
    "NotFoundError",
    "PruneResult",
    "RestoreOutcome",
    "RestoreStatus",
    "Session",
    "SqliteCheckpointStore",
    "SqliteHistoryStore",
    "StoreClosedError",
    "WritableHistoryStore",
    "now_ms",
    "prune_memory",
    "restore_checkpoint",
]
