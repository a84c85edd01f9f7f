from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from chat_history.app_config import AppConfig
from chat_history.console import HistoryConsole
from chat_history.console_config import ConsoleConfig
from chat_history.logging_config import setup_logging
from chat_history.memory import (
    EventEmitter,
    InMemoryCheckpointStore,
    InMemoryHistoryStore,
    MemoryStore,
    PruneResult,
    SqliteCheckpointStore,
    SqliteHistoryStore,
    prune_memory,
)
from chat_history.memory.contracts import CheckpointStore, WritableHistoryStore


@dataclass
class AppRuntime:
    console: HistoryConsole
    history: WritableHistoryStore
    checkpoints: CheckpointStore
    memory_store: MemoryStore | None
    prune_result: PruneResult | None
    log_descriptions: list[str]

    def close(self) -> None:
        self.checkpoints.close()
        self.history.close()


async def bootstrap_runtime(app: AppConfig) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    memory_store: MemoryStore | None = None
    prune_result: PruneResult | None = None
    history: WritableHistoryStore
    checkpoints: CheckpointStore

    if app.backend == "memory":
        history = InMemoryHistoryStore(branch_policy=app.branch_policy)
        checkpoints = InMemoryCheckpointStore()
        logger.info("Using in-memory history; nothing will be persisted")
    else:
        db_path = Path(app.memory_db_path)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        memory_store = MemoryStore(str(db_path))
        events = EventEmitter(memory_store)
        history = SqliteHistoryStore(memory_store, events, branch_policy=app.branch_policy)
        checkpoints = SqliteCheckpointStore(memory_store, events)
        logger.info(f"Opened history database at {db_path}")

        if app.prune_on_startup:
            prune_result = prune_memory(
                memory_store,
                max_sessions=app.memory_max_sessions,
                max_messages_per_session=app.memory_max_messages_per_session,
                retention_days=app.memory_retention_days,
            )
            logger.info(
                f"Pruned {prune_result.sessions_removed} session(s) and "
                f"{prune_result.messages_removed} message(s)"
            )

    active_session_id: str | None = None
    if app.continue_conversation and app.configured_session_id:
        active_session_id = history.load_or_create(app.configured_session_id).id

    console = HistoryConsole(
        ConsoleConfig(
            history=history,
            checkpoints=checkpoints,
            session_id=active_session_id,
            recent_message_limit=app.recent_message_limit,
        )
    )
    await console.initialize_session()

    return AppRuntime(
        console=console,
        history=history,
        checkpoints=checkpoints,
        memory_store=memory_store,
        prune_result=prune_result,
        log_descriptions=log_descriptions,
    )
