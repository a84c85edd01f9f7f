from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from chat_history.memory.threads import BRANCH_POLICIES

BACKENDS = ("sqlite", "memory")

DB_PATH_ENV_VAR = "CHAT_HISTORY_DB_PATH"


@dataclass
class RuntimeEnv:
    db_path_override: str | None


@dataclass
class AppConfig:
    backend: str
    memory_db_path: str
    configured_session_id: str | None
    continue_conversation: bool
    recent_message_limit: int
    branch_policy: str
    prune_on_startup: bool
    memory_max_sessions: int
    memory_max_messages_per_session: int
    memory_retention_days: int
    log_level: str
    log_consumers: list | None


def load_json_config(path: str | Path | None = None) -> dict:
    """Read config.json from ``path`` (default: the working directory); a missing file means defaults."""
    config_path = Path(path) if path is not None else Path.cwd() / "config.json"
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        return json.load(f)


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict, env: RuntimeEnv | None = None) -> AppConfig:
    backend = str(config.get("Backend", "sqlite")).strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend!r}. Supported: {', '.join(BACKENDS)}")

    branch_policy = str(config.get("BranchPolicy", "latest")).strip().lower()
    if branch_policy not in BRANCH_POLICIES:
        raise ValueError(f"Unknown branch policy: {branch_policy!r}. Supported: {', '.join(BRANCH_POLICIES)}")

    db_path = str(config.get("MemoryDbPath", ".chat_history/history.db"))
    if env is not None and env.db_path_override:
        db_path = env.db_path_override

    return AppConfig(
        backend=backend,
        memory_db_path=db_path,
        configured_session_id=str(config.get("SessionId", "")).strip() or None,
        continue_conversation=_to_bool(config.get("ContinueConversation", False), default=False),
        recent_message_limit=int(config.get("RecentMessageLimit", 10)),
        branch_policy=branch_policy,
        prune_on_startup=_to_bool(config.get("PruneOnStartup", False), default=False),
        memory_max_sessions=int(config.get("MemoryMaxSessions", 200)),
        memory_max_messages_per_session=int(config.get("MemoryMaxMessagesPerSession", 5000)),
        memory_retention_days=int(config.get("MemoryRetentionDays", 30)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        db_path_override=os.environ.get(DB_PATH_ENV_VAR, "").strip() or None,
    )
