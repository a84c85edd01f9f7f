from __future__ import annotations

import shlex
from dataclasses import dataclass

CHECKPOINT_USAGE = "Usage: /checkpoint create [label] | /checkpoint restore <id-or-index> | /checkpoint list"


@dataclass
class CheckpointCommand:
    action: str
    label: str = ""
    target: str | None = None


def parse_command(command: str) -> list[str]:
    return shlex.split(command)


def parse_checkpoint_command(command: str, *, line_prefix: str) -> tuple[CheckpointCommand | None, str | None]:
    try:
        parts = parse_command(command)
    except ValueError:
        return None, f"{line_prefix}Invalid command syntax"

    if len(parts) == 1:
        return CheckpointCommand(action="list"), None

    action = parts[1].lower()
    if action == "create":
        return CheckpointCommand(action="create", label=" ".join(parts[2:]).strip()), None
    if action == "restore":
        if len(parts) != 3:
            return None, f"{line_prefix}Usage: /checkpoint restore <id> (see /checkpoint list for ids)"
        return CheckpointCommand(action="restore", target=parts[2]), None
    if action == "list" and len(parts) == 2:
        return CheckpointCommand(action="list"), None

    return None, f"{line_prefix}{CHECKPOINT_USAGE}"
