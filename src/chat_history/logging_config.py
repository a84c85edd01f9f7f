"""Loguru sinks for the console application.

``LogConsumers`` in config.json is a list of sink specs, for example
``{"type": "file", "path": "logs/history.jsonl", "serialize": true}``.
Only the console and bootstrap layers log; the stores raise and return.
"""

import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_PATH = ".chat_history/chat_history.log"

_STDERR_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"

_DEFAULT_SPECS: list[dict[str, Any]] = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


@dataclass
class SinkSpec:
    kind: str
    level: str
    options: dict[str, Any] = field(default_factory=dict)


def parse_sink_specs(raw: list[dict[str, Any]] | None, default_level: str) -> list[SinkSpec]:
    specs = []
    for entry in _DEFAULT_SPECS if raw is None else raw:
        options = {k: v for k, v in entry.items() if k not in ("type", "level")}
        specs.append(SinkSpec(kind=str(entry.get("type", "")), level=entry.get("level", default_level), options=options))
    return specs


def _add_stderr_sink(sink: SinkSpec) -> str:
    logger.add(sys.stderr, level=sink.level, format=_STDERR_FORMAT)
    return f"console (stderr, {sink.level})"


def _add_file_sink(sink: SinkSpec) -> str:
    path = str(sink.options.get("path", DEFAULT_LOG_PATH))
    serialize = bool(sink.options.get("serialize", False))
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        path,
        level=sink.level,
        format=_FILE_FORMAT,
        rotation=sink.options.get("rotation", "5 MB"),
        retention=sink.options.get("retention", 5),
        serialize=serialize,
        enqueue=True,
    )
    return f"file ({path}, {'jsonl' if serialize else 'text'}, {sink.level})"


_SINK_BUILDERS: dict[str, Callable[[SinkSpec], str]] = {
    "console": _add_stderr_sink,
    "file": _add_file_sink,
}


def setup_logging(level: str = "INFO", consumers: list[dict[str, Any]] | None = None) -> list[str]:
    """Replace loguru's sinks with the configured ones; returns one description per sink added.

    ``consumers=None`` installs the defaults, an empty list silences logging.
    """
    logger.remove()

    descriptions: list[str] = []
    for sink in parse_sink_specs(consumers, level):
        builder = _SINK_BUILDERS.get(sink.kind)
        if builder is None:
            logger.warning(f"Unknown log consumer type: {sink.kind!r}")
            continue
        descriptions.append(builder(sink))
    return descriptions
