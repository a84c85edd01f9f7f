"""Graph algorithms over a session's message arena.

Messages reference their predecessor by id only. Everything here works on an
arena (a mapping or lookup keyed by message id) so that chain walks, leaf
selection and tree rebuilding are plain visited-set traversals, independent
of how a backend stores the rows.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from chat_history.memory.errors import BrokenChainError, CycleError, InvalidArgumentError, NotFoundError
from chat_history.memory.models import Message, Payload

BRANCH_POLICY_LATEST = "latest"
BRANCH_POLICY_LONGEST = "longest"
BRANCH_POLICIES = (BRANCH_POLICY_LATEST, BRANCH_POLICY_LONGEST)

PREVIEW_MAX_CHARS = 140

MessageLookup = Callable[[str], "Message | None"]


@dataclass
class ThreadNode:
    message: Message
    children: list[ThreadNode] = field(default_factory=list)


def chronological_key(message: Message) -> tuple[int, int]:
    return message.created_at, message.seq


def validate_branch_policy(policy: str) -> str:
    normalized = policy.strip().lower()
    if normalized not in BRANCH_POLICIES:
        raise InvalidArgumentError(
            f"Unknown branch policy: {policy!r}. Supported: {', '.join(BRANCH_POLICIES)}"
        )
    return normalized


def walk_chain(lookup: MessageLookup, message_id: str) -> list[Message]:
    """Return the ancestry of ``message_id``, root first and target last.

    Raises NotFoundError when the target is absent, CycleError when a link
    leads back to a message already visited, and BrokenChainError (carrying
    the reachable part) when a link points at a missing message.
    """
    target = lookup(message_id)
    if target is None:
        raise NotFoundError(f"Message does not exist: {message_id}")

    visited = {target.id}
    chain = [target]
    current = target
    while current.previous_message_id is not None:
        previous_id = current.previous_message_id
        if previous_id in visited:
            raise CycleError(message_id, previous_id)
        parent = lookup(previous_id)
        if parent is None:
            chain.reverse()
            raise BrokenChainError(message_id, previous_id, chain)
        visited.add(previous_id)
        chain.append(parent)
        current = parent

    chain.reverse()
    return chain


def find_leaves(messages: Iterable[Message]) -> list[Message]:
    arena = list(messages)
    referenced = {m.previous_message_id for m in arena if m.previous_message_id is not None}
    return [m for m in arena if m.id not in referenced]


def build_thread_forest(messages: Iterable[Message]) -> list[ThreadNode]:
    """Rebuild the branching structure of a session.

    Messages whose predecessor is missing become roots. Messages caught in a
    cycle are unreachable from any root and are left out.
    """
    nodes = {m.id: ThreadNode(m) for m in sorted(messages, key=chronological_key)}
    roots: list[ThreadNode] = []
    for node in nodes.values():
        parent_id = node.message.previous_message_id
        parent = nodes.get(parent_id) if parent_id is not None else None
        if parent_id is None or parent is None:
            roots.append(node)
        else:
            parent.children.append(node)
    return roots


def select_leaf(messages: Iterable[Message], policy: str = BRANCH_POLICY_LATEST) -> Message | None:
    arena = {m.id: m for m in messages}
    if not arena:
        return None

    leaves = find_leaves(arena.values())
    if not leaves:
        # no leaf means every message sits on a cycle
        first = min(arena.values(), key=chronological_key)
        raise CycleError(first.id, first.previous_message_id or first.id)

    if policy == BRANCH_POLICY_LONGEST:
        return max(leaves, key=lambda m: (_reachable_depth(arena, m.id), m.touched_at, m.seq))
    return max(leaves, key=lambda m: (m.touched_at, m.seq))


def canonical_thread(messages: Iterable[Message], policy: str = BRANCH_POLICY_LATEST) -> list[Message]:
    arena = {m.id: m for m in messages}
    leaf = select_leaf(arena.values(), policy)
    if leaf is None:
        return []
    try:
        return walk_chain(arena.get, leaf.id)
    except BrokenChainError as ex:
        return ex.partial


def recent_window(messages: Iterable[Message], limit: int, policy: str = BRANCH_POLICY_LATEST) -> list[Message]:
    if limit <= 0:
        return []
    thread = canonical_thread(messages, policy)
    return sorted(thread[-limit:], key=chronological_key)


def filter_by_keyword(messages: Iterable[Message], keyword: str) -> list[Message]:
    if not keyword or not keyword.strip():
        return []
    needle = keyword.casefold()
    matches = [
        m for m in messages
        if needle in payload_text(m.request).casefold() or needle in payload_text(m.response).casefold()
    ]
    return sorted(matches, key=lambda m: (m.created_at, m.session_id, m.seq))


def payload_text(payload: Payload | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)


def preview_text(payload: Payload | None, max_chars: int = PREVIEW_MAX_CHARS) -> str:
    if payload is None:
        text = ""
    elif isinstance(payload, str):
        text = payload
    elif isinstance(payload, list):
        parts: list[str] = []
        for block in payload:
            if isinstance(block, dict):
                block_type = block.get("type")
                if block_type == "text":
                    parts.append(str(block.get("text", "")))
                elif block_type == "tool_use":
                    parts.append(f"[tool:{block.get('name', '')}]")
                elif block_type == "tool_result":
                    parts.append("[tool_result]")
            elif isinstance(block, str):
                parts.append(block)
        text = " ".join(p for p in parts if p).strip()
    elif not isinstance(payload, dict):
        text = str(payload)
    elif isinstance(payload.get("text"), str):
        text = payload["text"]
    elif isinstance(payload.get("content"), (str, list, dict)):
        return preview_text(payload["content"], max_chars)
    else:
        text = payload_text(payload)

    text = " ".join(text.split())
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def validate_payload(name: str, payload: object, *, required: bool) -> None:
    if payload is None:
        if required:
            raise InvalidArgumentError(f"{name} is required")
        return
    if not isinstance(payload, (str, dict, list)):
        raise InvalidArgumentError(f"{name} must be a string, dict or list, got {type(payload).__name__}")
    try:
        json.dumps(payload)
    except (TypeError, ValueError) as ex:
        raise InvalidArgumentError(f"{name} must be JSON serializable: {ex}") from ex


def check_parent(parent: Message | None, previous_message_id: str, session_id: str) -> None:
    if parent is None:
        raise InvalidArgumentError(f"Previous message does not exist: {previous_message_id}")
    if parent.session_id != session_id:
        raise InvalidArgumentError(
            f"Previous message {previous_message_id} belongs to session {parent.session_id}, not {session_id}"
        )


def cumulative_length(parent: Message | None, request: Payload) -> int:
    base = parent.cumulative_input_length if parent is not None and parent.cumulative_input_length else 0
    return base + len(payload_text(request))


def _reachable_depth(arena: dict[str, Message], message_id: str) -> int:
    try:
        return len(walk_chain(arena.get, message_id))
    except BrokenChainError as ex:
        return len(ex.partial)
