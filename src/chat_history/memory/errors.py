from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_history.memory.models import Message


class HistoryStoreError(Exception):
    pass


class NotFoundError(HistoryStoreError, LookupError):
    pass


class InvalidArgumentError(HistoryStoreError, ValueError):
    pass


class StoreClosedError(HistoryStoreError):
    pass


class CycleError(HistoryStoreError):
    """A chain walk revisited a message it had already seen."""

    def __init__(self, message_id: str, repeated_message_id: str):
        super().__init__(
            f"Cycle detected walking history of {message_id}: "
            f"message {repeated_message_id} was reached twice"
        )
        self.message_id = message_id
        self.repeated_message_id = repeated_message_id


class BrokenChainError(HistoryStoreError):
    """A chain walk followed a link to a message that no longer exists.

    ``partial`` holds what was reachable, oldest first and ending with the
    message the walk started from, so callers can still show the tail of the
    conversation.
    """

    def __init__(self, message_id: str, missing_message_id: str, partial: list[Message]):
        super().__init__(
            f"History of {message_id} is broken: previous message "
            f"{missing_message_id} does not exist ({len(partial)} message(s) reachable)"
        )
        self.message_id = message_id
        self.missing_message_id = missing_message_id
        self.partial = partial
