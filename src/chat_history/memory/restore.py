from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from chat_history.memory.contracts import CheckpointStore, HistoryStore
from chat_history.memory.models import Checkpoint, Message


class RestoreStatus(str, Enum):
    RESTORED = "restored"
    CHECKPOINT_NOT_FOUND = "checkpoint_not_found"
    DANGLING = "dangling"


@dataclass(frozen=True)
class RestoreOutcome:
    status: RestoreStatus
    requested: str | int
    checkpoint: Checkpoint | None = None
    message: Message | None = None

    @property
    def restored(self) -> bool:
        return self.status is RestoreStatus.RESTORED


def restore_checkpoint(
    checkpoints: CheckpointStore,
    history: HistoryStore,
    id_or_index: str | int,
    session_id: str | None = None,
) -> RestoreOutcome:
    """Resolve a checkpoint to the stored message the conversation should resume from.

    A checkpoint whose message has since been removed is reported as
    DANGLING rather than as a missing checkpoint. The returned message is the
    live stored one, not the snapshot cached on the checkpoint.
    """
    checkpoint = checkpoints.retrieve_checkpoint(id_or_index, session_id)
    if checkpoint is None:
        return RestoreOutcome(RestoreStatus.CHECKPOINT_NOT_FOUND, id_or_index)

    message = history.get_message(checkpoint.message_id)
    if message is None:
        return RestoreOutcome(RestoreStatus.DANGLING, id_or_index, checkpoint=checkpoint)

    return RestoreOutcome(RestoreStatus.RESTORED, id_or_index, checkpoint=checkpoint, message=message)
