from __future__ import annotations

from datetime import date

from chat_history.memory.models import Checkpoint
from chat_history.memory.restore import RestoreOutcome, RestoreStatus
from chat_history.services.date_grouping import format_day_label, format_time, group_by_date


class CheckpointService:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len

    def _short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_checkpoint_list_entry(self, checkpoint: Checkpoint, index: int) -> str:
        return (
            f"{self._line_prefix}  [{index}] {format_time(checkpoint.created_at)} - {checkpoint.label} "
            f"(id={checkpoint.id}, message={self._short_id(checkpoint.message_id)})"
        )

    def format_checkpoint_groups(self, checkpoints: list[Checkpoint], today: date | None = None) -> list[str]:
        """Render checkpoints grouped by day; ``checkpoints`` is expected newest first.

        Each entry keeps its position in that list so it can be passed back
        to ``/checkpoint restore <index>``.
        """
        positions = {cp.id: index for index, cp in enumerate(checkpoints)}
        lines: list[str] = []
        for date_key, group in group_by_date(checkpoints, lambda cp: cp.created_at):
            lines.append(f"{self._line_prefix}{format_day_label(date_key, today)} ({len(group)} checkpoints)")
            for cp in group:
                lines.append(self.format_checkpoint_list_entry(cp, positions[cp.id]))
        return lines

    def format_created_line(self, checkpoint: Checkpoint) -> str:
        return f"{self._line_prefix}Checkpoint created: {checkpoint.id}: {checkpoint.label}"

    def format_restore_outcome_lines(self, outcome: RestoreOutcome) -> list[str]:
        checkpoint = outcome.checkpoint
        if outcome.status is RestoreStatus.CHECKPOINT_NOT_FOUND or checkpoint is None:
            return [f"{self._line_prefix}Checkpoint {outcome.requested} not found."]
        if outcome.status is RestoreStatus.DANGLING:
            return [
                f"{self._line_prefix}Message {checkpoint.message_id} not found. "
                f"Checkpoint {checkpoint.id} exists, but no message loaded."
            ]
        return [f"{self._line_prefix}Checkpoint {checkpoint.id} loaded: {checkpoint.label}"]
