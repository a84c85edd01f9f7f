from __future__ import annotations

from datetime import date

from chat_history.memory.models import Message, Session
from chat_history.memory.threads import payload_text
from chat_history.services.date_grouping import format_day_label, format_time, format_timestamp, group_by_date


class SessionController:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_session_list_entry(self, session: Session, *, active_session_id: str | None) -> str:
        marker = "*" if session.id == active_session_id else " "
        short_id = self.short_id(session.id)
        preview = f' "{session.preview_text}"' if session.preview_text else ""
        return (
            f"{self._line_prefix}{marker} {session.title} [{short_id}] (id={session.id}, "
            f"created={format_time(session.created_at)}){preview}"
        )

    def format_session_groups(
        self,
        sessions: list[Session],
        *,
        active_session_id: str | None,
        today: date | None = None,
    ) -> list[str]:
        lines: list[str] = []
        for date_key, group in group_by_date(sessions, lambda s: s.created_at):
            lines.append(f"{self._line_prefix}{format_day_label(date_key, today)} ({len(group)} sessions)")
            for session in group:
                lines.append(self.format_session_list_entry(session, active_session_id=active_session_id))
        return lines

    def format_transcript_lines(self, session: Session, messages: list[Message]) -> list[str]:
        lines = [
            f"{self._line_prefix}=== Session: {session.title} ===",
            f"{self._line_prefix}Created: {format_timestamp(session.created_at)}",
        ]
        if not messages:
            lines.append(f"{self._line_prefix}No messages in this session.")
            return lines
        lines.extend(self.format_message_lines(messages))
        lines.append(f"{self._line_prefix}--- End of Session ---")
        return lines

    def format_message_lines(self, messages: list[Message]) -> list[str]:
        lines: list[str] = []
        for message in messages:
            lines.append(
                f"{self._line_prefix}User ({format_time(message.created_at)}) "
                f"[{self.short_id(message.id)}]: {payload_text(message.request)}"
            )
            if message.response is not None:
                lines.append(f"{self._line_prefix}Assistant: {payload_text(message.response)}")
        return lines
