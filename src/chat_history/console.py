from __future__ import annotations

import asyncio

from loguru import logger

from chat_history.commands.checkpoint_command import parse_checkpoint_command
from chat_history.commands.router import CommandRouter
from chat_history.console_config import ConsoleConfig
from chat_history.memory.errors import BrokenChainError, CycleError, HistoryStoreError, NotFoundError
from chat_history.memory.models import Message, Payload
from chat_history.memory.restore import restore_checkpoint
from chat_history.services.checkpoint_service import CheckpointService
from chat_history.services.session_controller import SessionController


class HistoryConsole:
    """Command surface over the history and checkpoint stores.

    The console owns the conversation pointer (the message the next input
    continues from). The stores never track it; checkpoints snapshot it and
    restores move it.
    """

    _LINE_PREFIX = "history> "

    def __init__(self, config: ConsoleConfig):
        self._history = config.history
        self._checkpoints = config.checkpoints
        self._active_session_id = config.session_id
        self._recent_message_limit = config.recent_message_limit
        self._current_message: Message | None = None
        self._run_lock = asyncio.Lock()

        self._session_controller = SessionController(line_prefix=self._LINE_PREFIX)
        self._checkpoint_service = CheckpointService(line_prefix=self._LINE_PREFIX)

        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_checkpoint=self._handle_checkpoint_command,
            on_history=self._handle_history_command,
            on_session=self._handle_session_command,
            on_unknown=self._on_unknown_command,
        )

    @property
    def active_session_id(self) -> str | None:
        return self._active_session_id

    @property
    def current_message(self) -> Message | None:
        return self._current_message

    async def initialize_session(self) -> None:
        if self._active_session_id is None:
            return
        try:
            self._current_message = self._latest_message(self._active_session_id)
        except CycleError as ex:
            logger.warning(f"Corrupted history in session {self._active_session_id}: {ex}")
            print(f"{self._LINE_PREFIX}History is corrupted: {ex}")
            self._current_message = None
            return
        logger.info(
            f"Session {self._active_session_id} resumed at message "
            f"{self._current_message.id if self._current_message else 'none'}"
        )

    async def run(self, user_message: str) -> None:
        async with self._run_lock:
            if await self._command_router.try_handle(user_message):
                return
            message = self.record_exchange(user_message)
            print(f"{self._LINE_PREFIX}Recorded [{self._session_controller.short_id(message.id)}]")

    def record_exchange(self, request: Payload, response: Payload | None = None) -> Message:
        """Append one exchange after the current message and move the pointer to it."""
        if self._active_session_id is None:
            self._active_session_id = self._history.create_session().id
        previous = self._current_message
        previous_id = previous.id if previous is not None and previous.session_id == self._active_session_id else None
        message = self._history.append_message(
            self._active_session_id,
            request,
            previous_message_id=previous_id,
            response=response,
        )
        self._current_message = message
        return message

    async def _on_help(self) -> None:
        self._print_help()

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown local command: {trimmed}")

    def _print_help(self) -> None:
        print(f"{self._LINE_PREFIX}Available commands:")
        print(f"{self._LINE_PREFIX}- /help")
        print(f"{self._LINE_PREFIX}- /checkpoint create [label]")
        print(f"{self._LINE_PREFIX}- /checkpoint restore <id-or-index>")
        print(f"{self._LINE_PREFIX}- /checkpoint list")
        print(f"{self._LINE_PREFIX}- /history")
        print(f"{self._LINE_PREFIX}- /history <session_id>")
        print(f"{self._LINE_PREFIX}- /history thread <message_id>")
        print(f"{self._LINE_PREFIX}- /history search <keyword>")
        print(f"{self._LINE_PREFIX}- /session")
        print(f"{self._LINE_PREFIX}- /session new [title]")
        print(f"{self._LINE_PREFIX}- /session use <session_id>")

    async def _handle_checkpoint_command(self, command: str) -> None:
        parsed, error = parse_checkpoint_command(command, line_prefix=self._LINE_PREFIX)
        if error:
            print(error)
            return
        assert parsed is not None

        try:
            if parsed.action == "create":
                if self._current_message is None:
                    print(f"{self._LINE_PREFIX}No active chat to checkpoint. Ask at least one question first.")
                    return
                checkpoint = self._checkpoints.create_checkpoint(
                    parsed.label,
                    self._current_message,
                    self._current_message.session_id,
                )
                print(self._checkpoint_service.format_created_line(checkpoint))
                return

            if parsed.action == "restore":
                assert parsed.target is not None
                outcome = restore_checkpoint(self._checkpoints, self._history, parsed.target)
                for line in self._checkpoint_service.format_restore_outcome_lines(outcome):
                    print(line)
                if outcome.restored and outcome.message is not None:
                    self._current_message = outcome.message
                    self._active_session_id = outcome.message.session_id
                return

            checkpoints = self._checkpoints.list_checkpoint()
            if not checkpoints:
                print(f"{self._LINE_PREFIX}No checkpoints saved. Use /checkpoint create to make one.")
                return
            for line in self._checkpoint_service.format_checkpoint_groups(checkpoints):
                print(line)
        except HistoryStoreError as ex:
            logger.warning(f"Checkpoint command failed ({command}): {ex}")
            print(f"{self._LINE_PREFIX}Checkpoint command failed: {ex}")

    async def _handle_history_command(self, command: str) -> None:
        parts = command.split(maxsplit=2)
        try:
            if len(parts) == 1:
                sessions = self._history.list_sessions()
                if not sessions:
                    print(f"{self._LINE_PREFIX}No chat history found.")
                    return
                for line in self._session_controller.format_session_groups(
                    sessions, active_session_id=self._active_session_id
                ):
                    print(line)
                return

            if parts[1] == "thread":
                if len(parts) < 3:
                    print(f"{self._LINE_PREFIX}Usage: /history thread <message_id>")
                    return
                self._print_thread(parts[2].strip())
                return

            if parts[1] == "search":
                if len(parts) < 3:
                    print(f"{self._LINE_PREFIX}Usage: /history search <keyword>")
                    return
                matches = self._history.search_messages(parts[2])
                if not matches:
                    print(f"{self._LINE_PREFIX}No messages match: {parts[2]}")
                    return
                print(f"{self._LINE_PREFIX}{len(matches)} matching message(s):")
                for line in self._session_controller.format_message_lines(matches):
                    print(line)
                return

            session_id = command.partition(" ")[2].strip()
            session = self._history.get_session(session_id)
            if session is None:
                print(f"{self._LINE_PREFIX}Session not found: {session_id}")
                return
            messages = self._history.get_recent_messages(session_id, self._recent_message_limit)
            for line in self._session_controller.format_transcript_lines(session, messages):
                print(line)
        except CycleError as ex:
            logger.warning(f"Corrupted history: {ex}")
            print(f"{self._LINE_PREFIX}History is corrupted: {ex}")
        except HistoryStoreError as ex:
            logger.warning(f"History command failed ({command}): {ex}")
            print(f"{self._LINE_PREFIX}Error browsing chat history: {ex}")

    def _print_thread(self, message_id: str) -> None:
        try:
            chain = self._history.get_chat_history_by_message_id(message_id)
        except NotFoundError:
            print(f"{self._LINE_PREFIX}Message not found: {message_id}")
            return
        except BrokenChainError as ex:
            print(
                f"{self._LINE_PREFIX}History is incomplete: message {ex.missing_message_id} is missing, "
                f"showing {len(ex.partial)} reachable message(s)"
            )
            chain = ex.partial
        for line in self._session_controller.format_message_lines(chain):
            print(line)

    async def _handle_session_command(self, command: str) -> None:
        parts = command.split()
        if len(parts) == 1:
            if self._active_session_id is None:
                print(f"{self._LINE_PREFIX}Current session: none")
                return
            session = self._history.get_session(self._active_session_id)
            title = session.title if session is not None else self._active_session_id
            pointer = self._current_message.id if self._current_message is not None else "none"
            print(
                f"{self._LINE_PREFIX}Current session: {title} "
                f"[{self._session_controller.short_id(self._active_session_id)}] "
                f"(id={self._active_session_id}, current message={pointer})"
            )
            return

        if parts[1] == "new":
            title = command.partition("new")[2].strip()
            session = self._history.create_session(title=title or None)
            self._active_session_id = session.id
            self._current_message = None
            print(
                f"{self._LINE_PREFIX}Started new session: {session.title} "
                f"[{self._session_controller.short_id(session.id)}] (id={session.id})"
            )
            return

        if len(parts) == 3 and parts[1] == "use":
            session = self._history.get_session(parts[2])
            if session is None:
                print(f"{self._LINE_PREFIX}Session not found: {parts[2]}")
                return
            try:
                latest = self._latest_message(session.id)
            except CycleError as ex:
                print(f"{self._LINE_PREFIX}History is corrupted: {ex}")
                return
            self._active_session_id = session.id
            self._current_message = latest
            print(f"{self._LINE_PREFIX}Switched to session {session.title} (id={session.id})")
            return

        print(f"{self._LINE_PREFIX}Usage: /session | /session new [title] | /session use <session_id>")

    def _latest_message(self, session_id: str) -> Message | None:
        recent = self._history.get_recent_messages(session_id, 1)
        return recent[-1] if recent else None
