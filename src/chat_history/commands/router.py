from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    """Dispatch slash commands on their first token; anything else is chat input."""

    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_checkpoint: Callable[[str], Awaitable[None]],
        on_history: Callable[[str], Awaitable[None]],
        on_session: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_unknown = on_unknown
        self._handlers: dict[str, Callable[[str], Awaitable[None]]] = {
            "/checkpoint": on_checkpoint,
            "/history": on_history,
            "/session": on_session,
        }

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        name = trimmed.split(maxsplit=1)[0]
        handler = self._handlers.get(name)
        if name == "/help":
            await self._on_help()
        elif handler is not None:
            await handler(trimmed)
        else:
            self._on_unknown(trimmed)
        return True
