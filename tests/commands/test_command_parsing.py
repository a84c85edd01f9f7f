import asyncio
import unittest

from chat_history.commands.checkpoint_command import CHECKPOINT_USAGE, parse_checkpoint_command
from chat_history.commands.router import CommandRouter


class CheckpointCommandParsingTests(unittest.TestCase):
    def _parse(self, command: str):
        return parse_checkpoint_command(command, line_prefix="> ")

    def test_bare_command_lists(self) -> None:
        parsed, error = self._parse("/checkpoint")
        self.assertIsNone(error)
        self.assertEqual("list", parsed.action)

    def test_create_with_quoted_label(self) -> None:
        parsed, error = self._parse('/checkpoint create "before the big refactor"')
        self.assertIsNone(error)
        self.assertEqual("create", parsed.action)
        self.assertEqual("before the big refactor", parsed.label)

    def test_create_without_label(self) -> None:
        parsed, _ = self._parse("/checkpoint create")
        self.assertEqual("", parsed.label)

    def test_restore_requires_exactly_one_target(self) -> None:
        parsed, error = self._parse("/checkpoint restore 2")
        self.assertIsNone(error)
        self.assertEqual("2", parsed.target)

        for command in ("/checkpoint restore", "/checkpoint restore a b"):
            with self.subTest(command=command):
                parsed, error = self._parse(command)
                self.assertIsNone(parsed)
                self.assertEqual("> Usage: /checkpoint restore <id> (see /checkpoint list for ids)", error)

    def test_unknown_action_prints_usage(self) -> None:
        parsed, error = self._parse("/checkpoint delete 1")
        self.assertIsNone(parsed)
        self.assertEqual(f"> {CHECKPOINT_USAGE}", error)

    def test_unbalanced_quotes_are_rejected(self) -> None:
        parsed, error = self._parse('/checkpoint create "oops')
        self.assertIsNone(parsed)
        self.assertEqual("> Invalid command syntax", error)


class CommandRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.calls: list[tuple[str, str]] = []

        async def on_help() -> None:
            self.calls.append(("help", ""))

        async def on_checkpoint(command: str) -> None:
            self.calls.append(("checkpoint", command))

        async def on_history(command: str) -> None:
            self.calls.append(("history", command))

        async def on_session(command: str) -> None:
            self.calls.append(("session", command))

        def on_unknown(command: str) -> None:
            self.calls.append(("unknown", command))

        self._router = CommandRouter(
            on_help=on_help,
            on_checkpoint=on_checkpoint,
            on_history=on_history,
            on_session=on_session,
            on_unknown=on_unknown,
        )

    def test_plain_text_is_not_a_command(self) -> None:
        self.assertFalse(asyncio.run(self._router.try_handle("hello there")))
        self.assertEqual([], self.calls)

    def test_dispatches_on_first_token(self) -> None:
        for command in ("/help", "  /checkpoint list ", "/history search foo", "/session new X", "/nope"):
            self.assertTrue(asyncio.run(self._router.try_handle(command)))

        self.assertEqual(
            [
                ("help", ""),
                ("checkpoint", "/checkpoint list"),
                ("history", "/history search foo"),
                ("session", "/session new X"),
                ("unknown", "/nope"),
            ],
            self.calls,
        )

    def test_prefix_of_command_is_unknown(self) -> None:
        asyncio.run(self._router.try_handle("/historyx"))
        self.assertEqual([("unknown", "/historyx")], self.calls)
