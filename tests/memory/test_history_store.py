from datetime import datetime

from chat_history.memory import (
    BrokenChainError,
    CycleError,
    HistoryStore,
    InvalidArgumentError,
    NotFoundError,
    SqliteHistoryStore,
    StoreClosedError,
    WritableHistoryStore,
)
from tests.memory.base import MemoryStoreTestCase


class SqliteHistoryStoreTests(MemoryStoreTestCase):
    def test_satisfies_store_protocols(self) -> None:
        self.assertIsInstance(self._history, HistoryStore)
        self.assertIsInstance(self._history, WritableHistoryStore)

    def test_chain_walk_returns_root_first(self) -> None:
        m1, m2, m3 = self._append_chain("S1", "q1", "q2", "q3")

        chain = self._history.get_chat_history_by_message_id(m3.id)

        self.assertEqual([m1.id, m2.id, m3.id], [m.id for m in chain])
        self.assertEqual(m3, chain[-1])

    def test_chain_of_root_is_itself(self) -> None:
        (m1,) = self._append_chain("S1", "only")
        self.assertEqual([m1], self._history.get_chat_history_by_message_id(m1.id))

    def test_recent_messages_returns_tail_oldest_first(self) -> None:
        _, m2, m3 = self._append_chain("S1", "q1", "q2", "q3")

        recent = self._history.get_recent_messages("S1", 2)

        self.assertEqual([m2.id, m3.id], [m.id for m in recent])

    def test_recent_messages_returns_everything_below_limit(self) -> None:
        messages = self._append_chain("S1", "a", "b", "c")
        recent = self._history.get_recent_messages("S1")
        self.assertEqual([m.id for m in messages], [m.id for m in recent])
        created = [m.created_at for m in recent]
        self.assertEqual(sorted(created), created)

    def test_recent_messages_non_positive_limit_is_empty(self) -> None:
        self._append_chain("S1", "a", "b")
        self.assertEqual([], self._history.get_recent_messages("S1", 0))
        self.assertEqual([], self._history.get_recent_messages("S1", -3))

    def test_empty_session_reads_are_empty(self) -> None:
        self._history.create_session("empty")
        self.assertEqual([], self._history.get_thread_tree("empty"))
        self.assertEqual([], self._history.get_recent_messages("empty"))

    def test_thread_tree_of_unknown_session_raises(self) -> None:
        with self.assertRaises(NotFoundError):
            self._history.get_thread_tree("missing")

    def test_thread_tree_contains_every_branch(self) -> None:
        m1, m2 = self._append_chain("S1", "root", "left")
        m3 = self._history.append_message("S1", "right", previous_message_id=m1.id)
        self._append_chain("S2", "elsewhere")

        tree = self._history.get_thread_tree("S1")

        self.assertEqual({m1.id, m2.id, m3.id}, {m.id for m in tree})

    def test_chain_walk_of_unknown_message_raises(self) -> None:
        with self.assertRaises(NotFoundError):
            self._history.get_chat_history_by_message_id("nope")

    def test_every_chain_ends_with_message_and_its_parent(self) -> None:
        m1, m2, m3 = self._append_chain("S1", "a", "b", "c")
        m4 = self._history.append_message("S1", "d", previous_message_id=m2.id)
        m5 = self._history.append_message("S1", "e", previous_message_id=m1.id)

        for message in (m1, m2, m3, m4, m5):
            chain = self._history.get_chat_history_by_message_id(message.id)
            self.assertEqual(message.id, chain[-1].id)
            self.assertIsNone(chain[0].previous_message_id)
            if message.previous_message_id is not None:
                self.assertEqual(message.previous_message_id, chain[-2].id)
            self.assertEqual(len(chain), len({m.id for m in chain}))

    def test_cycle_is_detected(self) -> None:
        m1, m2 = self._append_chain("S1", "a", "b")
        with self._store.transaction():
            self._store.execute(
                "UPDATE messages SET previous_message_id = ? WHERE id = ?",
                (m2.id, m1.id),
            )

        with self.assertRaises(CycleError) as ctx:
            self._history.get_chat_history_by_message_id(m2.id)
        self.assertEqual(m2.id, ctx.exception.repeated_message_id)

        with self.assertRaises(CycleError):
            self._history.get_recent_messages("S1")

    def test_missing_ancestor_raises_with_partial_chain(self) -> None:
        _, m2, m3, m4 = self._append_chain("S1", "a", "b", "c", "d")
        self.assertTrue(self._history.delete_message(m2.id))

        with self.assertRaises(BrokenChainError) as ctx:
            self._history.get_chat_history_by_message_id(m4.id)

        self.assertEqual(m2.id, ctx.exception.missing_message_id)
        self.assertEqual([m3.id, m4.id], [m.id for m in ctx.exception.partial])

    def test_recent_messages_on_broken_chain_returns_reachable_tail(self) -> None:
        _, m2, m3, m4 = self._append_chain("S1", "a", "b", "c", "d")
        self._history.delete_message(m2.id)

        recent = self._history.get_recent_messages("S1", 10)

        self.assertEqual([m3.id, m4.id], [m.id for m in recent])

    def test_delete_unknown_message_returns_false(self) -> None:
        self.assertFalse(self._history.delete_message("nope"))

    def test_latest_policy_follows_most_recently_touched_leaf(self) -> None:
        m1, m2 = self._append_chain("S1", "root", "first branch")
        m3 = self._history.append_message("S1", "second branch", previous_message_id=m1.id)

        self.assertEqual([m1.id, m3.id], [m.id for m in self._history.get_recent_messages("S1")])

        self._history.set_response(m2.id, "late answer")

        self.assertEqual([m1.id, m2.id], [m.id for m in self._history.get_recent_messages("S1")])

    def test_longest_policy_follows_deepest_leaf(self) -> None:
        history = SqliteHistoryStore(self._store, self._events, branch_policy="longest", clock=self._clock)
        m1, m2, m3 = self._append_chain("S1", "a", "b", "c")
        history.append_message("S1", "short branch", previous_message_id=m1.id)

        recent = history.get_recent_messages("S1")

        self.assertEqual([m1.id, m2.id, m3.id], [m.id for m in recent])

    def test_unknown_branch_policy_is_rejected(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            SqliteHistoryStore(self._store, branch_policy="random")

    def test_search_is_case_insensitive_over_request_and_response(self) -> None:
        m1 = self._history.append_message("S1", "Hello World", response={"text": "Bonjour"})
        self._history.append_message("S1", "unrelated", previous_message_id=m1.id)

        self.assertEqual([m1.id], [m.id for m in self._history.search_messages("hello")])
        self.assertEqual([m1.id], [m.id for m in self._history.search_messages("BONJOUR")])
        self.assertEqual([], self._history.search_messages("zzz"))

    def test_search_matches_structured_payloads(self) -> None:
        message = self._history.append_message("S1", {"prompt": "Find the Café", "tags": ["menu"]})

        self.assertEqual([message.id], [m.id for m in self._history.search_messages("café")])
        self.assertEqual([message.id], [m.id for m in self._history.search_messages("MENU")])

    def test_search_blank_keyword_matches_nothing(self) -> None:
        self._append_chain("S1", "anything")
        self.assertEqual([], self._history.search_messages(""))
        self.assertEqual([], self._history.search_messages("   "))

    def test_search_can_be_limited_to_one_session(self) -> None:
        (a,) = self._append_chain("S1", "shared topic")
        (b,) = self._append_chain("S2", "shared topic again")

        self.assertEqual([a.id, b.id], [m.id for m in self._history.search_messages("shared")])
        self.assertEqual([b.id], [m.id for m in self._history.search_messages("shared", "S2")])

    def test_list_sessions_empty_store(self) -> None:
        self.assertEqual([], self._history.list_sessions())

    def test_list_sessions_most_recently_active_first(self) -> None:
        self._history.create_session("s1")
        self._history.create_session("s2")
        self._history.create_session("s3")
        self._history.append_message("s1", "wake up")

        self.assertEqual(["s1", "s3", "s2"], [s.id for s in self._history.list_sessions()])

    def test_append_creates_session_with_default_title_and_preview(self) -> None:
        message = self._history.append_message("fresh", "  hi\n there  ")

        session = self._history.get_session("fresh")

        self.assertIsNotNone(session)
        self.assertEqual("Session fresh", session.title)
        self.assertEqual(message.created_at, session.last_activity)
        self.assertEqual("hi there", session.preview_text)
        self.assertEqual(1, message.seq)

    def test_create_session_keeps_title_and_rejects_duplicates(self) -> None:
        session = self._history.create_session("named", title="  Planning ")
        self.assertEqual("Planning", session.title)
        self.assertEqual("Planning", self._history.get_session("named").title)

        with self.assertRaises(InvalidArgumentError):
            self._history.create_session("named")

    def test_load_or_create_is_idempotent(self) -> None:
        first = self._history.load_or_create("resume-me")
        second = self._history.load_or_create("resume-me")
        self.assertEqual(first.id, second.id)
        self.assertEqual(1, len(self._history.list_sessions()))

    def test_set_session_title(self) -> None:
        self._history.create_session("s1")
        self._history.set_session_title("s1", "Renamed")
        self.assertEqual("Renamed", self._history.get_session("s1").title)

        with self.assertRaises(InvalidArgumentError):
            self._history.set_session_title("s1", "  ")
        with self.assertRaises(NotFoundError):
            self._history.set_session_title("missing", "Title")

    def test_parent_from_other_session_is_rejected_without_side_effects(self) -> None:
        (m1,) = self._append_chain("A", "in A")

        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("B", "in B", previous_message_id=m1.id)

        self.assertIsNone(self._history.get_session("B"))

    def test_missing_parent_is_rejected(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("S1", "orphan", previous_message_id="ghost")
        self.assertIsNone(self._history.get_session("S1"))

    def test_invalid_payloads_are_rejected(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("S1", None)
        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("S1", 42)
        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("", "no session")
        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("S1", "x", cumulative_input_length=-1)

    def test_content_without_text_still_gets_a_preview(self) -> None:
        message = self._history.append_message("S1", {"content": 5})

        self.assertEqual({"content": 5}, self._history.get_message(message.id).request)
        self.assertEqual('{"content": 5}', self._history.get_session("S1").preview_text)

    def test_non_json_payload_is_rejected_before_writing(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("S1", {"when": datetime(2026, 1, 1)})
        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("S1", "ok", response=[{1, 2}])

        self.assertIsNone(self._history.get_session("S1"))
        self.assertEqual([], self._history.search_messages("ok"))

    def test_duplicate_message_id_is_rejected(self) -> None:
        self._history.append_message("S1", "first", message_id="fixed")
        with self.assertRaises(InvalidArgumentError):
            self._history.append_message("S1", "second", message_id="fixed")

    def test_cumulative_input_length_accumulates_along_chain(self) -> None:
        m1, m2 = self._append_chain("S1", "abcd", "xy")
        explicit = self._history.append_message("S1", "z", previous_message_id=m2.id, cumulative_input_length=99)

        self.assertEqual(4, m1.cumulative_input_length)
        self.assertEqual(6, m2.cumulative_input_length)
        self.assertEqual(99, explicit.cumulative_input_length)

    def test_created_at_never_moves_backwards(self) -> None:
        (m1,) = self._append_chain("S1", "a")
        self._clock.now -= 60_000
        m2 = self._history.append_message("S1", "b", previous_message_id=m1.id)

        self.assertGreaterEqual(m2.created_at, m1.created_at)
        self.assertEqual(2, m2.seq)

    def test_response_is_written_once(self) -> None:
        (m1,) = self._append_chain("S1", "question")

        updated = self._history.set_response(m1.id, "answer", prior_state={"tokens": 12})

        self.assertEqual("answer", updated.response)
        self.assertEqual({"tokens": 12}, updated.prior_state)
        self.assertIsNotNone(updated.updated_at)
        self.assertEqual(updated, self._history.get_message(m1.id))

        with self.assertRaises(InvalidArgumentError):
            self._history.set_response(m1.id, "second answer")
        self.assertEqual("answer", self._history.get_message(m1.id).response)

    def test_set_response_on_unknown_message_raises(self) -> None:
        with self.assertRaises(NotFoundError):
            self._history.set_response("ghost", "answer")

    def test_payloads_survive_storage(self) -> None:
        request = [{"type": "text", "text": "look"}, {"type": "tool_use", "name": "search"}]
        message = self._history.append_message("S1", request, response={"content": [{"type": "text", "text": "ok"}]})

        stored = self._history.get_message(message.id)

        self.assertEqual(request, stored.request)
        self.assertEqual({"content": [{"type": "text", "text": "ok"}]}, stored.response)
        self.assertEqual("look [tool:search]", self._history.get_session("S1").preview_text)

    def test_writes_are_recorded_as_events(self) -> None:
        (m1,) = self._append_chain("S1", "hello")
        self._history.set_response(m1.id, "hi")

        types = [event["type"] for event in self._events.list_events("S1")]

        self.assertEqual(["message.responded", "message.appended", "session.started"], types)

    def test_closed_store_rejects_calls(self) -> None:
        self._history.close()
        self._history.close()

        with self.assertRaises(StoreClosedError):
            self._history.list_sessions()
