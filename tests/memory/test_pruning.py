from chat_history.memory import BrokenChainError, RestoreStatus, prune_memory, restore_checkpoint
from tests.memory.base import MemoryStoreTestCase


class PruningTests(MemoryStoreTestCase):
    def test_retention_days_prunes_old_sessions(self) -> None:
        self._history.append_message("old", "old message")
        self._history.append_message("fresh", "fresh message")
        self._store.execute("UPDATE sessions SET last_activity = 0 WHERE id = 'old'")
        self._store.commit()

        result = prune_memory(
            self._store,
            max_sessions=200,
            max_messages_per_session=5000,
            retention_days=1,
            clock=lambda: self._clock.now,
        )

        self.assertIsNone(self._history.get_session("old"))
        self.assertIsNotNone(self._history.get_session("fresh"))
        self.assertEqual(1, result.sessions_removed)
        self.assertEqual(1, result.messages_removed)
        self.assertEqual([], self._events.list_events("old"))
        self.assertNotEqual([], self._events.list_events("fresh"))

    def test_max_messages_per_session_keeps_latest(self) -> None:
        messages = self._append_chain("msg-cap", *(f"m{i}" for i in range(5)))
        checkpoint = self._checkpoints.create_checkpoint("first", messages[0])

        result = prune_memory(
            self._store,
            max_sessions=200,
            max_messages_per_session=2,
            retention_days=0,
        )

        rows = self._store.fetch_all(
            "SELECT seq FROM messages WHERE session_id = ? ORDER BY seq ASC",
            ("msg-cap",),
        )
        self.assertEqual([4, 5], [int(r["seq"]) for r in rows])
        self.assertEqual(3, result.messages_removed)
        self.assertEqual(0, result.sessions_removed)

        with self.assertRaises(BrokenChainError) as ctx:
            self._history.get_chat_history_by_message_id(messages[-1].id)
        self.assertEqual([messages[3].id, messages[4].id], [m.id for m in ctx.exception.partial])

        outcome = restore_checkpoint(self._checkpoints, self._history, checkpoint.id)
        self.assertEqual(RestoreStatus.DANGLING, outcome.status)

    def test_max_sessions_keeps_most_recent(self) -> None:
        self._history.create_session("s1")
        self._history.create_session("s2")
        self._history.create_session("s3")
        self._store.execute("UPDATE sessions SET last_activity = 1 WHERE id = 's1'")
        self._store.execute("UPDATE sessions SET last_activity = 2 WHERE id = 's2'")
        self._store.execute("UPDATE sessions SET last_activity = 3 WHERE id = 's3'")
        self._store.commit()

        result = prune_memory(
            self._store,
            max_sessions=2,
            max_messages_per_session=5000,
            retention_days=0,
        )

        rows = self._store.fetch_all("SELECT id FROM sessions ORDER BY id ASC")
        self.assertEqual(["s2", "s3"], [str(r["id"]) for r in rows])
        self.assertEqual(1, result.sessions_removed)

    def test_pruning_keeps_checkpoint_rows(self) -> None:
        (m1,) = self._append_chain("gone", "bye")
        self._checkpoints.create_checkpoint("survivor", m1)
        self._store.execute("UPDATE sessions SET last_activity = 0 WHERE id = 'gone'")
        self._store.commit()

        prune_memory(
            self._store,
            max_sessions=0,
            max_messages_per_session=0,
            retention_days=1,
            clock=lambda: self._clock.now,
        )

        self.assertIsNone(self._history.get_message(m1.id))
        self.assertEqual(["survivor"], [c.label for c in self._checkpoints.list_checkpoint()])
