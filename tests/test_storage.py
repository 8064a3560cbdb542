import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from marketchat.models import StorageTier
from marketchat.storage import (
    LocalMessageStore,
    MemoryKeyValueStorage,
    SQLiteKeyValueStorage,
)
from tests.fakes import BrokenStorage, RecordingStorage, make_message


class TestLocalMessageStore(unittest.TestCase):
    def setUp(self) -> None:
        self.storage = MemoryKeyValueStorage()
        self.store = LocalMessageStore(self.storage)

    def test_append_is_idempotent(self) -> None:
        message = make_message("m1", "alice", "bob", "Hi")

        self.assertTrue(self.store.append("alice", message))
        once = self.storage.get("chat_messages_alice")
        self.assertTrue(self.store.append("alice", message))

        self.assertEqual(self.storage.get("chat_messages_alice"), once)
        self.assertEqual(self.store.get_all("alice"), [message])

    def test_duplicate_id_keeps_existing_entry(self) -> None:
        original = make_message("m1", "alice", "bob", "original", is_read=True)
        self.store.append("alice", original)

        self.store.append("alice", make_message("m1", "alice", "bob", "changed"))

        stored = self.store.get_all("alice")
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0].body, "original")
        self.assertTrue(stored[0].is_read)

    def test_messages_are_kept_in_created_at_order(self) -> None:
        for message_id, minute in (("m3", 3), ("m1", 1), ("m2", 2)):
            self.store.append("alice", make_message(message_id, "alice", "bob", minute=minute))

        self.assertEqual([m.id for m in self.store.get_all("alice")], ["m1", "m2", "m3"])
        self.assertTrue(
            all(m.storage_tier is StorageTier.LOCAL for m in self.store.get_all("alice"))
        )

    def test_get_all_unknown_partner_is_empty(self) -> None:
        self.assertEqual(self.store.get_all("nobody"), [])

    def test_records_are_versioned(self) -> None:
        self.store.append("alice", make_message("m1", "alice", "bob", "Hi"))

        payload = json.loads(self.storage.get("chat_messages_alice"))

        self.assertEqual(payload["version"], 1)
        self.assertEqual(payload["messages"][0]["message"], "Hi")

    def test_unversioned_array_is_still_readable(self) -> None:
        legacy = [make_message("m1", "alice", "bob", "Hi").to_row()]
        self.storage.set("chat_messages_alice", json.dumps(legacy))

        self.assertEqual([m.id for m in self.store.get_all("alice")], ["m1"])

    def test_corrupt_record_reads_as_empty(self) -> None:
        self.storage.set("chat_messages_alice", "{not json")

        with self.assertLogs("marketchat.storage", level="WARNING"):
            self.assertEqual(self.store.get_all("alice"), [])

    def test_malformed_rows_are_skipped(self) -> None:
        good = make_message("m1", "alice", "bob").to_row()
        record = {"version": 1, "messages": [good, {"id": "m2"}]}
        self.storage.set("chat_messages_alice", json.dumps(record))

        with self.assertLogs("marketchat.storage", level="WARNING"):
            messages = self.store.get_all("alice")
        self.assertEqual([m.id for m in messages], ["m1"])

    def test_unknown_version_is_not_overwritten(self) -> None:
        raw = json.dumps({"version": 99, "messages": []})
        self.storage.set("chat_messages_alice", raw)

        with self.assertLogs("marketchat.storage", level="WARNING"):
            self.assertEqual(self.store.get_all("alice"), [])
        with self.assertLogs("marketchat.storage", level="ERROR"):
            self.assertFalse(self.store.append("alice", make_message("m1", "alice", "bob")))
        self.assertEqual(self.storage.get("chat_messages_alice"), raw)

    def test_write_failure_is_reported_not_raised(self) -> None:
        store = LocalMessageStore(RecordingStorage(fail_on_write={1}))

        with self.assertLogs("marketchat.storage", level="ERROR"):
            self.assertFalse(store.append("alice", make_message("m1", "alice", "bob")))
        self.assertEqual(store.get_all("alice"), [])

    def test_unavailable_storage_never_raises(self) -> None:
        store = LocalMessageStore(BrokenStorage())

        with self.assertLogs("marketchat.storage", level="WARNING"):
            self.assertEqual(store.get_all("alice"), [])
            self.assertFalse(store.append("alice", make_message("m1", "alice", "bob")))
            self.assertEqual(dict(store.get_all_conversations()), {})
            self.assertFalse(store.remove("alice"))

    def test_get_all_conversations_maps_partners_lazily(self) -> None:
        self.store.append("alice", make_message("m1", "alice", "bob"))
        self.store.append("carol", make_message("m2", "carol", "bob", minute=1))
        self.storage.set("unrelated_key", "value")

        conversations = self.store.get_all_conversations()

        self.assertEqual(sorted(conversations), ["alice", "carol"])
        self.assertEqual(len(conversations), 2)
        self.assertEqual([m.id for m in conversations["carol"]], ["m2"])
        with self.assertRaises(KeyError):
            conversations["dave"]

    def test_remove_clears_conversation(self) -> None:
        self.store.append("alice", make_message("m1", "alice", "bob"))

        self.assertTrue(self.store.remove("alice"))

        self.assertEqual(self.store.get_all("alice"), [])
        self.assertNotIn("alice", self.store.get_all_conversations())


class TestSQLiteKeyValueStorage(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = TemporaryDirectory()
        self.db_path = Path(self.tempdir.name) / "nested" / "archive.sqlite3"

    def tearDown(self) -> None:
        self.tempdir.cleanup()

    def test_archive_survives_reopen(self) -> None:
        with SQLiteKeyValueStorage(self.db_path) as storage:
            store = LocalMessageStore(storage)
            self.assertTrue(store.append("alice", make_message("m1", "alice", "bob", "Hi")))
            self.assertTrue(store.append("alice", make_message("m2", "bob", "alice", minute=1)))

        with SQLiteKeyValueStorage(self.db_path) as storage:
            store = LocalMessageStore(storage)
            self.assertEqual([m.id for m in store.get_all("alice")], ["m1", "m2"])
            self.assertEqual(list(store.get_all_conversations()), ["alice"])

    def test_set_overwrites_and_delete_removes(self) -> None:
        with SQLiteKeyValueStorage(self.db_path) as storage:
            storage.set("k", "one")
            storage.set("k", "two")
            self.assertEqual(storage.get("k"), "two")
            self.assertEqual(list(storage.keys()), ["k"])

            storage.delete("k")
            self.assertIsNone(storage.get("k"))


if __name__ == "__main__":
    unittest.main()
