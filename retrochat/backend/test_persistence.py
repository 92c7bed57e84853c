import os
import shutil
import tempfile
import unittest
from retrochat.backend.identity import StaticIdentity
from retrochat.backend.persistence import JsonConversationStore
from retrochat.errors import IdentityError
from retrochat.models import Participant


class TestJsonConversationStore(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = JsonConversationStore(os.path.join(self.temp_dir, "conversations"))

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_file_is_empty(self):
        self.assertEqual(self.store.load_active_conversations("alice"), set())

    def test_save_then_load(self):
        self.store.save_active_conversations("alice", {"bob", "carol"})
        self.store.save_active_conversations("alice", {"bob"})
        self.assertEqual(self.store.load_active_conversations("alice"), {"bob"})
        self.assertFalse(os.path.exists(self.store._path("alice") + ".tmp"))

    def test_corrupt_file_is_treated_as_empty(self):
        with open(self.store._path("alice"), "w", encoding="utf-8") as f:
            f.write("{not json")
        self.assertEqual(self.store.load_active_conversations("alice"), set())


class TestStaticIdentity(unittest.TestCase):
    def test_signed_in_and_out(self):
        identity = StaticIdentity(Participant("a1", "Alice"))
        self.assertEqual(identity.current_participant_id(), "a1")
        self.assertEqual(identity.current_display_name(), "Alice")
        identity.sign_out()
        with self.assertRaises(IdentityError):
            identity.current_participant_id()


if __name__ == '__main__':
    unittest.main()
