import shutil
import tempfile
import unittest
from retrochat.backend.persistence import JsonConversationStore
from retrochat.engine.conversations import ActiveConversationRegistry, UnreadCounter


class TestUnreadCounter(unittest.TestCase):
    def test_increment_reset_discard(self):
        c = UnreadCounter()
        self.assertEqual(c.increment("bob"), 1)
        self.assertEqual(c.increment("bob"), 2)
        c.reset("bob")
        self.assertEqual(c.get("bob"), 0)
        c.increment("carol")
        c.discard("carol")
        self.assertEqual(c.snapshot(), {"bob": 0})


class TestActiveConversationRegistry(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_survives_reload(self):
        reg = ActiveConversationRegistry(JsonConversationStore(self.temp_dir))
        reg.load("alice")
        self.assertTrue(reg.add("bob"))
        self.assertFalse(reg.add("bob"))
        reg.add("carol")
        reg.remove("carol")

        again = ActiveConversationRegistry(JsonConversationStore(self.temp_dir))
        again.load("alice")
        self.assertEqual(again.ids, frozenset({"bob"}))
        self.assertIn("bob", again)

    def test_sets_are_per_participant(self):
        store = JsonConversationStore(self.temp_dir)
        reg = ActiveConversationRegistry(store)
        reg.load("alice")
        reg.add("bob")
        other = ActiveConversationRegistry(store)
        other.load("bob")
        self.assertEqual(other.ids, frozenset())

    def test_use_before_load(self):
        reg = ActiveConversationRegistry(JsonConversationStore(self.temp_dir))
        with self.assertRaises(RuntimeError):
            reg.add("bob")


if __name__ == '__main__':
    unittest.main()
