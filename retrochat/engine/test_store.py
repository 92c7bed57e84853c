import random
import unittest
from retrochat.engine.store import MessageStore
from retrochat.models import Message, Participant

ALICE = Participant("alice", "Alice")


def confirmed(mid, ts, sender="bob", body="hi", token=None):
    return Message(id=mid, sender_id=sender, sender_name=sender, body=body,
                   created_ts=ts, client_token=token)


class TestMessageStore(unittest.TestCase):
    def setUp(self):
        self.store = MessageStore()

    def test_same_event_twice_is_kept_once(self):
        m = confirmed("m1", 10)
        self.assertTrue(self.store.add_confirmed(m))
        self.assertFalse(self.store.add_confirmed(confirmed("m1", 10)))
        self.assertEqual(len(self.store), 1)

    def test_sorted_regardless_of_arrival_order(self):
        batch = [confirmed(f"m{i}", ts) for i, ts in enumerate([50, 10, 40, 20, 30])]
        for _ in range(5):
            random.shuffle(batch)
            store = MessageStore()
            for m in batch:
                store.add_confirmed(m)
            self.assertEqual([m.created_ts for m in store.messages], [10, 20, 30, 40, 50])

    def test_equal_timestamps_ordered_by_id(self):
        self.store.add_confirmed(confirmed("b", 5))
        self.store.add_confirmed(confirmed("a", 5))
        self.assertEqual([m.id for m in self.store.messages], ["a", "b"])

    def test_confirmed_replaces_provisional_by_token(self):
        p = Message.provisional_for(ALICE, "hello")
        self.store.add_provisional(p)
        m = confirmed("srv1", p.created_ts + 1, sender="alice", body="hello", token=p.client_token)
        self.store.add_confirmed(m)
        self.assertEqual([x.id for x in self.store.messages], ["srv1"])
        self.assertEqual(self.store.provisional(), [])

    def test_identical_texts_reconcile_one_to_one(self):
        p1 = Message.provisional_for(ALICE, "same")
        p2 = Message.provisional_for(ALICE, "same")
        self.store.add_provisional(p1)
        self.store.add_provisional(p2)
        self.store.add_confirmed(confirmed("s2", 100, "alice", "same", p2.client_token))
        self.assertEqual([x.id for x in self.store.provisional()], [p1.id])
        self.store.add_confirmed(confirmed("s1", 101, "alice", "same", p1.client_token))
        self.assertEqual(self.store.provisional(), [])
        self.assertEqual(len(self.store), 2)

    def test_tokenless_row_falls_back_to_sender_and_body(self):
        p = Message.provisional_for(ALICE, "hello")
        self.store.add_provisional(p)
        self.store.add_confirmed(confirmed("srv1", 1, sender="alice", body="hello"))
        self.assertEqual([x.id for x in self.store.messages], ["srv1"])

    def test_other_senders_text_does_not_reconcile(self):
        p = Message.provisional_for(ALICE, "hello")
        self.store.add_provisional(p)
        self.store.add_confirmed(confirmed("srv1", 1, sender="bob", body="hello"))
        self.assertEqual(len(self.store), 2)

    def test_add_provisional_rejects_confirmed(self):
        with self.assertRaises(ValueError):
            self.store.add_provisional(confirmed("m1", 1))

    def test_merge_returns_only_new(self):
        self.store.add_confirmed(confirmed("m1", 1))
        new = self.store.merge([confirmed("m1", 1), confirmed("m2", 2)])
        self.assertEqual([m.id for m in new], ["m2"])

    def test_remove_and_clear(self):
        self.store.add_confirmed(confirmed("m1", 1))
        self.assertTrue(self.store.remove("m1"))
        self.assertFalse(self.store.remove("m1"))
        self.store.add_confirmed(confirmed("m2", 2))
        self.store.clear()
        self.assertEqual(self.store.messages, [])
        self.assertNotIn("m2", self.store)


if __name__ == '__main__':
    unittest.main()
