import random
import unittest
from retrochat.engine.watermark import Watermark
from retrochat.models import Message, Participant


def at(ts):
    return Message(id=f"m{ts}", sender_id="b", sender_name="b", body="x", created_ts=ts)


class TestWatermark(unittest.TestCase):
    def test_never_moves_backwards(self):
        w = Watermark()
        self.assertIsNone(w.value)
        w.advance(10)
        w.advance(5)
        w.advance(None)
        self.assertEqual(w.value, 10)

    def test_max_over_batches_in_any_order(self):
        batches = [[at(3), at(7)], [at(1)], [at(12), at(2)], []]
        for _ in range(5):
            random.shuffle(batches)
            w = Watermark(0)
            for b in batches:
                w.advance_past(b)
            self.assertEqual(w.value, 12)

    def test_provisional_messages_do_not_advance(self):
        w = Watermark(0)
        p = Message.provisional_for(Participant("a", "A"), "hi")
        w.advance_past([p])
        self.assertEqual(w.value, 0)


if __name__ == '__main__':
    unittest.main()
