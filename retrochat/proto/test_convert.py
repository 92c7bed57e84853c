import unittest
from retrochat.models import Message, PresenceMeta, ScopeFilter
from retrochat.proto import store_pb2, store_pb2_grpc
from retrochat.proto.convert import (
    fetch_request,
    filter_from_pb,
    filter_to_pb,
    message_from_pb,
    message_to_pb,
    meta_from_pb,
    meta_to_pb,
)


class TestConvert(unittest.TestCase):
    def test_public_message_has_no_recipient(self):
        m = Message("m1", "a", "Alice", "héllo", 1000)
        pb = message_to_pb(m)
        self.assertEqual(pb.recipient_id, "")
        wire = store_pb2.ChatMessage.FromString(pb.SerializeToString())
        self.assertEqual(message_from_pb(wire), m)

    def test_direct_message_keeps_recipient_and_token(self):
        m = Message("m2", "a", "Alice", "psst", 1001, recipient_id="b", client_token="tok")
        back = message_from_pb(message_to_pb(m))
        self.assertEqual(back.recipient_id, "b")
        self.assertEqual(back.client_token, "tok")
        self.assertFalse(back.provisional)

    def test_filter_and_fetch_request(self):
        f = ScopeFilter("direct", "a", "b")
        self.assertEqual(filter_from_pb(filter_to_pb(f)), f)
        self.assertEqual(filter_from_pb(filter_to_pb(ScopeFilter("public"))), ScopeFilter("public"))
        self.assertFalse(fetch_request(f).has_after)
        req = fetch_request(f, 0)
        self.assertTrue(req.has_after)
        self.assertEqual(req.after, 0)

    def test_presence_meta(self):
        meta = PresenceMeta("a", "Alice", 42)
        self.assertEqual(meta_from_pb(meta_to_pb(meta)), meta)

    def test_event_types(self):
        self.assertEqual(store_pb2.READY, 0)
        event = store_pb2.PresenceEvent(type=store_pb2.LEAVE, ids=["a"])
        self.assertEqual(store_pb2.PresenceEvent.FromString(event.SerializeToString()).ids, ["a"])
        self.assertEqual(store_pb2_grpc.SERVICE_NAME, "retrochat.Store")


if __name__ == '__main__':
    unittest.main()
