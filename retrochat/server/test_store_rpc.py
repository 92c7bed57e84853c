import unittest
import tempfile
import os
import shutil
import asyncio
import grpc
from retrochat.backend.identity import StaticIdentity
from retrochat.backend.interfaces import STATUS_ERROR, STATUS_READY
from retrochat.backend.persistence import JsonConversationStore
from retrochat.backend.remote import RemoteBackend
from retrochat.config import Settings
from retrochat.engine.sync import SyncEngine
from retrochat.errors import IdentityError, WriteError
from retrochat.models import Participant, PresenceMeta, ScopeFilter
from retrochat.proto import store_pb2
from retrochat.proto.convert import fetch_request
from retrochat.server.hub import Hub
from retrochat.server.main import start_server
from retrochat.server.repo import MessagesRepo, ParticipantsRepo
from retrochat.server.service import StoreService, presence_event_to_pb


class Aborted(Exception):
    pass


class FakeContext:
    def __init__(self):
        self.code = None

    async def abort(self, code, details):
        self.code = code
        raise Aborted(details)


class TestStoreService(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.participants_file = os.path.join(self.temp_dir, "participants.jsonl")
        self.messages_file = os.path.join(self.temp_dir, "messages.jsonl")
        self.participants = ParticipantsRepo(self.participants_file)
        self.messages = MessagesRepo(self.messages_file)
        self.service = StoreService(self.participants, self.messages, Hub())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def call(self, name, request):
        context = FakeContext()

        async def run():
            return await getattr(self.service, name)(request, context)

        try:
            return asyncio.run(run()), None
        except Aborted:
            return None, context.code

    def test_login_rpc(self):
        resp, _ = self.call("Login", store_pb2.LoginRequest(display_name="Alice", register=True))
        alice_id = resp.participant.id
        resp, _ = self.call("Login", store_pb2.LoginRequest(display_name="Alice"))
        self.assertEqual(resp.participant.id, alice_id)

        _, code = self.call("Login", store_pb2.LoginRequest(display_name="Alice", register=True))
        self.assertEqual(code, grpc.StatusCode.ALREADY_EXISTS)
        _, code = self.call("Login", store_pb2.LoginRequest(display_name="Nobody"))
        self.assertEqual(code, grpc.StatusCode.NOT_FOUND)
        _, code = self.call("Login", store_pb2.LoginRequest(display_name="  "))
        self.assertEqual(code, grpc.StatusCode.INVALID_ARGUMENT)

    def insert(self, sender_id, body, recipient_id="", client_token=""):
        return self.call("InsertMessage", store_pb2.InsertMessageRequest(
            sender_id=sender_id, body=body, recipient_id=recipient_id, client_token=client_token))

    def fetch(self, scope_filter, after=None):
        return self.call("FetchMessages", fetch_request(scope_filter, after))

    def test_insert_and_fetch_rpc(self):
        alice = self.participants.register("Alice")
        bob = self.participants.register("Bob")
        carol = self.participants.register("Carol")
        self.insert(alice.id, "lobby")
        first, _ = self.insert(alice.id, "hey", bob.id)
        self.insert(carol.id, "other", bob.id)

        resp, _ = self.fetch(ScopeFilter("direct", bob.id, alice.id))
        self.assertEqual([m.body for m in resp.messages], ["hey"])
        self.assertEqual(resp.messages[0].recipient_id, bob.id)

        resp, _ = self.fetch(ScopeFilter.inbox(alice.id))
        self.assertEqual([m.body for m in resp.messages], ["lobby", "hey"])
        self.assertEqual(resp.messages[0].recipient_id, "")

        resp, _ = self.fetch(ScopeFilter.inbox(bob.id), first.message.created_ts)
        self.assertEqual([m.body for m in resp.messages], ["other"])

    def test_fetch_rejects_bad_filter(self):
        _, code = self.fetch(ScopeFilter("everything", "a"))
        self.assertEqual(code, grpc.StatusCode.INVALID_ARGUMENT)
        _, code = self.fetch(ScopeFilter("inbox"))
        self.assertEqual(code, grpc.StatusCode.INVALID_ARGUMENT)

    def test_insert_validation(self):
        alice = self.participants.register("Alice")
        _, code = self.insert("ghost", "x")
        self.assertEqual(code, grpc.StatusCode.PERMISSION_DENIED)
        _, code = self.insert(alice.id, " ")
        self.assertEqual(code, grpc.StatusCode.INVALID_ARGUMENT)
        _, code = self.insert(alice.id, "x", "ghost")
        self.assertEqual(code, grpc.StatusCode.NOT_FOUND)
        self.assertEqual(len(self.messages), 0)

    def test_insert_is_idempotent_per_token(self):
        alice = self.participants.register("Alice")
        a, _ = self.insert(alice.id, "once", client_token="tok1")
        b, _ = self.insert(alice.id, "once", client_token="tok1")
        self.assertEqual(a.message.id, b.message.id)
        self.assertEqual(a.message.client_token, "tok1")
        self.assertEqual(len(self.messages), 1)

    def test_presence_events_translate(self):
        meta = PresenceMeta("a", "Alice", 5)
        sync = presence_event_to_pb({"type": "sync", "roster": {"a": meta.to_dict()}})
        self.assertEqual(sync.type, store_pb2.SYNC)
        self.assertEqual([m.participant_id for m in sync.metas], ["a"])
        join = presence_event_to_pb({"type": "join", "metas": [meta.to_dict()]})
        self.assertEqual(join.type, store_pb2.JOIN)
        leave = presence_event_to_pb({"type": "leave", "ids": ["a"]})
        self.assertEqual(list(leave.ids), ["a"])

    def test_repos_reload_from_disk(self):
        alice = self.participants.register("Alice")
        m = self.messages.insert(alice, "persisted")
        participants = ParticipantsRepo(self.participants_file)
        messages = MessagesRepo(self.messages_file)
        self.assertEqual(participants.get(alice.id), alice)
        self.assertEqual([x.id for x in messages.all()], [m.id])

    def test_timestamps_strictly_increase(self):
        repo = MessagesRepo(clock=lambda: 1000)
        sender = Participant("a", "A")
        ts = [repo.insert(sender, str(i)).created_ts for i in range(3)]
        self.assertEqual(ts, [1000, 1001, 1002])


class TestGrpcEndToEnd(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.server, self.service, port = await start_server(port=0)
        self.target = f"127.0.0.1:{port}"
        self.backends = []
        self.engines = []

    async def asyncTearDown(self):
        for engine in self.engines:
            await engine.stop()
        for backend in self.backends:
            await backend.close()
        await self.server.stop(None)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def backend(self):
        b = RemoteBackend(self.target, reconnect_delay=0.05, call_timeout=2.0)
        self.backends.append(b)
        return b

    def engine(self, backend, who):
        settings = Settings(poll_interval=0.1, presence_heartbeat=60.0, write_timeout=2.0)
        e = SyncEngine(backend, backend, backend, JsonConversationStore(self.temp_dir),
                       StaticIdentity(who), settings)
        self.engines.append(e)
        return e

    async def wait_for(self, predicate, timeout=3.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                self.fail("condition not met in time")
            await asyncio.sleep(0.02)

    async def test_login(self):
        b = self.backend()
        alice = await b.login("Alice", register=True)
        self.assertEqual(await b.login("Alice"), alice)
        with self.assertRaises(IdentityError):
            await b.login("Nobody")
        self.assertEqual(await b.fetch_participants(), [alice])

    async def test_insert_from_unknown_sender_fails(self):
        b = self.backend()
        with self.assertRaises(WriteError):
            await b.insert_message(Participant("ghost", "Ghost"), "boo")

    async def test_watch_survives_failing_handler(self):
        b = self.backend()
        alice = await b.login("Alice", register=True)
        bodies, statuses = [], []

        def on_event(m):
            if not bodies:
                bodies.append(None)
                raise RuntimeError("handler bug")
            bodies.append(m.body)

        sub = await b.subscribe_to_message_changes(on_event, statuses.append)
        await self.wait_for(lambda: STATUS_READY in statuses)
        await b.insert_message(alice, "first")
        await self.wait_for(lambda: statuses.count(STATUS_READY) == 2)
        self.assertIn(STATUS_ERROR, statuses)
        await b.insert_message(alice, "second")
        await self.wait_for(lambda: "second" in bodies)
        await b.unsubscribe(sub)
        self.assertTrue(sub.task.done())

    async def test_two_clients_chat(self):
        ba, bb = self.backend(), self.backend()
        alice = await ba.login("Alice", register=True)
        bob = await bb.login("Bob", register=True)
        a = self.engine(ba, alice)
        b = self.engine(bb, bob)
        await a.start()
        await b.start()
        await self.wait_for(lambda: a.status == "connected" and b.status == "connected")

        await b.send("hello lobby")
        await self.wait_for(lambda: [m.body for m in a.messages] == ["hello lobby"])

        await a.open_conversation(bob.id)
        await a.send("hi bob")
        await self.wait_for(lambda: b.unread.get(alice.id) == 1)
        self.assertIn(alice.id, b.active_conversations)
        self.assertEqual([m.body for m in a.messages], ["hi bob"])

        await self.wait_for(lambda: bob.id in a.online)
        self.assertEqual(a.online_participants(), [bob])
        await b.stop()
        await self.wait_for(lambda: bob.id not in a.online)


if __name__ == '__main__':
    unittest.main()
