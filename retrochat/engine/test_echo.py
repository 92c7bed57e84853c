import asyncio
import unittest
from retrochat.engine.echo import OptimisticEchoManager
from retrochat.engine.scope import ScopeSelector
from retrochat.engine.store import MessageStore
from retrochat.errors import ValidationError, WriteError
from retrochat.models import Message, Participant, Scope

ALICE = Participant("alice", "Alice")


class FakeWriter:
    def __init__(self):
        self.calls = []
        self.fail = None
        self.gate = None

    async def insert_message(self, sender, body, recipient_id=None, client_token=None):
        self.calls.append((sender.id, body, recipient_id, client_token))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise WriteError(self.fail)
        return Message(id=f"srv{len(self.calls)}", sender_id=sender.id, sender_name=sender.display_name,
                       body=body, created_ts=1000 + len(self.calls), recipient_id=recipient_id,
                       client_token=client_token)


class TestOptimisticEcho(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = MessageStore()
        self.scope = ScopeSelector()
        self.writer = FakeWriter()
        self.confirmed = []

        def accept(m):
            self.confirmed.append(m)
            self.store.add_confirmed(m)

        self.echo = OptimisticEchoManager(self.store, self.scope, self.writer, accept,
                                          max_length=10, write_timeout=1.0)

    async def test_rejects_empty_and_oversized_without_io(self):
        for text in ("", "   ", "x" * 11):
            with self.assertRaises(ValidationError):
                await self.echo.send(ALICE, text)
        self.assertEqual(self.writer.calls, [])
        self.assertEqual(len(self.store), 0)

    async def test_body_is_trimmed_and_token_forwarded(self):
        m = await self.echo.send(ALICE, "  hi  ")
        self.assertEqual(self.writer.calls[0][1], "hi")
        self.assertIsNotNone(self.writer.calls[0][3])
        self.assertEqual(m.client_token, self.writer.calls[0][3])

    async def test_provisional_then_confirmed(self):
        self.writer.gate = asyncio.Event()
        task = asyncio.ensure_future(self.echo.send(ALICE, "hello"))
        await asyncio.sleep(0)
        self.assertEqual(len(self.store.provisional()), 1)
        self.assertEqual(len(self.echo.pending), 1)
        self.writer.gate.set()
        await task
        self.assertEqual([m.id for m in self.store.messages], ["srv1"])
        self.assertEqual(self.echo.pending, [])

    async def test_failure_rolls_back(self):
        self.writer.fail = "rejected"
        with self.assertRaises(WriteError):
            await self.echo.send(ALICE, "hello")
        self.assertEqual(len(self.store), 0)
        self.assertEqual(self.confirmed, [])

    async def test_timeout_is_a_write_error(self):
        self.writer.gate = asyncio.Event()
        self.echo.write_timeout = 0.05
        with self.assertRaises(WriteError):
            await self.echo.send(ALICE, "hello")
        self.assertEqual(len(self.store), 0)

    async def test_cancelled_send_rolls_back(self):
        self.writer.gate = asyncio.Event()
        task = asyncio.ensure_future(self.echo.send(ALICE, "hello"))
        await asyncio.sleep(0)
        self.assertEqual(len(self.store.provisional()), 1)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(len(self.store), 0)
        self.assertEqual(self.echo.pending, [])
        self.assertEqual(self.confirmed, [])

    async def test_unexpected_writer_error_rolls_back(self):
        async def broken(sender, body, recipient_id=None, client_token=None):
            raise RuntimeError("socket closed")

        self.writer.insert_message = broken
        with self.assertRaises(RuntimeError):
            await self.echo.send(ALICE, "hello")
        self.assertEqual(len(self.store), 0)
        self.assertEqual(self.echo.pending, [])

    async def test_provisional_callback_only_for_displayed_entries(self):
        shown = []
        self.echo._on_provisional = shown.append
        await self.echo.send(ALICE, "here")
        self.scope.set(Scope.direct("bob"))
        await self.echo.send(ALICE, "there", Scope.public())
        self.assertEqual([m.body for m in shown], ["here"])
        self.assertTrue(shown[0].provisional)

    async def test_scope_switched_before_send_is_not_displayed(self):
        self.scope.set(Scope.direct("bob"))
        self.writer.gate = asyncio.Event()
        task = asyncio.ensure_future(self.echo.send(ALICE, "hello", Scope.public()))
        await asyncio.sleep(0)
        self.assertEqual(len(self.store), 0)
        self.writer.gate.set()
        await task
        self.assertIsNone(self.writer.calls[0][2])


if __name__ == '__main__':
    unittest.main()
