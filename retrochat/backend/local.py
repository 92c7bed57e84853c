"""In-process backend: the store, its hub and the engine share one event loop.

Used by the test-suite and the offline demo. Besides implementing the
query / write / push interfaces it can simulate a flaky environment:
``set_push_online(False)`` silently drops live message events,
``write_failure`` makes inserts fail, ``query_failure`` makes queries
fail and ``write_delay`` slows inserts down.
"""
import asyncio
import contextlib
from typing import Dict, List, Optional

from ..errors import ChannelError, WriteError
from ..models import Message, Participant, PresenceMeta, ScopeFilter
from ..server.hub import Hub
from ..server.repo import MessagesRepo, ParticipantsRepo
from ..utils.logger import setup_logger
from .interfaces import (
    PushBackend,
    QueryBackend,
    STATUS_CONNECTING,
    STATUS_ERROR,
    STATUS_READY,
    WriteBackend,
)

logger = setup_logger('retrochat.backend.local')


class LocalSubscription:
    def __init__(self, sub_id: int, on_status):
        self.sub_id = sub_id
        self.on_status = on_status
        self.task: Optional[asyncio.Task] = None


class LocalBackend(QueryBackend, WriteBackend, PushBackend):

    def __init__(self, participants: Optional[ParticipantsRepo] = None,
                 messages: Optional[MessagesRepo] = None, hub: Optional[Hub] = None):
        self.participants = participants or ParticipantsRepo()
        self.messages = messages or MessagesRepo()
        self.hub = hub or Hub()
        self.push_online = True
        self.write_failure: Optional[str] = None
        self.query_failure: Optional[str] = None
        self.write_delay = 0.0
        self.query_count = 0
        self._message_subs: Dict[int, LocalSubscription] = {}
        self._presence_subs: Dict[int, LocalSubscription] = {}

    def register(self, display_name: str) -> Participant:
        return self.participants.register(display_name)

    # Query

    async def fetch_messages(self, scope_filter: ScopeFilter,
                             after: Optional[int] = None) -> List[Message]:
        self.query_count += 1
        if self.query_failure:
            raise ChannelError(self.query_failure)
        return [_copy(m) for m in self.messages.query(scope_filter, after)]

    async def fetch_participants(self) -> List[Participant]:
        if self.query_failure:
            raise ChannelError(self.query_failure)
        return self.participants.all()

    # Write

    async def insert_message(self, sender: Participant, body: str,
                             recipient_id: Optional[str] = None,
                             client_token: Optional[str] = None) -> Message:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.write_failure:
            raise WriteError(self.write_failure)
        m = self.messages.insert(sender, body, recipient_id, client_token)
        await self.hub.publish(m)
        return _copy(m)

    # Push

    async def subscribe_to_message_changes(self, on_event, on_status):
        sub_id, q = await self.hub.register_queue()
        sub = LocalSubscription(sub_id, on_status)
        sub.task = asyncio.ensure_future(self._pump_messages(sub, q, on_event))
        self._message_subs[sub_id] = sub
        return sub

    async def subscribe_to_presence(self, on_sync, on_join, on_leave, on_status):
        sub_id, q = await self.hub.register_presence_queue()
        sub = LocalSubscription(sub_id, on_status)
        sub.task = asyncio.ensure_future(self._pump_presence(sub, q, on_sync, on_join, on_leave))
        self._presence_subs[sub_id] = sub
        return sub

    async def announce_presence(self, participant_id: str, display_name: str):
        await self.hub.track(PresenceMeta(participant_id, display_name))

    async def announce_departure(self, participant_id: str):
        await self.hub.untrack(participant_id)

    async def unsubscribe(self, handle: LocalSubscription):
        self._message_subs.pop(handle.sub_id, None)
        self._presence_subs.pop(handle.sub_id, None)
        if handle.task is not None:
            handle.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await handle.task
        await self.hub.remove_queue(handle.sub_id)

    @property
    def subscriber_count(self) -> int:
        return len(self._message_subs) + len(self._presence_subs)

    def set_push_online(self, online: bool):
        """Simulate a live message feed outage or its recovery."""
        if online == self.push_online:
            return
        self.push_online = online
        loop = asyncio.get_running_loop()
        for sub in list(self._message_subs.values()):
            if online:
                loop.call_soon(sub.on_status, STATUS_CONNECTING)
                loop.call_soon(sub.on_status, STATUS_READY)
            else:
                loop.call_soon(sub.on_status, STATUS_ERROR)
        logger.info(f"Push feed {'restored' if online else 'interrupted'}")

    async def _pump_messages(self, sub: LocalSubscription, q: asyncio.Queue, on_event):
        sub.on_status(STATUS_READY if self.push_online else STATUS_ERROR)
        while True:
            event = await q.get()
            if not self.push_online:
                logger.debug(f"Push outage: dropped {event['message']['id']}")
                continue
            on_event(Message.from_dict(event["message"]))

    async def _pump_presence(self, sub: LocalSubscription, q: asyncio.Queue,
                             on_sync, on_join, on_leave):
        sub.on_status(STATUS_READY)
        while True:
            event = await q.get()
            if event["type"] == "sync":
                on_sync({pid: PresenceMeta.from_dict(meta) for pid, meta in event["roster"].items()})
            elif event["type"] == "join":
                on_join([PresenceMeta.from_dict(meta) for meta in event["metas"]])
            elif event["type"] == "leave":
                on_leave(list(event["ids"]))


def _copy(m: Message) -> Message:
    return Message.from_dict(m.to_dict())
