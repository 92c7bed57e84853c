"""gRPC client backend talking to ``retrochat.server``.

Calls go through the generated ``StoreStub`` on a ``grpc.aio`` channel.
Live subscriptions run as background tasks that resubscribe after
``reconnect_delay`` whenever the stream breaks; every break and every
resubscription is reported through ``on_status``.
"""
import asyncio
import contextlib
from typing import List, Optional

import grpc
from grpc import aio

from ..errors import ChannelError, IdentityError, WriteError
from ..models import Message, Participant, PresenceMeta, ScopeFilter
from ..proto import store_pb2, store_pb2_grpc
from ..proto.convert import fetch_request, message_from_pb, meta_from_pb, meta_to_pb, participant_from_pb
from ..utils.logger import setup_logger
from .interfaces import (
    PushBackend,
    QueryBackend,
    STATUS_CLOSED,
    STATUS_CONNECTING,
    STATUS_ERROR,
    STATUS_READY,
    STATUS_TIMED_OUT,
    WriteBackend,
)

logger = setup_logger('retrochat.backend.remote')


class RemoteSubscription:
    def __init__(self, name: str):
        self.name = name
        self.task: Optional[asyncio.Task] = None
        self.call = None
        self.closed = False


class RemoteBackend(QueryBackend, WriteBackend, PushBackend):
    """Store access over gRPC.

    Args:
        target (str): ``host:port`` of the store server
        reconnect_delay (float): Seconds to wait before resubscribing a broken stream
        call_timeout (float): Deadline for unary calls
    """

    def __init__(self, target: str, reconnect_delay: float = 1.0, call_timeout: float = 10.0):
        self.target = target
        self.reconnect_delay = reconnect_delay
        self.call_timeout = call_timeout
        self.channel = aio.insecure_channel(target)
        self.stub = store_pb2_grpc.StoreStub(self.channel)

    async def close(self):
        await self.channel.close()

    async def login(self, display_name: str, register: bool = False) -> Participant:
        """Resolve the local participant by display name.

        Raises:
            IdentityError: If the name is unknown, taken, or the server is unreachable
        """
        try:
            resp = await self.stub.Login(
                store_pb2.LoginRequest(display_name=display_name, register=register),
                timeout=self.call_timeout)
        except grpc.aio.AioRpcError as e:
            raise IdentityError(e.details() or str(e.code())) from e
        return participant_from_pb(resp.participant)

    # Query

    async def fetch_messages(self, scope_filter: ScopeFilter,
                             after: Optional[int] = None) -> List[Message]:
        try:
            resp = await self.stub.FetchMessages(fetch_request(scope_filter, after),
                                                 timeout=self.call_timeout)
        except grpc.aio.AioRpcError as e:
            raise ChannelError(f"FetchMessages failed: {e.code().name} {e.details()}") from e
        return [message_from_pb(m) for m in resp.messages]

    async def fetch_participants(self) -> List[Participant]:
        try:
            resp = await self.stub.ListParticipants(store_pb2.ListParticipantsRequest(),
                                                    timeout=self.call_timeout)
        except grpc.aio.AioRpcError as e:
            raise ChannelError(f"ListParticipants failed: {e.code().name} {e.details()}") from e
        return [participant_from_pb(p) for p in resp.participants]

    # Write

    async def insert_message(self, sender: Participant, body: str,
                             recipient_id: Optional[str] = None,
                             client_token: Optional[str] = None) -> Message:
        request = store_pb2.InsertMessageRequest(
            sender_id=sender.id,
            body=body,
            recipient_id=recipient_id or "",
            client_token=client_token or "",
        )
        try:
            resp = await self.stub.InsertMessage(request, timeout=self.call_timeout)
        except grpc.aio.AioRpcError as e:
            raise WriteError(f"InsertMessage failed: {e.code().name} {e.details()}") from e
        return message_from_pb(resp.message)

    # Push

    async def subscribe_to_message_changes(self, on_event, on_status):
        def handle(event):
            if event.type == store_pb2.INSERT:
                on_event(message_from_pb(event.message))

        return self._start_watch("WatchMessages", handle, on_status)

    async def subscribe_to_presence(self, on_sync, on_join, on_leave, on_status):
        def handle(event):
            if event.type == store_pb2.SYNC:
                on_sync({meta.participant_id: meta_from_pb(meta) for meta in event.metas})
            elif event.type == store_pb2.JOIN:
                on_join([meta_from_pb(meta) for meta in event.metas])
            elif event.type == store_pb2.LEAVE:
                on_leave(list(event.ids))

        return self._start_watch("WatchPresence", handle, on_status)

    async def announce_presence(self, participant_id: str, display_name: str):
        meta = PresenceMeta(participant_id, display_name)
        try:
            await self.stub.Track(meta_to_pb(meta), timeout=self.call_timeout)
        except grpc.aio.AioRpcError as e:
            raise ChannelError(f"Track failed: {e.code().name}") from e

    async def announce_departure(self, participant_id: str):
        try:
            await self.stub.Untrack(store_pb2.UntrackRequest(participant_id=participant_id),
                                    timeout=self.call_timeout)
        except grpc.aio.AioRpcError as e:
            raise ChannelError(f"Untrack failed: {e.code().name}") from e

    async def unsubscribe(self, handle: RemoteSubscription):
        handle.closed = True
        if handle.call is not None:
            handle.call.cancel()
        if handle.task is not None:
            handle.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await handle.task
        logger.debug(f"Unsubscribed from {handle.name}")

    def _start_watch(self, name: str, handle_event, on_status) -> RemoteSubscription:
        sub = RemoteSubscription(name)
        sub.task = asyncio.ensure_future(self._watch(sub, handle_event, on_status))
        return sub

    async def _watch(self, sub: RemoteSubscription, handle_event, on_status):
        """Keep a server stream open, resubscribing after every break.

        A failure inside ``handle_event`` or ``on_status`` is logged and
        treated like a broken stream, so the subscription keeps running.
        """
        first = True
        while True:
            if not first:
                on_status(STATUS_CONNECTING)
            first = False
            try:
                sub.call = getattr(self.stub, sub.name)(store_pb2.WatchRequest())
                async for event in sub.call:
                    if event.type == store_pb2.READY:
                        on_status(STATUS_READY)
                    else:
                        handle_event(event)
                if sub.closed:
                    return
                logger.warning(f"{sub.name}: stream closed by server")
                on_status(STATUS_CLOSED)
            except grpc.aio.AioRpcError as e:
                if sub.closed:
                    return
                logger.warning(f"{sub.name}: stream failed ({e.code().name})")
                on_status(STATUS_TIMED_OUT if e.code() == grpc.StatusCode.DEADLINE_EXCEEDED
                          else STATUS_ERROR)
            except Exception:
                if sub.closed:
                    return
                logger.exception(f"{sub.name}: event handling failed, resubscribing")
                if sub.call is not None:
                    sub.call.cancel()
                on_status(STATUS_ERROR)
            await asyncio.sleep(self.reconnect_delay)
