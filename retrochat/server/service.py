import grpc
from grpc import aio
from ..proto import store_pb2, store_pb2_grpc
from ..proto.convert import (
    filter_from_pb,
    message_to_pb,
    meta_from_pb,
    meta_to_pb,
    participant_to_pb,
)
from ..models import Message, PresenceMeta
from ..utils.logger import setup_logger
from .repo import ParticipantsRepo, MessagesRepo
from .hub import Hub

logger = setup_logger('retrochat.server')

FILTER_KINDS = ("public", "direct", "inbox")


class StoreService(store_pb2_grpc.StoreServicer):
    """gRPC service implementation of the reference message store.

    Unary handlers return a response message; the two ``Watch*`` handlers
    are async generators that stream events until the client goes away.
    """

    def __init__(self, participants_repo: ParticipantsRepo, messages_repo: MessagesRepo, hub: Hub):
        """Initialize the store service.

        Args:
            participants_repo (ParticipantsRepo): Participant profiles
            messages_repo (MessagesRepo): Message table
            hub (Hub): Live fan-out of inserts and presence
        """
        self.participants = participants_repo
        self.messages = messages_repo
        self.hub = hub

    async def Login(self, request: store_pb2.LoginRequest, context: aio.ServicerContext):
        """Resolve a display name to a participant, registering it if asked.

        Args:
            request (LoginRequest): ``display_name`` and ``register`` flag
            context (ServicerContext): gRPC service context

        Returns:
            LoginResponse: The resolved participant

        Raises:
            NOT_FOUND: If the name is unknown and registration was not requested
            ALREADY_EXISTS: If registration was requested for a taken name
        """
        display_name = request.display_name.strip()
        if not display_name:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, "display_name is required")
        if request.register:
            try:
                p = self.participants.register(display_name)
            except ValueError as e:
                logger.error(f"Login: registration of '{display_name}' failed ({e})")
                await context.abort(grpc.StatusCode.ALREADY_EXISTS, str(e))
        else:
            p = self.participants.find_by_display_name(display_name)
            if p is None:
                await context.abort(grpc.StatusCode.NOT_FOUND, f"Participant {display_name} not found")
        logger.info(f"Login: '{display_name}' resolved to {p.id}")
        return store_pb2.LoginResponse(participant=participant_to_pb(p))

    async def ListParticipants(self, request, context: aio.ServicerContext):
        return store_pb2.ListParticipantsResponse(
            participants=[participant_to_pb(p) for p in self.participants.all()])

    async def FetchMessages(self, request: store_pb2.FetchMessagesRequest, context: aio.ServicerContext):
        """Query the message table.

        Args:
            request (FetchMessagesRequest): ``filter`` plus ``after`` when ``has_after`` is set

        Returns:
            FetchMessagesResponse: Matching messages oldest first
        """
        scope_filter = filter_from_pb(request.filter)
        if scope_filter.kind not in FILTER_KINDS:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, f"bad filter kind {scope_filter.kind!r}")
        if scope_filter.kind != "public" and not scope_filter.participant_id:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, "filter needs a participant_id")
        after = request.after if request.has_after else None
        found = self.messages.query(scope_filter, after)
        return store_pb2.FetchMessagesResponse(messages=[message_to_pb(m) for m in found])

    async def InsertMessage(self, request: store_pb2.InsertMessageRequest, context: aio.ServicerContext):
        """Append a message and fan it out to live subscribers.

        Returns:
            InsertMessageResponse: The stored row with its server-assigned ID and timestamp
        """
        sender = self.participants.get(request.sender_id)
        if sender is None:
            await context.abort(grpc.StatusCode.PERMISSION_DENIED, "unknown sender")
        if not request.body.strip():
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, "empty body")
        recipient_id = request.recipient_id or None
        if recipient_id is not None and self.participants.get(recipient_id) is None:
            await context.abort(grpc.StatusCode.NOT_FOUND, "unknown recipient")
        m = self.messages.insert(sender, request.body, recipient_id, request.client_token or None)
        delivered = await self.hub.publish(m)
        logger.debug(f"InsertMessage: {m.id} pushed to {delivered} subscribers")
        return store_pb2.InsertMessageResponse(message=message_to_pb(m))

    async def WatchMessages(self, request, context: aio.ServicerContext):
        """Stream every inserted message.

        The first event is ``READY`` once the subscriber queue is
        registered; after that, one ``INSERT`` event per message.
        """
        sub_id, q = await self.hub.register_queue()
        try:
            yield store_pb2.MessageEvent(type=store_pb2.READY)
            while True:
                event = await q.get()
                yield store_pb2.MessageEvent(
                    type=store_pb2.INSERT,
                    message=message_to_pb(Message.from_dict(event["message"])))
        finally:
            await self.hub.remove_queue(sub_id)
            logger.info(f"WatchMessages: subscriber {sub_id} disconnected")

    async def WatchPresence(self, request, context: aio.ServicerContext):
        """Stream presence roster changes, starting with a full ``SYNC``."""
        sub_id, q = await self.hub.register_presence_queue()
        try:
            yield store_pb2.PresenceEvent(type=store_pb2.READY)
            while True:
                yield presence_event_to_pb(await q.get())
        finally:
            await self.hub.remove_queue(sub_id)
            logger.info(f"WatchPresence: subscriber {sub_id} disconnected")

    async def Track(self, request: store_pb2.PresenceMeta, context: aio.ServicerContext):
        if not request.participant_id:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, "participant_id is required")
        joined = await self.hub.track(meta_from_pb(request))
        return store_pb2.TrackResponse(joined=joined)

    async def Untrack(self, request: store_pb2.UntrackRequest, context: aio.ServicerContext):
        left = await self.hub.untrack(request.participant_id)
        return store_pb2.UntrackResponse(left=left)


def presence_event_to_pb(event: dict) -> store_pb2.PresenceEvent:
    """Translate a hub presence event into its wire form."""
    kind = event["type"]
    if kind == "sync":
        metas = [meta_to_pb(PresenceMeta.from_dict(rec)) for rec in event["roster"].values()]
        return store_pb2.PresenceEvent(type=store_pb2.SYNC, metas=metas)
    if kind == "join":
        metas = [meta_to_pb(PresenceMeta.from_dict(rec)) for rec in event["metas"]]
        return store_pb2.PresenceEvent(type=store_pb2.JOIN, metas=metas)
    if kind == "leave":
        return store_pb2.PresenceEvent(type=store_pb2.LEAVE, ids=event["ids"])
    raise ValueError(f"unknown presence event {kind!r}")
