"""Message synchronization and presence engine.

``SyncEngine`` owns one scope selector, one message store, one watermark
and the three channels. Every confirmed message, whether it comes from
the push feed, the poll loop, a bulk resync or the reply to our own
insert, goes through ``_apply`` and therefore through the same
visibility decision and the same dedup/ordering code.
"""
import asyncio
import contextlib
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..config import Settings
from ..errors import ChannelError, IdentityError, ValidationError, WriteError
from ..models import ChannelState, Decision, Message, Participant, Scope, ScopeFilter, now_ms
from ..utils.logger import setup_logger
from .channels import PollChannel, PresenceChannel, PushChannel
from .conversations import ActiveConversationRegistry, UnreadCounter
from .echo import OptimisticEchoManager
from .filter import decide, other_party
from .presence import PresenceTracker
from .scope import ScopeSelector
from .store import MessageStore
from .watermark import Watermark

logger = setup_logger('retrochat.engine.sync')

STATUS_CONNECTING = "connecting"
STATUS_CONNECTED = "connected"
STATUS_DEGRADED = "degraded"
STATUS_DISCONNECTED = "disconnected"
STATUS_SIGNED_OUT = "signed_out"

EVENT_MESSAGE = "message"
EVENT_MESSAGES_RESET = "messages_reset"
EVENT_UNREAD = "unread"
EVENT_PRESENCE = "presence"
EVENT_STATUS = "status"
EVENT_SEND_FAILED = "send_failed"

# How long a direct message id stays in the unread dedup table once the
# watermark has moved past it.
SEEN_RETENTION_MS = 5 * 60 * 1000


class SyncEngine:
    """Client-side view of the chat store for one signed-in participant.

    Args:
        query: QueryBackend implementation
        writer: WriteBackend implementation
        push: PushBackend implementation
        persistence: ConversationPersistence implementation
        identity: IdentityProvider implementation
        settings (Settings, optional): Intervals, limits and timeouts
    """

    def __init__(self, query, writer, push, persistence, identity, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self._query = query
        self._identity = identity

        self._scope = ScopeSelector()
        self._store = MessageStore()
        self._watermark = Watermark()
        self._unread = UnreadCounter()
        self._registry = ActiveConversationRegistry(persistence)
        self._presence = PresenceTracker()

        self._local: Optional[Participant] = None
        self._participants: Dict[str, Participant] = {}
        # Direct messages already shown or counted, by id, with their created_ts;
        # keeps push and poll from counting twice.
        self._seen_direct: Dict[str, int] = {}
        # Watermark at the moment the push feed stopped being active; events
        # after it may have been dropped and are fetched again on recovery.
        self._catchup_since: Optional[int] = None
        self._push_drops = 0
        self._listeners: List[Callable] = []
        self._tasks: Set[asyncio.Task] = set()
        self._status = STATUS_DISCONNECTED
        self._started = False

        self.push_channel = PushChannel(
            push, self._on_push, self._on_push_ready, self._on_transition)
        self.poll_channel = PollChannel(
            query, self._poll_filter, self._watermark, self._on_poll,
            self._schedule_resync, self._on_transition, interval=self.settings.poll_interval)
        self.presence_channel = PresenceChannel(
            push, self._presence, self._on_presence_change, self._on_transition,
            heartbeat=self.settings.presence_heartbeat)
        self._echo = OptimisticEchoManager(
            self._store, self._scope, writer, self._accept_confirmed,
            max_length=self.settings.max_message_length, write_timeout=self.settings.write_timeout,
            on_provisional=lambda m: self._emit(EVENT_MESSAGE, m))

    # Accessors

    @property
    def local(self) -> Optional[Participant]:
        return self._local

    @property
    def local_id(self) -> Optional[str]:
        return self._local.id if self._local else None

    @property
    def scope(self) -> Scope:
        return self._scope.current

    @property
    def messages(self) -> List[Message]:
        return self._store.messages

    @property
    def unread(self) -> Dict[str, int]:
        return self._unread.snapshot()

    @property
    def active_conversations(self):
        return self._registry.ids

    @property
    def online(self):
        return self._presence.online

    @property
    def presence_valid(self) -> bool:
        return self._presence.valid

    @property
    def participants(self) -> List[Participant]:
        return sorted(self._participants.values(), key=lambda p: p.display_name.lower())

    @property
    def watermark(self) -> Optional[int]:
        return self._watermark.value

    @property
    def pending_sends(self) -> List[Message]:
        return self._echo.pending

    @property
    def status(self) -> str:
        return self._status

    @property
    def channel_states(self) -> Dict[str, ChannelState]:
        return {c.name: c.state for c in (self.push_channel, self.poll_channel, self.presence_channel)}

    @property
    def started(self) -> bool:
        return self._started

    def participant(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    def display_name(self, participant_id: str) -> str:
        p = self._participants.get(participant_id)
        return p.display_name if p else participant_id

    def online_participants(self, search: str = "") -> List[Participant]:
        """Online participants other than the local one, sorted by display name.

        Args:
            search (str): Case-insensitive substring of the display name
        """
        needle = search.strip().lower()
        return [
            p for p in self.participants
            if p.id != self.local_id and self._presence.is_online(p.id)
            and needle in p.display_name.lower()
        ]

    # Listeners

    def add_listener(self, callback: Callable[[str, object], None]) -> Callable:
        self._listeners.append(callback)
        return callback

    def remove_listener(self, callback: Callable):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: str, payload=None):
        for callback in list(self._listeners):
            try:
                callback(event, payload)
            except Exception:
                logger.exception(f"Listener {callback!r} failed on {event!r}")

    # Lifecycle

    async def start(self, scope: Optional[Scope] = None):
        """Resolve the local identity and open all channels.

        Raises:
            IdentityError: The local participant cannot be resolved; status
                becomes ``signed_out`` and no channel is opened
            RuntimeError: The engine is already running
        """
        if self._started:
            raise RuntimeError("engine already started")
        try:
            pid = self._identity.current_participant_id()
            name = self._identity.current_display_name()
            if not pid:
                raise IdentityError("Identity provider returned an empty participant id")
        except IdentityError as e:
            logger.error(f"Cannot resolve local identity: {e}")
            self._set_status(STATUS_SIGNED_OUT)
            raise
        self._local = Participant(pid, name)
        self._participants[pid] = self._local
        logger.info(f"Starting engine for {name} ({pid})")

        self._registry.load(pid)
        await self.refresh_participants()
        await self._prime_watermark()

        if scope is not None:
            self._validate_scope(scope)
            self._scope.set(scope)
            if not scope.is_public:
                self._enter_direct(scope.other_id)

        self._started = True
        self._set_status(STATUS_CONNECTING)
        await self.presence_channel.start(self._local)
        await self._open_message_channels()

    async def stop(self):
        """Tear down every channel; presence departure is announced first."""
        if not self._started:
            return
        self._started = False
        self.push_channel.detach()
        self.poll_channel.detach()
        await self._close_message_channels()
        await self.presence_channel.stop()
        self._set_status(STATUS_DISCONNECTED)
        logger.info(f"Engine stopped for {self.local_id}")

    async def refresh_participants(self) -> List[Participant]:
        try:
            participants = await self._query.fetch_participants()
        except ChannelError as e:
            logger.warning(f"Participant directory unavailable: {e}")
            return self.participants
        for p in participants:
            self._participants[p.id] = p
        return self.participants

    async def _prime_watermark(self):
        try:
            inbox = await self._query.fetch_messages(ScopeFilter.inbox(self.local_id))
        except ChannelError as e:
            logger.warning(f"Cannot prime watermark from store ({e}), using local clock")
            self._watermark.advance(now_ms())
            return
        self._watermark.advance_past(inbox)
        if self._watermark.value is None:
            self._watermark.advance(0)
        logger.debug(f"Watermark primed at {self._watermark.value}")

    async def _open_message_channels(self):
        await self.push_channel.start()
        await self.poll_channel.start()

    async def _close_message_channels(self):
        self.push_channel.detach()
        self.poll_channel.detach()
        tasks, self._tasks = self._tasks, set()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.push_channel.stop()
        await self.poll_channel.stop()

    # Scope

    def _validate_scope(self, scope: Scope):
        if not scope.is_public and scope.other_id == self.local_id:
            raise ValidationError("Cannot open a direct conversation with yourself")

    def _enter_direct(self, other_id: str):
        self._unread.reset(other_id)
        if self._registry.add(other_id):
            logger.info(f"Conversation with {other_id} opened")
        self._emit(EVENT_UNREAD, (other_id, 0))

    async def switch_scope(self, scope: Scope):
        """Make ``scope`` the active scope.

        Push and poll are torn down before the scope changes and reopened
        afterwards; their Connecting->Active transitions refill the store.
        """
        self._require_started()
        self._validate_scope(scope)
        if scope == self._scope.current:
            if not scope.is_public:
                self._enter_direct(scope.other_id)
            return
        await self._close_message_channels()
        self._scope.set(scope)
        self._store.clear()
        logger.info(f"Scope switched to {scope}")
        self._emit(EVENT_MESSAGES_RESET, scope)
        if not scope.is_public:
            self._enter_direct(scope.other_id)
        await self._open_message_channels()

    async def open_conversation(self, other_id: str):
        await self.switch_scope(Scope.direct(other_id))

    async def open_public(self):
        await self.switch_scope(Scope.public())

    async def remove_conversation(self, other_id: str):
        """Forget a conversation; leaves it for Public if it is the active one."""
        self._registry.remove(other_id)
        self._unread.discard(other_id)
        self._emit(EVENT_UNREAD, (other_id, 0))
        logger.info(f"Conversation with {other_id} removed")
        if self._scope.current == Scope.direct(other_id):
            await self.switch_scope(Scope.public())

    # Sending

    async def send(self, text: str, scope: Optional[Scope] = None) -> Message:
        """Send ``text`` to ``scope`` (default: the active scope).

        Raises:
            ValidationError: Empty or oversized text
            WriteError: The store did not confirm the message
        """
        self._require_started()
        if scope is not None:
            self._validate_scope(scope)
        try:
            return await self._echo.send(self._local, text, scope)
        except WriteError as e:
            self._emit(EVENT_SEND_FAILED, (text, str(e)))
            raise

    def _accept_confirmed(self, message: Message):
        self._apply(message, "echo")

    # Ingestion

    def _poll_filter(self) -> ScopeFilter:
        return ScopeFilter.inbox(self.local_id)

    def _on_push(self, batch: List[Message]):
        self._ingest(batch, "push")

    def _on_poll(self, batch: List[Message]):
        self._ingest(batch, "poll")

    def _ingest(self, batch: Iterable[Message], source: str):
        batch = list(batch)
        for message in batch:
            self._apply(message, source)
        if source in ("push", "poll"):
            self._watermark.advance_past(batch)
            self._prune_seen()

    def _prune_seen(self):
        """Forget dedup entries no poll or catch-up can return any more."""
        floor = self._watermark.value
        if floor is None:
            return
        if self._catchup_since is not None:
            floor = min(floor, self._catchup_since)
        cutoff = floor - SEEN_RETENTION_MS
        stale = [mid for mid, ts in self._seen_direct.items() if ts < cutoff]
        for mid in stale:
            del self._seen_direct[mid]

    def _apply(self, message: Message, source: str) -> Decision:
        scope = self._scope.current
        decision = decide(message, scope, self.local_id)
        if decision == Decision.SHOW:
            if message.is_direct:
                self._seen_direct[message.id] = message.created_ts
            if self._store.add_confirmed(message):
                self._emit(EVENT_MESSAGE, message)
        elif decision == Decision.COUNT_UNREAD:
            if message.id in self._seen_direct:
                return decision
            self._seen_direct[message.id] = message.created_ts
            other = other_party(message, self.local_id)
            count = self._unread.increment(other)
            if self._registry.add(other):
                logger.info(f"New conversation from {other}")
            if other not in self._participants and self._started:
                self._spawn_refresh()
            self._emit(EVENT_UNREAD, (other, count))
        else:
            logger.debug(f"Ignored {message.id} from {source} in scope {scope}")
        return decision

    def _spawn_refresh(self):
        task = asyncio.ensure_future(self.refresh_participants())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()!r}")

    # Resync

    def _schedule_resync(self):
        task = asyncio.ensure_future(self._resync(self._scope.epoch))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _on_push_ready(self):
        self._schedule_resync()
        task = asyncio.ensure_future(self._catch_up())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    async def resync(self) -> int:
        """Bulk-fetch the active scope and merge it into the store.

        A catch-up still owed from a push outage runs first.
        """
        self._require_started()
        await self._catch_up()
        return await self._resync(self._scope.epoch)

    async def _catch_up(self) -> int:
        """Fetch the inbox after the mark left by the last push outage.

        Push advances the watermark as soon as it is back, so events it
        dropped while down would otherwise sit below the poll's window.
        Retries every poll interval while the fetch fails and push stays
        active; the mark is only cleared by a fetch that ran entirely
        while push was active.
        """
        while self._catchup_since is not None and self.push_channel.state == ChannelState.ACTIVE:
            since, drops = self._catchup_since, self._push_drops
            try:
                batch = await self._query.fetch_messages(ScopeFilter.inbox(self.local_id), since)
            except ChannelError as e:
                logger.warning(f"Catch-up after push outage failed: {e}")
                await asyncio.sleep(self.settings.poll_interval)
                continue
            if self._push_drops == drops and self.push_channel.state == ChannelState.ACTIVE:
                self._catchup_since = None
            self._ingest(batch, "poll")
            logger.info(f"Caught up {len(batch)} events after {since}")
            return len(batch)
        return 0

    async def _resync(self, epoch: int) -> int:
        scope = self._scope.current
        try:
            batch = await self._query.fetch_messages(ScopeFilter.for_scope(scope, self.local_id))
        except ChannelError as e:
            logger.warning(f"Resync of {scope} failed: {e}")
            return 0
        if not self._scope.is_current(epoch):
            logger.debug(f"Dropped resync result for stale scope {scope}")
            return 0
        before = len(self._store)
        self._ingest(batch, "resync")
        logger.debug(f"Resync of {scope}: {len(batch)} fetched, {len(self._store) - before} new")
        return len(batch)

    # Status

    def _on_presence_change(self):
        self._emit(EVENT_PRESENCE, self._presence.online)

    def _on_transition(self, channel, old: ChannelState, new: ChannelState):
        if channel is self.presence_channel:
            return
        if channel is self.push_channel and old == ChannelState.ACTIVE:
            self._push_drops += 1
        if (channel is self.push_channel and new != ChannelState.ACTIVE
                and self._catchup_since is None and self._watermark.value is not None):
            self._catchup_since = self._watermark.value
            logger.debug(f"Push not active, catch-up mark at {self._catchup_since}")
        self._set_status(self._aggregate_status())

    def _aggregate_status(self) -> str:
        states = (self.push_channel.state, self.poll_channel.state)
        if all(s == ChannelState.ACTIVE for s in states):
            return STATUS_CONNECTED
        if any(s == ChannelState.ACTIVE for s in states):
            return STATUS_DEGRADED
        if any(s == ChannelState.CONNECTING for s in states):
            return STATUS_CONNECTING
        if any(s == ChannelState.DEGRADED for s in states):
            return STATUS_DEGRADED
        return STATUS_DISCONNECTED

    def _set_status(self, status: str):
        if status == self._status:
            return
        logger.info(f"Status: {self._status} -> {status}")
        self._status = status
        self._emit(EVENT_STATUS, status)

    def _require_started(self):
        if not self._started:
            raise RuntimeError("engine is not running")
