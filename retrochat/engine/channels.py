"""Lifecycle of the ingestion channels.

All three channels share one shape::

    IDLE -> CONNECTING -> ACTIVE -> {DEGRADED, DISCONNECTED} -> IDLE

Every subscription a channel opens is tagged with a generation number.
``detach()`` bumps the generation synchronously, so callbacks of a torn
down subscription are dropped from that moment on, even if the transport
still delivers them.
"""
import asyncio
import contextlib
from typing import Callable, Iterable, List, Optional

from ..backend.interfaces import (
    STATUS_CLOSED,
    STATUS_CONNECTING,
    STATUS_ERROR,
    STATUS_READY,
    STATUS_TIMED_OUT,
)
from ..errors import ChannelError
from ..models import ChannelState, Message, Participant, ScopeFilter
from ..utils.logger import setup_logger
from .presence import PresenceTracker
from .watermark import Watermark

logger = setup_logger('retrochat.engine.channels')

_TRANSPORT_STATES = {
    STATUS_CONNECTING: ChannelState.CONNECTING,
    STATUS_READY: ChannelState.ACTIVE,
    STATUS_ERROR: ChannelState.DEGRADED,
    STATUS_TIMED_OUT: ChannelState.DEGRADED,
    STATUS_CLOSED: ChannelState.DISCONNECTED,
}


def _log_task_failure(task: asyncio.Task):
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Channel task {task.get_name()} died: {task.exception()!r}")


class Channel:
    name = "channel"

    def __init__(self, on_transition: Callable):
        self.state = ChannelState.IDLE
        self._on_transition = on_transition
        self._generation = 0
        self._open = False

    def _begin(self) -> int:
        self._generation += 1
        self._open = True
        return self._generation

    def _is_live(self, generation: int) -> bool:
        return self._open and generation == self._generation

    def detach(self):
        """Drop every callback of the current subscription, effective immediately."""
        self._open = False
        self._generation += 1

    def _set_state(self, new: ChannelState):
        old = self.state
        if old == new:
            return
        self.state = new
        if new in (ChannelState.DEGRADED, ChannelState.DISCONNECTED):
            logger.warning(f"{self.name} channel: {old.value} -> {new.value}")
        else:
            logger.info(f"{self.name} channel: {old.value} -> {new.value}")
        self._on_transition(self, old, new)


class PushChannel(Channel):
    """Live change feed of the message table."""
    name = "push"

    def __init__(self, push, deliver: Callable[[List[Message]], None],
                 on_ready: Callable[[], None], on_transition: Callable):
        super().__init__(on_transition)
        self._push = push
        self._deliver = deliver
        self._on_ready = on_ready
        self._handle = None

    async def start(self):
        gen = self._begin()
        self._set_state(ChannelState.CONNECTING)
        try:
            handle = await self._push.subscribe_to_message_changes(
                lambda m: self._handle_event(gen, m),
                lambda status: self._handle_status(gen, status),
            )
        except ChannelError as e:
            logger.warning(f"push subscribe failed: {e}")
            self._set_state(ChannelState.DISCONNECTED)
            return
        if not self._is_live(gen):
            await self._push.unsubscribe(handle)
            return
        self._handle = handle

    def _handle_event(self, gen: int, message: Message):
        if not self._is_live(gen):
            return
        try:
            self._deliver([message])
        except Exception:
            # The watermark only moves after a delivery succeeds.
            logger.exception(f"push: delivering {message.id} failed")

    def _handle_status(self, gen: int, status: str):
        if not self._is_live(gen):
            return
        new = _TRANSPORT_STATES.get(status)
        if new is None:
            logger.warning(f"push: unknown transport status {status!r}")
            return
        was_active = self.state == ChannelState.ACTIVE
        self._set_state(new)
        if new == ChannelState.ACTIVE and not was_active:
            self._on_ready()

    async def stop(self):
        self.detach()
        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                await self._push.unsubscribe(handle)
            except ChannelError as e:
                logger.warning(f"push unsubscribe failed: {e}")
        self._set_state(ChannelState.IDLE)


class PollChannel(Channel):
    """Fixed-interval query for events newer than the watermark.

    Runs next to the push channel whatever the push channel's health. A
    failed tick, whether the query or the delivery raised, only degrades
    the channel; the next tick tries again.
    """
    name = "poll"

    def __init__(self, query, filter_provider: Callable[[], ScopeFilter], watermark: Watermark,
                 deliver: Callable[[List[Message]], None], on_ready: Callable[[], None],
                 on_transition: Callable, interval: float = 2.0):
        super().__init__(on_transition)
        self._query = query
        self._filter_provider = filter_provider
        self._watermark = watermark
        self._deliver = deliver
        self._on_ready = on_ready
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        gen = self._begin()
        self._set_state(ChannelState.CONNECTING)
        self._task = asyncio.ensure_future(self._run(gen))
        self._task.add_done_callback(_log_task_failure)

    async def _run(self, gen: int):
        if not self._is_live(gen):
            return
        self._set_state(ChannelState.ACTIVE)
        self._on_ready()
        while self._is_live(gen):
            await asyncio.sleep(self.interval)
            try:
                await self._poll(gen)
            except Exception:
                logger.exception("poll tick failed")
                if self._is_live(gen):
                    self._set_state(ChannelState.DEGRADED)

    async def poll_once(self) -> int:
        """Run one poll immediately; returns the number of events delivered."""
        return await self._poll(self._generation)

    async def _poll(self, gen: int) -> int:
        if not self._is_live(gen):
            return 0
        try:
            batch = await self._query.fetch_messages(self._filter_provider(), self._watermark.value)
        except ChannelError as e:
            if self._is_live(gen):
                logger.warning(f"poll failed: {e}")
                self._set_state(ChannelState.DEGRADED)
            return 0
        if not self._is_live(gen):
            return 0
        if self.state == ChannelState.DEGRADED:
            self._set_state(ChannelState.ACTIVE)
        if batch:
            logger.debug(f"poll returned {len(batch)} events after {self._watermark.value}")
            self._deliver(batch)
        return len(batch)

    async def stop(self):
        self.detach()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._set_state(ChannelState.IDLE)


class PresenceChannel(Channel):
    """Presence roster feed plus the local participant's own announcement.

    While active, the local participant is re-announced every
    ``heartbeat`` seconds. Teardown announces departure before
    unsubscribing and invalidates the tracker.
    """
    name = "presence"

    def __init__(self, push, tracker: PresenceTracker, on_change: Callable[[], None],
                 on_transition: Callable, heartbeat: float = 30.0):
        super().__init__(on_transition)
        self._push = push
        self._tracker = tracker
        self._on_change = on_change
        self.heartbeat = heartbeat
        self._local: Optional[Participant] = None
        self._handle = None
        self._heartbeat_task: Optional[asyncio.Task] = None

    async def start(self, local: Participant):
        self._local = local
        gen = self._begin()
        self._set_state(ChannelState.CONNECTING)
        try:
            handle = await self._push.subscribe_to_presence(
                lambda roster: self._handle_sync(gen, roster),
                lambda metas: self._handle_join(gen, metas),
                lambda ids: self._handle_leave(gen, ids),
                lambda status: self._handle_status(gen, status),
            )
        except ChannelError as e:
            logger.warning(f"presence subscribe failed: {e}")
            self._set_state(ChannelState.DISCONNECTED)
            return
        if not self._is_live(gen):
            await self._push.unsubscribe(handle)
            return
        self._handle = handle

    def _handle_sync(self, gen: int, roster):
        if self._is_live(gen):
            self._tracker.sync(roster.keys())
            self._on_change()

    def _handle_join(self, gen: int, metas):
        if self._is_live(gen):
            self._tracker.join(m.participant_id for m in metas)
            self._on_change()

    def _handle_leave(self, gen: int, ids: Iterable[str]):
        if self._is_live(gen):
            self._tracker.leave(ids)
            self._on_change()

    def _handle_status(self, gen: int, status: str):
        if not self._is_live(gen):
            return
        new = _TRANSPORT_STATES.get(status)
        if new is None:
            logger.warning(f"presence: unknown transport status {status!r}")
            return
        if new == ChannelState.ACTIVE:
            self._set_state(new)
            self._cancel_heartbeat()
            self._heartbeat_task = asyncio.ensure_future(self._heartbeat(gen))
            self._heartbeat_task.add_done_callback(_log_task_failure)
            return
        # Roster knowledge is stale from here until the next sync.
        self._cancel_heartbeat()
        self._tracker.invalidate()
        self._on_change()
        self._set_state(new)

    async def _heartbeat(self, gen: int):
        while self._is_live(gen):
            await self.announce()
            await asyncio.sleep(self.heartbeat)

    async def announce(self):
        try:
            await self._push.announce_presence(self._local.id, self._local.display_name)
        except ChannelError as e:
            logger.warning(f"presence announce failed: {e}")

    def _cancel_heartbeat(self):
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def stop(self):
        self.detach()
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                await self._push.announce_departure(self._local.id)
            except ChannelError as e:
                logger.warning(f"presence departure failed: {e}")
            try:
                await self._push.unsubscribe(handle)
            except ChannelError as e:
                logger.warning(f"presence unsubscribe failed: {e}")
        self._tracker.invalidate()
        self._on_change()
        self._set_state(ChannelState.IDLE)
