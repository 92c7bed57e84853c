import asyncio
import itertools
from typing import Dict, List
from ..models import Message, PresenceMeta
from ..utils.logger import setup_logger

logger = setup_logger('retrochat.hub')


class Hub:
    """Fan-out hub for inserted messages and presence roster changes.

    Every subscriber owns an asyncio Queue. Message subscribers receive
    ``{"type": "insert", "message": {...}}`` events; presence subscribers
    first get a ``sync`` event with the full roster, then ``join`` and
    ``leave`` events.
    """

    def __init__(self):
        """Initialize the hub.

        Attributes:
            message_queues (Dict[int, asyncio.Queue]): Message subscribers by subscription ID
            presence_queues (Dict[int, asyncio.Queue]): Presence subscribers by subscription ID
            roster (Dict[str, PresenceMeta]): Participants currently announced as online
            _lock (asyncio.Lock): Serializes subscriber and roster changes
        """
        self.message_queues: Dict[int, asyncio.Queue] = {}
        self.presence_queues: Dict[int, asyncio.Queue] = {}
        self.roster: Dict[str, PresenceMeta] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        logger.info("Hub initialized")

    async def register_queue(self):
        """Register a message subscriber.

        Returns:
            tuple: (subscription ID, asyncio.Queue receiving insert events)
        """
        async with self._lock:
            sub_id = next(self._ids)
            q = asyncio.Queue()
            self.message_queues[sub_id] = q
            logger.info(f"Registered message subscriber {sub_id}")
            return sub_id, q

    async def register_presence_queue(self):
        """Register a presence subscriber; its queue starts with a roster sync."""
        async with self._lock:
            sub_id = next(self._ids)
            q = asyncio.Queue()
            q.put_nowait(self._sync_event())
            self.presence_queues[sub_id] = q
            logger.info(f"Registered presence subscriber {sub_id}")
            return sub_id, q

    async def remove_queue(self, sub_id: int):
        """Remove a subscriber of either kind."""
        async with self._lock:
            self.message_queues.pop(sub_id, None)
            self.presence_queues.pop(sub_id, None)
            logger.info(f"Removed subscriber {sub_id}")
            logger.debug(f"Remaining subscribers: {len(self.message_queues)} message, "
                         f"{len(self.presence_queues)} presence")

    async def publish(self, message: Message) -> int:
        """Deliver an inserted message to every message subscriber.

        Returns:
            int: Number of subscribers the event was queued for
        """
        event = {"type": "insert", "message": message.to_dict()}
        async with self._lock:
            queues = list(self.message_queues.values())
        for q in queues:
            q.put_nowait(event)
        logger.debug(f"Published {message.id} to {len(queues)} subscribers")
        return len(queues)

    async def track(self, meta: PresenceMeta) -> bool:
        """Add or refresh a participant in the roster.

        Returns:
            bool: True if the participant was not online before
        """
        async with self._lock:
            joined = meta.participant_id not in self.roster
            self.roster[meta.participant_id] = meta
            if joined:
                self._broadcast_presence({"type": "join", "metas": [meta.to_dict()]})
        if joined:
            logger.info(f"Presence join: {meta.participant_id}")
        return joined

    async def untrack(self, participant_id: str) -> bool:
        async with self._lock:
            left = self.roster.pop(participant_id, None) is not None
            if left:
                self._broadcast_presence({"type": "leave", "ids": [participant_id]})
        if left:
            logger.info(f"Presence leave: {participant_id}")
        return left

    def online(self) -> List[str]:
        return sorted(self.roster)

    def _sync_event(self) -> dict:
        return {"type": "sync",
                "roster": {pid: meta.to_dict() for pid, meta in self.roster.items()}}

    def _broadcast_presence(self, event: dict):
        for q in self.presence_queues.values():
            q.put_nowait(event)
