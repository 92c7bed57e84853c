from typing import Dict, FrozenSet, Optional, Set

from ..utils.logger import setup_logger

logger = setup_logger('retrochat.engine.conversations')


class UnreadCounter:
    """Per-participant count of direct messages received out of view."""

    def __init__(self):
        self._counts: Dict[str, int] = {}

    def increment(self, other_id: str) -> int:
        self._counts[other_id] = self._counts.get(other_id, 0) + 1
        return self._counts[other_id]

    def reset(self, other_id: str):
        self._counts[other_id] = 0

    def discard(self, other_id: str):
        self._counts.pop(other_id, None)

    def get(self, other_id: str) -> int:
        return self._counts.get(other_id, 0)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._counts)


class ActiveConversationRegistry:
    """Participants the local user has an open direct conversation with.

    The set is loaded from and written back to a persistence backend so
    that it survives restarts. It only shrinks on explicit removal.
    """

    def __init__(self, persistence, local_id: Optional[str] = None):
        self._persistence = persistence
        self._local_id = local_id
        self._ids: Set[str] = set()

    @property
    def ids(self) -> FrozenSet[str]:
        return frozenset(self._ids)

    def __contains__(self, other_id: str):
        return other_id in self._ids

    def load(self, local_id: str):
        self._local_id = local_id
        self._ids = set(self._persistence.load_active_conversations(local_id))
        logger.info(f"Loaded {len(self._ids)} active conversations for {local_id}")

    def add(self, other_id: str) -> bool:
        """Add a participant; returns True if the set changed."""
        if other_id in self._ids:
            return False
        self._ids.add(other_id)
        self._save()
        return True

    def remove(self, other_id: str) -> bool:
        if other_id not in self._ids:
            return False
        self._ids.discard(other_id)
        self._save()
        return True

    def _save(self):
        if self._local_id is None:
            raise RuntimeError("registry used before load()")
        self._persistence.save_active_conversations(self._local_id, set(self._ids))
