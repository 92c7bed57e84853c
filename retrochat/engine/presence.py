from typing import FrozenSet, Iterable, Set

from ..utils.logger import setup_logger

logger = setup_logger('retrochat.engine.presence')


class PresenceTracker:
    """Set of participant IDs currently online.

    ``sync`` replaces the whole set; ``join`` and ``leave`` adjust it.
    After ``invalidate`` (channel teardown) the set is empty and join/leave
    signals are ignored until the next ``sync`` arrives.
    """

    def __init__(self):
        self._online: Set[str] = set()
        self._valid = False

    @property
    def valid(self) -> bool:
        return self._valid

    @property
    def online(self) -> FrozenSet[str]:
        return frozenset(self._online)

    def is_online(self, participant_id: str) -> bool:
        return participant_id in self._online

    def sync(self, roster: Iterable[str]):
        """Replace the set with the channel's full membership roster."""
        self._online = set(roster)
        self._valid = True
        logger.debug(f"Presence sync: {len(self._online)} online")

    def join(self, participant_ids: Iterable[str]):
        if not self._valid:
            logger.debug("Presence join ignored until next sync")
            return
        self._online.update(participant_ids)

    def leave(self, participant_ids: Iterable[str]):
        if not self._valid:
            logger.debug("Presence leave ignored until next sync")
            return
        self._online.difference_update(participant_ids)

    def invalidate(self):
        self._online.clear()
        self._valid = False
