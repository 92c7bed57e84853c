from typing import Dict, Iterable, List, Optional

from ..models import Message
from ..utils.logger import setup_logger

logger = setup_logger('retrochat.engine.store')


class MessageStore:
    """Ordered, deduplicated messages of the active scope only.

    Entries are kept sorted by creation timestamp, ties broken by message
    identifier, so that the order does not depend on which channel
    delivered an event first.
    """

    def __init__(self):
        self._messages: List[Message] = []
        self._by_id: Dict[str, Message] = {}

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def __len__(self):
        return len(self._messages)

    def __contains__(self, message_id: str):
        return message_id in self._by_id

    def get(self, message_id: str) -> Optional[Message]:
        return self._by_id.get(message_id)

    def provisional(self) -> List[Message]:
        return [m for m in self._messages if m.provisional]

    def add_confirmed(self, message: Message) -> bool:
        """Insert a confirmed message unless it is already present.

        A provisional echo of the same logical message is removed first.

        Args:
            message (Message): Store-confirmed message

        Returns:
            bool: True if the message was inserted, False if it was a duplicate
        """
        if message.id in self._by_id:
            logger.debug(f"Duplicate message {message.id} dropped")
            return False
        echo = self._matching_provisional(message)
        if echo is not None:
            self._discard(echo.id)
            logger.debug(f"Provisional {echo.id} reconciled with {message.id}")
        self._insert(message)
        return True

    def add_provisional(self, message: Message):
        if not message.provisional:
            raise ValueError("add_provisional expects a provisional message")
        self._insert(message)

    def remove(self, message_id: str) -> bool:
        """Remove an entry by identifier; returns False if it was not present."""
        if message_id not in self._by_id:
            return False
        self._discard(message_id)
        return True

    def merge(self, batch: Iterable[Message]) -> List[Message]:
        """Add every confirmed message of a bulk fetch, returning the new ones."""
        return [m for m in batch if self.add_confirmed(m)]

    def clear(self):
        self._messages.clear()
        self._by_id.clear()

    def _matching_provisional(self, message: Message) -> Optional[Message]:
        candidates = self.provisional()
        if message.client_token:
            return next((m for m in candidates if m.client_token == message.client_token), None)
        # Rows without a token: oldest echo with the same sender and text
        for m in candidates:
            if m.sender_id == message.sender_id and m.body == message.body:
                return m
        return None

    def _insert(self, message: Message):
        self._by_id[message.id] = message
        self._messages.append(message)
        self._messages.sort(key=Message.sort_key)

    def _discard(self, message_id: str):
        self._by_id.pop(message_id, None)
        self._messages = [m for m in self._messages if m.id != message_id]
