from typing import Iterable, Optional

from ..models import Message


class Watermark:
    """Monotonic "last seen event time" cursor shared by push and poll.

    Only the poll channel reads it, as the exclusive lower bound of its
    query. Both channels advance it; it never moves backwards.
    """

    def __init__(self, initial: Optional[int] = None):
        self._value = initial

    @property
    def value(self) -> Optional[int]:
        return self._value

    def advance(self, ts: Optional[int]) -> Optional[int]:
        if ts is not None and (self._value is None or ts > self._value):
            self._value = ts
        return self._value

    def advance_past(self, batch: Iterable[Message]) -> Optional[int]:
        """Advance to the newest confirmed timestamp in a processed batch."""
        newest = max((m.created_ts for m in batch if not m.provisional), default=None)
        return self.advance(newest)
