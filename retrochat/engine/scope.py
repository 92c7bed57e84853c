from typing import Optional

from ..models import Scope


class ScopeSelector:
    """Always-current holder of the scope the user is looking at.

    Channel callbacks read the scope through this object at the moment an
    event is handled, never through a value captured when they subscribed.
    Every change bumps ``epoch`` so that results of asynchronous calls
    started under an older scope can be recognised and dropped.
    """

    def __init__(self, initial: Optional[Scope] = None):
        self._current = initial or Scope.public()
        self._epoch = 0

    @property
    def current(self) -> Scope:
        return self._current

    @property
    def epoch(self) -> int:
        return self._epoch

    def set(self, scope: Scope) -> int:
        """Replace the active scope and return the new epoch."""
        self._current = scope
        self._epoch += 1
        return self._epoch

    def is_current(self, epoch: int) -> bool:
        return epoch == self._epoch
