"""Interfaces the sync engine needs from its environment.

Implementations: :mod:`retrochat.backend.local` (in-process) and
:mod:`retrochat.backend.remote` (gRPC).

Push subscriptions report transport status through ``on_status`` with one
of the ``STATUS_*`` strings below. Callbacks are always invoked on the
event loop thread, one at a time.
"""
import abc
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..models import Message, Participant, PresenceMeta, ScopeFilter

STATUS_CONNECTING = "connecting"
STATUS_READY = "ready"
STATUS_ERROR = "error"
STATUS_TIMED_OUT = "timed_out"
STATUS_CLOSED = "closed"

OnStatus = Callable[[str], None]
OnMessage = Callable[[Message], None]
OnSync = Callable[[Dict[str, PresenceMeta]], None]
OnJoin = Callable[[List[PresenceMeta]], None]
OnLeave = Callable[[List[str]], None]


class QueryBackend(abc.ABC):

    @abc.abstractmethod
    async def fetch_messages(self, scope_filter: ScopeFilter,
                             after: Optional[int] = None) -> List[Message]:
        """Messages matching the filter, strictly newer than ``after``, oldest first.

        Raises:
            ChannelError: If the query could not be answered
        """

    @abc.abstractmethod
    async def fetch_participants(self) -> List[Participant]:
        """All participant profiles ordered by display name."""


class WriteBackend(abc.ABC):

    @abc.abstractmethod
    async def insert_message(self, sender: Participant, body: str,
                             recipient_id: Optional[str] = None,
                             client_token: Optional[str] = None) -> Message:
        """Append a message to the store and return the confirmed row.

        Raises:
            WriteError: If the store rejected the write
        """


class PushBackend(abc.ABC):

    @abc.abstractmethod
    async def subscribe_to_message_changes(self, on_event: OnMessage, on_status: OnStatus):
        """Start receiving inserted messages; returns a subscription handle."""

    @abc.abstractmethod
    async def subscribe_to_presence(self, on_sync: OnSync, on_join: OnJoin,
                                    on_leave: OnLeave, on_status: OnStatus):
        """Start receiving presence roster changes; returns a subscription handle."""

    @abc.abstractmethod
    async def announce_presence(self, participant_id: str, display_name: str):
        """Add (or refresh) the participant in the presence roster."""

    @abc.abstractmethod
    async def announce_departure(self, participant_id: str):
        """Remove the participant from the presence roster."""

    @abc.abstractmethod
    async def unsubscribe(self, handle):
        """Stop a subscription; no callback fires for it afterwards."""


class ConversationPersistence(abc.ABC):

    @abc.abstractmethod
    def load_active_conversations(self, local_id: str) -> Set[str]:
        pass

    @abc.abstractmethod
    def save_active_conversations(self, local_id: str, ids: Iterable[str]):
        pass


class IdentityProvider(abc.ABC):

    @abc.abstractmethod
    def current_participant_id(self) -> str:
        """Raises IdentityError when nobody is signed in."""

    @abc.abstractmethod
    def current_display_name(self) -> str:
        pass
