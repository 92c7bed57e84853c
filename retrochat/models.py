import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

PROVISIONAL_PREFIX = "local-"


def now_ms() -> int:
    """Current wall clock time in Unix milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Participant:
    """Represents a chat participant profile.

    Attributes:
        id (str): Unique identifier for the participant
        display_name (str): Participant's chosen display name
    """
    id: str
    display_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name}

    @classmethod
    def from_dict(cls, rec: Dict[str, Any]) -> "Participant":
        return cls(id=rec["id"], display_name=rec["display_name"])


@dataclass
class Message:
    """Represents a chat message, confirmed or provisional.

    A message without a recipient belongs to the public lobby; a message
    with a recipient is a direct message between sender and recipient.

    Attributes:
        id (str): Store-assigned identifier, or a provisional identifier
            starting with ``local-`` for optimistic echoes
        sender_id (str): ID of the participant who sent the message
        sender_name (str): Display name of the sender at send time
        body (str): Content of the message
        created_ts (int): Unix timestamp in milliseconds; server-assigned
            for confirmed messages, client clock for provisional ones
        recipient_id (Optional[str]): Recipient for direct messages, None
            for public messages
        provisional (bool): True until the store has confirmed the message
        client_token (Optional[str]): Idempotency token chosen by the
            sending client and echoed back by the store
    """
    id: str
    sender_id: str
    sender_name: str
    body: str
    created_ts: int
    recipient_id: Optional[str] = None
    provisional: bool = False
    client_token: Optional[str] = None

    @property
    def is_direct(self) -> bool:
        return self.recipient_id is not None

    def sort_key(self):
        return (self.created_ts, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "body": self.body,
            "created_ts": self.created_ts,
            "recipient_id": self.recipient_id,
            "client_token": self.client_token,
        }

    @classmethod
    def from_dict(cls, rec: Dict[str, Any]) -> "Message":
        return cls(
            id=rec["id"],
            sender_id=rec["sender_id"],
            sender_name=rec.get("sender_name", ""),
            body=rec["body"],
            created_ts=int(rec["created_ts"]),
            recipient_id=rec.get("recipient_id"),
            client_token=rec.get("client_token"),
        )

    @classmethod
    def provisional_for(cls, sender: Participant, body: str,
                        recipient_id: Optional[str] = None) -> "Message":
        """Build an optimistic echo for a message that is about to be sent."""
        token = uuid.uuid4().hex
        return cls(
            id=PROVISIONAL_PREFIX + token,
            sender_id=sender.id,
            sender_name=sender.display_name,
            body=body,
            created_ts=now_ms(),
            recipient_id=recipient_id,
            provisional=True,
            client_token=token,
        )


@dataclass(frozen=True)
class Scope:
    """The conversation currently being viewed.

    ``Scope.public()`` is the shared lobby; ``Scope.direct(other_id)`` is a
    one-to-one conversation with another participant.
    """
    other_id: Optional[str] = None

    @classmethod
    def public(cls) -> "Scope":
        return cls(None)

    @classmethod
    def direct(cls, other_id: str) -> "Scope":
        if not other_id:
            raise ValueError("direct scope needs a participant id")
        return cls(other_id)

    @property
    def is_public(self) -> bool:
        return self.other_id is None

    def __str__(self):
        return "public" if self.is_public else f"direct:{self.other_id}"


@dataclass(frozen=True)
class ScopeFilter:
    """Query-side description of which messages to fetch.

    kind is one of:
        - ``public``: messages without a recipient
        - ``direct``: messages between ``participant_id`` and ``other_id``
        - ``inbox``: everything ``participant_id`` may see (public plus
          direct messages sent or received by them)
    """
    kind: str
    participant_id: Optional[str] = None
    other_id: Optional[str] = None

    @classmethod
    def for_scope(cls, scope: Scope, local_id: str) -> "ScopeFilter":
        if scope.is_public:
            return cls("public")
        return cls("direct", local_id, scope.other_id)

    @classmethod
    def inbox(cls, local_id: str) -> "ScopeFilter":
        return cls("inbox", local_id)

    def matches(self, m: Message) -> bool:
        if self.kind == "public":
            return m.recipient_id is None
        if self.kind == "direct":
            pair = {self.participant_id, self.other_id}
            return m.recipient_id is not None and {m.sender_id, m.recipient_id} == pair
        if self.kind == "inbox":
            return (m.recipient_id is None
                    or self.participant_id in (m.sender_id, m.recipient_id))
        raise ValueError(f"unknown scope filter kind {self.kind!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "participant_id": self.participant_id,
                "other_id": self.other_id}

    @classmethod
    def from_dict(cls, rec: Dict[str, Any]) -> "ScopeFilter":
        return cls(rec["kind"], rec.get("participant_id"), rec.get("other_id"))


class Decision(enum.Enum):
    """Outcome of running a message event through the event filter."""
    SHOW = "show"
    COUNT_UNREAD = "count_unread"
    IGNORE = "ignore"


class ChannelState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DEGRADED = "degraded"
    DISCONNECTED = "disconnected"


@dataclass
class PresenceMeta:
    """Payload announced on the presence channel."""
    participant_id: str
    display_name: str
    online_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {"participant_id": self.participant_id,
                "display_name": self.display_name,
                "online_at": self.online_at}

    @classmethod
    def from_dict(cls, rec: Dict[str, Any]) -> "PresenceMeta":
        return cls(rec["participant_id"], rec.get("display_name", ""),
                   int(rec.get("online_at", 0)))
