import json, os, uuid
from typing import Callable, Dict, Iterable, List, Optional
from ..models import Message, Participant, ScopeFilter, now_ms
from ..utils.logger import setup_logger

logger = setup_logger('retrochat.repo')


def _open_jsonl(path: Optional[str]):
    if path and os.path.dirname(path):
        os.makedirs(os.path.dirname(path), exist_ok=True)


def _append_line(path: str, rec: dict):
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(rec, ensure_ascii=False) + "\n")
        f.flush(); os.fsync(f.fileno())


class ParticipantsRepo:
    """Repository for participant profiles in JSONL format.

    With ``path=None`` the repository lives in memory only.
    """

    def __init__(self, path: Optional[str] = None):
        """Initialize participants repository.

        Args:
            path (Optional[str]): Path to JSONL file storing profiles

        Side Effects:
            - Creates directory structure if not exists
            - Loads existing participants from file
        """
        _open_jsonl(path)
        self.path = path
        self.by_id: Dict[str, Participant] = {}
        self._load()

    def _load(self):
        if not self.path or not os.path.exists(self.path): return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip(): continue
                p = Participant.from_dict(json.loads(line))
                self.by_id[p.id] = p

    def register(self, display_name: str) -> Participant:
        """Create a new participant with a fresh ID.

        Raises:
            ValueError: If the display name is empty or already taken
        """
        display_name = display_name.strip()
        if not display_name:
            raise ValueError("display name must not be empty")
        if self.find_by_display_name(display_name):
            raise ValueError(f"Participant {display_name} already exists")
        p = Participant(id=uuid.uuid4().hex[:12], display_name=display_name)
        if self.path:
            _append_line(self.path, p.to_dict())
        self.by_id[p.id] = p
        logger.info(f"New participant registered: {p.display_name} (ID: {p.id})")
        return p

    def get(self, participant_id: str) -> Optional[Participant]:
        return self.by_id.get(participant_id)

    def all(self) -> List[Participant]:
        """All participants ordered by display name."""
        return sorted(self.by_id.values(), key=lambda p: p.display_name.lower())

    def find_by_display_name(self, display_name: str) -> Optional[Participant]:
        """Find participant by display name (case sensitive)."""
        for p in self.by_id.values():
            if p.display_name == display_name:
                return p
        return None


class MessagesRepo:
    """Append-only message table with server-assigned IDs and timestamps.

    Timestamps strictly increase in insertion order, even if the wall
    clock steps back, so a poll for "newer than t" never skips a row.
    """

    def __init__(self, path: Optional[str] = None, clock: Callable[[], int] = now_ms):
        _open_jsonl(path)
        self.path = path
        self._clock = clock
        self._messages: List[Message] = []
        self._by_token: Dict[tuple, Message] = {}
        self._last_ts = 0
        self._load()

    def _load(self):
        if not self.path or not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                self._remember(Message.from_dict(json.loads(line)))
        logger.info(f"Loaded {len(self._messages)} messages from {self.path}")

    def _remember(self, m: Message):
        self._messages.append(m)
        self._last_ts = max(self._last_ts, m.created_ts)
        if m.client_token:
            self._by_token[(m.sender_id, m.client_token)] = m

    def insert(self, sender: Participant, body: str, recipient_id: Optional[str] = None,
               client_token: Optional[str] = None) -> Message:
        """Append a message and return the stored row.

        A retry carrying a client token the sender already used returns
        the row stored the first time instead of inserting a duplicate.

        Args:
            sender (Participant): Author of the message
            body (str): Message text
            recipient_id (Optional[str]): Recipient for direct messages
            client_token (Optional[str]): Sender-chosen idempotency token

        Returns:
            Message: The confirmed message
        """
        if client_token and (sender.id, client_token) in self._by_token:
            return self._by_token[(sender.id, client_token)]
        ts = max(self._clock(), self._last_ts + 1)
        m = Message(
            id=uuid.uuid4().hex,
            sender_id=sender.id,
            sender_name=sender.display_name,
            body=body,
            created_ts=ts,
            recipient_id=recipient_id,
            client_token=client_token,
        )
        if self.path:
            _append_line(self.path, m.to_dict())
        self._remember(m)
        if m.is_direct:
            logger.info(f"New direct message saved: {m.id} from {m.sender_id} to {m.recipient_id}")
        else:
            logger.info(f"New public message saved: {m.id} from {m.sender_id}")
        return m

    def query(self, scope_filter: ScopeFilter, after: Optional[int] = None) -> List[Message]:
        """Messages matching the filter and newer than ``after``, oldest first."""
        found = [m for m in self._messages
                 if (after is None or m.created_ts > after) and scope_filter.matches(m)]
        found.sort(key=Message.sort_key)
        return found

    def __len__(self):
        return len(self._messages)

    def all(self) -> Iterable[Message]:
        return list(self._messages)
