import json, os
from typing import Iterable, Set
from ..utils.logger import setup_logger
from .interfaces import ConversationPersistence

logger = setup_logger('retrochat.persistence')


class JsonConversationStore(ConversationPersistence):
    """Active-conversation sets stored as one JSON file per local participant."""

    def __init__(self, directory: str):
        """Initialize the store.

        Args:
            directory (str): Directory holding ``conversations-<id>.json`` files

        Side Effects:
            - Creates the directory if it does not exist
        """
        os.makedirs(directory, exist_ok=True)
        self.directory = directory

    def _path(self, local_id: str) -> str:
        return os.path.join(self.directory, f"conversations-{local_id}.json")

    def load_active_conversations(self, local_id: str) -> Set[str]:
        path = self._path(local_id)
        if not os.path.exists(path):
            return set()
        try:
            with open(path, "r", encoding="utf-8") as f:
                rec = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable conversation file {path}: {e}")
            return set()
        return set(rec.get("active", []))

    def save_active_conversations(self, local_id: str, ids: Iterable[str]):
        """Write the set, replacing the previous file atomically.

        Side Effects:
            - Rewrites ``conversations-<local_id>.json``
        """
        path = self._path(local_id)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"participant_id": local_id, "active": sorted(ids)}, f, ensure_ascii=False)
            f.flush(); os.fsync(f.fileno())
        os.replace(tmp, path)
        logger.debug(f"Saved active conversations for {local_id}")
