import asyncio
from typing import Callable, Dict, Optional

from ..errors import ValidationError, WriteError
from ..models import Message, Participant, Scope
from ..utils.logger import setup_logger
from .scope import ScopeSelector
from .store import MessageStore

logger = setup_logger('retrochat.engine.echo')


class OptimisticEchoManager:
    """Shows sent messages before the store confirms them.

    A provisional copy goes into the message store right away. When the
    insert succeeds, the returned row is handed to ``accept_confirmed``,
    which runs it through the same path as pushed or polled events; the
    store then swaps the provisional copy for the confirmed one. When the
    insert fails or the send is cancelled, the provisional copy is removed
    again.
    """

    def __init__(self, store: MessageStore, scope: ScopeSelector, writer,
                 accept_confirmed: Callable[[Message], object],
                 max_length: int = 500, write_timeout: Optional[float] = 10.0,
                 on_provisional: Optional[Callable[[Message], object]] = None):
        self._store = store
        self._scope = scope
        self._writer = writer
        self._accept_confirmed = accept_confirmed
        self._on_provisional = on_provisional
        self.max_length = max_length
        self.write_timeout = write_timeout
        self._pending: Dict[str, Message] = {}

    @property
    def pending(self):
        """Provisional messages whose insert has not finished yet."""
        return list(self._pending.values())

    def validate(self, text: str) -> str:
        """Return the trimmed body or raise ValidationError."""
        body = (text or "").strip()
        if not body:
            raise ValidationError("Message is empty")
        if len(body) > self.max_length:
            raise ValidationError(f"Message is longer than {self.max_length} characters")
        return body

    async def send(self, sender: Participant, text: str, scope: Optional[Scope] = None) -> Message:
        """Send a message to ``scope`` (default: the active scope).

        Args:
            sender (Participant): Local participant
            text (str): Raw input text
            scope (Optional[Scope]): Destination scope

        Returns:
            Message: The confirmed message returned by the store

        Raises:
            ValidationError: Empty or oversized body; nothing was sent
            WriteError: The store rejected the insert or timed out
        """
        body = self.validate(text)
        scope = scope or self._scope.current
        provisional = Message.provisional_for(sender, body, scope.other_id)

        if scope == self._scope.current:
            self._store.add_provisional(provisional)
            if self._on_provisional is not None:
                self._on_provisional(provisional)
        self._pending[provisional.id] = provisional

        try:
            confirmed = await asyncio.wait_for(
                self._writer.insert_message(sender, body, scope.other_id,
                                            client_token=provisional.client_token),
                timeout=self.write_timeout,
            )
        except asyncio.TimeoutError as e:
            self._rollback(provisional)
            raise WriteError(f"No confirmation within {self.write_timeout}s") from e
        except WriteError:
            self._rollback(provisional)
            raise
        except BaseException:
            # Cancellation or an unexpected transport error; the outcome is unknown.
            self._rollback(provisional)
            raise
        finally:
            self._pending.pop(provisional.id, None)

        # Push and poll deliver the same row later; this covers both being quiet.
        self._accept_confirmed(confirmed)
        return confirmed

    def _rollback(self, provisional: Message):
        if self._store.remove(provisional.id):
            logger.error(f"Send failed, provisional {provisional.id} removed")
        else:
            logger.error(f"Send failed for {provisional.id} (no longer displayed)")
