"""Visibility decision for incoming message events.

Both ingestion channels (push and poll) and the bulk resync run every
message through :func:`decide`; nothing else decides what is shown.
"""
from ..models import Decision, Message, Scope


def other_party(event: Message, local_id: str) -> str:
    """The participant on the far side of a direct message."""
    return event.recipient_id if event.sender_id == local_id else event.sender_id


def decide(event: Message, scope: Scope, local_id: str) -> Decision:
    """Decide whether an event is shown, counted as unread, or ignored.

    Args:
        event (Message): The incoming message
        scope (Scope): Scope active at the moment the event is handled
        local_id (str): ID of the local participant

    Returns:
        Decision: SHOW, COUNT_UNREAD or IGNORE
    """
    if not event.is_direct:
        return Decision.SHOW if scope.is_public else Decision.IGNORE

    other = other_party(event, local_id)
    if scope == Scope.direct(other):
        return Decision.SHOW
    if event.recipient_id == local_id and event.sender_id != local_id:
        return Decision.COUNT_UNREAD
    # DM between two other participants, or our own DM seen from elsewhere
    return Decision.IGNORE
