"""Conversions between domain models and ``store_pb2`` messages.

proto3 strings have no null, so an empty ``recipient_id``,
``client_token`` or filter id stands for None.
"""
from typing import Optional
from ..models import Message, Participant, PresenceMeta, ScopeFilter
from . import store_pb2


def _none_if_empty(value: str) -> Optional[str]:
    return value or None


def participant_to_pb(p: Participant) -> store_pb2.Participant:
    return store_pb2.Participant(id=p.id, display_name=p.display_name)


def participant_from_pb(pb: store_pb2.Participant) -> Participant:
    return Participant(pb.id, pb.display_name)


def message_to_pb(m: Message) -> store_pb2.ChatMessage:
    return store_pb2.ChatMessage(
        id=m.id,
        sender_id=m.sender_id,
        sender_name=m.sender_name,
        body=m.body,
        created_ts=m.created_ts,
        recipient_id=m.recipient_id or "",
        client_token=m.client_token or "",
    )


def message_from_pb(pb: store_pb2.ChatMessage) -> Message:
    return Message(
        id=pb.id,
        sender_id=pb.sender_id,
        sender_name=pb.sender_name,
        body=pb.body,
        created_ts=pb.created_ts,
        recipient_id=_none_if_empty(pb.recipient_id),
        client_token=_none_if_empty(pb.client_token),
    )


def meta_to_pb(meta: PresenceMeta) -> store_pb2.PresenceMeta:
    return store_pb2.PresenceMeta(participant_id=meta.participant_id,
                                  display_name=meta.display_name,
                                  online_at=meta.online_at)


def meta_from_pb(pb: store_pb2.PresenceMeta) -> PresenceMeta:
    return PresenceMeta(pb.participant_id, pb.display_name, pb.online_at)


def filter_to_pb(f: ScopeFilter) -> store_pb2.ScopeFilter:
    return store_pb2.ScopeFilter(kind=f.kind, participant_id=f.participant_id or "",
                                 other_id=f.other_id or "")


def filter_from_pb(pb: store_pb2.ScopeFilter) -> ScopeFilter:
    return ScopeFilter(pb.kind, _none_if_empty(pb.participant_id), _none_if_empty(pb.other_id))


def fetch_request(f: ScopeFilter, after: Optional[int] = None) -> store_pb2.FetchMessagesRequest:
    return store_pb2.FetchMessagesRequest(filter=filter_to_pb(f), after=after or 0,
                                          has_after=after is not None)
