"""Message classes for ``store.proto``.

The file descriptor is assembled from ``descriptor_pb2`` and handed to the
protobuf runtime builder, which produces the same module globals protoc
output would: ``Participant``, ``ChatMessage``, the request and response
types, ``EventType`` and its values (``READY``, ``INSERT``, ...).
Keep the tables below in step with ``store.proto``.
"""
from google.protobuf import descriptor_pb2 as _descriptor_pb2
from google.protobuf import descriptor_pool as _descriptor_pool
from google.protobuf.internal import builder as _builder

_F = _descriptor_pb2.FieldDescriptorProto

_STRING = ("string", _F.TYPE_STRING)
_INT64 = ("int64", _F.TYPE_INT64)
_BOOL = ("bool", _F.TYPE_BOOL)


def _msg(name):
    return ("message", _F.TYPE_MESSAGE, ".retrochat." + name)


def _enum(name):
    return ("enum", _F.TYPE_ENUM, ".retrochat." + name)


_MESSAGES = [
    ("Participant", [("id", _STRING), ("display_name", _STRING)]),
    ("ChatMessage", [("id", _STRING), ("sender_id", _STRING), ("sender_name", _STRING),
                     ("body", _STRING), ("created_ts", _INT64), ("recipient_id", _STRING),
                     ("client_token", _STRING)]),
    ("LoginRequest", [("display_name", _STRING), ("register", _BOOL)]),
    ("LoginResponse", [("participant", _msg("Participant"))]),
    ("ListParticipantsRequest", []),
    ("ListParticipantsResponse", [("participants", _msg("Participant"), True)]),
    ("ScopeFilter", [("kind", _STRING), ("participant_id", _STRING), ("other_id", _STRING)]),
    ("FetchMessagesRequest", [("filter", _msg("ScopeFilter")), ("after", _INT64), ("has_after", _BOOL)]),
    ("FetchMessagesResponse", [("messages", _msg("ChatMessage"), True)]),
    ("InsertMessageRequest", [("sender_id", _STRING), ("body", _STRING), ("recipient_id", _STRING),
                              ("client_token", _STRING)]),
    ("InsertMessageResponse", [("message", _msg("ChatMessage"))]),
    ("WatchRequest", []),
    ("MessageEvent", [("type", _enum("EventType")), ("message", _msg("ChatMessage"))]),
    ("PresenceMeta", [("participant_id", _STRING), ("display_name", _STRING), ("online_at", _INT64)]),
    ("PresenceEvent", [("type", _enum("EventType")), ("metas", _msg("PresenceMeta"), True),
                       ("ids", _STRING, True)]),
    ("TrackResponse", [("joined", _BOOL)]),
    ("UntrackRequest", [("participant_id", _STRING)]),
    ("UntrackResponse", [("left", _BOOL)]),
]

_ENUMS = [
    ("EventType", ["READY", "INSERT", "SYNC", "JOIN", "LEAVE"]),
]

_METHODS = [
    ("Login", "LoginRequest", "LoginResponse", False),
    ("ListParticipants", "ListParticipantsRequest", "ListParticipantsResponse", False),
    ("FetchMessages", "FetchMessagesRequest", "FetchMessagesResponse", False),
    ("InsertMessage", "InsertMessageRequest", "InsertMessageResponse", False),
    ("WatchMessages", "WatchRequest", "MessageEvent", True),
    ("WatchPresence", "WatchRequest", "PresenceEvent", True),
    ("Track", "PresenceMeta", "TrackResponse", False),
    ("Untrack", "UntrackRequest", "UntrackResponse", False),
]


def _file_descriptor_proto():
    fdp = _descriptor_pb2.FileDescriptorProto(
        name="retrochat/proto/store.proto", package="retrochat", syntax="proto3")
    for name, values in _ENUMS:
        enum = fdp.enum_type.add(name=name)
        for number, value in enumerate(values):
            enum.value.add(name=value, number=number)
    for name, fields in _MESSAGES:
        message = fdp.message_type.add(name=name)
        for number, spec in enumerate(fields, start=1):
            field_name, kind = spec[0], spec[1]
            repeated = len(spec) > 2 and spec[2]
            field = message.field.add(
                name=field_name, number=number, type=kind[1],
                label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
                json_name=_json_name(field_name))
            if len(kind) > 2:
                field.type_name = kind[2]
    service = fdp.service.add(name="Store")
    for name, request, response, streaming in _METHODS:
        service.method.add(name=name, input_type=".retrochat." + request,
                           output_type=".retrochat." + response,
                           server_streaming=streaming)
    return fdp


def _json_name(name):
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


DESCRIPTOR = _descriptor_pool.Default().AddSerializedFile(
    _file_descriptor_proto().SerializeToString())

_globals = globals()
_builder.BuildMessageAndEnumDescriptors(DESCRIPTOR, _globals)
_builder.BuildTopDescriptorsAndMessages(DESCRIPTOR, 'retrochat.proto.store_pb2', _globals)
