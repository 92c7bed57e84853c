"""Client and server classes for the ``retrochat.Store`` service."""
import grpc

from . import store_pb2 as store__pb2

SERVICE_NAME = 'retrochat.Store'

_UNARY = (
    ('Login', store__pb2.LoginRequest, store__pb2.LoginResponse),
    ('ListParticipants', store__pb2.ListParticipantsRequest, store__pb2.ListParticipantsResponse),
    ('FetchMessages', store__pb2.FetchMessagesRequest, store__pb2.FetchMessagesResponse),
    ('InsertMessage', store__pb2.InsertMessageRequest, store__pb2.InsertMessageResponse),
    ('Track', store__pb2.PresenceMeta, store__pb2.TrackResponse),
    ('Untrack', store__pb2.UntrackRequest, store__pb2.UntrackResponse),
)

_STREAMING = (
    ('WatchMessages', store__pb2.WatchRequest, store__pb2.MessageEvent),
    ('WatchPresence', store__pb2.WatchRequest, store__pb2.PresenceEvent),
)


def _path(name):
    return f'/{SERVICE_NAME}/{name}'


class StoreStub(object):
    """Message store: participants, messages and the live presence roster."""

    def __init__(self, channel):
        """Constructor.

        Args:
            channel: A grpc.Channel or grpc.aio.Channel.
        """
        for name, request, response in _UNARY:
            setattr(self, name, channel.unary_unary(
                _path(name),
                request_serializer=request.SerializeToString,
                response_deserializer=response.FromString,
            ))
        for name, request, response in _STREAMING:
            setattr(self, name, channel.unary_stream(
                _path(name),
                request_serializer=request.SerializeToString,
                response_deserializer=response.FromString,
            ))


class StoreServicer(object):
    """Message store: participants, messages and the live presence roster."""

    def Login(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def ListParticipants(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def FetchMessages(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def InsertMessage(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def WatchMessages(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def WatchPresence(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def Track(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')

    def Untrack(self, request, context):
        context.set_code(grpc.StatusCode.UNIMPLEMENTED)
        context.set_details('Method not implemented!')
        raise NotImplementedError('Method not implemented!')


def add_StoreServicer_to_server(servicer, server):
    rpc_method_handlers = {}
    for name, request, response in _UNARY:
        rpc_method_handlers[name] = grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=request.FromString,
            response_serializer=response.SerializeToString,
        )
    for name, request, response in _STREAMING:
        rpc_method_handlers[name] = grpc.unary_stream_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=request.FromString,
            response_serializer=response.SerializeToString,
        )
    generic_handler = grpc.method_handlers_generic_handler(SERVICE_NAME, rpc_method_handlers)
    server.add_generic_rpc_handlers((generic_handler,))
