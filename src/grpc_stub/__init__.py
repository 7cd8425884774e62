"""A programmable gRPC stub server for testing clients."""

from grpc_stub.dispatcher import Dispatcher
from grpc_stub.endpoint import ServerState, StubServer
from grpc_stub.exception_to_status import ExceptionToStatusInterceptor
from grpc_stub.exceptions import (
    DecodeFailure,
    EncodeFailure,
    NotFound,
    SchemaError,
    StubError,
    UsageError,
)
from grpc_stub.interceptor import MethodName, parse_method_name, ServerInterceptor
from grpc_stub.matcher import Matcher
from grpc_stub.message import Message, Metadata, Request, Response, Status
from grpc_stub.schema import CallShape, DescriptorRegistry, MethodCodec


__all__ = [
    "CallShape",
    "DecodeFailure",
    "DescriptorRegistry",
    "Dispatcher",
    "EncodeFailure",
    "ExceptionToStatusInterceptor",
    "Matcher",
    "Message",
    "Metadata",
    "MethodCodec",
    "MethodName",
    "NotFound",
    "parse_method_name",
    "Request",
    "Response",
    "SchemaError",
    "ServerInterceptor",
    "ServerState",
    "Status",
    "StubError",
    "StubServer",
    "UsageError",
]
