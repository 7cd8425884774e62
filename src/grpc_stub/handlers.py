"""gRPC method handlers that answer calls from the dispatcher's matchers.

There is one handler per call shape. They take and return raw bytes; decoding and
encoding happens here through the method's codec, so that a malformed message is
reported as DecodeFailure rather than an opaque deserialization error.

Unary and client-streaming calls are answered by the first matching matcher.
Server-streaming and bidirectional-streaming calls are answered by every matching
matcher, in registration order, for each received message.
"""

import logging
from typing import Callable, Dict, Iterable, Iterator, Sequence

import grpc

from grpc_stub.dispatcher import Dispatcher
from grpc_stub.exceptions import NotFound
from grpc_stub.matcher import Matcher
from grpc_stub.message import Metadata, Request, Response
from grpc_stub.schema import CallShape, MethodCodec

logger = logging.getLogger(__name__)


class _CallWriter:
    """Emits headers and trailers for one call.

    gRPC sends initial metadata once per call: the first non-empty set of headers is
    sent, and any later headers are dropped. Streaming a message also sends the
    initial metadata. Trailers accumulate until the call ends.
    """

    def __init__(self, context: grpc.ServicerContext, codec: MethodCodec):
        self._context = context
        self._codec = codec
        self._headers_sent = False
        self._trailers = Metadata()

    @property
    def active(self) -> bool:
        return self._context.is_active()

    def send_headers(self, headers: Metadata) -> None:
        if not headers:
            return
        if self._headers_sent:
            logger.debug(
                "%s: headers already sent, dropping %s", self._codec.path, headers
            )
            return
        self._context.send_initial_metadata(headers.pairs())
        self._headers_sent = True

    def add_trailers(self, trailers: Metadata) -> None:
        if not trailers:
            return
        self._trailers.extend(trailers)
        self._context.set_trailing_metadata(self._trailers.pairs())

    def emit(self, res: Response) -> None:
        """Send headers and trailers, and raise if the response is an error."""
        self.send_headers(res.headers)
        self.add_trailers(res.trailers)
        if res.failed:
            raise res.status.to_exception()

    def stream(self, res: Response) -> Iterator[bytes]:
        """Emit the response, then encode each of its messages in order."""
        self.emit(res)
        for message in res.messages:
            if not self.active:
                return
            data = self._codec.encode(message)
            self._headers_sent = True
            yield data


def _receive(
    codec: MethodCodec,
    dispatcher: Dispatcher,
    data: bytes,
    context: grpc.ServicerContext,
) -> Request:
    request = Request.new(
        codec.full_name,
        codec.decode(data),
        Metadata.from_pairs(context.invocation_metadata()),
    )
    dispatcher.record(request)
    return request


def _answer(matcher: Matcher, request: Request) -> Response:
    matcher.record(request)
    return matcher.handle(request)


def _not_found(codec: MethodCodec) -> NotFound:
    logger.debug("%s: no matcher found", codec.path)
    return NotFound()


def unary_unary(codec: MethodCodec, dispatcher: Dispatcher) -> Callable:
    def handle(data: bytes, context: grpc.ServicerContext) -> bytes:
        request = _receive(codec, dispatcher, data, context)
        matcher = dispatcher.first_match(request)
        if matcher is None:
            raise _not_found(codec)

        res = _answer(matcher, request)
        _CallWriter(context, codec).emit(res)
        return codec.encode(res.first_message())

    return handle


def unary_stream(codec: MethodCodec, dispatcher: Dispatcher) -> Callable:
    def handle(data: bytes, context: grpc.ServicerContext) -> Iterator[bytes]:
        request = _receive(codec, dispatcher, data, context)
        matchers = dispatcher.all_matches(request)
        if not matchers:
            raise _not_found(codec)

        writer = _CallWriter(context, codec)
        for matcher in matchers:
            if not writer.active:
                return
            yield from writer.stream(_answer(matcher, request))

    return handle


def stream_unary(codec: MethodCodec, dispatcher: Dispatcher) -> Callable:
    def handle(
        request_iterator: Iterable[bytes], context: grpc.ServicerContext
    ) -> bytes:
        requests = [
            _receive(codec, dispatcher, data, context) for data in request_iterator
        ]

        # The first (request, matcher) pair that matches answers the whole call.
        for request in requests:
            for matcher in dispatcher.matchers():
                if not matcher.evaluate(request):
                    continue
                res = _answer(matcher, request)
                _CallWriter(context, codec).emit(res)
                return codec.encode(res.first_message())

        raise _not_found(codec)

    return handle


def stream_stream(codec: MethodCodec, dispatcher: Dispatcher) -> Callable:
    def handle(
        request_iterator: Iterable[bytes], context: grpc.ServicerContext
    ) -> Iterator[bytes]:
        writer = _CallWriter(context, codec)
        for data in request_iterator:
            request = _receive(codec, dispatcher, data, context)
            matchers = dispatcher.all_matches(request)
            if not matchers:
                raise _not_found(codec)

            for matcher in matchers:
                if not writer.active:
                    return
                yield from writer.stream(_answer(matcher, request))

    return handle


_ADAPTERS: Dict[CallShape, Callable[[MethodCodec, Dispatcher], Callable]] = {
    CallShape.UNARY_UNARY: unary_unary,
    CallShape.UNARY_STREAM: unary_stream,
    CallShape.STREAM_UNARY: stream_unary,
    CallShape.STREAM_STREAM: stream_stream,
}


def rpc_method_handler(
    codec: MethodCodec, dispatcher: Dispatcher
) -> grpc.RpcMethodHandler:
    """Build the gRPC handler for one method.

    No (de)serializers are given to gRPC, so the handlers see raw bytes.
    """
    return codec.shape.rpc_method_handler(_ADAPTERS[codec.shape](codec, dispatcher))


def service_handler(
    service: str, codecs: Sequence[MethodCodec], dispatcher: Dispatcher
) -> grpc.GenericRpcHandler:
    """Build the generic handler serving the given methods of a service.

    Args:
        service: The fully qualified service name, e.g. "routeguide.RouteGuide".
        codecs: The codecs of the service's methods.
        dispatcher: Where the handlers find matchers and record requests.
    """
    return grpc.method_handlers_generic_handler(
        service,
        {codec.name: rpc_method_handler(codec, dispatcher) for codec in codecs},
    )
