"""Base class for server-side interceptors, and gRPC method name parsing."""

import abc
from typing import Any, Callable, NamedTuple

import grpc

from grpc_stub.schema import CallShape


class ServerInterceptor(grpc.ServerInterceptor, metaclass=abc.ABCMeta):
    """Base class for interceptors installed on the stub server.

    To implement an interceptor, subclass this class and override the intercept method.
    """

    @abc.abstractmethod
    def intercept(
        self,
        method: Callable,
        request_or_iterator: Any,
        context: grpc.ServicerContext,
        method_name: "MethodName",
        shape: CallShape,
    ) -> Any:  # pragma: no cover
        """Override this method to implement a custom interceptor.

        You should call method(request_or_iterator, context) to invoke the next handler
        (either a call-shape handler, or the next interceptor in the list).

        Args:
            method: Either the call-shape handler, or the next interceptor in the
                chain.
            request_or_iterator: The request if it is a unary request, or an iterator
                of requests if it is a streaming request. For stubbed methods these are
                raw bytes.
            context: The ServicerContext passed by gRPC to the service.
            method_name: The parsed "/protobuf.package.Service/Method" being called.
            shape: Whether requests and responses of the method are streamed.

        Returns:
            This should return the result of method(request_or_iterator, context): the
            response, or an iterator of responses if shape.response_streaming.
        """
        return method(request_or_iterator, context)

    # Implementation of grpc.ServerInterceptor, do not override.
    def intercept_service(self, continuation, handler_call_details):
        """Implementation of grpc.ServerInterceptor.

        This is not part of the ServerInterceptor API, but must have a public name.
        Do not override it, unless you know what you're doing.
        """
        next_handler = continuation(handler_call_details)
        # Returns None if the method isn't implemented.
        if next_handler is None:
            return

        shape = CallShape(
            (next_handler.request_streaming, next_handler.response_streaming)
        )
        next_handler_method = getattr(next_handler, shape.name.lower())
        method_name = parse_method_name(handler_call_details.method)

        def invoke_intercept_method(request_or_iterator, context):
            return self.intercept(
                next_handler_method, request_or_iterator, context, method_name, shape
            )

        return shape.rpc_method_handler(
            invoke_intercept_method,
            request_deserializer=next_handler.request_deserializer,
            response_serializer=next_handler.response_serializer,
        )


class MethodName(NamedTuple):
    """The parts of a gRPC method path.

    Attributes:
        package: The proto package, or "" when the file declares none.
        service: The service name without its package.
        method: The method name.
    """

    package: str
    service: str
    method: str

    def __str__(self) -> str:
        """The method path, e.g. "/routeguide.RouteGuide/GetFeature"."""
        return f"/{self.fully_qualified_service}/{self.method}"

    @property
    def fully_qualified_service(self) -> str:
        """The service name prefixed with the package.

        Example:
            >>> MethodName("foo.bar", "SearchService", "Search").fully_qualified_service
            'foo.bar.SearchService'
        """
        return f"{self.package}.{self.service}" if self.package else self.service


def parse_method_name(method_name: str) -> MethodName:
    """Split a method path as gRPC passes it in handler_call_details.method.

    Example:
        >>> parse_method_name("/routeguide.RouteGuide/GetFeature")
        MethodName(package='routeguide', service='RouteGuide', method='GetFeature')
    """
    service, _, method = method_name.lstrip("/").partition("/")
    package, _, service = service.rpartition(".")
    return MethodName(package, service, method)
