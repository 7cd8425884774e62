"""ExceptionToStatusInterceptor catches StubError and sets the gRPC status."""

from contextlib import contextmanager
import logging
from typing import Any, Callable, Generator, Iterable, Iterator, NoReturn, Optional

import grpc

from grpc_stub.exceptions import StubError
from grpc_stub.interceptor import MethodName, ServerInterceptor
from grpc_stub.schema import CallShape

logger = logging.getLogger(__name__)


class ExceptionToStatusInterceptor(ServerInterceptor):
    """An interceptor that turns exceptions into the RPC status and details.

    Any StubError raised by a call-shape handler (no matcher found, a message that
    failed to decode or encode, or an error status configured on a matcher) aborts the
    call with the error's status code and details. Trailers already set on the context
    are sent along with the status.

    Args:
        status_on_unknown_exception: Specify what to do if an exception which is
            not a subclass of StubError is raised, e.g. by a handler function given to
            Matcher.handler(). If None, do nothing (by default, grpc will set the
            status to UNKNOWN). If not None, then the status code will be set to this
            value if `context.abort` hasn't been called earlier. It must not be OK. The
            details will be set to the value of repr(e), where e is the exception. In
            any case, the exception will be propagated.

    Raises:
        ValueError: If status_code is OK.
    """

    def __init__(self, status_on_unknown_exception: Optional[grpc.StatusCode] = None):
        if status_on_unknown_exception == grpc.StatusCode.OK:
            raise ValueError("The status code for unknown exceptions cannot be OK")

        self._status_on_unknown_exception = status_on_unknown_exception

    def _generate_responses(
        self,
        context: grpc.ServicerContext,
        method_name: MethodName,
        response_iterator: Iterable,
    ) -> Generator[Any, None, None]:
        """Yield all the responses, but check for errors along the way."""
        with self._handle_exception(context, method_name):
            yield from response_iterator

    @contextmanager
    def _handle_exception(
        self, context: grpc.ServicerContext, method_name: MethodName
    ) -> Iterator[None]:
        try:
            yield
        except Exception as ex:
            self.handle_exception(ex, context, method_name)

    def handle_exception(
        self, ex: Exception, context: grpc.ServicerContext, method_name: MethodName
    ) -> NoReturn:
        """Override this if extending ExceptionToStatusInterceptor.

        This will get called when an exception is raised while handling the RPC.

        Args:
            ex: The exception that was raised.
            context: The servicer context. You probably want to call context.abort(...)
            method_name: The method being called.

        Raises:
            This method must raise and cannot return, as in general there's no
            meaningful RPC response to return if an exception has occurred. You can
            raise the original exception, ex, or something else.
        """
        if isinstance(ex, StubError):
            logger.debug("%s ended with %r", method_name, ex)
            context.abort(ex.status_code, ex.details)
        elif not context.code():
            logger.exception("Unexpected error handling %s", method_name)
            if self._status_on_unknown_exception is not None:
                context.abort(self._status_on_unknown_exception, repr(ex))
        raise ex

    def intercept(
        self,
        method: Callable,
        request_or_iterator: Any,
        context: grpc.ServicerContext,
        method_name: MethodName,
        shape: CallShape,
    ) -> Any:
        """Do not call this directly; the stub server installs it on grpc.server()."""
        with self._handle_exception(context, method_name):
            response_or_iterator = method(request_or_iterator, context)

        if shape.response_streaming:
            return self._generate_responses(context, method_name, response_or_iterator)
        return response_or_iterator
