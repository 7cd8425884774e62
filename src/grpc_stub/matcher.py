"""Request matchers and the responses they synthesize."""

import json
import threading
from typing import Callable, List, Optional, Tuple, Union

import grpc

from grpc_stub.message import Message, Request, Response, Status

Predicate = Callable[[Request], bool]
Handler = Callable[[Request], Response]
Mutation = Callable[[Response], None]


def service_predicate(service: str) -> Predicate:
    """Match requests to a fully qualified service, e.g. "routeguide.RouteGuide"."""
    service = service.lstrip("/")

    def predicate(r: Request) -> bool:
        return r.service == service

    return predicate


def method_predicate(method: str) -> Predicate:
    """Match requests to a method.

    method is either a bare method name ("GetFeature"), which matches that method on
    any service, or "Service/Method" ("routeguide.RouteGuide/GetFeature"), optionally
    with a leading "/".
    """
    service, _, name = method.lstrip("/").rpartition("/")

    def predicate(r: Request) -> bool:
        if service and r.service != service:
            return False
        return r.method == name

    return predicate


class Matcher:
    """A rule that recognises requests and says how to answer them.

    A request matches when every predicate returns True. The answer is built by
    applying the configured mutations, in the order they were declared, to a fresh
    Response, or to the Response returned by the function given to handler().

    Matchers are configured by chaining::

        server.method("GetFeature").header("x-id", "1").response({"name": "hello"})

    Configure matchers before sending traffic to the server. Every method is
    thread-safe, but changing a matcher while calls are in flight means concurrent
    calls may see either configuration.

    Args:
        predicate: The first predicate. A matcher always has at least one.
    """

    def __init__(self, predicate: Predicate):
        self._predicates: List[Predicate] = [predicate]
        self._handler: Optional[Handler] = None
        self._mutations: List[Mutation] = []
        self._requests: List[Request] = []
        self._lock = threading.Lock()

    def match(self, fn: Predicate) -> "Matcher":
        """Add a predicate; the request must satisfy it too."""
        with self._lock:
            self._predicates.append(fn)
        return self

    def service(self, service: str) -> "Matcher":
        """Require the request to be for the given service."""
        return self.match(service_predicate(service))

    def method(self, method: str) -> "Matcher":
        """Require the request to be for the given method. See method_predicate."""
        return self.match(method_predicate(method))

    def evaluate(self, request: Request) -> bool:
        """Return True if every predicate accepts the request."""
        with self._lock:
            predicates = tuple(self._predicates)
        return all(fn(request) for fn in predicates)

    def header(self, key: str, value: str) -> "Matcher":
        """Append a response header."""
        return self._mutate(lambda res: res.headers.append(key, value))

    def trailer(self, key: str, value: str) -> "Matcher":
        """Append a response trailer."""
        return self._mutate(lambda res: res.trailers.append(key, value))

    def response(self, message: Message) -> "Matcher":
        """Append a response message.

        Unary and client-streaming methods answer with the first message only;
        streaming methods send them all, in order.
        """
        return self._mutate(lambda res: res.messages.append(message))

    def response_string(self, message: str) -> "Matcher":
        """Append a response message given as a JSON object."""
        return self.response(json.loads(message))

    def status(
        self, status: Union[Status, grpc.StatusCode], details: Optional[str] = None
    ) -> "Matcher":
        """Set the response status.

        An error status ends the call with that status instead of sending messages.
        """
        if not isinstance(status, Status):
            status = Status(status, details if details is not None else status.name)

        def set_status(res: Response) -> None:
            res.status = status

        return self._mutate(set_status)

    def handler(self, fn: Handler) -> "Matcher":
        """Answer with fn(request), replacing everything configured so far.

        Headers, trailers, messages and statuses declared afterwards are applied to
        the Response that fn returns.
        """
        with self._lock:
            self._handler = fn
            self._mutations = []
        return self

    def _mutate(self, mutation: Mutation) -> "Matcher":
        with self._lock:
            self._mutations.append(mutation)
        return self

    def handle(self, request: Request) -> Response:
        """Build the response for a request this matcher accepted."""
        with self._lock:
            handler = self._handler
            mutations = tuple(self._mutations)
        res = handler(request) if handler is not None else Response()
        for mutation in mutations:
            mutation(res)
        return res

    def record(self, request: Request) -> None:
        """Add a request to the ones this matcher answered."""
        with self._lock:
            self._requests.append(request)

    def requests(self) -> Tuple[Request, ...]:
        """The requests this matcher answered, in the order they were received."""
        with self._lock:
            return tuple(self._requests)
