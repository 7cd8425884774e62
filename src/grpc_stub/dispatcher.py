"""The ordered set of matchers and the log of every request received."""

import threading
from typing import List, Optional, Tuple

from grpc_stub.matcher import Matcher, method_predicate, Predicate, service_predicate
from grpc_stub.message import Request


class Dispatcher:
    """Resolves which matchers answer a request, and records every request.

    Matchers are evaluated in the order they were added. Each received message is
    recorded exactly once, whether or not any matcher accepts it.
    """

    def __init__(self):
        self._matchers: List[Matcher] = []
        self._requests: List[Request] = []
        self._lock = threading.Lock()

    def add_matcher(self, matcher: Matcher) -> Matcher:
        with self._lock:
            self._matchers.append(matcher)
        return matcher

    def match(self, fn: Predicate) -> Matcher:
        """Register a matcher for requests that satisfy fn."""
        return self.add_matcher(Matcher(fn))

    def service(self, service: str) -> Matcher:
        """Register a matcher for requests to a service."""
        return self.add_matcher(Matcher(service_predicate(service)))

    def method(self, method: str) -> Matcher:
        """Register a matcher for a method, given as "Method" or "Service/Method"."""
        return self.add_matcher(Matcher(method_predicate(method)))

    def matchers(self) -> Tuple[Matcher, ...]:
        with self._lock:
            return tuple(self._matchers)

    def record(self, request: Request) -> None:
        with self._lock:
            self._requests.append(request)

    def requests(self) -> Tuple[Request, ...]:
        """Every request received, in order."""
        with self._lock:
            return tuple(self._requests)

    def first_match(self, request: Request) -> Optional[Matcher]:
        """The earliest registered matcher that accepts the request, if any."""
        for matcher in self.matchers():
            if matcher.evaluate(request):
                return matcher
        return None

    def all_matches(self, request: Request) -> List[Matcher]:
        """Every matcher that accepts the request, in registration order."""
        return [matcher for matcher in self.matchers() if matcher.evaluate(request)]
