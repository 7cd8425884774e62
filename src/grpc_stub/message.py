"""Generic request and response values exchanged with matchers."""

from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

import grpc

from grpc_stub.exceptions import StubError

# A decoded or to-be-encoded protobuf message, keyed by proto field name.
Message = Dict[str, Any]

MetadataValue = Union[str, bytes]


class Metadata(Dict[str, List[MetadataValue]]):
    """An ordered multi-map of gRPC metadata.

    Keys are lower-cased, since gRPC rejects metadata keys with upper case letters.

    Example:
        >>> md = Metadata()
        >>> md.append("X-Trace", "1")
        >>> md.append("x-trace", "2")
        >>> md.pairs()
        [('x-trace', '1'), ('x-trace', '2')]
    """

    def append(self, key: str, value: MetadataValue) -> None:
        """Add a value under key, after any values already there."""
        self.setdefault(key.lower(), []).append(value)

    def extend(self, other: "Metadata") -> None:
        """Append every value of other, keeping its order."""
        for key, values in other.items():
            for value in values:
                self.append(key, value)

    def pairs(self) -> List[Tuple[str, MetadataValue]]:
        """Flatten into (key, value) tuples, as the gRPC API expects."""
        return [(key, value) for key, values in self.items() for value in values]

    @classmethod
    def from_pairs(
        cls, pairs: Optional[Iterable[Tuple[str, MetadataValue]]]
    ) -> "Metadata":
        """Build from (key, value) tuples, e.g. context.invocation_metadata()."""
        md = cls()
        for key, value in pairs or ():
            md.append(key, value)
        return md


class Request(NamedTuple):
    """A single received message, in generic form.

    Attributes:
        service: The fully qualified service name, e.g. "routeguide.RouteGuide".
        method: The method name, e.g. "GetFeature".
        headers: The invocation metadata sent by the client.
        message: The decoded message, keyed by proto field name.
    """

    service: str
    method: str
    headers: Metadata
    message: Message

    @classmethod
    def new(
        cls, full_method_name: str, message: Message, headers: Optional[Metadata] = None
    ) -> "Request":
        """Create a request for "pkg.Service.Method", splitting on the last dot."""
        service, _, method = full_method_name.rpartition(".")
        if headers is None:
            headers = Metadata()
        return cls(service, method, headers, message)


class Status(NamedTuple):
    """The terminal status a matcher answers with."""

    code: grpc.StatusCode
    details: str = ""

    @property
    def is_error(self) -> bool:
        return self.code != grpc.StatusCode.OK

    def to_exception(self) -> StubError:
        """Return the StubError that ends a call with this status.

        Raises:
            ValueError: If the status is OK.
        """
        return StubError(details=self.details, status_code=self.code)


class Response:
    """The headers, trailers, messages and status produced for one request."""

    def __init__(
        self,
        messages: Optional[List[Message]] = None,
        headers: Optional[Metadata] = None,
        trailers: Optional[Metadata] = None,
        status: Optional[Status] = None,
    ):
        self.headers = headers if headers is not None else Metadata()
        self.trailers = trailers if trailers is not None else Metadata()
        self.messages = messages if messages is not None else []
        self.status = status

    def __repr__(self) -> str:
        return (
            f"Response(messages={self.messages!r}, headers={dict(self.headers)!r},"
            f" trailers={dict(self.trailers)!r}, status={self.status!r})"
        )

    @property
    def failed(self) -> bool:
        """Whether the response ends the call with an error status."""
        return self.status is not None and self.status.is_error

    def first_message(self) -> Optional[Message]:
        """The reply for calls that answer with a single message."""
        return self.messages[0] if self.messages else None
