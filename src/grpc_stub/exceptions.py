"""Exceptions raised by the stub server.

StubError and its subclasses carry the gRPC status code the call terminates with.
They are turned into the RPC status by ExceptionToStatusInterceptor. See
https://grpc.github.io/grpc/core/md_doc_statuscodes.html for the meaning of codes.
"""

from typing import Optional

from grpc import StatusCode


class StubError(Exception):
    """Base class for errors that terminate a stubbed call.

    Attributes:
        status_code: A grpc.StatusCode other than OK. Must not be OK, because gRPC
            will not raise an RpcError to the client if the status code is OK.
        details: A string with additional information about the error.
    Args:
        details: If not None, specifies a custom error message.
        status_code: If not None, sets the status code.

    Raises:
        ValueError: If status_code is OK.
    """

    status_code: StatusCode = StatusCode.UNKNOWN
    details: str = "Unknown exception occurred"

    def __init__(
        self, details: Optional[str] = None, status_code: Optional[StatusCode] = None
    ):
        if status_code is not None:
            if status_code == StatusCode.OK:
                raise ValueError("The status code for an exception cannot be OK")
            self.status_code = status_code
        if details is not None:
            self.details = details
        super().__init__(self.details)

    def __repr__(self) -> str:
        """Show the status code and details.

        Returns:
            A string displaying the class name, status code, and details.
        """
        clsname = self.__class__.__name__
        sc = self.status_code.name
        return f"{clsname}(status_code={sc}, details={self.details!r})"

    @property
    def status_string(self):
        """Return status_code as a string.

        Example:
            >>> StubError(status_code=StatusCode.NOT_FOUND).status_string
            'NOT_FOUND'
        """
        return self.status_code.name


class NotFound(StubError):
    """No registered matcher accepted the request."""

    status_code = StatusCode.NOT_FOUND
    details = "NotFound"


class DecodeFailure(StubError):
    """The received bytes do not conform to the method's input message."""

    status_code = StatusCode.INTERNAL
    details = "Failed to decode the request message"


class EncodeFailure(StubError):
    """A synthesized response document does not fit the method's output message.

    This usually means a matcher was given a field that the output message does not
    declare, or a value of the wrong type.
    """

    status_code = StatusCode.INTERNAL
    details = "Failed to encode the response message"


class UsageError(RuntimeError):
    """The stub server was used in a state that does not allow the operation."""


class SchemaError(Exception):
    """The proto files could not be compiled into descriptors."""
