"""The stub server: a real gRPC server answering from configured matchers."""

from concurrent import futures
from enum import Enum
import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import grpc
from grpc_health.v1 import health as grpc_health
from grpc_reflection.v1alpha import reflection

from grpc_stub.dispatcher import Dispatcher
from grpc_stub.exception_to_status import ExceptionToStatusInterceptor
from grpc_stub.exceptions import UsageError
from grpc_stub.handlers import service_handler
from grpc_stub.health import HealthSidecar
from grpc_stub.matcher import Matcher, Predicate
from grpc_stub.message import Request
from grpc_stub.schema import DescriptorRegistry, MethodCodec

logger = logging.getLogger(__name__)


class ServerState(Enum):
    """Lifecycle of a StubServer. CLOSED is final."""

    UNKNOWN = "unknown"
    STARTING = "starting"
    SERVING = "serving"
    CLOSING = "closing"
    CLOSED = "closed"


class StubServer:
    """A gRPC server that answers every method of the given protos from matchers.

    Example::

        with StubServer("route_guide.proto") as server:
            server.method("GetFeature").response({"name": "hello"})
            channel = server.conn()
            ...
            assert len(server.requests()) == 1

    Args:
        protos: Proto file paths or glob patterns whose services are served.
        import_paths: Directories to search for imported proto files.
        registry: Where to load descriptors. A fresh DescriptorRegistry by default.
        health_check: Register the standard health service (see grpc_stub.health).
        reflection: Register the server reflection service.
        cert: PEM server certificate chain. Serves over TLS when given.
        key: PEM private key for cert.
        cacert: PEM root certificates trusted by conn(). Defaults to cert, so a
            self-signed certificate is trusted as is. The certificate is still checked
            against the host name: it must be issued for `host`, or server_name must
            be given.
        server_name: The host name conn() verifies the certificate against, instead
            of `host`. Use it for certificates issued for a name such as "localhost".
        host: Interface to listen on. The port is always picked by the OS.
        max_workers: Size of the thread pool running calls.
        grace: Seconds close() waits for in-flight calls before cancelling them.

    Raises:
        ValueError: If only one of cert and key is given, or grace is not positive.
        SchemaError: If the protos cannot be compiled.
    """

    def __init__(
        self,
        protos: Union[str, Sequence[str]],
        import_paths: Iterable[str] = (),
        *,
        registry: Optional[DescriptorRegistry] = None,
        health_check: bool = False,
        reflection: bool = True,
        cert: Optional[bytes] = None,
        key: Optional[bytes] = None,
        cacert: Optional[bytes] = None,
        server_name: Optional[str] = None,
        host: str = "127.0.0.1",
        max_workers: int = 10,
        grace: float = 5.0,
    ):
        if (cert is None) != (key is None):
            raise ValueError("cert and key must be given together")
        if grace <= 0:
            raise ValueError("The grace period must be positive")

        self.registry = registry if registry is not None else DescriptorRegistry()
        self.registry.load(protos, import_paths)
        self.dispatcher = Dispatcher()

        self._health_check = health_check
        self._reflection = reflection
        self._cert = cert
        self._key = key
        self._cacert = cacert
        self._server_name = server_name
        self._host = host
        self._max_workers = max_workers
        self._grace = grace

        self._state = ServerState.UNKNOWN
        self._state_lock = threading.Lock()
        self._server: Optional[grpc.Server] = None
        self._port = 0
        self._channel: Optional[grpc.Channel] = None
        self._health: Optional[HealthSidecar] = None

    def __repr__(self) -> str:
        return f"StubServer(state={self._state.value}, port={self._port})"

    def __enter__(self) -> "StubServer":
        return self.start()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def use_tls(self) -> bool:
        return self._cert is not None

    def _running(self) -> bool:
        return self._state in (ServerState.STARTING, ServerState.SERVING)

    def start(self) -> "StubServer":
        """Register every service and start listening.

        Raises:
            UsageError: If the server was already started.
        """
        with self._state_lock:
            if self._state is not ServerState.UNKNOWN:
                raise UsageError(f"Cannot start a server that is {self._state.value}")
            self._state = ServerState.STARTING

        try:
            self._server = self._build_server()
            address = f"{self._host}:0"
            if self.use_tls:
                credentials = grpc.ssl_server_credentials([(self._key, self._cert)])
                self._port = self._server.add_secure_port(address, credentials)
            else:
                self._port = self._server.add_insecure_port(address)
            if not self._port:
                raise RuntimeError(f"Failed to listen on {address}")
            self._server.start()
        except Exception:
            self._state = ServerState.CLOSED
            raise

        if self._health is not None:
            self._health.start()
        self._state = ServerState.SERVING
        logger.info("Stub server listening on %s", self.addr())
        return self

    def _build_server(self) -> grpc.Server:
        server = grpc.server(
            futures.ThreadPoolExecutor(max_workers=self._max_workers),
            interceptors=[
                ExceptionToStatusInterceptor(
                    status_on_unknown_exception=grpc.StatusCode.INTERNAL
                )
            ],
        )

        codecs: Dict[str, List[MethodCodec]] = {}
        for codec in self.registry.methods():
            codecs.setdefault(codec.service_name, []).append(codec)
        for service, methods in codecs.items():
            server.add_generic_rpc_handlers(
                (service_handler(service, methods, self.dispatcher),)
            )
            logger.debug("Stubbing %s", service)

        service_names = list(codecs)

        if self._health_check:
            self._health = HealthSidecar(self._running)
            self._health.register(server)
            service_names.append(grpc_health.SERVICE_NAME)
        if self._reflection:
            service_names.append(reflection.SERVICE_NAME)
            reflection.enable_server_reflection(
                service_names, server, pool=self.registry.pool
            )
        return server

    def close(self) -> None:
        """Stop the server, letting in-flight calls finish for up to `grace` seconds.

        Calls still running after the grace period are cancelled.

        Raises:
            UsageError: If the server is not serving.
        """
        with self._state_lock:
            if self._state is not ServerState.SERVING:
                raise UsageError(f"Cannot close a server that is {self._state.value}")
            self._state = ServerState.CLOSING

        try:
            if self._channel is not None:
                self._channel.close()
                self._channel = None
            if self._health is not None:
                self._health.stop()
            drained = self._server.stop(self._grace)
            if not drained.wait(self._grace):
                logger.warning(
                    "In-flight calls did not finish within %ss, cancelling them",
                    self._grace,
                )
                self._server.stop(None).wait()
        finally:
            self._state = ServerState.CLOSED
        logger.info("Stub server on port %d closed", self._port)

    def _require_serving(self, operation: str) -> None:
        if self._state is not ServerState.SERVING:
            raise UsageError(f"Cannot {operation}: the server is {self._state.value}")

    def addr(self) -> str:
        """The "host:port" the server listens on.

        Raises:
            UsageError: If the server is not serving.
        """
        self._require_serving("get the address")
        return f"{self._host}:{self._port}"

    def conn(self) -> grpc.Channel:
        """A client channel connected to this server. It is closed by close().

        Raises:
            UsageError: If the server is not serving.
        """
        self._require_serving("connect")
        if self._channel is None:
            if self.use_tls:
                credentials = grpc.ssl_channel_credentials(
                    root_certificates=self._cacert or self._cert
                )
                options = []
                if self._server_name:
                    options.append(("grpc.ssl_target_name_override", self._server_name))
                self._channel = grpc.secure_channel(self.addr(), credentials, options)
            else:
                self._channel = grpc.insecure_channel(self.addr())
        return self._channel

    def match(self, fn: Predicate) -> Matcher:
        """Register a matcher for requests that satisfy fn."""
        return self.dispatcher.match(fn)

    def service(self, service: str) -> Matcher:
        """Register a matcher for requests to a fully qualified service."""
        return self.dispatcher.service(service)

    def method(self, method: str) -> Matcher:
        """Register a matcher for a method, given as "Method" or "Service/Method"."""
        return self.dispatcher.method(method)

    def requests(self) -> Tuple[Request, ...]:
        """Every request the server received, in order."""
        return self.dispatcher.requests()
