"""The standard gRPC health service, with a check that keeps changing status.

Two checks are registered: "default", which reports SERVING, and "flapping", which
alternates between SERVING and NOT_SERVING on a fixed interval while the server is
running. The flapping check exercises clients that watch health status.
"""

import logging
import threading
from typing import Callable, Optional

import grpc
from grpc_health.v1 import health, health_pb2, health_pb2_grpc

logger = logging.getLogger(__name__)

DEFAULT = "default"
FLAPPING = "flapping"

SERVING = health_pb2.HealthCheckResponse.SERVING
NOT_SERVING = health_pb2.HealthCheckResponse.NOT_SERVING


class HealthSidecar:
    """Registers the health service and drives the flapping check.

    Args:
        running: Returns whether the flapping check should currently change status.
        interval: Seconds between status changes.
    """

    def __init__(self, running: Callable[[], bool], interval: float = 0.1):
        if interval <= 0:
            raise ValueError("The flapping interval must be positive")
        self.servicer = health.HealthServicer()
        self._running = running
        self._interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register(self, server: grpc.Server) -> None:
        health_pb2_grpc.add_HealthServicer_to_server(self.servicer, server)
        self.servicer.set(DEFAULT, SERVING)
        self.servicer.set(FLAPPING, SERVING)

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._flap, name="grpc-stub-health", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop flapping and report every check as NOT_SERVING."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.servicer.enter_graceful_shutdown()

    def _flap(self) -> None:
        status = SERVING
        while not self._stop.wait(self._interval):
            if not self._running():
                continue
            status = NOT_SERVING if status == SERVING else SERVING
            self.servicer.set(FLAPPING, status)
        logger.debug("Stopped the %r health check", FLAPPING)
