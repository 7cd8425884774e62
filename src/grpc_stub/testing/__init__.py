"""Helpers for tests that talk to a stub server."""

from grpc_stub.testing.client import DynamicStub, stub_server


__all__ = [
    "DynamicStub",
    "stub_server",
]
