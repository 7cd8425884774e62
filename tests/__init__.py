"""Test suite for grpc-stub."""
