"""Integration tests that exercise real ZeroMQ sockets."""
