"""Splitting of serialized snapshots into size-bounded chunks."""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_CHUNK_SIZE = 256 * 1024


def chunk_count(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return -(-size // chunk_size)


def split(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[bytes]:
    """Cut *data* into consecutive pieces of at most *chunk_size* bytes.

    Empty input yields no chunks.
    """
    count = chunk_count(len(data), chunk_size)
    view = memoryview(data)
    return [bytes(view[i * chunk_size:(i + 1) * chunk_size]) for i in range(count)]


def reassemble(chunks: Iterable[bytes]) -> bytes:
    return b"".join(chunks)
