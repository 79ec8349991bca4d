# client.py
"""Sending side of the chunked character-data transfer over ZeroMQ."""

from __future__ import annotations

import logging

import zmq

from . import protocol
from .chunker import DEFAULT_CHUNK_SIZE, split

logger = logging.getLogger(__name__)


class ChunkSender:
    """PUSH socket that announces a blob and then sends its chunks in order.

    Example:
        with ChunkSender("localhost", 5560) as sender:
            sender.send_blob(target_id=7, blob=blob)
    """

    LINGER_MS = 5000  # time allowed to flush queued chunks on close

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5560,
        context: zmq.Context | None = None,
    ) -> None:
        self.endpoint = f"tcp://{host}:{port}"
        self._own_context = context is None
        self._context = context or zmq.Context()
        self._socket: zmq.Socket | None = None
        self.sent_messages = 0

    def connect(self) -> ChunkSender:
        if self._socket is None:
            self._socket = self._context.socket(zmq.PUSH)
            self._socket.setsockopt(zmq.LINGER, self.LINGER_MS)
            self._socket.connect(self.endpoint)
            logger.debug(f"PUSH socket connected to {self.endpoint}")
        return self

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self._own_context:
            self._context.term()

    def __enter__(self) -> ChunkSender:
        return self.connect()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _send(self, message: bytes) -> None:
        if self._socket is None:
            self.connect()
        self._socket.send(message)
        self.sent_messages += 1

    def send_chunks(self, target_id: int, chunks: list[bytes]) -> int:
        self._send(protocol.serialize_announcement(target_id, len(chunks)))
        for index, chunk in enumerate(chunks):
            self._send(protocol.serialize_chunk(index, chunk))
        logger.info(
            f"Sent {len(chunks)} chunks ({sum(map(len, chunks))} bytes) "
            f"for target {target_id} to {self.endpoint}"
        )
        return len(chunks)

    def send_blob(
        self, target_id: int, blob: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> int:
        """Split *blob* and send it to *target_id*. Returns the chunk count."""
        return self.send_chunks(target_id, split(blob, chunk_size))
