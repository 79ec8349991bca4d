"""
Chunked-transfer receive state machine.

A receiver holds at most one session. An announcement opens (or resets) it with
the target id and the number of chunks to expect; chunks carry only their
sequence index. Once as many chunks as announced have arrived, the chunks are
ordered by index and joined, and ``on_transfer_complete`` fires with
``(target_id, blob)``.

States::

    IDLE -> ANNOUNCED -> COLLECTING -> COMPLETE
                              |-> FAILED   (index set is not 0..n-1)
                              |-> EXPIRED  (no activity within the timeout)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .chunker import reassemble
from .errors import TransferError
from .events import EventHandler
from .protocol import CharacterDataAnnouncement, CharacterDataChunk

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = 30.0


class TransferState(str, Enum):
    IDLE = "idle"
    ANNOUNCED = "announced"
    COLLECTING = "collecting"
    COMPLETE = "complete"
    FAILED = "failed"
    EXPIRED = "expired"


ACTIVE_STATES = frozenset({TransferState.ANNOUNCED, TransferState.COLLECTING})


@dataclass
class TransferSession:
    target_id: int
    expected_count: int
    chunks: dict[int, bytes] = field(default_factory=dict)
    received_count: int = 0
    state: TransferState = TransferState.ANNOUNCED
    last_activity: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def missing_indices(self) -> list[int]:
        return [i for i in range(self.expected_count) if i not in self.chunks]

    def assemble(self) -> bytes:
        """Join stored chunks in index order.

        Raises:
            TransferError: If the stored indices are not exactly ``0..n-1``.
        """
        indices = sorted(self.chunks)
        if indices != list(range(self.expected_count)):
            unexpected = [i for i in indices if i >= self.expected_count]
            raise TransferError(
                f"Transfer for target {self.target_id} cannot be reassembled: "
                f"missing {self.missing_indices()}, unexpected {unexpected}"
            )
        return reassemble(self.chunks[i] for i in indices)


class TransferReceiver:
    """Collects announced chunks and reports completed blobs.

    Events:
        on_transfer_complete(target_id, blob)
        on_transfer_failed(target_id, error)
        on_transfer_expired(target_id)
    """

    def __init__(
        self,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_timeout = session_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._session: TransferSession | None = None

        self.on_transfer_complete = EventHandler("on_transfer_complete")
        self.on_transfer_failed = EventHandler("on_transfer_failed")
        self.on_transfer_expired = EventHandler("on_transfer_expired")

        self.completed_count = 0
        self.failed_count = 0
        self.dropped_chunks = 0

    @property
    def session(self) -> TransferSession | None:
        return self._session

    @property
    def state(self) -> TransferState:
        session = self._session
        return session.state if session is not None else TransferState.IDLE

    # ------------------------------------------------------------------
    def handle_announcement(self, target_id: int, expected_count: int) -> None:
        if expected_count < 0:
            raise ValueError(f"Expected chunk count must not be negative: {expected_count}")
        with self._lock:
            previous = self._session
            if previous is not None and previous.is_active:
                logger.warning(
                    f"Announcement for target {target_id} resets the transfer for "
                    f"target {previous.target_id} ({previous.received_count}/"
                    f"{previous.expected_count} chunks)"
                )
            session = TransferSession(
                target_id=target_id,
                expected_count=expected_count,
                last_activity=self._clock(),
            )
            self._session = session
            logger.debug(f"Transfer announced: target={target_id}, chunks={expected_count}")
            result = self._try_complete(session)
        self._dispatch(session, result)

    def handle_chunk(self, sequence_index: int, data: bytes) -> None:
        with self._lock:
            session = self._session
            if session is None or not session.is_active:
                self.dropped_chunks += 1
                logger.warning(f"Dropping chunk {sequence_index}: no active transfer")
                return
            if sequence_index in session.chunks:
                logger.debug(f"Chunk {sequence_index} received again; keeping latest")
            session.chunks[sequence_index] = data
            session.received_count += 1
            session.state = TransferState.COLLECTING
            session.last_activity = self._clock()
            result = self._try_complete(session)
        self._dispatch(session, result)

    def handle_message(self, message) -> None:
        """Route a deserialized protocol message."""
        if isinstance(message, CharacterDataAnnouncement):
            self.handle_announcement(message.target_id, message.expected_chunk_count)
        elif isinstance(message, CharacterDataChunk):
            self.handle_chunk(message.sequence_index, message.data)
        else:
            logger.warning(f"Ignoring unsupported transfer message: {message!r}")

    def expire_stale(self, now: float | None = None) -> bool:
        """Expire the active session when it has been idle past the timeout.

        Returns:
            True if a session was expired.
        """
        now = self._clock() if now is None else now
        with self._lock:
            session = self._session
            if session is None or not session.is_active:
                return False
            if now - session.last_activity < self.session_timeout:
                return False
            session.state = TransferState.EXPIRED
            session.chunks.clear()
        logger.warning(
            f"Transfer for target {session.target_id} expired with "
            f"{session.received_count}/{session.expected_count} chunks"
        )
        self.on_transfer_expired.invoke(session.target_id)
        return True

    def reset(self) -> None:
        with self._lock:
            self._session = None

    # ------------------------------------------------------------------
    def _try_complete(self, session: TransferSession) -> bytes | TransferError | None:
        """Finish *session* if every announced chunk has arrived. Caller holds the lock."""
        if session.received_count < session.expected_count:
            return None
        try:
            blob = session.assemble()
        except TransferError as exc:
            session.state = TransferState.FAILED
            self.failed_count += 1
            return exc
        finally:
            session.chunks.clear()
        session.state = TransferState.COMPLETE
        self.completed_count += 1
        return blob

    def _dispatch(self, session: TransferSession, result: bytes | TransferError | None) -> None:
        if result is None:
            return
        if isinstance(result, TransferError):
            logger.error(str(result))
            self.on_transfer_failed.invoke(session.target_id, result)
            return
        logger.info(
            f"Transfer complete: target={session.target_id}, "
            f"chunks={session.expected_count}, bytes={len(result)}"
        )
        self.on_transfer_complete.invoke(session.target_id, result)
