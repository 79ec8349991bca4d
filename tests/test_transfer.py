"""Tests for the chunked transfer state machine."""

from __future__ import annotations

import pytest

from chardat_exchange.chunker import split
from chardat_exchange.errors import TransferError
from chardat_exchange.protocol import CharacterDataAnnouncement, CharacterDataChunk
from chardat_exchange.transfer import TransferReceiver, TransferState


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def receiver(clock: FakeClock) -> TransferReceiver:
    return TransferReceiver(session_timeout=5.0, clock=clock)


def collect(receiver: TransferReceiver) -> tuple[list, list]:
    completed: list[tuple[int, bytes]] = []
    failed: list[tuple[int, Exception]] = []
    receiver.on_transfer_complete.add_listener(lambda t, b: completed.append((t, b)))
    receiver.on_transfer_failed.add_listener(lambda t, e: failed.append((t, e)))
    return completed, failed


class TestTransferSession:
    def test_starts_idle(self, receiver: TransferReceiver) -> None:
        assert receiver.state is TransferState.IDLE

    def test_out_of_order_arrival_reassembles_in_index_order(
        self, receiver: TransferReceiver
    ) -> None:
        data = bytes(range(50))
        chunks = split(data, 10)
        assert len(chunks) == 5
        completed, failed = collect(receiver)

        receiver.handle_announcement(target_id=9, expected_count=5)
        assert receiver.state is TransferState.ANNOUNCED
        for index in [2, 0, 4, 1]:
            receiver.handle_chunk(index, chunks[index])
            assert receiver.state is TransferState.COLLECTING
        assert completed == []

        receiver.handle_chunk(3, chunks[3])
        assert receiver.state is TransferState.COMPLETE
        assert completed == [(9, data)]
        assert failed == []

    def test_duplicate_index_fails_session(self, receiver: TransferReceiver) -> None:
        completed, failed = collect(receiver)
        receiver.handle_announcement(1, 3)
        receiver.handle_chunk(0, b"a")
        receiver.handle_chunk(0, b"b")
        receiver.handle_chunk(1, b"c")

        assert receiver.state is TransferState.FAILED
        assert completed == []
        assert len(failed) == 1
        target_id, error = failed[0]
        assert target_id == 1
        assert isinstance(error, TransferError)
        assert receiver.failed_count == 1

    def test_duplicate_keeps_latest_write(self, receiver: TransferReceiver) -> None:
        receiver.handle_announcement(1, 3)
        receiver.handle_chunk(0, b"old")
        receiver.handle_chunk(0, b"new")
        assert receiver.session.chunks[0] == b"new"
        assert receiver.session.received_count == 2

    def test_out_of_range_index_fails_session(self, receiver: TransferReceiver) -> None:
        _, failed = collect(receiver)
        receiver.handle_announcement(1, 2)
        receiver.handle_chunk(0, b"a")
        receiver.handle_chunk(5, b"b")
        assert receiver.state is TransferState.FAILED
        assert "unexpected [5]" in str(failed[0][1])

    def test_announcement_resets_previous_session(self, receiver: TransferReceiver) -> None:
        completed, _ = collect(receiver)
        receiver.handle_announcement(1, 2)
        receiver.handle_chunk(0, b"stale")

        receiver.handle_announcement(2, 2)
        assert receiver.session.target_id == 2
        assert receiver.session.chunks == {}
        receiver.handle_chunk(1, b"B")
        receiver.handle_chunk(0, b"A")
        assert completed == [(2, b"AB")]

    def test_zero_chunk_announcement_completes_immediately(
        self, receiver: TransferReceiver
    ) -> None:
        completed, _ = collect(receiver)
        receiver.handle_announcement(4, 0)
        assert receiver.state is TransferState.COMPLETE
        assert completed == [(4, b"")]

    def test_chunk_without_session_is_dropped(self, receiver: TransferReceiver) -> None:
        receiver.handle_chunk(0, b"x")
        assert receiver.state is TransferState.IDLE
        assert receiver.dropped_chunks == 1

    def test_chunk_after_completion_is_dropped(self, receiver: TransferReceiver) -> None:
        receiver.handle_announcement(1, 1)
        receiver.handle_chunk(0, b"x")
        receiver.handle_chunk(0, b"y")
        assert receiver.state is TransferState.COMPLETE
        assert receiver.dropped_chunks == 1

    def test_negative_count_rejected(self, receiver: TransferReceiver) -> None:
        with pytest.raises(ValueError):
            receiver.handle_announcement(1, -1)

    def test_handle_message_routes_protocol_messages(
        self, receiver: TransferReceiver
    ) -> None:
        completed, _ = collect(receiver)
        receiver.handle_message(CharacterDataAnnouncement(3, 1))
        receiver.handle_message(CharacterDataChunk(0, b"payload"))
        assert completed == [(3, b"payload")]

    def test_failing_listener_does_not_block_others(
        self, receiver: TransferReceiver
    ) -> None:
        seen = []

        def broken(target_id, blob):
            raise RuntimeError("listener failure")

        receiver.on_transfer_complete.add_listener(broken)
        receiver.on_transfer_complete.add_listener(lambda t, b: seen.append(t))
        receiver.handle_announcement(5, 0)
        assert seen == [5]


class TestExpiry:
    def test_stalled_session_expires(self, receiver: TransferReceiver, clock: FakeClock) -> None:
        expired = []
        receiver.on_transfer_expired.add_listener(expired.append)
        receiver.handle_announcement(1, 3)
        receiver.handle_chunk(0, b"a")

        clock.now += 4.0
        assert receiver.expire_stale() is False
        clock.now += 1.5
        assert receiver.expire_stale() is True
        assert receiver.state is TransferState.EXPIRED
        assert expired == [1]

        receiver.handle_chunk(1, b"b")
        assert receiver.dropped_chunks == 1

    def test_activity_postpones_expiry(self, receiver: TransferReceiver, clock: FakeClock) -> None:
        receiver.handle_announcement(1, 3)
        clock.now += 4.0
        receiver.handle_chunk(0, b"a")
        clock.now += 4.0
        assert receiver.expire_stale() is False
        assert receiver.state is TransferState.COLLECTING

    def test_completed_session_never_expires(
        self, receiver: TransferReceiver, clock: FakeClock
    ) -> None:
        receiver.handle_announcement(1, 1)
        receiver.handle_chunk(0, b"a")
        clock.now += 60.0
        assert receiver.expire_stale() is False
        assert receiver.state is TransferState.COMPLETE
