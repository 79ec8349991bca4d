"""Tests for transfer message framing."""

import struct

from chardat_exchange import protocol
from chardat_exchange.protocol import (
    MSG_CHARACTER_DATA_ANNOUNCEMENT,
    MSG_CHARACTER_DATA_CHUNK,
    CharacterDataAnnouncement,
    CharacterDataChunk,
)


class TestAnnouncement:
    def test_layout(self):
        data = protocol.serialize_announcement(-3, 5)
        assert data[0] == MSG_CHARACTER_DATA_ANNOUNCEMENT
        assert struct.unpack("<iI", data[1:]) == (-3, 5)

    def test_deserialize(self):
        msg_type, message = protocol.deserialize(protocol.serialize_announcement(7, 12))
        assert msg_type == MSG_CHARACTER_DATA_ANNOUNCEMENT
        assert message == CharacterDataAnnouncement(7, 12)


class TestChunk:
    def test_deserialize(self):
        payload = bytes(range(256)) * 3
        msg_type, message = protocol.deserialize(protocol.serialize_chunk(4, payload))
        assert msg_type == MSG_CHARACTER_DATA_CHUNK
        assert message == CharacterDataChunk(4, payload)

    def test_serialize_dispatches_on_message_type(self):
        chunk = CharacterDataChunk(1, b"xyz")
        assert protocol.serialize(chunk) == protocol.serialize_chunk(1, b"xyz")


class TestInvalidInput:
    def test_empty(self):
        assert protocol.deserialize(b"") == (0, None)

    def test_unknown_type(self):
        assert protocol.deserialize(bytes([99, 1, 2, 3])) == (99, None)

    def test_truncated_announcement(self):
        data = protocol.serialize_announcement(1, 2)[:-1]
        assert protocol.deserialize(data) == (MSG_CHARACTER_DATA_ANNOUNCEMENT, None)

    def test_truncated_chunk_payload(self):
        data = protocol.serialize_chunk(0, b"abcdef")[:-2]
        assert protocol.deserialize(data) == (MSG_CHARACTER_DATA_CHUNK, None)
