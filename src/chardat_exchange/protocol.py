"""Binary framing of the chunked character-data transfer messages."""

import struct
from dataclasses import dataclass
from typing import Tuple, Union

# Message type identifiers
MSG_CHARACTER_DATA_ANNOUNCEMENT = 1  # Target id + expected chunk count
MSG_CHARACTER_DATA_CHUNK = 2  # Sequence index + payload

_ANNOUNCEMENT = struct.Struct('<iI')
_CHUNK_HEADER = struct.Struct('<II')


@dataclass(frozen=True)
class CharacterDataAnnouncement:
    target_id: int
    expected_chunk_count: int


@dataclass(frozen=True)
class CharacterDataChunk:
    sequence_index: int
    data: bytes


Message = Union[CharacterDataAnnouncement, CharacterDataChunk]


def serialize_announcement(target_id: int, expected_chunk_count: int) -> bytes:
    buffer = bytearray()
    buffer.append(MSG_CHARACTER_DATA_ANNOUNCEMENT)
    buffer.extend(_ANNOUNCEMENT.pack(target_id, expected_chunk_count))
    return bytes(buffer)


def serialize_chunk(sequence_index: int, data: bytes) -> bytes:
    buffer = bytearray()
    buffer.append(MSG_CHARACTER_DATA_CHUNK)
    buffer.extend(_CHUNK_HEADER.pack(sequence_index, len(data)))
    buffer.extend(data)
    return bytes(buffer)


def serialize(message: Message) -> bytes:
    if isinstance(message, CharacterDataAnnouncement):
        return serialize_announcement(message.target_id, message.expected_chunk_count)
    if isinstance(message, CharacterDataChunk):
        return serialize_chunk(message.sequence_index, message.data)
    raise TypeError(f"Unsupported message: {type(message).__name__}")


def _deserialize_announcement(data: bytes, offset: int) -> CharacterDataAnnouncement:
    target_id, count = _ANNOUNCEMENT.unpack_from(data, offset)
    return CharacterDataAnnouncement(target_id, count)


def _deserialize_chunk(data: bytes, offset: int) -> CharacterDataChunk:
    index, length = _CHUNK_HEADER.unpack_from(data, offset)
    offset += _CHUNK_HEADER.size
    payload = data[offset:offset + length]
    if len(payload) != length:
        raise ValueError(f"Chunk {index} declares {length} bytes, {len(payload)} present")
    return CharacterDataChunk(index, bytes(payload))


def deserialize(data: bytes) -> Tuple[int, Union[Message, None]]:
    """Deserialize binary data to message type and message.

    Returns:
        Tuple of (message_type, message). The message is ``None`` for empty,
        unknown or truncated input.
    """
    if not data:
        return 0, None

    message_type = data[0]
    try:
        if message_type == MSG_CHARACTER_DATA_ANNOUNCEMENT:
            return message_type, _deserialize_announcement(data, 1)
        if message_type == MSG_CHARACTER_DATA_CHUNK:
            return message_type, _deserialize_chunk(data, 1)
    except (struct.error, ValueError):
        return message_type, None
    return message_type, None
