"""Send chunked character data over ZeroMQ to a running receiver."""

from __future__ import annotations

import threading

import pytest
import zmq

from chardat_exchange import protocol, serializer
from chardat_exchange.client import ChunkSender
from chardat_exchange.server import ExchangeServer
from chardat_exchange.snapshot import SnapshotBuilder
from chardat_exchange.storage import SnapshotStore
from chardat_exchange.transfer import TransferReceiver

from character_factory import make_character

pytestmark = pytest.mark.integration

TIMEOUT = 10.0


@pytest.fixture
def context():
    ctx = zmq.Context()
    yield ctx
    ctx.term()


@pytest.fixture
def receiver() -> TransferReceiver:
    return TransferReceiver(session_timeout=5.0)


@pytest.fixture
def server(receiver, context):
    instance = ExchangeServer(
        receiver, port=0, bind_host="127.0.0.1", poll_timeout=20, context=context
    )
    instance.start()
    yield instance
    instance.stop()


def test_blob_arrives_intact(server, receiver, context, tmp_path) -> None:
    character = make_character(seed=6)
    blob = serializer.encode(SnapshotBuilder().build(character, character_id=6))
    store = SnapshotStore(tmp_path)
    done = threading.Event()
    receiver.on_transfer_complete.add_listener(store.save)
    receiver.on_transfer_complete.add_listener(lambda target_id, data: done.set())

    with ChunkSender("127.0.0.1", server.port, context=context) as sender:
        count = sender.send_blob(target_id=9, blob=blob, chunk_size=8192)

    assert done.wait(TIMEOUT)
    assert count > 1
    assert sender.sent_messages == count + 1
    assert store.load(9).data == blob
    assert server.message_count == count + 1


def test_invalid_messages_are_counted(server, receiver, context) -> None:
    done = threading.Event()
    receiver.on_transfer_complete.add_listener(lambda target_id, data: done.set())

    push = context.socket(zmq.PUSH)
    push.setsockopt(zmq.LINGER, 1000)
    push.connect(f"tcp://127.0.0.1:{server.port}")
    try:
        push.send(b"\x63garbage")
        push.send(protocol.serialize_announcement(1, 0))
    finally:
        push.close()

    assert done.wait(TIMEOUT)
    assert server.invalid_message_count == 1
    assert receiver.completed_count == 1


def test_port_in_use_exits(server, receiver, context) -> None:
    duplicate = ExchangeServer(
        receiver, port=server.port, bind_host="127.0.0.1", context=context
    )
    with pytest.raises(SystemExit):
        duplicate.start()
