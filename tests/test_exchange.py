"""Tests for the high-level exchange workflows."""

from __future__ import annotations

from pathlib import Path

import pytest

from chardat_exchange import chunker
from chardat_exchange.config import load_default_config
from chardat_exchange.errors import SnapshotFormatError
from chardat_exchange.exchange import CharacterExchange
from chardat_exchange.storage import SnapshotStore, StorageStatus
from chardat_exchange.types import PartRole

from character_factory import make_character, part_renderer


@pytest.fixture
def exchange(tmp_path: Path):
    instance = CharacterExchange(store=SnapshotStore(tmp_path), chunk_size=4096)
    yield instance
    instance.close()


def deliver(receiver, target_id: int, chunks: list[bytes]) -> None:
    receiver.handle_announcement(target_id, len(chunks))
    for index, chunk in enumerate(chunks):
        receiver.handle_chunk(index, chunk)


class TestStorageWorkflow:
    def test_save_then_load_and_apply(self, exchange, source_character, target_character) -> None:
        assert exchange.save(source_character, 7) is StorageStatus.WRITTEN

        report = exchange.load_and_apply(7, target_character)

        assert report is not None
        assert report.applied == [PartRole.BODY]
        assert report.textures_bound == 6

    def test_second_save_is_skipped(self, exchange, source_character, target_character, caplog) -> None:
        exchange.save(source_character, 7)
        before = exchange.store.load(7).data

        assert exchange.save(target_character, 7) is StorageStatus.SKIPPED_EXISTS
        assert exchange.store.load(7).data == before
        assert "capture skipped" in caplog.text

    def test_missing_blob_applies_nothing(self, exchange, target_character) -> None:
        mesh = part_renderer(target_character, PartRole.BODY).shared_mesh
        assert exchange.load(42).status is StorageStatus.NOT_FOUND
        assert exchange.load_and_apply(42, target_character) is None
        assert part_renderer(target_character, PartRole.BODY).shared_mesh is mesh

    def test_corrupt_blob_raises(self, exchange) -> None:
        exchange.store.save(9, b"not character data")
        with pytest.raises(SnapshotFormatError):
            exchange.load(9)

    def test_requires_store(self, source_character) -> None:
        exchange = CharacterExchange()
        try:
            with pytest.raises(RuntimeError):
                exchange.save(source_character, 1)
        finally:
            exchange.close()


class TestOptionalParts:
    def test_part_missing_on_target_is_skipped(self, exchange) -> None:
        source = make_character(seed=3, parts=(PartRole.BODY, PartRole.HAIR))
        target = make_character(seed=4)

        report = exchange.apply(exchange.capture(source, 1), target)

        assert report.applied == [PartRole.BODY]
        assert report.skipped == [PartRole.HAIR]

    def test_part_missing_in_snapshot_leaves_live_part(self, exchange) -> None:
        source = make_character(seed=3)
        target = make_character(seed=4, parts=(PartRole.BODY, PartRole.HAIR))
        hair = part_renderer(target, PartRole.HAIR)
        hair_mesh, hair_materials = hair.shared_mesh, list(hair.materials)

        report = exchange.apply(exchange.capture(source, 1), target)

        assert report.applied == [PartRole.BODY]
        assert hair.shared_mesh is hair_mesh
        assert hair.materials == hair_materials


class TestTransferWorkflow:
    def test_receiver_stores_and_applies(self, exchange, source_character, target_character) -> None:
        targets = {11: target_character}
        receiver = exchange.create_receiver(lookup=targets.get, store_received=True)
        body_mesh = part_renderer(target_character, PartRole.BODY).shared_mesh

        deliver(receiver, 11, exchange.chunks_for(source_character, 3))

        assert receiver.completed_count == 1
        assert exchange.store.exists(11)
        assert part_renderer(target_character, PartRole.BODY).shared_mesh is not body_mesh

    def test_unknown_target_is_not_applied(self, exchange, source_character, caplog) -> None:
        receiver = exchange.create_receiver(lookup=lambda target_id: None)
        deliver(receiver, 12, exchange.chunks_for(source_character, 3))
        assert receiver.completed_count == 1
        assert "No live character for target 12" in caplog.text

    def test_undecodable_transfer_is_logged(self, exchange, target_character, caplog) -> None:
        receiver = exchange.create_receiver(lookup=lambda target_id: target_character)
        deliver(receiver, 13, chunker.split(b"garbage" * 10, 16))
        assert "Failed to apply transfer for target 13" in caplog.text

    def test_send_uses_configured_chunk_size(self, exchange, source_character) -> None:
        class RecordingSender:
            def send_blob(self, target_id, blob, chunk_size):
                self.sent = (target_id, blob, chunk_size)
                return chunker.chunk_count(len(blob), chunk_size)

        sender = RecordingSender()
        count = exchange.send(source_character, 3, 21, sender)

        target_id, blob, chunk_size = sender.sent
        assert (target_id, chunk_size) == (21, 4096)
        assert count == len(exchange.chunks_for(source_character, 3))
        assert exchange.decode(blob).character_id == 3


def test_from_config(tmp_path: Path) -> None:
    config = load_default_config()
    config.storage_dir = str(tmp_path)
    config.chunk_size = 1024
    exchange = CharacterExchange.from_config(config)
    try:
        assert exchange.store.directory == tmp_path
        assert exchange.chunk_size == 1024
        assert exchange.graphics.is_running
        assert exchange.save(make_character(seed=9), 1) is StorageStatus.WRITTEN
    finally:
        exchange.close()
    assert not exchange.graphics.is_running
