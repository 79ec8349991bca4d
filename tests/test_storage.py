"""Tests for the on-disk snapshot store."""

from __future__ import annotations

import errno
import os
from pathlib import Path

import pytest

from chardat_exchange.storage import SnapshotStore, StorageStatus


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "CharacterData")


class TestSnapshotStore:
    def test_save_creates_directory_and_file(self, store: SnapshotStore) -> None:
        assert store.save(7, b"blob") is StorageStatus.WRITTEN
        assert store.path_for(7).name == "7.chardat"
        assert store.path_for(7).read_bytes() == b"blob"

    def test_existing_blob_is_never_overwritten(self, store: SnapshotStore, caplog) -> None:
        store.save(7, b"first")
        assert store.save(7, b"second") is StorageStatus.SKIPPED_EXISTS
        assert store.load(7).data == b"first"
        assert "not overwriting" in caplog.text

    def test_load_missing(self, store: SnapshotStore) -> None:
        result = store.load(3)
        assert result.status is StorageStatus.NOT_FOUND
        assert result.data is None
        assert not result.ok

    def test_list_ids_ignores_foreign_files(self, store: SnapshotStore) -> None:
        store.save(12, b"a")
        store.save(2, b"b")
        (store.directory / "notes.txt").write_text("x")
        (store.directory / "draft.chardat").write_bytes(b"x")
        assert store.list_ids() == [2, 12]

    def test_list_ids_without_directory(self, store: SnapshotStore) -> None:
        assert store.list_ids() == []

    def test_delete(self, store: SnapshotStore) -> None:
        store.save(1, b"x")
        assert store.delete(1) is StorageStatus.OK
        assert store.delete(1) is StorageStatus.NOT_FOUND

    def test_custom_extension(self, tmp_path: Path) -> None:
        store = SnapshotStore(tmp_path, extension="bin")
        store.save(5, b"x")
        assert (tmp_path / "5.bin").exists()

    @pytest.mark.skipif(
        os.name == "nt" or (hasattr(os, "geteuid") and os.geteuid() == 0),
        reason="permission bits are not enforced",
    )
    def test_unwritable_directory_reports_permission_denied(self, tmp_path: Path) -> None:
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        try:
            assert SnapshotStore(locked).save(1, b"x") is StorageStatus.PERMISSION_DENIED
        finally:
            locked.chmod(0o700)

    def test_directory_in_place_of_file_is_io_error(self, store: SnapshotStore) -> None:
        store.path_for(4).mkdir(parents=True)
        status = store.load(4).status
        assert status in (StorageStatus.IO_ERROR, StorageStatus.PERMISSION_DENIED)

    def test_failed_write_leaves_no_partial_blob(self, store: SnapshotStore, monkeypatch) -> None:
        def disk_full(fd):
            raise OSError(errno.ENOSPC, "No space left on device")

        with monkeypatch.context() as patch:
            patch.setattr(os, "fsync", disk_full)
            assert store.save(1, b"x" * 100_000) is StorageStatus.IO_ERROR

        assert not store.exists(1)
        assert list(store.directory.iterdir()) == []
        assert store.save(1, b"complete") is StorageStatus.WRITTEN
        assert store.load(1).data == b"complete"

    def test_failed_link_cleans_up_temporary_file(self, store: SnapshotStore, monkeypatch) -> None:
        def refuse(src, dst):
            raise PermissionError(errno.EACCES, "Permission denied")

        monkeypatch.setattr(os, "link", refuse)
        assert store.save(2, b"blob") is StorageStatus.PERMISSION_DENIED
        assert list(store.directory.iterdir()) == []
