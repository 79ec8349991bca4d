"""
On-disk store of snapshot blobs, one file per character id.

File system failures never propagate out of the store: every operation reports a
:class:`StorageStatus` and logs what went wrong.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".chardat"


class StorageStatus(str, Enum):
    OK = "ok"
    WRITTEN = "written"
    SKIPPED_EXISTS = "skipped_exists"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    IO_ERROR = "io_error"

    @property
    def ok(self) -> bool:
        return self in (StorageStatus.OK, StorageStatus.WRITTEN)


@dataclass(frozen=True)
class LoadResult:
    status: StorageStatus
    data: bytes | None = None
    path: Path | None = None

    @property
    def ok(self) -> bool:
        return self.status.ok and self.data is not None


def _status_for(exc: OSError) -> StorageStatus:
    if isinstance(exc, FileNotFoundError):
        return StorageStatus.NOT_FOUND
    if isinstance(exc, PermissionError):
        return StorageStatus.PERMISSION_DENIED
    return StorageStatus.IO_ERROR


class SnapshotStore:
    """Blob files named ``<character_id><extension>`` inside ``directory``."""

    def __init__(self, directory: str | Path, extension: str = DEFAULT_EXTENSION) -> None:
        self.directory = Path(directory)
        self.extension = extension if extension.startswith(".") else f".{extension}"

    def path_for(self, character_id: int) -> Path:
        return self.directory / f"{int(character_id)}{self.extension}"

    def exists(self, character_id: int) -> bool:
        return self.path_for(character_id).is_file()

    def save(self, character_id: int, blob: bytes) -> StorageStatus:
        """Write *blob* unless a blob for *character_id* already exists.

        The blob is written to a temporary file first and then hard-linked into
        place, so a failed write never leaves a partial blob under the final name.
        """
        path = self.path_for(character_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(blob)
                    fh.flush()
                    os.fsync(fh.fileno())
                # link() refuses to replace an existing file
                os.link(tmp_name, path)
            finally:
                os.unlink(tmp_name)
        except FileExistsError:
            logger.warning(f"Character data {path} already exists; not overwriting")
            return StorageStatus.SKIPPED_EXISTS
        except OSError as exc:
            status = _status_for(exc)
            logger.error(f"Failed to write {path}: {exc}")
            return status
        logger.info(f"Saved character {character_id} ({len(blob)} bytes) to {path}")
        return StorageStatus.WRITTEN

    def load(self, character_id: int) -> LoadResult:
        path = self.path_for(character_id)
        try:
            data = path.read_bytes()
        except OSError as exc:
            status = _status_for(exc)
            if status is StorageStatus.NOT_FOUND:
                logger.warning(f"No character data for id {character_id} at {path}")
            else:
                logger.error(f"Failed to read {path}: {exc}")
            return LoadResult(status, path=path)
        return LoadResult(StorageStatus.OK, data, path)

    def delete(self, character_id: int) -> StorageStatus:
        path = self.path_for(character_id)
        try:
            os.remove(path)
        except OSError as exc:
            status = _status_for(exc)
            logger.warning(f"Failed to delete {path}: {exc}")
            return status
        return StorageStatus.OK

    def list_ids(self) -> list[int]:
        """Ids of every stored blob, ascending. Unparseable file names are ignored."""
        try:
            entries = list(self.directory.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.error(f"Failed to list {self.directory}: {exc}")
            return []
        ids = []
        for entry in entries:
            if entry.suffix != self.extension or not entry.is_file():
                continue
            try:
                ids.append(int(entry.stem))
            except ValueError:
                logger.debug(f"Ignoring {entry.name}: not a character id")
        return sorted(ids)
