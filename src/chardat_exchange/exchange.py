"""
High-level character exchange workflows.

:class:`CharacterExchange` wires the snapshot builder, the blob codec, the
on-disk store and the transfer receiver together, running CPU-bound steps on a
:class:`~chardat_exchange.workers.WorkerPool` and scene access on an optional
:class:`~chardat_exchange.workers.GraphicsContext`.

Typical use::

    exchange = CharacterExchange.from_config(config)
    exchange.save(character_root, character_id=7)
    report = exchange.load_and_apply(7, other_character_root)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from . import serializer
from .chunker import DEFAULT_CHUNK_SIZE, split
from .config import ExchangeConfig
from .errors import ChardatError
from .material_codec import DEFAULT_CHANNEL_TABLE, ChannelTable
from .resolver import DEFAULT_SCHEMA, CharacterReference, PartSchema
from .scene import SceneNode
from .snapshot import ApplyReport, Reconstructor, SnapshotBuilder
from .storage import DEFAULT_EXTENSION, SnapshotStore, StorageStatus
from .transfer import DEFAULT_SESSION_TIMEOUT, TransferReceiver
from .types import PART_TEXTURE_RESOLUTION, CharacterSnapshot
from .workers import GraphicsContext, WorkerPool

logger = logging.getLogger(__name__)

# Looks up the live character a received snapshot should be applied to
TargetLookup = Callable[[int], "SceneNode | CharacterReference | None"]


@dataclass(frozen=True)
class LoadOutcome:
    status: StorageStatus
    snapshot: CharacterSnapshot | None = None


class CharacterExchange:
    """Capture, persist, transfer and re-apply character snapshots."""

    def __init__(
        self,
        store: SnapshotStore | None = None,
        workers: WorkerPool | None = None,
        graphics: GraphicsContext | None = None,
        schema: PartSchema = DEFAULT_SCHEMA,
        channels: ChannelTable = DEFAULT_CHANNEL_TABLE,
        resolution=PART_TEXTURE_RESOLUTION,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        compression_level: int = serializer.DEFAULT_COMPRESSION_LEVEL,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
    ) -> None:
        self.store = store
        self.workers = workers if workers is not None else WorkerPool()
        self.graphics = graphics
        self._own_graphics = False
        self.chunk_size = chunk_size
        self.compression_level = compression_level
        self.session_timeout = session_timeout
        self.builder = SnapshotBuilder(schema, channels, resolution, graphics)
        self.reconstructor = Reconstructor(schema, channels, graphics, self.workers)

    @classmethod
    def from_config(
        cls, config: ExchangeConfig, graphics: GraphicsContext | None = None
    ) -> CharacterExchange:
        """Build an exchange from *config*.

        Without an explicit *graphics* context a dedicated one is started and
        stopped again by :meth:`close`.
        """
        own_graphics = graphics is None
        if own_graphics:
            graphics = GraphicsContext(config.graphics_queue_maxsize).start()
        exchange = cls(
            store=SnapshotStore(config.storage_dir, config.storage_extension),
            workers=WorkerPool(config.worker_threads),
            graphics=graphics,
            schema=config.part_schema(),
            channels=config.channel_table(),
            resolution=config.resolution_policy(),
            chunk_size=config.chunk_size,
            compression_level=config.compression_level,
            session_timeout=config.session_timeout,
        )
        exchange._own_graphics = own_graphics
        return exchange

    def close(self) -> None:
        self.workers.shutdown()
        if self._own_graphics and self.graphics is not None:
            self.graphics.stop()

    # ------------------------------------------------------------------
    # Snapshot <-> blob
    # ------------------------------------------------------------------
    def capture(self, root: SceneNode, character_id: int) -> CharacterSnapshot:
        return self.builder.build(root, character_id)

    def encode(self, snapshot: CharacterSnapshot) -> bytes:
        return self.workers.run(serializer.encode, snapshot, self.compression_level)

    def decode(self, blob: bytes) -> CharacterSnapshot:
        return self.workers.run(serializer.decode, blob)

    def apply(
        self, snapshot: CharacterSnapshot, target: SceneNode | CharacterReference
    ) -> ApplyReport:
        return self.reconstructor.apply(snapshot, target)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    def _require_store(self) -> SnapshotStore:
        if self.store is None:
            raise RuntimeError("CharacterExchange was created without a store")
        return self.store

    def save(self, root: SceneNode, character_id: int) -> StorageStatus:
        """Capture and persist a character unless a blob for its id already exists."""
        store = self._require_store()
        if store.exists(character_id):
            logger.warning(
                f"Character data for id {character_id} already exists; capture skipped"
            )
            return StorageStatus.SKIPPED_EXISTS
        blob = self.encode(self.capture(root, character_id))
        return store.save(character_id, blob)

    def load(self, character_id: int) -> LoadOutcome:
        """Read and decode a stored snapshot.

        Raises:
            SnapshotFormatError: If the stored blob cannot be decoded.
        """
        result = self._require_store().load(character_id)
        if not result.ok:
            return LoadOutcome(result.status)
        return LoadOutcome(result.status, self.decode(result.data))

    def load_and_apply(
        self, character_id: int, target: SceneNode | CharacterReference
    ) -> ApplyReport | None:
        """Apply a stored snapshot to *target*; ``None`` when nothing could be loaded."""
        outcome = self.load(character_id)
        if outcome.snapshot is None:
            logger.warning(
                f"Not applying character {character_id}: {outcome.status.value}"
            )
            return None
        return self.apply(outcome.snapshot, target)

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------
    def chunks_for(self, root: SceneNode, character_id: int) -> list[bytes]:
        return split(self.encode(self.capture(root, character_id)), self.chunk_size)

    def send(self, root: SceneNode, character_id: int, target_id: int, sender) -> int:
        """Capture *root* and push it to *target_id* through *sender*.

        *sender* needs a ``send_blob(target_id, blob, chunk_size)`` method, such
        as :class:`~chardat_exchange.client.ChunkSender`. Returns the chunk count.
        """
        blob = self.encode(self.capture(root, character_id))
        return sender.send_blob(target_id, blob, self.chunk_size)

    def create_receiver(
        self,
        lookup: TargetLookup | None = None,
        store_received: bool = False,
    ) -> TransferReceiver:
        """Build a receiver that stores and/or applies completed transfers.

        Args:
            lookup: Maps a target id to the live character to apply to. When it
                returns ``None`` the snapshot is not applied.
            store_received: Persist every completed blob under its target id.
        """
        receiver = TransferReceiver(self.session_timeout)

        def on_complete(target_id: int, blob: bytes) -> None:
            if store_received:
                self._require_store().save(target_id, blob)
            if lookup is None:
                return
            target = lookup(target_id)
            if target is None:
                logger.warning(f"No live character for target {target_id}; not applied")
                return
            try:
                self.apply(self.decode(blob), target)
            except ChardatError as exc:
                logger.error(f"Failed to apply transfer for target {target_id}: {exc}")

        receiver.on_transfer_complete.add_listener(on_complete)
        return receiver
