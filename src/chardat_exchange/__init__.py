"""
chardat-exchange

Captures the visual state of a rigged, skinned character (skeleton pose, skinned
meshes with blend shapes and bone weights, material textures) into a by-value
snapshot that can be stored, sent in chunks and reapplied to another character
with the same part hierarchy.

Main Classes:
    CharacterExchange: Capture/save/load/apply/send workflows
    SnapshotBuilder, Reconstructor: Snapshot capture and re-application
    TransferReceiver: Chunked transfer reassembly
    ExchangeServer, ChunkSender: ZeroMQ transport

Examples:
    # Run a receiver via CLI (after installation)
    chardat-exchange receive --serve-rest

    # Use programmatically
    from chardat_exchange import CharacterExchange, SnapshotStore
    exchange = CharacterExchange(store=SnapshotStore("CharacterData"))
    exchange.save(character_root, character_id=7)
    exchange.load_and_apply(7, other_character_root)
"""

from .chunker import reassemble, split
from .client import ChunkSender
from .errors import (
    ChardatError,
    IncompatibleSkeletonError,
    MissingPartError,
    SnapshotFormatError,
    TransferError,
)
from .exchange import CharacterExchange
from .resolver import PartSchema, resolve_character
from .serializer import decode, encode
from .server import ExchangeServer, get_version
from .snapshot import Reconstructor, SnapshotBuilder
from .storage import SnapshotStore, StorageStatus
from .transfer import TransferReceiver, TransferState
from .types import CharacterSnapshot, MeshSnapshot, PartRole, SkeletonPose

__all__ = [
    "CharacterExchange",
    "SnapshotBuilder",
    "Reconstructor",
    "PartSchema",
    "resolve_character",
    "encode",
    "decode",
    "split",
    "reassemble",
    "TransferReceiver",
    "TransferState",
    "ExchangeServer",
    "ChunkSender",
    "SnapshotStore",
    "StorageStatus",
    "CharacterSnapshot",
    "MeshSnapshot",
    "SkeletonPose",
    "PartRole",
    "ChardatError",
    "MissingPartError",
    "IncompatibleSkeletonError",
    "SnapshotFormatError",
    "TransferError",
    "get_version",
]

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("chardat-exchange")
except PackageNotFoundError:
    __version__ = "unknown"
