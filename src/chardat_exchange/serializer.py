"""
Snapshot blob encoding.

A blob is ``compress(serialize(snapshot))``:

* ``serialize`` packs the snapshot as a MessagePack map. numpy arrays travel as
  extension type :data:`NDARRAY_EXT` whose payload is ``[dtype, shape, bytes]``.
* ``compress`` is gzip with a fixed header timestamp so equal snapshots give
  equal blobs.
"""

from __future__ import annotations

import gzip
import zlib
from typing import Any

import msgpack
import numpy as np

from .errors import SnapshotFormatError
from .types import (
    BlendShapeSnapshot,
    CharacterSnapshot,
    MaterialSnapshot,
    MaterialTextures,
    MeshSnapshot,
    PartRole,
    PartSnapshot,
    SkeletonPose,
)

FORMAT_VERSION = 1
NDARRAY_EXT = 1
DEFAULT_COMPRESSION_LEVEL = 6


# ----------------------------------------------------------------------
# numpy extension type
# ----------------------------------------------------------------------
def _pack_default(obj: Any) -> Any:
    if isinstance(obj, np.ndarray):
        payload = msgpack.packb(
            [obj.dtype.str, list(obj.shape), np.ascontiguousarray(obj).tobytes()],
            use_bin_type=True,
        )
        return msgpack.ExtType(NDARRAY_EXT, payload)
    if isinstance(obj, np.generic):
        return obj.item()
    raise TypeError(f"Cannot serialize {type(obj).__name__}")


def _ext_hook(code: int, data: bytes) -> Any:
    if code != NDARRAY_EXT:
        return msgpack.ExtType(code, data)
    dtype, shape, raw = msgpack.unpackb(data, raw=False)
    return np.frombuffer(raw, dtype=np.dtype(dtype)).reshape(shape)


# ----------------------------------------------------------------------
# Snapshot <-> payload
# ----------------------------------------------------------------------
def _mesh_payload(mesh: MeshSnapshot) -> dict[str, Any]:
    return {
        "vertices": mesh.vertices,
        "triangles": mesh.triangles,
        "colors": mesh.colors,
        "uvs": mesh.uvs,
        "boundsCenter": mesh.bounds_center,
        "boundsExtents": mesh.bounds_extents,
        "submeshes": list(mesh.submeshes),
        "rootBoneIndex": mesh.root_bone_index,
        "boneIndices": mesh.bone_indices,
        "boneWeightIndices": mesh.bone_weight_indices,
        "boneWeightWeights": mesh.bone_weight_weights,
        "bindPoses": mesh.bind_poses,
        "blendShapes": [
            {
                "name": shape.name,
                "deltaVertices": shape.delta_vertices,
                "deltaNormals": shape.delta_normals,
                "deltaTangents": shape.delta_tangents,
            }
            for shape in mesh.blend_shapes
        ],
    }


def _mesh_from_payload(payload: dict[str, Any]) -> MeshSnapshot:
    return MeshSnapshot(
        vertices=payload["vertices"],
        triangles=payload["triangles"],
        colors=payload["colors"],
        uvs=payload["uvs"],
        bounds_center=payload["boundsCenter"],
        bounds_extents=payload["boundsExtents"],
        submeshes=tuple(payload["submeshes"]),
        root_bone_index=payload["rootBoneIndex"],
        bone_indices=payload["boneIndices"],
        bone_weight_indices=payload["boneWeightIndices"],
        bone_weight_weights=payload["boneWeightWeights"],
        bind_poses=payload["bindPoses"],
        blend_shapes=tuple(
            BlendShapeSnapshot(
                name=shape["name"],
                delta_vertices=shape["deltaVertices"],
                delta_normals=shape["deltaNormals"],
                delta_tangents=shape["deltaTangents"],
            )
            for shape in payload["blendShapes"]
        ),
    )


def snapshot_to_payload(snapshot: CharacterSnapshot) -> dict[str, Any]:
    return {
        "formatVersion": FORMAT_VERSION,
        "characterId": snapshot.character_id,
        "skeleton": {
            "localPositions": snapshot.skeleton.local_positions,
            "localRotations": snapshot.skeleton.local_rotations,
        },
        "parts": {
            role.value: {
                "mesh": _mesh_payload(part.mesh),
                "materials": [list(m.channels) for m in part.materials.materials],
            }
            for role, part in snapshot.parts.items()
        },
    }


def _require_map(value: Any, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SnapshotFormatError(f"Snapshot field {label!r} is not a map")
    return value


def snapshot_from_payload(payload: dict[str, Any]) -> CharacterSnapshot:
    version = payload.get("formatVersion")
    if version != FORMAT_VERSION:
        raise SnapshotFormatError(f"Unsupported snapshot format version: {version!r}")
    parts = {}
    for role, part in _require_map(payload["parts"], "parts").items():
        part = _require_map(part, f"parts.{role}")
        parts[PartRole(role)] = PartSnapshot(
            mesh=_mesh_from_payload(part["mesh"]),
            materials=MaterialSnapshot(
                tuple(MaterialTextures(tuple(channels)) for channels in part["materials"])
            ),
        )
    skeleton = _require_map(payload["skeleton"], "skeleton")
    return CharacterSnapshot(
        character_id=payload["characterId"],
        skeleton=SkeletonPose(skeleton["localPositions"], skeleton["localRotations"]),
        parts=parts,
    )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------
def serialize(snapshot: CharacterSnapshot) -> bytes:
    return msgpack.packb(
        snapshot_to_payload(snapshot), default=_pack_default, use_bin_type=True
    )


def deserialize(data: bytes) -> CharacterSnapshot:
    """Rebuild a snapshot from :func:`serialize` output.

    Raises:
        SnapshotFormatError: If the data is not a valid snapshot payload.
    """
    try:
        payload = msgpack.unpackb(data, ext_hook=_ext_hook, raw=False, strict_map_key=False)
        if not isinstance(payload, dict):
            raise SnapshotFormatError("Snapshot payload is not a map")
        return snapshot_from_payload(payload)
    except SnapshotFormatError:
        raise
    except (msgpack.UnpackException, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise SnapshotFormatError(f"Malformed snapshot payload: {exc}") from exc


def compress(data: bytes, level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    return gzip.compress(data, compresslevel=level, mtime=0)


def decompress(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise SnapshotFormatError(f"Blob is not valid gzip data: {exc}") from exc


def encode(snapshot: CharacterSnapshot, level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    return compress(serialize(snapshot), level)


def decode(blob: bytes) -> CharacterSnapshot:
    return deserialize(decompress(blob))
