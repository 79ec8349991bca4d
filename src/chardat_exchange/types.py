"""
Data types for character snapshots.

Every type here holds data by value: numpy arrays are copied on construction and
marked read-only, so a snapshot never aliases a live scene resource.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

import numpy as np

# Bone index stored when a renderer's bone is not part of the resolved skeleton
UNRESOLVED_BONE = -1

# Number of influences stored per vertex
BONE_INFLUENCES = 4

# Texture channels captured per material
CHANNEL_COUNT = 3

# Weight given to the single frame of every re-added blend shape
BLEND_SHAPE_FRAME_WEIGHT = 100.0


class PartRole(str, Enum):
    """Semantic part slots of a character. Only BODY is mandatory."""

    BODY = "body"
    EYES = "eyes"
    EYEBROWS = "eyebrows"
    HAIR = "hair"
    TEETH = "teeth"
    TONGUE = "tongue"
    CLOTHES = "clothes"
    SHOES = "shoes"


OPTIONAL_PARTS: tuple[PartRole, ...] = tuple(
    role for role in PartRole if role is not PartRole.BODY
)

# Square texture size per part, 0 keeps the source resolution
PART_TEXTURE_RESOLUTION: Mapping[PartRole, int] = MappingProxyType(
    {
        PartRole.BODY: 0,
        PartRole.EYES: 512,
        PartRole.EYEBROWS: 512,
        PartRole.HAIR: 512,
        PartRole.TEETH: 512,
        PartRole.TONGUE: 512,
        PartRole.CLOTHES: 1024,
        PartRole.SHOES: 512,
    }
)


def frozen_array(value: Any, dtype: Any, tail: tuple[int, ...] = ()) -> np.ndarray:
    """Return a read-only copy of *value* with the given dtype and trailing shape.

    An empty input is reshaped to ``(0, *tail)`` so that empty and populated
    arrays share the same rank.
    """
    array = np.array(value, dtype=dtype, copy=True)
    if array.size == 0:
        array = array.reshape((0, *tail))
    elif tail and array.shape[1:] != tail:
        raise ValueError(f"Expected trailing shape {tail}, got {array.shape}")
    array.setflags(write=False)
    return array


@dataclass(frozen=True, slots=True, eq=False)
class SkeletonPose:
    """Local position and rotation (x, y, z, w) of every bone in skeleton order."""

    local_positions: np.ndarray
    local_rotations: np.ndarray

    def __post_init__(self) -> None:
        positions = frozen_array(self.local_positions, np.float32, (3,))
        rotations = frozen_array(self.local_rotations, np.float32, (4,))
        if len(positions) != len(rotations):
            raise ValueError(
                f"Pose has {len(positions)} positions but {len(rotations)} rotations"
            )
        object.__setattr__(self, "local_positions", positions)
        object.__setattr__(self, "local_rotations", rotations)

    def __len__(self) -> int:
        return len(self.local_positions)


@dataclass(frozen=True, slots=True, eq=False)
class BlendShapeSnapshot:
    """One blend shape captured as a single full-intensity frame."""

    name: str
    delta_vertices: np.ndarray
    delta_normals: np.ndarray
    delta_tangents: np.ndarray

    def __post_init__(self) -> None:
        for attr in ("delta_vertices", "delta_normals", "delta_tangents"):
            object.__setattr__(
                self, attr, frozen_array(getattr(self, attr), np.float32, (3,))
            )


@dataclass(frozen=True, slots=True, eq=False)
class MeshSnapshot:
    """Geometry, skinning and blend shapes of one skinned mesh."""

    vertices: np.ndarray
    triangles: np.ndarray
    uvs: np.ndarray
    bounds_center: np.ndarray
    bounds_extents: np.ndarray
    submeshes: tuple[np.ndarray, ...] = ()
    colors: np.ndarray | None = None
    root_bone_index: int = UNRESOLVED_BONE
    bone_indices: np.ndarray = field(default_factory=lambda: np.zeros(0, np.int32))
    bone_weight_indices: np.ndarray = field(
        default_factory=lambda: np.zeros((0, BONE_INFLUENCES), np.int32)
    )
    bone_weight_weights: np.ndarray = field(
        default_factory=lambda: np.zeros((0, BONE_INFLUENCES), np.float32)
    )
    bind_poses: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 4, 4), np.float32)
    )
    blend_shapes: tuple[BlendShapeSnapshot, ...] = ()

    def __post_init__(self) -> None:
        conv = object.__setattr__
        conv(self, "vertices", frozen_array(self.vertices, np.float32, (3,)))
        conv(self, "triangles", frozen_array(self.triangles, np.int32))
        conv(self, "uvs", frozen_array(self.uvs, np.float32, (2,)))
        conv(self, "bounds_center", frozen_array(self.bounds_center, np.float32))
        conv(self, "bounds_extents", frozen_array(self.bounds_extents, np.float32))
        conv(
            self,
            "submeshes",
            tuple(frozen_array(s, np.int32) for s in self.submeshes),
        )
        if self.colors is not None:
            conv(self, "colors", frozen_array(self.colors, np.float32, (4,)))
        conv(self, "root_bone_index", int(self.root_bone_index))
        conv(self, "bone_indices", frozen_array(self.bone_indices, np.int32))
        conv(
            self,
            "bone_weight_indices",
            frozen_array(self.bone_weight_indices, np.int32, (BONE_INFLUENCES,)),
        )
        conv(
            self,
            "bone_weight_weights",
            frozen_array(self.bone_weight_weights, np.float32, (BONE_INFLUENCES,)),
        )
        conv(self, "bind_poses", frozen_array(self.bind_poses, np.float32, (4, 4)))
        conv(self, "blend_shapes", tuple(self.blend_shapes))
        self._validate()

    def _validate(self) -> None:
        n = self.vertex_count
        if self.bounds_center.shape != (3,) or self.bounds_extents.shape != (3,):
            raise ValueError("Bounds center and extents must be 3-vectors")
        if self.triangles.size and (
            self.triangles.min() < 0 or self.triangles.max() >= n
        ):
            raise ValueError("Triangle indices reference missing vertices")
        if len(self.uvs) not in (0, n):
            raise ValueError(f"Expected {n} uvs, got {len(self.uvs)}")
        if self.colors is not None and len(self.colors) not in (0, n):
            raise ValueError(f"Expected {n} colors, got {len(self.colors)}")
        if len(self.bone_weight_indices) != len(self.bone_weight_weights):
            raise ValueError("Bone weight index and weight arrays differ in length")
        if len(self.bone_weight_indices) not in (0, n):
            raise ValueError(
                f"Expected {n} bone weights, got {len(self.bone_weight_indices)}"
            )
        for shape in self.blend_shapes:
            for deltas in (
                shape.delta_vertices,
                shape.delta_normals,
                shape.delta_tangents,
            ):
                if len(deltas) != n:
                    raise ValueError(
                        f"Blend shape {shape.name!r} has {len(deltas)} deltas "
                        f"for {n} vertices"
                    )

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def blend_shape_names(self) -> list[str]:
        return [shape.name for shape in self.blend_shapes]


@dataclass(frozen=True, slots=True)
class MaterialTextures:
    """PNG blobs of the captured channels of one material, ``None`` when unbound."""

    channels: tuple[bytes | None, ...] = (None,) * CHANNEL_COUNT

    def __post_init__(self) -> None:
        channels = tuple(self.channels)
        if len(channels) != CHANNEL_COUNT:
            raise ValueError(
                f"Expected {CHANNEL_COUNT} texture channels, got {len(channels)}"
            )
        object.__setattr__(self, "channels", channels)

    @property
    def captured_count(self) -> int:
        return sum(1 for blob in self.channels if blob is not None)


@dataclass(frozen=True, slots=True)
class MaterialSnapshot:
    """Texture data of every material slot of a renderer, in slot order."""

    materials: tuple[MaterialTextures, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "materials", tuple(self.materials))

    def __len__(self) -> int:
        return len(self.materials)


@dataclass(frozen=True, slots=True, eq=False)
class PartSnapshot:
    mesh: MeshSnapshot
    materials: MaterialSnapshot


@dataclass(frozen=True, slots=True, eq=False)
class CharacterSnapshot:
    """Complete by-value state of one character.

    An optional part that was not found on the source character is simply absent
    from ``parts``.
    """

    character_id: int
    skeleton: SkeletonPose
    parts: Mapping[PartRole, PartSnapshot]

    def __post_init__(self) -> None:
        parts = {PartRole(role): part for role, part in self.parts.items()}
        if PartRole.BODY not in parts:
            raise ValueError("A character snapshot requires a body part")
        ordered = {role: parts[role] for role in PartRole if role in parts}
        object.__setattr__(self, "parts", MappingProxyType(ordered))

    def part(self, role: PartRole) -> PartSnapshot | None:
        return self.parts.get(role)

    @property
    def present_roles(self) -> list[PartRole]:
        return list(self.parts)
