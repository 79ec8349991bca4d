"""
In-process scene model for live characters.

This module is the platform layer that snapshots are captured from and applied
to: a hierarchy of named nodes with local transforms, skinned-mesh renderers,
meshes backed by numpy arrays, and materials holding RGBA textures.

Objects here are mutable engine resources. They are expected to be touched only
from the thread that owns the graphics context (see :mod:`chardat_exchange.workers`).
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

import numpy as np
from PIL import Image

IDENTITY_ROTATION = (0.0, 0.0, 0.0, 1.0)


class TextureNotReadableError(RuntimeError):
    """Raised when CPU access is attempted on a texture that is not readable."""


# ----------------------------------------------------------------------
# Textures and materials
# ----------------------------------------------------------------------
class Texture:
    """RGBA8 texture. ``readable`` mirrors the CPU-access flag of GPU textures."""

    def __init__(self, pixels, *, readable: bool = True, name: str = "") -> None:
        pixels = np.asarray(pixels, dtype=np.uint8)
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Texture pixels must be (height, width, 4), got {pixels.shape}")
        self._pixels = pixels.copy()
        self.readable = readable
        self.name = name
        self.applied = False

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    def blit(self, width: int, height: int) -> np.ndarray:
        """Render the texture into an off-screen target and read the target back.

        Works regardless of ``readable``; the target is rescaled when its size
        differs from the source.
        """
        if (width, height) == (self.width, self.height):
            return self._pixels.copy()
        image = Image.fromarray(self._pixels)
        resized = image.resize((width, height), Image.Resampling.BILINEAR)
        return np.asarray(resized.convert("RGBA"), dtype=np.uint8).copy()

    def get_pixels(self) -> np.ndarray:
        if not self.readable:
            raise TextureNotReadableError(f"Texture {self.name!r} is not readable")
        return self._pixels.copy()

    def set_pixels(self, pixels) -> None:
        if not self.readable:
            raise TextureNotReadableError(f"Texture {self.name!r} is not readable")
        pixels = np.asarray(pixels, dtype=np.uint8)
        if pixels.shape != self._pixels.shape:
            raise ValueError(f"Expected pixels of shape {self._pixels.shape}, got {pixels.shape}")
        self._pixels = pixels.copy()
        self.applied = False

    def apply(self) -> None:
        """Commit pending pixel changes."""
        self.applied = True

    def __repr__(self) -> str:
        return f"Texture({self.name!r}, {self.width}x{self.height}, readable={self.readable})"


class Material:
    """A shader plus named texture slots."""

    def __init__(
        self,
        shader_name: str,
        textures: dict[str, Texture] | None = None,
        name: str = "",
    ) -> None:
        self.shader_name = shader_name
        self.name = name
        self._textures: dict[str, Texture] = dict(textures or {})

    def get_texture(self, slot: str | None) -> Texture | None:
        if not slot:
            return None
        return self._textures.get(slot)

    def set_texture(self, slot: str, texture: Texture) -> None:
        self._textures[slot] = texture

    @property
    def texture_slots(self) -> list[str]:
        return list(self._textures)

    def __repr__(self) -> str:
        return f"Material({self.name!r}, shader={self.shader_name!r})"


# ----------------------------------------------------------------------
# Meshes
# ----------------------------------------------------------------------
@dataclass
class Bounds:
    center: np.ndarray = field(default_factory=lambda: np.zeros(3, np.float32))
    extents: np.ndarray = field(default_factory=lambda: np.zeros(3, np.float32))

    @property
    def size(self) -> np.ndarray:
        return self.extents * 2


@dataclass
class BlendShapeFrame:
    weight: float
    delta_vertices: np.ndarray
    delta_normals: np.ndarray
    delta_tangents: np.ndarray


@dataclass
class BlendShape:
    name: str
    frames: list[BlendShapeFrame] = field(default_factory=list)


def _as_rows(value, dtype, width: int) -> np.ndarray:
    array = np.array(value if value is not None else [], dtype=dtype)
    if array.size == 0:
        return np.zeros((0, width), dtype)
    if array.ndim != 2 or array.shape[1] != width:
        raise ValueError(f"Expected an (n, {width}) array, got {array.shape}")
    return array


class Mesh:
    """Triangle mesh with submeshes, skinning data and blend shapes."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.dynamic = False
        self._vertices = np.zeros((0, 3), np.float32)
        self._colors = np.zeros((0, 4), np.float32)
        self._uv = np.zeros((0, 2), np.float32)
        self._submeshes: list[np.ndarray] = []
        self.normals = np.zeros((0, 3), np.float32)
        self.tangents = np.zeros((0, 4), np.float32)
        self.bounds = Bounds()
        self._bone_weight_indices = np.zeros((0, 4), np.int32)
        self._bone_weight_weights = np.zeros((0, 4), np.float32)
        self._bind_poses = np.zeros((0, 4, 4), np.float32)
        self._blend_shapes: list[BlendShape] = []

    def mark_dynamic(self) -> None:
        self.dynamic = True

    # Geometry ------------------------------------------------------------
    @property
    def vertex_count(self) -> int:
        return len(self._vertices)

    @property
    def vertices(self) -> np.ndarray:
        return self._vertices.copy()

    @vertices.setter
    def vertices(self, value) -> None:
        self._vertices = _as_rows(value, np.float32, 3)

    @property
    def colors(self) -> np.ndarray:
        return self._colors.copy()

    @colors.setter
    def colors(self, value) -> None:
        colors = _as_rows(value, np.float32, 4)
        self._check_per_vertex("colors", colors)
        self._colors = colors

    @property
    def uv(self) -> np.ndarray:
        return self._uv.copy()

    @uv.setter
    def uv(self, value) -> None:
        uv = _as_rows(value, np.float32, 2)
        self._check_per_vertex("uv", uv)
        self._uv = uv

    @property
    def triangles(self) -> np.ndarray:
        """Indices of all submeshes concatenated in submesh order."""
        if not self._submeshes:
            return np.zeros(0, np.int32)
        return np.concatenate(self._submeshes)

    @triangles.setter
    def triangles(self, value) -> None:
        indices = self._check_indices(value)
        self._submeshes = [indices]

    @property
    def submesh_count(self) -> int:
        return len(self._submeshes)

    @submesh_count.setter
    def submesh_count(self, count: int) -> None:
        if count < 0:
            raise ValueError("submesh_count must not be negative")
        del self._submeshes[count:]
        while len(self._submeshes) < count:
            self._submeshes.append(np.zeros(0, np.int32))

    def get_triangles(self, submesh: int) -> np.ndarray:
        return self._submeshes[submesh].copy()

    def set_triangles(self, indices, submesh: int) -> None:
        if not 0 <= submesh < len(self._submeshes):
            raise IndexError(f"Submesh {submesh} out of range ({len(self._submeshes)})")
        self._submeshes[submesh] = self._check_indices(indices)

    def _check_indices(self, value) -> np.ndarray:
        indices = np.array(value if value is not None else [], dtype=np.int32).ravel()
        if len(indices) % 3:
            raise ValueError(f"Triangle index count {len(indices)} is not a multiple of 3")
        if indices.size and (indices.min() < 0 or indices.max() >= self.vertex_count):
            raise ValueError("Triangle indices reference missing vertices")
        return indices

    def _check_per_vertex(self, label: str, array: np.ndarray) -> None:
        if len(array) not in (0, self.vertex_count):
            raise ValueError(
                f"Mesh has {self.vertex_count} vertices but {len(array)} {label}"
            )

    # Skinning ------------------------------------------------------------
    @property
    def bone_weight_indices(self) -> np.ndarray:
        return self._bone_weight_indices.copy()

    @property
    def bone_weight_weights(self) -> np.ndarray:
        return self._bone_weight_weights.copy()

    def set_bone_weights(self, indices, weights) -> None:
        indices = _as_rows(indices, np.int32, 4)
        weights = _as_rows(weights, np.float32, 4)
        if len(indices) != len(weights):
            raise ValueError("Bone weight index and weight arrays differ in length")
        self._check_per_vertex("bone weights", indices)
        self._bone_weight_indices = indices
        self._bone_weight_weights = weights

    @property
    def bind_poses(self) -> np.ndarray:
        return self._bind_poses.copy()

    @bind_poses.setter
    def bind_poses(self, value) -> None:
        poses = np.array(value if value is not None else [], dtype=np.float32)
        if poses.size == 0:
            poses = np.zeros((0, 4, 4), np.float32)
        elif poses.ndim != 3 or poses.shape[1:] != (4, 4):
            raise ValueError(f"Bind poses must be (n, 4, 4), got {poses.shape}")
        self._bind_poses = poses

    # Blend shapes --------------------------------------------------------
    @property
    def blend_shape_count(self) -> int:
        return len(self._blend_shapes)

    @property
    def blend_shapes(self) -> tuple[BlendShape, ...]:
        return tuple(self._blend_shapes)

    def get_blend_shape_name(self, index: int) -> str:
        return self._blend_shapes[index].name

    def clear_blend_shapes(self) -> None:
        self._blend_shapes.clear()

    def add_blend_shape_frame(
        self,
        name: str,
        weight: float,
        delta_vertices,
        delta_normals=None,
        delta_tangents=None,
    ) -> None:
        """Append a frame, creating the shape when *name* is new.

        Frames of one shape must be added with strictly increasing weights.
        """
        n = self.vertex_count
        deltas = []
        for label, value in (
            ("vertex", delta_vertices),
            ("normal", delta_normals),
            ("tangent", delta_tangents),
        ):
            array = (
                np.zeros((n, 3), np.float32)
                if value is None
                else _as_rows(value, np.float32, 3)
            )
            if len(array) != n:
                raise ValueError(
                    f"Blend shape {name!r} has {len(array)} {label} deltas for {n} vertices"
                )
            deltas.append(array)

        frame = BlendShapeFrame(float(weight), *deltas)
        for shape in self._blend_shapes:
            if shape.name == name:
                if shape.frames and weight <= shape.frames[-1].weight:
                    raise ValueError(
                        f"Blend shape {name!r} frame weights must increase"
                    )
                shape.frames.append(frame)
                return
        self._blend_shapes.append(BlendShape(name, [frame]))

    # Derived data --------------------------------------------------------
    def _triangle_rows(self) -> np.ndarray:
        return self.triangles.reshape(-1, 3)

    def recalculate_normals(self) -> None:
        """Area-weighted vertex normals from the triangle list."""
        tris = self._triangle_rows()
        normals = np.zeros((self.vertex_count, 3), np.float64)
        if len(tris):
            v = self._vertices.astype(np.float64)
            face = np.cross(v[tris[:, 1]] - v[tris[:, 0]], v[tris[:, 2]] - v[tris[:, 0]])
            for corner in range(3):
                np.add.at(normals, tris[:, corner], face)
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        np.divide(normals, lengths, out=normals, where=lengths > 0)
        self.normals = normals.astype(np.float32)

    def recalculate_tangents(self) -> None:
        """Per-vertex tangents (xyz + handedness w) from positions, normals and uvs."""
        n = self.vertex_count
        tangents = np.zeros((n, 4), np.float32)
        tangents[:, 0] = 1.0
        tangents[:, 3] = 1.0
        tris = self._triangle_rows()
        if n == 0 or len(self._uv) != n or not len(tris):
            self.tangents = tangents
            return
        if len(self.normals) != n:
            self.recalculate_normals()

        v = self._vertices.astype(np.float64)
        uv = self._uv.astype(np.float64)
        i0, i1, i2 = tris[:, 0], tris[:, 1], tris[:, 2]
        e1, e2 = v[i1] - v[i0], v[i2] - v[i0]
        d1, d2 = uv[i1] - uv[i0], uv[i2] - uv[i0]
        det = d1[:, 0] * d2[:, 1] - d2[:, 0] * d1[:, 1]
        valid = np.abs(det) > 1e-12
        r = np.zeros_like(det)
        r[valid] = 1.0 / det[valid]
        sdir = (e1 * d2[:, 1:2] - e2 * d1[:, 1:2]) * r[:, None]
        tdir = (e2 * d1[:, 0:1] - e1 * d2[:, 0:1]) * r[:, None]

        tan1 = np.zeros((n, 3), np.float64)
        tan2 = np.zeros((n, 3), np.float64)
        for corner in range(3):
            np.add.at(tan1, tris[:, corner], sdir)
            np.add.at(tan2, tris[:, corner], tdir)

        normals = self.normals.astype(np.float64)
        ortho = tan1 - normals * np.sum(normals * tan1, axis=1, keepdims=True)
        lengths = np.linalg.norm(ortho, axis=1)
        ok = lengths > 1e-12
        tangents[ok, :3] = ortho[ok] / lengths[ok, None]
        handedness = np.sum(np.cross(normals, tan1) * tan2, axis=1)
        tangents[:, 3] = np.where(handedness < 0.0, -1.0, 1.0)
        self.tangents = tangents

    def recalculate_bounds(self) -> None:
        """Fit the bounds to the vertices; an empty mesh keeps its bounds."""
        if self.vertex_count == 0:
            return
        lo = self._vertices.min(axis=0)
        hi = self._vertices.max(axis=0)
        self.bounds = Bounds(center=(lo + hi) / 2, extents=(hi - lo) / 2)

    def __repr__(self) -> str:
        return (
            f"Mesh({self.name!r}, vertices={self.vertex_count}, "
            f"submeshes={self.submesh_count}, blend_shapes={self.blend_shape_count})"
        )


# ----------------------------------------------------------------------
# Renderers and nodes
# ----------------------------------------------------------------------
class SkinnedMeshRenderer:
    """Binds a mesh to bones of a skeleton and to a list of materials."""

    def __init__(
        self,
        shared_mesh: Mesh | None = None,
        bones: list[SceneNode | None] | None = None,
        root_bone: SceneNode | None = None,
        materials: list[Material] | None = None,
    ) -> None:
        self.shared_mesh = shared_mesh if shared_mesh is not None else Mesh()
        self.bones: list[SceneNode | None] = list(bones or [])
        self.root_bone = root_bone
        self.materials: list[Material] = list(materials or [])
        self.owner: SceneNode | None = None

    def __repr__(self) -> str:
        owner = self.owner.name if self.owner else None
        return f"SkinnedMeshRenderer(owner={owner!r}, mesh={self.shared_mesh!r})"


class SceneNode:
    """Named node with a local transform, children and an optional renderer."""

    def __init__(
        self,
        name: str,
        local_position=(0.0, 0.0, 0.0),
        local_rotation=IDENTITY_ROTATION,
        renderer: SkinnedMeshRenderer | None = None,
    ) -> None:
        self.name = name
        self.parent: SceneNode | None = None
        self.children: list[SceneNode] = []
        self.local_position = local_position
        self.local_rotation = local_rotation
        self._renderer: SkinnedMeshRenderer | None = None
        self.renderer = renderer

    @property
    def local_position(self) -> np.ndarray:
        return self._local_position

    @local_position.setter
    def local_position(self, value) -> None:
        position = np.array(value, dtype=np.float32).reshape(3)
        self._local_position = position

    @property
    def local_rotation(self) -> np.ndarray:
        return self._local_rotation

    @local_rotation.setter
    def local_rotation(self, value) -> None:
        rotation = np.array(value, dtype=np.float32).reshape(4)
        self._local_rotation = rotation

    @property
    def renderer(self) -> SkinnedMeshRenderer | None:
        return self._renderer

    @renderer.setter
    def renderer(self, renderer: SkinnedMeshRenderer | None) -> None:
        if renderer is not None:
            renderer.owner = self
        self._renderer = renderer

    def add_child(self, child: SceneNode) -> SceneNode:
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = self
        self.children.append(child)
        return child

    def iter_depth_first(self) -> Iterator[SceneNode]:
        """Yield this node, then every descendant in depth-first pre-order."""
        yield self
        for child in self.children:
            yield from child.iter_depth_first()

    def iter_renderers(self) -> Iterator[SkinnedMeshRenderer]:
        for node in self.iter_depth_first():
            if node.renderer is not None:
                yield node.renderer

    def __repr__(self) -> str:
        return f"SceneNode({self.name!r}, children={len(self.children)})"
