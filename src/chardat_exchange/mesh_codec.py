"""
Capture and reconstruction of skeleton poses and skinned meshes.

Bone references are stored as indices into the resolved skeleton bone array, so
a snapshot taken from one character can be rebound to another character whose
skeleton has the same ordering.

Normals and tangents are never stored; they are recomputed from the geometry on
reconstruction.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from .errors import IncompatibleSkeletonError
from .scene import Mesh, SceneNode, SkinnedMeshRenderer
from .types import (
    BLEND_SHAPE_FRAME_WEIGHT,
    UNRESOLVED_BONE,
    BlendShapeSnapshot,
    MeshSnapshot,
    SkeletonPose,
)

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Skeleton
# ----------------------------------------------------------------------
def capture_skeleton_pose(bones: Sequence[SceneNode]) -> SkeletonPose:
    return SkeletonPose(
        local_positions=np.array([bone.local_position for bone in bones], np.float32),
        local_rotations=np.array([bone.local_rotation for bone in bones], np.float32),
    )


def apply_skeleton_pose(pose: SkeletonPose, bones: Sequence[SceneNode]) -> None:
    """Write every bone's local transform.

    Raises:
        IncompatibleSkeletonError: If the pose and the skeleton differ in length.
            No bone is modified in that case.
    """
    if len(pose) != len(bones):
        raise IncompatibleSkeletonError(
            f"Pose has {len(pose)} bones but the live skeleton has {len(bones)}"
        )
    for bone, position, rotation in zip(
        bones, pose.local_positions, pose.local_rotations
    ):
        bone.local_position = position
        bone.local_rotation = rotation


# ----------------------------------------------------------------------
# Bone index mapping
# ----------------------------------------------------------------------
def bone_index(skeleton: Sequence[SceneNode], bone: SceneNode | None) -> int:
    """Position of *bone* (by identity) in *skeleton*, or ``UNRESOLVED_BONE``."""
    if bone is None:
        return UNRESOLVED_BONE
    for index, candidate in enumerate(skeleton):
        if candidate is bone:
            return index
    return UNRESOLVED_BONE


def bone_indices(
    skeleton: Sequence[SceneNode], bones: Sequence[SceneNode | None]
) -> np.ndarray:
    positions = {id(node): index for index, node in enumerate(skeleton)}
    return np.array(
        [
            positions.get(id(bone), UNRESOLVED_BONE) if bone is not None else UNRESOLVED_BONE
            for bone in bones
        ],
        dtype=np.int32,
    )


def lookup_bone(skeleton: Sequence[SceneNode], index: int) -> SceneNode | None:
    """Return the bone at *index*, or ``None`` when the index cannot be resolved."""
    if 0 <= index < len(skeleton):
        return skeleton[index]
    return None


@dataclass
class BoneBinding:
    """Outcome of rebinding a renderer to a live skeleton."""

    root_bone: SceneNode | None
    bones: list[SceneNode | None]
    unresolved: list[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.root_bone is not None and not self.unresolved


def bind_bones(snapshot: MeshSnapshot, skeleton: Sequence[SceneNode]) -> BoneBinding:
    """Map stored bone indices onto the live skeleton.

    Positions in the renderer's bone list are kept even when a bone cannot be
    resolved, so that per-vertex influence indices stay aligned; the slot is
    ``None`` and its position is listed in ``unresolved``.
    """
    root = lookup_bone(skeleton, snapshot.root_bone_index)
    bones: list[SceneNode | None] = []
    unresolved: list[int] = []
    for slot, index in enumerate(snapshot.bone_indices.tolist()):
        bone = lookup_bone(skeleton, index)
        if bone is None:
            unresolved.append(slot)
        bones.append(bone)
    return BoneBinding(root_bone=root, bones=bones, unresolved=unresolved)


# ----------------------------------------------------------------------
# Mesh
# ----------------------------------------------------------------------
def _strongest_frame(shape):
    return max(shape.frames, key=lambda frame: frame.weight)


def capture_mesh(
    mesh: Mesh,
    skeleton: Sequence[SceneNode] | None = None,
    root_bone: SceneNode | None = None,
    skin_bones: Sequence[SceneNode | None] | None = None,
) -> MeshSnapshot:
    """Copy a mesh and its bone bindings by value."""
    if skeleton is None:
        root_index = UNRESOLVED_BONE
        indices = np.zeros(0, np.int32)
    else:
        root_index = bone_index(skeleton, root_bone)
        indices = bone_indices(skeleton, skin_bones or [])

    blend_shapes = []
    for shape in mesh.blend_shapes:
        if not shape.frames:
            continue
        frame = _strongest_frame(shape)
        blend_shapes.append(
            BlendShapeSnapshot(
                name=shape.name,
                delta_vertices=frame.delta_vertices,
                delta_normals=frame.delta_normals,
                delta_tangents=frame.delta_tangents,
            )
        )

    colors = mesh.colors
    return MeshSnapshot(
        vertices=mesh.vertices,
        triangles=mesh.triangles,
        uvs=mesh.uv,
        colors=colors if len(colors) else None,
        bounds_center=mesh.bounds.center,
        bounds_extents=mesh.bounds.extents,
        submeshes=tuple(mesh.get_triangles(i) for i in range(mesh.submesh_count)),
        root_bone_index=root_index,
        bone_indices=indices,
        bone_weight_indices=mesh.bone_weight_indices,
        bone_weight_weights=mesh.bone_weight_weights,
        bind_poses=mesh.bind_poses,
        blend_shapes=tuple(blend_shapes),
    )


def build_mesh(snapshot: MeshSnapshot, name: str = "") -> Mesh:
    """Create a new mesh from a snapshot, recomputing derived data."""
    mesh = Mesh(name)
    mesh.mark_dynamic()
    mesh.vertices = snapshot.vertices
    mesh.triangles = snapshot.triangles
    if snapshot.colors is not None:
        mesh.colors = snapshot.colors
    mesh.uv = snapshot.uvs
    mesh.recalculate_normals()
    mesh.recalculate_tangents()

    # Stored bounds only survive for a mesh without vertices
    mesh.bounds.center = snapshot.bounds_center.copy()
    mesh.bounds.extents = snapshot.bounds_extents.copy()
    mesh.recalculate_bounds()

    if snapshot.submeshes:
        mesh.submesh_count = len(snapshot.submeshes)
        for index, triangles in enumerate(snapshot.submeshes):
            mesh.set_triangles(triangles, index)

    mesh.set_bone_weights(snapshot.bone_weight_indices, snapshot.bone_weight_weights)
    mesh.bind_poses = snapshot.bind_poses

    mesh.clear_blend_shapes()
    for shape in snapshot.blend_shapes:
        mesh.add_blend_shape_frame(
            shape.name,
            BLEND_SHAPE_FRAME_WEIGHT,
            shape.delta_vertices,
            shape.delta_normals,
            shape.delta_tangents,
        )
    return mesh


def apply_mesh(
    snapshot: MeshSnapshot,
    renderer: SkinnedMeshRenderer,
    skeleton: Sequence[SceneNode] | None = None,
) -> BoneBinding | None:
    """Rebuild the renderer's mesh from *snapshot* and rebind it to *skeleton*.

    The renderer receives a newly created mesh; the previous one is dropped.
    Returns the bone binding, or ``None`` when no skeleton was given.
    """
    binding = None
    owner = renderer.owner.name if renderer.owner else "?"
    if skeleton is not None:
        binding = bind_bones(snapshot, skeleton)
        if binding.root_bone is None:
            logger.warning(
                f"Root bone index {snapshot.root_bone_index} of {owner!r} does not "
                f"resolve in a skeleton of {len(skeleton)} bones; keeping current root"
            )
        else:
            renderer.root_bone = binding.root_bone
        if binding.unresolved:
            logger.warning(
                f"{len(binding.unresolved)} of {len(binding.bones)} bones of {owner!r} "
                f"could not be resolved (slots {binding.unresolved[:8]})"
            )
        if binding.bones:
            renderer.bones = binding.bones

    previous = renderer.shared_mesh
    renderer.shared_mesh = build_mesh(snapshot, name=previous.name if previous else "")
    logger.debug(f"Applied mesh to {owner!r}: {renderer.shared_mesh!r}")
    return binding
