"""
Whole-character capture and re-application.

:class:`SnapshotBuilder` turns a live character into a :class:`CharacterSnapshot`;
:class:`Reconstructor` writes a snapshot back onto a live character. Scene access
goes through an optional :class:`~chardat_exchange.workers.GraphicsContext`, with
each skeleton, mesh and texture step queued separately.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from .material_codec import DEFAULT_CHANNEL_TABLE, ChannelTable, apply_materials, capture_materials
from .mesh_codec import BoneBinding, apply_mesh, apply_skeleton_pose, capture_mesh, capture_skeleton_pose
from .resolver import DEFAULT_SCHEMA, CharacterReference, PartSchema, resolve_character
from .scene import SceneNode
from .types import PART_TEXTURE_RESOLUTION, CharacterSnapshot, PartRole, PartSnapshot
from .workers import GraphicsContext, WorkerPool, run_on

logger = logging.getLogger(__name__)


class SnapshotBuilder:
    """Capture the skeleton pose and every present part of a character."""

    def __init__(
        self,
        schema: PartSchema = DEFAULT_SCHEMA,
        channels: ChannelTable = DEFAULT_CHANNEL_TABLE,
        resolution: Mapping[PartRole, int] = PART_TEXTURE_RESOLUTION,
        graphics: GraphicsContext | None = None,
    ) -> None:
        self.schema = schema
        self.channels = channels
        self.resolution = dict(PART_TEXTURE_RESOLUTION)
        self.resolution.update(resolution)
        self.graphics = graphics

    def build(self, root: SceneNode, character_id: int = 0) -> CharacterSnapshot:
        """Resolve the character under *root* and capture it by value.

        Raises:
            MissingPartError: If the skeleton or the body cannot be resolved.
        """
        return run_on(self.graphics, self._build, root, character_id)

    def build_from(self, reference: CharacterReference) -> CharacterSnapshot:
        return run_on(self.graphics, self._capture, reference)

    def _build(self, root: SceneNode, character_id: int) -> CharacterSnapshot:
        return self._capture(resolve_character(root, character_id, self.schema))

    def _capture(self, reference: CharacterReference) -> CharacterSnapshot:
        skeleton = capture_skeleton_pose(reference.bones)
        parts: dict[PartRole, PartSnapshot] = {}
        for role, renderer in reference.renderers.items():
            mesh = capture_mesh(
                renderer.shared_mesh,
                reference.bones,
                renderer.root_bone,
                renderer.bones,
            )
            materials = capture_materials(
                renderer.materials, self.resolution.get(role, 0), self.channels
            )
            parts[role] = PartSnapshot(mesh=mesh, materials=materials)

        logger.info(
            f"Captured character {reference.character_id}: {len(skeleton)} bones, "
            f"parts={[role.value for role in parts]}"
        )
        return CharacterSnapshot(
            character_id=reference.character_id, skeleton=skeleton, parts=parts
        )


@dataclass
class ApplyReport:
    """What :meth:`Reconstructor.apply` changed on the live character."""

    character_id: int
    applied: list[PartRole] = field(default_factory=list)
    skipped: list[PartRole] = field(default_factory=list)
    textures_bound: int = 0
    bindings: dict[PartRole, BoneBinding] = field(default_factory=dict)

    @property
    def unresolved_bones(self) -> int:
        return sum(len(binding.unresolved) for binding in self.bindings.values())


class Reconstructor:
    """Write a snapshot back onto a live character."""

    def __init__(
        self,
        schema: PartSchema = DEFAULT_SCHEMA,
        channels: ChannelTable = DEFAULT_CHANNEL_TABLE,
        graphics: GraphicsContext | None = None,
        workers: WorkerPool | None = None,
    ) -> None:
        self.schema = schema
        self.channels = channels
        self.graphics = graphics
        self.workers = workers

    def resolve(self, root: SceneNode, character_id: int = 0) -> CharacterReference:
        return run_on(self.graphics, resolve_character, root, character_id, self.schema)

    def apply(
        self, snapshot: CharacterSnapshot, target: CharacterReference | SceneNode
    ) -> ApplyReport:
        """Apply the skeleton pose, then each part's mesh and materials.

        Parts present on only one side are skipped.

        Raises:
            IncompatibleSkeletonError: If the pose does not match the live
                skeleton. Nothing is modified in that case.
        """
        if isinstance(target, SceneNode):
            target = self.resolve(target, snapshot.character_id)

        run_on(self.graphics, apply_skeleton_pose, snapshot.skeleton, target.bones)

        report = ApplyReport(character_id=target.character_id)
        for role, part in snapshot.parts.items():
            renderer = target.renderer(role)
            if renderer is None:
                logger.debug(f"Character {target.character_id} has no {role.value}; skipped")
                report.skipped.append(role)
                continue
            binding = run_on(self.graphics, apply_mesh, part.mesh, renderer, target.bones)
            if binding is not None:
                report.bindings[role] = binding
            report.textures_bound += apply_materials(
                part.materials, renderer, self.channels, self.graphics, self.workers
            )
            report.applied.append(role)

        for role in target.renderers:
            if role not in snapshot.parts:
                logger.debug(f"Snapshot has no {role.value}; live part left unchanged")

        logger.info(
            f"Applied snapshot {snapshot.character_id} to character "
            f"{target.character_id}: parts={[role.value for role in report.applied]}, "
            f"textures={report.textures_bound}"
        )
        return report
