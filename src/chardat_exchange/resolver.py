"""
Resolution of a live character's part hierarchy into indexed handles.

Parts are located by substring match on node names. The expected names form a
versioned :class:`PartSchema` so that a capture can report exactly which roles
were satisfied and which were missing.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .errors import MissingPartError
from .scene import SceneNode, SkinnedMeshRenderer
from .types import PartRole

logger = logging.getLogger(__name__)

SKELETON_ROLE = "skeleton"


@dataclass(frozen=True)
class PartSchema:
    """Static mapping from semantic role to the name fragment that identifies it."""

    version: int = 1
    skeleton_root: str = "Root"
    parts: Mapping[PartRole, str] = field(
        default_factory=lambda: MappingProxyType(
            {
                PartRole.BODY: "Body",
                PartRole.EYES: "Eyes",
                PartRole.EYEBROWS: "Eyebrows",
                PartRole.HAIR: "Hair",
                PartRole.TEETH: "Teeth",
                PartRole.TONGUE: "Tongue",
                PartRole.CLOTHES: "Clothes",
                PartRole.SHOES: "Shoes",
            }
        )
    )

    def __post_init__(self) -> None:
        parts = {PartRole(role): pattern for role, pattern in self.parts.items()}
        missing = [role.value for role in PartRole if not parts.get(role)]
        if missing:
            raise ValueError(f"Part schema has no pattern for: {', '.join(missing)}")
        if not self.skeleton_root:
            raise ValueError("Part schema has no skeleton root pattern")
        object.__setattr__(self, "parts", MappingProxyType(parts))

    @classmethod
    def from_patterns(
        cls, skeleton_root: str, patterns: Mapping[str, str], version: int = 1
    ) -> PartSchema:
        """Build a schema from config-style string keys, keeping defaults for unset roles."""
        parts = dict(cls().parts)
        for key, pattern in patterns.items():
            parts[PartRole(key)] = pattern
        return cls(version=version, skeleton_root=skeleton_root, parts=parts)


DEFAULT_SCHEMA = PartSchema()


@dataclass
class ResolutionReport:
    schema_version: int
    satisfied: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass
class CharacterReference:
    """Handles to the parts of one live character."""

    character_id: int
    root: SceneNode
    skeleton_root: SceneNode
    bones: list[SceneNode]
    renderers: dict[PartRole, SkinnedMeshRenderer]
    report: ResolutionReport

    def renderer(self, role: PartRole) -> SkinnedMeshRenderer | None:
        return self.renderers.get(role)

    @property
    def body(self) -> SkinnedMeshRenderer:
        return self.renderers[PartRole.BODY]


def find_direct_child(parent: SceneNode, pattern: str) -> SceneNode | None:
    """Return the first direct child whose name contains *pattern*."""
    for child in parent.children:
        if pattern in child.name:
            return child
    return None


def find_renderer(root: SceneNode, pattern: str) -> SkinnedMeshRenderer | None:
    """Return the first renderer (depth-first) whose owner's name contains *pattern*."""
    for renderer in root.iter_renderers():
        if renderer.owner is not None and pattern in renderer.owner.name:
            return renderer
    return None


def resolve_character(
    root: SceneNode,
    character_id: int = 0,
    schema: PartSchema = DEFAULT_SCHEMA,
) -> CharacterReference:
    """Resolve the skeleton and every part slot of the character under *root*.

    Raises:
        MissingPartError: If the skeleton root or the body cannot be found.
    """
    report = ResolutionReport(schema_version=schema.version)

    skeleton_root = find_direct_child(root, schema.skeleton_root)
    if skeleton_root is None:
        report.missing.append(SKELETON_ROLE)
    else:
        report.satisfied.append(SKELETON_ROLE)

    renderers: dict[PartRole, SkinnedMeshRenderer] = {}
    for role, pattern in schema.parts.items():
        renderer = find_renderer(root, pattern)
        if renderer is None:
            report.missing.append(role.value)
            continue
        renderers[role] = renderer
        report.satisfied.append(role.value)

    mandatory_missing = [
        role for role in (SKELETON_ROLE, PartRole.BODY.value) if role in report.missing
    ]
    if mandatory_missing:
        raise MissingPartError(mandatory_missing, root.name)

    bones = list(skeleton_root.iter_depth_first())
    logger.debug(
        f"Resolved character {character_id} ({root.name!r}): {len(bones)} bones, "
        f"parts={report.satisfied}, missing={report.missing}"
    )
    return CharacterReference(
        character_id=character_id,
        root=root,
        skeleton_root=skeleton_root,
        bones=bones,
        renderers=renderers,
        report=report,
    )
