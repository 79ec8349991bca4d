"""
Capture and re-application of material textures.

Only textures are transferred; every other material parameter is assumed to be
identical between characters of the same type. Each material contributes up to
:data:`~chardat_exchange.types.CHANNEL_COUNT` texture channels, whose slot names
depend on the material's shader and are looked up in a :class:`ChannelTable`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from .scene import Material, SkinnedMeshRenderer, Texture
from .texture_processing import capture_texture, decode_png, duplicate_texture, import_texture
from .types import CHANNEL_COUNT, MaterialSnapshot, MaterialTextures
from .workers import GraphicsContext, WorkerPool, run_in, run_on

logger = logging.getLogger(__name__)

ChannelNames = tuple[str | None, ...]

NO_CHANNELS: ChannelNames = (None,) * CHANNEL_COUNT


@dataclass(frozen=True)
class ChannelRule:
    """Shaders whose name contains ``match`` expose ``channels`` in this order."""

    match: str
    channels: ChannelNames

    def __post_init__(self) -> None:
        channels = tuple(name or None for name in self.channels)
        if len(channels) > CHANNEL_COUNT:
            raise ValueError(
                f"Shader rule {self.match!r} lists {len(channels)} channels, "
                f"at most {CHANNEL_COUNT} are supported"
            )
        channels += (None,) * (CHANNEL_COUNT - len(channels))
        object.__setattr__(self, "channels", channels)


DEFAULT_RULES: tuple[ChannelRule, ...] = (
    ChannelRule("Standard", ("_MainTex", "_MetallicGlossMap", "_BumpMap")),
)


class ChannelTable:
    """Ordered shader-name rules; the first matching rule wins."""

    def __init__(self, rules: Iterable[ChannelRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    @classmethod
    def from_config(cls, entries: Sequence[Mapping[str, object]]) -> ChannelTable:
        rules = []
        for entry in entries:
            rules.append(ChannelRule(str(entry["match"]), tuple(entry["channels"])))
        return cls(rules)

    def channels_for(self, shader_name: str) -> ChannelNames:
        """Channel slot names for *shader_name*; all ``None`` when unrecognised."""
        for rule in self.rules:
            if rule.match in shader_name:
                return rule.channels
        return NO_CHANNELS


DEFAULT_CHANNEL_TABLE = ChannelTable()


def capture_material(material: Material, size: int, table: ChannelTable) -> MaterialTextures:
    channels = []
    for slot in table.channels_for(material.shader_name):
        texture = material.get_texture(slot)
        channels.append(capture_texture(texture, size) if texture is not None else None)
    return MaterialTextures(tuple(channels))


def capture_materials(
    materials: Sequence[Material],
    size: int | Sequence[int] = 0,
    table: ChannelTable = DEFAULT_CHANNEL_TABLE,
) -> MaterialSnapshot:
    """Capture every material of a renderer.

    Args:
        materials: Materials in slot order.
        size: Square texture size for all materials, or one size per material.
            ``0`` keeps the source resolution.
        table: Shader to channel-name lookup.
    """
    sizes = [size] * len(materials) if isinstance(size, int) else list(size)
    if len(sizes) != len(materials):
        raise ValueError(f"Got {len(sizes)} sizes for {len(materials)} materials")
    return MaterialSnapshot(
        tuple(
            capture_material(material, material_size, table)
            for material, material_size in zip(materials, sizes)
        )
    )


def _bind_texture(material: Material, slot: str, pixels, name: str) -> Texture:
    imported = import_texture(pixels, name=name)
    texture = duplicate_texture(imported)
    texture.apply()
    material.set_texture(slot, texture)
    return texture


def apply_materials(
    snapshot: MaterialSnapshot,
    renderer: SkinnedMeshRenderer,
    table: ChannelTable = DEFAULT_CHANNEL_TABLE,
    graphics: GraphicsContext | None = None,
    workers: WorkerPool | None = None,
) -> int:
    """Bind captured textures to the renderer's materials.

    PNG decoding runs on *workers*; texture creation and binding run on
    *graphics*, one queued step per texture. Channels without data keep the
    material's current texture.

    Returns:
        Number of textures bound.
    """
    owner = renderer.owner.name if renderer.owner else "?"
    if len(snapshot) > len(renderer.materials):
        logger.warning(
            f"{owner!r} has {len(renderer.materials)} materials, snapshot carries "
            f"{len(snapshot)}; extra entries are ignored"
        )

    bound = 0
    for index, (entry, material) in enumerate(zip(snapshot.materials, renderer.materials)):
        slots = table.channels_for(material.shader_name)
        for slot, blob in zip(slots, entry.channels):
            if blob is None:
                continue
            if slot is None:
                logger.debug(
                    f"Shader {material.shader_name!r} of {owner!r} material {index} "
                    f"has no slot for a captured channel"
                )
                continue
            pixels = run_in(workers, decode_png, blob)
            run_on(graphics, _bind_texture, material, slot, pixels, f"{owner}:{slot}")
            bound += 1
    return bound
