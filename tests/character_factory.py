"""Character factories shared by the test suite."""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np

from chardat_exchange.scene import Material, Mesh, SceneNode, SkinnedMeshRenderer, Texture
from chardat_exchange.types import PartRole

STANDARD_SLOTS = ("_MainTex", "_MetallicGlossMap", "_BumpMap")

PART_NODE_NAMES = {
    PartRole.BODY: "Body",
    PartRole.EYES: "Eyes",
    PartRole.EYEBROWS: "Eyebrows",
    PartRole.HAIR: "Hair",
    PartRole.TEETH: "Teeth",
    PartRole.TONGUE: "Tongue",
    PartRole.CLOTHES: "Clothes",
    PartRole.SHOES: "Shoes",
}


def make_skeleton(rng: np.random.Generator, bone_count: int) -> tuple[SceneNode, list[SceneNode]]:
    """A spine of bones with every third bone branching off its parent."""
    root = SceneNode("Root", rng.normal(size=3), _random_rotation(rng))
    bones = [root]
    for index in range(1, bone_count):
        parent = bones[index - 2] if index % 3 == 0 and index >= 2 else bones[index - 1]
        bone = SceneNode(f"Bone{index:02d}", rng.normal(size=3), _random_rotation(rng))
        parent.add_child(bone)
        bones.append(bone)
    # Depth-first order, which is how the resolver enumerates bones
    return root, list(root.iter_depth_first())


def _random_rotation(rng: np.random.Generator) -> np.ndarray:
    q = rng.normal(size=4)
    return q / np.linalg.norm(q)


def make_texture(rng: np.random.Generator, size: int = 8, name: str = "") -> Texture:
    pixels = rng.integers(0, 256, size=(size, size, 4), dtype=np.uint8)
    return Texture(pixels, readable=False, name=name)


def make_material(
    rng: np.random.Generator, shader: str = "Standard", texture_size: int = 8
) -> Material:
    textures = {slot: make_texture(rng, texture_size, slot) for slot in STANDARD_SLOTS}
    return Material(shader, textures, name=f"{shader}Material")


def make_mesh(
    rng: np.random.Generator,
    vertex_count: int,
    skin_bone_count: int,
    blend_shape_count: int = 1,
    submesh_count: int = 2,
) -> Mesh:
    mesh = Mesh("SkinnedMesh")
    mesh.vertices = rng.normal(size=(vertex_count, 3))
    triangles = rng.integers(0, vertex_count, size=(vertex_count, 3)).ravel()
    parts = np.array_split(triangles.reshape(-1, 3), submesh_count)
    mesh.submesh_count = submesh_count
    for index, part in enumerate(parts):
        mesh.set_triangles(part.ravel(), index)
    mesh.uv = rng.random(size=(vertex_count, 2))
    mesh.colors = rng.random(size=(vertex_count, 4))
    mesh.recalculate_normals()
    mesh.recalculate_tangents()
    mesh.recalculate_bounds()

    weights = rng.random(size=(vertex_count, 4))
    weights /= weights.sum(axis=1, keepdims=True)
    mesh.set_bone_weights(
        rng.integers(0, skin_bone_count, size=(vertex_count, 4)), weights
    )
    mesh.bind_poses = np.tile(np.eye(4, dtype=np.float32), (skin_bone_count, 1, 1))

    for index in range(blend_shape_count):
        name = f"Shape{index}"
        # Half-strength frame first so capture has to pick the strongest one
        mesh.add_blend_shape_frame(name, 50.0, rng.normal(size=(vertex_count, 3)))
        mesh.add_blend_shape_frame(
            name,
            100.0,
            rng.normal(size=(vertex_count, 3)),
            rng.normal(size=(vertex_count, 3)),
            rng.normal(size=(vertex_count, 3)),
        )
    return mesh


def make_character(
    seed: int = 0,
    name: str = "Character",
    bone_count: int = 10,
    vertex_count: int = 500,
    blend_shape_count: int = 1,
    material_count: int = 2,
    parts: Iterable[PartRole] = (PartRole.BODY,),
    shuffle_skin_bones: bool = True,
) -> SceneNode:
    """Build a character: a skeleton under ``Root`` plus one node per part.

    Each part's renderer lists the skeleton bones in a shuffled order so that
    bone index remapping is exercised.
    """
    rng = np.random.default_rng(seed)
    character = SceneNode(name)
    skeleton_root, bones = make_skeleton(rng, bone_count)
    character.add_child(skeleton_root)

    for role in parts:
        skin_bones = list(bones)
        if shuffle_skin_bones:
            skin_bones = [skin_bones[i] for i in rng.permutation(len(skin_bones))]
        renderer = SkinnedMeshRenderer(
            shared_mesh=make_mesh(rng, vertex_count, len(skin_bones), blend_shape_count),
            bones=skin_bones,
            root_bone=bones[1] if len(bones) > 1 else bones[0],
            materials=[make_material(rng) for _ in range(material_count)],
        )
        character.add_child(SceneNode(PART_NODE_NAMES[role], renderer=renderer))
    return character


def part_renderer(character: SceneNode, role: PartRole) -> SkinnedMeshRenderer:
    for node in character.iter_depth_first():
        if node.name == PART_NODE_NAMES[role] and node.renderer is not None:
            return node.renderer
    raise LookupError(f"{character.name} has no {role.value}")


def skeleton_bones(character: SceneNode) -> list[SceneNode]:
    root = next(child for child in character.children if child.name == "Root")
    return list(root.iter_depth_first())


