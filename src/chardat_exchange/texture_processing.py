"""Low-level texture readback, PNG encoding and decoding."""

from __future__ import annotations

import io

import numpy as np
from PIL import Image

from .scene import Texture


def read_texture(texture: Texture, size: int = 0) -> np.ndarray:
    """Read RGBA pixels of *texture* through an off-screen target.

    Args:
        texture: Source texture; it does not need to be readable.
        size: Square edge length of the target. ``0`` keeps the source size.
    """
    if size < 0:
        raise ValueError(f"Texture size must not be negative, got {size}")
    if size == 0:
        return texture.blit(texture.width, texture.height)
    return texture.blit(size, size)


def encode_png(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def decode_png(data: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(data)) as image:
        return np.asarray(image.convert("RGBA"), dtype=np.uint8).copy()


def capture_texture(texture: Texture, size: int = 0) -> bytes:
    """Resize, read back and PNG-encode a texture."""
    return encode_png(read_texture(texture, size))


def import_texture(pixels: np.ndarray, name: str = "") -> Texture:
    """Upload decoded pixels as a texture without CPU access."""
    return Texture(pixels, readable=False, name=name)


def duplicate_texture(source: Texture) -> Texture:
    """Copy *source* into a new readable texture via an off-screen target."""
    copy = Texture(source.blit(source.width, source.height), readable=True, name=source.name)
    copy.apply()
    return copy
