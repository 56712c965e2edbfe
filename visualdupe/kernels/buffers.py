"""
Shared helpers for the compute kernels.

Output-buffer contract checks and the luma plane / clamped sampling
primitives every per-image kernel reads from.
"""

from __future__ import annotations

import numpy as np

from ..config import LUMA_WEIGHTS
from ..errors import InvalidFeatureShapeError


def require_buffer(out: np.ndarray, shape: tuple, name: str = "output", dtype=None) -> np.ndarray:
    """
    Check that a caller-provided output buffer has the fixed shape.

    Kernels never resize their results; a wrongly sized buffer is a
    programmer error.
    """
    if not isinstance(out, np.ndarray):
        raise InvalidFeatureShapeError(f"{name} buffer must be a numpy array")
    if out.shape != tuple(shape):
        raise InvalidFeatureShapeError(
            f"{name} buffer must have shape {tuple(shape)}, got {out.shape}"
        )
    if dtype is not None and out.dtype != np.dtype(dtype):
        raise InvalidFeatureShapeError(f"{name} buffer must be {np.dtype(dtype)}, got {out.dtype}")
    if not out.flags.writeable or not out.flags.c_contiguous:
        raise InvalidFeatureShapeError(f"{name} buffer must be writeable and contiguous")
    return out


def require_texture(texture: np.ndarray) -> np.ndarray:
    """Check a texture is H x W x C (C >= 3) with at least one pixel."""
    if texture.ndim != 3 or texture.shape[2] < 3:
        raise InvalidFeatureShapeError(f"Texture must be H x W x RGB(A), got shape {texture.shape}")
    if texture.shape[0] == 0 or texture.shape[1] == 0:
        raise InvalidFeatureShapeError("Texture has no pixels")
    return texture


def luma_plane(texture: np.ndarray) -> np.ndarray:
    """Rec. 601 luma of an RGB(A) texture as float64."""
    require_texture(texture)
    r, g, b = LUMA_WEIGHTS
    rgb = texture[..., :3].astype(np.float64)
    return rgb[..., 0] * r + rgb[..., 1] * g + rgb[..., 2] * b


def shifted_plane(padded: np.ndarray, pad: int, dy: int, dx: int, shape: tuple) -> np.ndarray:
    """
    Sample a plane at (y + dy, x + dx) for every pixel.

    ``padded`` is the plane edge-padded by ``pad`` pixels, which gives
    clamp-to-edge addressing like a texture sampler.
    """
    h, w = shape
    return padded[pad + dy:pad + dy + h, pad + dx:pad + dx + w]


def polar_offsets(radius: int, count: int) -> list[tuple[int, int]]:
    """Integer (dy, dx) offsets of ``count`` points on a circle."""
    offsets = []
    for k in range(count):
        angle = 2.0 * np.pi * k / count
        dy = int(round(radius * np.sin(angle)))
        dx = int(round(radius * np.cos(angle)))
        offsets.append((dy, dx))
    return offsets


__all__ = [
    'require_buffer',
    'require_texture',
    'luma_plane',
    'shifted_plane',
    'polar_offsets',
]
