"""
Local-descriptor kernel.

Every pixel computes a corner response from eight luma samples on a small
circle. The first 500 pixels (raster order) whose response passes the
activation threshold each write one 32-float descriptor:

    [x / width, y / height, response, 29 binary comparisons]

Each binary comparison is 1.0 when the luma at a point on a wider circle
exceeds the centre luma. Slots that no active pixel claims remain zero,
which consumers read as "no feature".
"""

from __future__ import annotations

import numpy as np

from ..config import (
    DESCRIPTOR_LENGTH,
    DESCRIPTOR_SLOTS,
    DESCRIPTOR_SIZE,
    DESCRIPTOR_SAMPLE_RADIUS,
    DESCRIPTOR_SAMPLE_COUNT,
    DESCRIPTOR_BIT_RADIUS,
    DESCRIPTOR_BIT_COUNT,
    DESCRIPTOR_ACTIVATION_THRESHOLD,
)
from .buffers import require_buffer, luma_plane, shifted_plane, polar_offsets

_RESPONSE_OFFSETS = polar_offsets(DESCRIPTOR_SAMPLE_RADIUS, DESCRIPTOR_SAMPLE_COUNT)
_BIT_OFFSETS = polar_offsets(DESCRIPTOR_BIT_RADIUS, DESCRIPTOR_BIT_COUNT)


def corner_response(luma: np.ndarray) -> np.ndarray:
    """Sum of absolute luma differences to the eight circle samples."""
    pad = DESCRIPTOR_SAMPLE_RADIUS
    padded = np.pad(luma, pad, mode='edge')
    response = np.zeros_like(luma)
    for dy, dx in _RESPONSE_OFFSETS:
        response += np.abs(luma - shifted_plane(padded, pad, dy, dx, luma.shape))
    return response


def local_descriptors(
    texture: np.ndarray,
    out: np.ndarray,
    activation_threshold: float = DESCRIPTOR_ACTIVATION_THRESHOLD,
) -> np.ndarray:
    """
    Write local descriptors of a texture into ``out``.

    Args:
        texture: H x W x 4 float32 texture with channels in [0, 1]
        out: Zero-initialized float32 buffer of length 16000
        activation_threshold: Minimum corner response of an active pixel

    Returns:
        ``out`` with at most 500 slots written
    """
    require_buffer(out, (DESCRIPTOR_LENGTH,), "descriptors")
    luma = luma_plane(texture)
    height, width = luma.shape

    response = corner_response(luma)
    active = np.flatnonzero(response.reshape(-1) > activation_threshold)[:DESCRIPTOR_SLOTS]
    count = active.size
    if count == 0:
        return out

    ys, xs = np.divmod(active, width)
    centre = luma.reshape(-1)[active]

    slots = out.reshape(DESCRIPTOR_SLOTS, DESCRIPTOR_SIZE)
    slots[:count, 0] = xs / width
    slots[:count, 1] = ys / height
    slots[:count, 2] = response.reshape(-1)[active]

    for k, (dy, dx) in enumerate(_BIT_OFFSETS):
        sy = np.clip(ys + dy, 0, height - 1)
        sx = np.clip(xs + dx, 0, width - 1)
        slots[:count, 3 + k] = (luma[sy, sx] > centre).astype(out.dtype)

    return out


__all__ = ['local_descriptors', 'corner_response']
