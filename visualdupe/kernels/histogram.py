"""
Color histogram kernel.

Counts every pixel into three independent 256-bin channel histograms.
Output is raw counts; normalization is left to the consumer.
"""

from __future__ import annotations

import numpy as np

from ..config import HISTOGRAM_BINS, HISTOGRAM_SIZE
from .buffers import require_buffer, require_texture


def color_histogram(texture: np.ndarray, out: np.ndarray) -> np.ndarray:
    """
    Accumulate RGB bin counts of a texture into ``out``.

    Args:
        texture: H x W x 4 float32 texture with channels in [0, 1]
        out: Zero-initialized float32 buffer of length 768
             (R bins 0-255, G bins 256-511, B bins 512-767)

    Returns:
        ``out``, incremented in place

    Channel values outside [0, 1] saturate: anything >= 1.0 lands in
    bin 255 and anything below 0 in bin 0.
    """
    require_texture(texture)
    require_buffer(out, (HISTOGRAM_SIZE,), "histogram")

    rgb = np.nan_to_num(texture[..., :3].reshape(-1, 3), nan=0.0)
    bins = np.clip(np.floor(rgb * HISTOGRAM_BINS), 0, HISTOGRAM_BINS - 1).astype(np.intp)

    for channel in range(3):
        counts = np.bincount(bins[:, channel], minlength=HISTOGRAM_BINS)
        start = channel * HISTOGRAM_BINS
        out[start:start + HISTOGRAM_BINS] += counts.astype(out.dtype)

    return out


__all__ = ['color_histogram']
