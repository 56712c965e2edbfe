"""
Perceptual-fingerprint kernel.

Area-averages the luma plane into an 8x8 grid, takes its 2-D DCT and
thresholds all 64 coefficients against the mean of the 63 AC terms.
The threshold is a single reduction over the complete grid, so every bit
sees the same mean.
"""

from __future__ import annotations

import numpy as np

from ..config import FINGERPRINT_GRID
from .buffers import require_buffer, luma_plane


def _dct_basis(n: int) -> np.ndarray:
    """Orthonormal DCT-II matrix."""
    k = np.arange(n)[:, None]
    i = np.arange(n)[None, :]
    basis = np.cos(np.pi * (2 * i + 1) * k / (2 * n))
    basis[0, :] *= np.sqrt(1.0 / n)
    basis[1:, :] *= np.sqrt(2.0 / n)
    return basis


_DCT = _dct_basis(FINGERPRINT_GRID)

# Coefficients are compared at this precision; flat grids leave ~1e-17 of
# rounding residue in the AC terms
_COEFFICIENT_DECIMALS = 9


def _cell_bounds(length: int, cells: int) -> list[tuple[int, int]]:
    bounds = []
    for c in range(cells):
        start = (c * length) // cells
        stop = max(start + 1, -(-((c + 1) * length) // cells))
        bounds.append((min(start, length - 1), min(stop, length)))
    return bounds


def gather_luma_grid(luma: np.ndarray, size: int = FINGERPRINT_GRID) -> np.ndarray:
    """
    Downsample a luma plane to ``size`` x ``size`` by area averaging.

    Planes smaller than the grid reuse their nearest rows/columns.
    """
    rows = _cell_bounds(luma.shape[0], size)
    cols = _cell_bounds(luma.shape[1], size)
    grid = np.empty((size, size), dtype=np.float64)
    for r, (y0, y1) in enumerate(rows):
        band = luma[y0:y1]
        for c, (x0, x1) in enumerate(cols):
            grid[r, c] = band[:, x0:x1].mean()
    return grid


def dct_2d(grid: np.ndarray) -> np.ndarray:
    return _DCT @ grid @ _DCT.T


def perceptual_fingerprint(texture: np.ndarray, out: np.ndarray) -> np.ndarray:
    """
    Compute the 64-bit fingerprint of a texture.

    Args:
        texture: H x W x 4 float32 texture with channels in [0, 1]
        out: uint64 buffer of shape (1,)

    Returns:
        ``out`` holding the fingerprint; bit i is set when coefficient i
        (row-major, DC is bit 0) exceeds the mean of the AC coefficients
    """
    require_buffer(out, (1,), "fingerprint", dtype=np.uint64)

    grid = gather_luma_grid(luma_plane(texture))
    coefficients = np.round(dct_2d(grid), _COEFFICIENT_DECIMALS).reshape(-1)

    # Barrier: the mean is taken once all 64 samples are in
    threshold = coefficients[1:].mean()

    value = 0
    for bit in np.flatnonzero(coefficients > threshold):
        value |= 1 << int(bit)
    out[0] = np.uint64(value)
    return out


__all__ = ['perceptual_fingerprint', 'gather_luma_grid', 'dct_2d']
