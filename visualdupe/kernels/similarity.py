"""
Pairwise similarity kernel.

Operates on a flattened feature buffer with one row per image:

    histogram (768) ++ descriptors (16000) ++ fingerprint (2 x 32-bit halves)

The fingerprint halves are bit-cast into the float32 slots so the 64-bit
value survives the trip exactly. The kernel fills a pre-sized N x N matrix
with the fused score of every pair, writing (i, j) and (j, i) from the
same value and forcing the diagonal to 1.0.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..config import (
    HISTOGRAM_SIZE,
    DESCRIPTOR_LENGTH,
    DESCRIPTOR_SLOTS,
    DESCRIPTOR_SIZE,
    FINGERPRINT_BITS,
    FEATURE_ROW_SIZE,
    HISTOGRAM_WEIGHT,
    DESCRIPTOR_WEIGHT,
    FINGERPRINT_WEIGHT,
    DESCRIPTOR_MATCH_THRESHOLD,
)
from ..errors import InvalidFeatureShapeError
from ..models import FeatureVector
from .buffers import require_buffer

_DESCRIPTOR_END = HISTOGRAM_SIZE + DESCRIPTOR_LENGTH


def pack_features(features: Sequence[FeatureVector], out: np.ndarray) -> np.ndarray:
    """
    Flatten a batch of feature vectors into the kernel's input layout.

    Args:
        features: Feature vectors, one per row
        out: float32 buffer of shape (len(features), FEATURE_ROW_SIZE)
    """
    require_buffer(out, (len(features), FEATURE_ROW_SIZE), "feature", dtype=np.float32)
    for row, feature in enumerate(features):
        out[row, :HISTOGRAM_SIZE] = feature.color_histogram
        out[row, HISTOGRAM_SIZE:_DESCRIPTOR_END] = feature.local_descriptors
        halves = np.array(
            [feature.fingerprint & 0xFFFFFFFF, (feature.fingerprint >> 32) & 0xFFFFFFFF],
            dtype=np.uint32,
        )
        out[row, _DESCRIPTOR_END:] = halves.view(np.float32)
    return out


def unpack_fingerprints(buffer: np.ndarray) -> np.ndarray:
    """Recover the uint64 fingerprints from a packed feature buffer."""
    halves = np.ascontiguousarray(buffer[:, _DESCRIPTOR_END:]).view(np.uint32)
    low = halves[:, 0].astype(np.uint64)
    high = halves[:, 1].astype(np.uint64)
    return low | (high << np.uint64(32))


def histogram_similarity_matrix(histograms: np.ndarray) -> np.ndarray:
    """Bhattacharyya coefficients of L1-normalized histograms, clamped to [0, 1]."""
    hist = histograms.astype(np.float64)
    totals = hist.sum(axis=1, keepdims=True)
    normalized = np.divide(hist, totals, out=hist.copy(), where=totals > 0)
    roots = np.sqrt(normalized)
    return np.clip(roots @ roots.T, 0.0, 1.0)


def _standardize_descriptors(descriptors: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Center each descriptor and scale it to unit length.

    Returns the standardized slots and the validity mask. A slot with zero
    variance standardizes to all zeros so it correlates as 0 with anything.
    """
    slots = descriptors.astype(np.float64).reshape(-1, DESCRIPTOR_SLOTS, DESCRIPTOR_SIZE)
    valid = np.any(slots != 0.0, axis=2)
    centered = slots - slots.mean(axis=2, keepdims=True)
    norms = np.sqrt(np.sum(centered * centered, axis=2, keepdims=True))
    unit = np.divide(centered, norms, out=np.zeros_like(centered), where=norms > 0)
    return unit, valid


def descriptor_similarity_matrix(descriptors: np.ndarray) -> np.ndarray:
    """
    Fraction of mutually valid slots whose Pearson correlation exceeds 0.8.

    Pairs with no mutually valid slot score 0.
    """
    unit, valid = _standardize_descriptors(descriptors)
    n = unit.shape[0]
    result = np.zeros((n, n), dtype=np.float64)

    for i in range(n):
        # One row of threads: image i against every j >= i
        correlation = np.einsum('sk,jsk->js', unit[i], unit[i:])
        mutual = valid[i][None, :] & valid[i:]
        matched = (correlation > DESCRIPTOR_MATCH_THRESHOLD) & mutual
        mutual_count = mutual.sum(axis=1)
        matched_count = matched.sum(axis=1)
        row = np.divide(
            matched_count, mutual_count,
            out=np.zeros(n - i, dtype=np.float64),
            where=mutual_count > 0,
        )
        result[i, i:] = row
        result[i:, i] = row

    return result


def fingerprint_similarity_matrix(fingerprints: np.ndarray) -> np.ndarray:
    """(64 - Hamming distance) / 64 for every pair of fingerprints."""
    as_bytes = fingerprints.astype('<u8').view(np.uint8).reshape(-1, 8)
    bits = np.unpackbits(as_bytes, axis=1)
    distance = np.count_nonzero(bits[:, None, :] != bits[None, :, :], axis=2)
    return (FINGERPRINT_BITS - distance) / FINGERPRINT_BITS


def pairwise_similarity(buffer: np.ndarray, batch_size: int, out: np.ndarray) -> np.ndarray:
    """
    Fill ``out`` with the fused similarity of every pair in the batch.

    Args:
        buffer: Packed feature buffer of shape (batch_size, FEATURE_ROW_SIZE)
        batch_size: Number of images in the buffer
        out: float32 buffer of shape (batch_size, batch_size)

    Returns:
        ``out``, symmetric with a diagonal of exactly 1.0
    """
    if buffer.shape != (batch_size, FEATURE_ROW_SIZE):
        raise InvalidFeatureShapeError(
            f"Feature buffer must have shape {(batch_size, FEATURE_ROW_SIZE)}, got {buffer.shape}"
        )
    require_buffer(out, (batch_size, batch_size), "similarity")
    if batch_size == 0:
        return out

    histogram = histogram_similarity_matrix(buffer[:, :HISTOGRAM_SIZE])
    descriptor = descriptor_similarity_matrix(buffer[:, HISTOGRAM_SIZE:_DESCRIPTOR_END])
    fingerprint = fingerprint_similarity_matrix(unpack_fingerprints(buffer))

    fused = (
        histogram * HISTOGRAM_WEIGHT
        + descriptor * DESCRIPTOR_WEIGHT
        + fingerprint * FINGERPRINT_WEIGHT
    )
    fused = np.clip(fused, 0.0, 1.0)

    upper = np.triu(fused, 1)
    out[...] = upper + upper.T
    np.fill_diagonal(out, 1.0)
    return out


__all__ = [
    'pack_features',
    'unpack_fingerprints',
    'histogram_similarity_matrix',
    'descriptor_similarity_matrix',
    'fingerprint_similarity_matrix',
    'pairwise_similarity',
]
