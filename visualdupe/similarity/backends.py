"""
Similarity matrix backends.

Two interchangeable strategies produce the same N x N fused matrix:
- KernelSimilarityBackend: packs the batch into one feature buffer and
  dispatches the pairwise similarity kernel on the compute device
- CpuSimilarityBackend: evaluates the per-pair formulas on a thread pool
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import numpy as np

from ..config import DEFAULT_WORKERS, FEATURE_ROW_SIZE
from ..kernels import ComputeDevice, pack_features, KERNEL_PAIRWISE_SIMILARITY
from ..models import FeatureVector
from .metrics import compute_metrics

_logger = logging.getLogger(__name__)


class SimilarityBackend(ABC):
    """Strategy that turns a batch of feature vectors into a fused matrix."""

    name = "abstract"

    @abstractmethod
    def similarity_matrix(self, features: Sequence[FeatureVector]) -> np.ndarray:
        """
        Compute the fused similarity of every pair.

        Returns:
            Symmetric float32 array of shape (N, N) with a diagonal of 1.0
        """


class KernelSimilarityBackend(SimilarityBackend):
    """Runs the pairwise similarity kernel on a compute device."""

    name = "kernel"

    def __init__(self, device: ComputeDevice):
        self.device = device

    def similarity_matrix(self, features: Sequence[FeatureVector]) -> np.ndarray:
        n = len(features)
        buffer = self.device.allocate_buffer((n, FEATURE_ROW_SIZE), dtype=np.float32)
        pack_features(features, buffer)
        out = self.device.allocate_buffer((n, n), dtype=np.float32)
        self.device.dispatch(KERNEL_PAIRWISE_SIMILARITY, buffer, n, out)
        return out


class CpuSimilarityBackend(SimilarityBackend):
    """Evaluates every unordered pair with the scalar formulas."""

    name = "cpu"

    def __init__(self, max_workers: int = DEFAULT_WORKERS):
        self.max_workers = max(1, max_workers)

    def similarity_matrix(self, features: Sequence[FeatureVector]) -> np.ndarray:
        n = len(features)
        out = np.zeros((n, n), dtype=np.float32)
        pairs = [(i, j) for i in range(n) for j in range(i + 1, n)]

        if pairs:
            _logger.debug(f"CPU backend comparing {len(pairs):,} pairs")
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                scores = executor.map(
                    lambda pair: compute_metrics(features[pair[0]], features[pair[1]]).fused,
                    pairs,
                )
                for (i, j), fused in zip(pairs, scores):
                    out[i, j] = fused
                    out[j, i] = fused

        np.fill_diagonal(out, 1.0)
        return out


__all__ = [
    'SimilarityBackend',
    'KernelSimilarityBackend',
    'CpuSimilarityBackend',
]
