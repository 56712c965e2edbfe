"""
SimilarityEngine: batch matrices, pairwise comparisons and clustering.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..cache import BoundedLRU
from ..config import COMBINED_THRESHOLD, DEFAULT_WORKERS, PAIRWISE_CACHE_MAX_ENTRIES
from ..errors import DeviceUnavailableError, DeviceAllocationError
from ..kernels import ComputeDevice
from ..models import FeatureVector, SimilarityMatrix, SimilarityMetrics, SimilarityQuality
from .backends import SimilarityBackend, KernelSimilarityBackend, CpuSimilarityBackend
from .clustering import find_similar_clusters
from .metrics import compute_metrics, assess_quality

_logger = logging.getLogger(__name__)


class SimilarityEngine:
    """
    Computes similarity for batches of feature vectors.

    The primary backend runs on the compute device when one is given. If
    the device cannot serve a batch the engine falls back to the CPU
    backend, which implements the same formulas.

    Usage:
        engine = SimilarityEngine(device)
        matrix = engine.similarities(features)
        clusters = engine.clusters(matrix)
    """

    def __init__(
        self,
        device: Optional[ComputeDevice] = None,
        backend: Optional[SimilarityBackend] = None,
        fallback: Optional[SimilarityBackend] = None,
        pairwise_cache_size: int = PAIRWISE_CACHE_MAX_ENTRIES,
        max_workers: int = DEFAULT_WORKERS,
    ):
        """
        Initialize the engine.

        Args:
            device: Compute device for the kernel backend
            backend: Explicit primary backend (overrides device)
            fallback: Backend used when the primary hits a device error;
                defaults to the CPU backend
            pairwise_cache_size: Entries kept in the pairwise memo
            max_workers: Thread count for the CPU backend
        """
        if backend is None:
            if device is not None:
                backend = KernelSimilarityBackend(device)
            else:
                backend = CpuSimilarityBackend(max_workers)
        self.backend = backend
        self.fallback = fallback if fallback is not None else CpuSimilarityBackend(max_workers)
        self._pairwise: BoundedLRU[SimilarityMetrics] = BoundedLRU(pairwise_cache_size)

    def similarities(self, features: Sequence[FeatureVector]) -> SimilarityMatrix:
        """Compute the N x N fused similarity matrix of a batch."""
        features = list(features)
        identities = [f.identity for f in features]

        try:
            values = self.backend.similarity_matrix(features)
            backend_name = self.backend.name
        except (DeviceUnavailableError, DeviceAllocationError) as e:
            if self.fallback is self.backend:
                raise
            _logger.warning(
                f"{self.backend.name} backend unavailable for {len(features)} images ({e}); "
                f"falling back to {self.fallback.name}"
            )
            values = self.fallback.similarity_matrix(features)
            backend_name = self.fallback.name

        return SimilarityMatrix(values, identities, backend=backend_name)

    def pairwise(self, features1: FeatureVector, features2: FeatureVector) -> SimilarityMetrics:
        """Compare two vectors, memoized by the unordered identity pair."""
        key = tuple(sorted((features1.identity, features2.identity)))
        cached = self._pairwise.get(key)
        if cached is not None:
            return cached

        metrics = compute_metrics(features1, features2)
        self._pairwise.put(key, metrics)
        return metrics

    def clusters(self, matrix: SimilarityMatrix, threshold: float = COMBINED_THRESHOLD) -> list[list[int]]:
        """Connected components of the matrix at the given threshold."""
        return find_similar_clusters(matrix, threshold)

    def assess_quality(self, metrics: SimilarityMetrics) -> SimilarityQuality:
        return assess_quality(metrics)

    def clear_pairwise_cache(self) -> None:
        self._pairwise.clear()

    @property
    def pairwise_cache_size(self) -> int:
        return len(self._pairwise)


__all__ = ['SimilarityEngine']
