"""
Similarity package for visualdupe.

Fuses three signals into one score per image pair:
- Global color distribution (histogram, weight 0.3)
- Local structure (descriptor correlation, weight 0.5)
- Coarse appearance (perceptual fingerprint, weight 0.2)

Public API:
- SimilarityEngine: Batch matrices, memoized pairwise metrics, clusters
- SimilarityBackend / KernelSimilarityBackend / CpuSimilarityBackend
- find_similar_clusters: Threshold clustering of a matrix
- assess_quality: Confidence and agreement of a pair's signals
"""

from __future__ import annotations

from .backends import SimilarityBackend, KernelSimilarityBackend, CpuSimilarityBackend
from .clustering import find_similar_clusters, clusters_to_groups
from .engine import SimilarityEngine
from .metrics import (
    histogram_similarity,
    descriptor_similarity,
    fingerprint_similarity,
    compute_metrics,
    assess_quality,
)

__all__ = [
    'SimilarityEngine',
    'SimilarityBackend',
    'KernelSimilarityBackend',
    'CpuSimilarityBackend',
    'find_similar_clusters',
    'clusters_to_groups',
    'histogram_similarity',
    'descriptor_similarity',
    'fingerprint_similarity',
    'compute_metrics',
    'assess_quality',
]
