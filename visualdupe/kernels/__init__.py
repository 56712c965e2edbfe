"""
Compute kernels package for visualdupe.

Four data-parallel kernels with fixed output contracts, plus the compute
device that compiles and dispatches them.

Public API:
- color_histogram: RGB bin counts of one texture
- local_descriptors: Up to 500 local 32-float descriptors of one texture
- perceptual_fingerprint: 64-bit DCT fingerprint of one texture
- pairwise_similarity: Fused N x N similarity of a packed feature buffer
- pack_features: Flatten feature vectors into the similarity kernel layout
- ComputeDevice / create_default_device: Kernel pipelines and buffers
"""

from __future__ import annotations

from .histogram import color_histogram
from .descriptors import local_descriptors
from .fingerprint import perceptual_fingerprint
from .similarity import pack_features, unpack_fingerprints, pairwise_similarity
from .device import (
    ComputeDevice,
    create_default_device,
    DEFAULT_KERNELS,
    KERNEL_COLOR_HISTOGRAM,
    KERNEL_LOCAL_DESCRIPTORS,
    KERNEL_PERCEPTUAL_FINGERPRINT,
    KERNEL_PAIRWISE_SIMILARITY,
)

__all__ = [
    'color_histogram',
    'local_descriptors',
    'perceptual_fingerprint',
    'pack_features',
    'unpack_fingerprints',
    'pairwise_similarity',
    'ComputeDevice',
    'create_default_device',
    'DEFAULT_KERNELS',
    'KERNEL_COLOR_HISTOGRAM',
    'KERNEL_LOCAL_DESCRIPTORS',
    'KERNEL_PERCEPTUAL_FINGERPRINT',
    'KERNEL_PAIRWISE_SIMILARITY',
]
