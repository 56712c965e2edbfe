"""
visualdupe
==========
Find near-duplicate and visually similar images in large collections.

Features:
- Three fused similarity signals: color histogram, local descriptors,
  perceptual fingerprint
- Data-parallel kernels on a compute device with a CPU fallback
- Adaptive batch scheduling from live memory signals
- Incremental scans with an in-memory LRU feature cache
- Progressive per-batch results with cancellation
- CLI for automation
"""

__version__ = "1.0.0"

from .models import (
    ImageHandle,
    ImageAsset,
    FeatureVector,
    SimilarityMetrics,
    SimilarityQuality,
    SimilarityMatrix,
    BatchComplexityReport,
    ScanProgress,
    SimilarityResult,
)
from .errors import (
    VisualDupeError,
    AlreadyRunningError,
    DeviceUnavailableError,
    DeviceAllocationError,
    ExtractionFailedError,
    InvalidFeatureShapeError,
    CacheError,
)
from .kernels import ComputeDevice, create_default_device
from .cache import FeatureCache, CacheStats
from .extractor import FeatureExtractor
from .similarity import SimilarityEngine, KernelSimilarityBackend, CpuSimilarityBackend
from .scheduler import BatchScheduler, DeviceCapabilities
from .sources import PixelSource, FilePixelSource, MemoryPixelSource, load_assets
from .orchestrator import ScanEngine, ScanStream, create_engine

__all__ = [
    "ImageHandle",
    "ImageAsset",
    "FeatureVector",
    "SimilarityMetrics",
    "SimilarityQuality",
    "SimilarityMatrix",
    "BatchComplexityReport",
    "ScanProgress",
    "SimilarityResult",
    "VisualDupeError",
    "AlreadyRunningError",
    "DeviceUnavailableError",
    "DeviceAllocationError",
    "ExtractionFailedError",
    "InvalidFeatureShapeError",
    "CacheError",
    "ComputeDevice",
    "create_default_device",
    "FeatureCache",
    "CacheStats",
    "FeatureExtractor",
    "SimilarityEngine",
    "KernelSimilarityBackend",
    "CpuSimilarityBackend",
    "BatchScheduler",
    "DeviceCapabilities",
    "PixelSource",
    "FilePixelSource",
    "MemoryPixelSource",
    "load_assets",
    "ScanEngine",
    "ScanStream",
    "create_engine",
]
