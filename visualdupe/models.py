"""
Data models for visualdupe.

Contains dataclasses for image handles, per-image feature vectors,
similarity scores and the immutable progress snapshots handed to hosts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from .config import (
    HISTOGRAM_SIZE,
    DESCRIPTOR_LENGTH,
    DESCRIPTOR_SLOTS,
    DESCRIPTOR_SIZE,
    FINGERPRINT_BITS,
    FINGERPRINT_GRID,
    HISTOGRAM_WEIGHT,
    DESCRIPTOR_WEIGHT,
    FINGERPRINT_WEIGHT,
)
from .dependencies import imagehash
from .errors import InvalidFeatureShapeError

MEDIA_IMAGE = 'image'
MEDIA_VIDEO = 'video'

_FINGERPRINT_LIMIT = 1 << FINGERPRINT_BITS


def format_size(size_bytes: int) -> str:
    """Format byte count in human-readable form."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


@runtime_checkable
class ImageHandle(Protocol):
    """
    Opaque image handle supplied by the asset store.

    The engine only reads these attributes; it never mutates a handle.
    """
    identity: str
    width: int
    height: int
    captured_at: Optional[datetime]
    media_kind: str


@dataclass(frozen=True, eq=False)
class ImageAsset:
    """
    Concrete image handle.

    Attributes:
        identity: Stable identity string of the source image
        width: Pixel width
        height: Pixel height
        captured_at: Capture timestamp, if known
        media_kind: 'image' or 'video'
        path: Backing file path, when the asset lives on disk
    """
    identity: str
    width: int = 0
    height: int = 0
    captured_at: Optional[datetime] = None
    media_kind: str = MEDIA_IMAGE
    path: Optional[str] = None

    def __hash__(self):
        return hash(self.identity)

    def __eq__(self, other):
        if not isinstance(other, ImageAsset):
            return False
        return self.identity == other.identity

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def megapixels(self) -> float:
        """Return megapixel count."""
        return round(self.pixel_count / 1_000_000, 2)

    @property
    def resolution(self) -> str:
        """Return resolution as 'WxH' string."""
        return f"{self.width}x{self.height}"

    @property
    def filename(self) -> str:
        return os.path.basename(self.path or self.identity)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'identity': self.identity,
            'width': self.width,
            'height': self.height,
            'resolution': self.resolution,
            'megapixels': self.megapixels,
            'captured_at': self.captured_at.isoformat() if self.captured_at else None,
            'media_kind': self.media_kind,
            'path': self.path,
        }


def handle_pixel_count(handle: ImageHandle) -> int:
    """Pixel count of any handle, tolerating missing dimensions."""
    return max(0, int(handle.width or 0)) * max(0, int(handle.height or 0))


def fingerprint_to_hash(value: int) -> 'imagehash.ImageHash':
    """
    Convert a 64-bit fingerprint into an imagehash.ImageHash.

    Bit i of the integer maps to cell i of the 8x8 grid in row-major order.
    """
    bits = [(value >> i) & 1 for i in range(FINGERPRINT_BITS)]
    grid = np.array(bits, dtype=bool).reshape(FINGERPRINT_GRID, FINGERPRINT_GRID)
    return imagehash.ImageHash(grid)


def hash_to_fingerprint(image_hash: 'imagehash.ImageHash') -> int:
    """Inverse of fingerprint_to_hash."""
    flat = np.asarray(image_hash.hash, dtype=bool).reshape(-1)
    if flat.size != FINGERPRINT_BITS:
        raise InvalidFeatureShapeError(
            f"Fingerprint hash must have {FINGERPRINT_BITS} bits, got {flat.size}"
        )
    value = 0
    for i, bit in enumerate(flat):
        if bit:
            value |= 1 << i
    return value


def _fixed_array(values, expected: int, name: str) -> np.ndarray:
    array = np.array(values, dtype=np.float32, copy=True).reshape(-1)
    if array.size != expected:
        raise InvalidFeatureShapeError(
            f"{name} must have exactly {expected} values, got {array.size}"
        )
    return array


@dataclass(eq=False)
class FeatureVector:
    """
    Fixed-shape feature record produced for one image.

    Attributes:
        identity: Stable identity string of the source image
        color_histogram: 768 raw bin counts (R, G, B x 256)
        local_descriptors: 500 slots x 32 floats, all-zero slot = no feature
        fingerprint: Unsigned 64-bit perceptual fingerprint
        width: Source pixel width
        height: Source pixel height
    """
    identity: str
    color_histogram: np.ndarray
    local_descriptors: np.ndarray
    fingerprint: int
    width: int
    height: int

    def __post_init__(self):
        self.color_histogram = _fixed_array(self.color_histogram, HISTOGRAM_SIZE, "color_histogram")
        self.local_descriptors = _fixed_array(self.local_descriptors, DESCRIPTOR_LENGTH, "local_descriptors")

        if np.any(self.color_histogram < 0):
            raise ValueError(f"Histogram for {self.identity} contains negative counts")

        self.fingerprint = int(self.fingerprint)
        if not 0 <= self.fingerprint < _FINGERPRINT_LIMIT:
            raise ValueError(f"Fingerprint for {self.identity} is not an unsigned 64-bit value")

        self.width = int(self.width)
        self.height = int(self.height)

        # Owned by the cache once stored; nobody mutates them afterwards
        self.color_histogram.setflags(write=False)
        self.local_descriptors.setflags(write=False)

    @property
    def descriptor_slots(self) -> np.ndarray:
        """Descriptors as a (500, 32) view."""
        return self.local_descriptors.reshape(DESCRIPTOR_SLOTS, DESCRIPTOR_SIZE)

    @property
    def valid_descriptor_mask(self) -> np.ndarray:
        return np.any(self.descriptor_slots != 0.0, axis=1)

    @property
    def valid_descriptor_count(self) -> int:
        return int(np.count_nonzero(self.valid_descriptor_mask))

    @property
    def fingerprint_hash(self) -> 'imagehash.ImageHash':
        return fingerprint_to_hash(self.fingerprint)

    @property
    def fingerprint_hex(self) -> str:
        return str(self.fingerprint_hash)

    @property
    def nbytes(self) -> int:
        return self.color_histogram.nbytes + self.local_descriptors.nbytes + 16

    def same_values(self, other: 'FeatureVector') -> bool:
        """Exact field-by-field comparison."""
        return (
            self.identity == other.identity
            and self.fingerprint == other.fingerprint
            and self.width == other.width
            and self.height == other.height
            and np.array_equal(self.color_histogram, other.color_histogram)
            and np.array_equal(self.local_descriptors, other.local_descriptors)
        )

    def to_dict(self) -> dict:
        """Summary for logging and JSON output (arrays omitted)."""
        return {
            'identity': self.identity,
            'width': self.width,
            'height': self.height,
            'fingerprint': self.fingerprint_hex,
            'valid_descriptors': self.valid_descriptor_count,
            'histogram_total': float(self.color_histogram.sum()),
        }


@dataclass(frozen=True)
class SimilarityMetrics:
    """The three similarity signals for one pair plus their fused score."""
    histogram: float
    descriptor: float
    fingerprint: float
    fused: float

    @classmethod
    def combine(cls, histogram: float, descriptor: float, fingerprint: float) -> 'SimilarityMetrics':
        fused = (
            histogram * HISTOGRAM_WEIGHT
            + descriptor * DESCRIPTOR_WEIGHT
            + fingerprint * FINGERPRINT_WEIGHT
        )
        return cls(
            histogram=float(histogram),
            descriptor=float(descriptor),
            fingerprint=float(fingerprint),
            fused=float(min(1.0, max(0.0, fused))),
        )

    def to_dict(self) -> dict:
        return {
            'histogram': round(self.histogram, 4),
            'descriptor': round(self.descriptor, 4),
            'fingerprint': round(self.fingerprint, 4),
            'fused': round(self.fused, 4),
        }


@dataclass(frozen=True)
class SimilarityQuality:
    """How much the three signals agree about a pair."""
    confidence: float
    agreement: float
    is_potential_match: bool
    strong_match: bool

    @property
    def description(self) -> str:
        if self.strong_match:
            return "Strong Match"
        elif self.is_potential_match:
            return "Potential Match"
        elif self.confidence > 0.5:
            return "Weak Match"
        return "No Match"


class SimilarityMatrix:
    """
    Immutable symmetric N x N similarity matrix for one batch.

    Row/column i corresponds to identities[i]. The diagonal is exactly 1.0.
    """

    def __init__(self, values, identities: Sequence[str], backend: str = ""):
        array = np.array(values, dtype=np.float32, copy=True)
        if array.ndim != 2 or array.shape[0] != array.shape[1]:
            raise InvalidFeatureShapeError(f"Similarity matrix must be square, got shape {array.shape}")
        if len(identities) != array.shape[0]:
            raise InvalidFeatureShapeError(
                f"Matrix has {array.shape[0]} rows but {len(identities)} identities"
            )
        array.setflags(write=False)
        self._values = array
        self.identities = tuple(identities)
        self.backend = backend

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def size(self) -> int:
        return self._values.shape[0]

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, key):
        return self._values[key]

    def score(self, i: int, j: int) -> float:
        return float(self._values[i, j])

    def to_list(self) -> list[list[float]]:
        return self._values.tolist()

    def __repr__(self) -> str:
        return f"SimilarityMatrix(size={self.size}, backend={self.backend!r})"


@dataclass(frozen=True)
class BatchComplexityReport:
    """
    Aggregate complexity of a set of images.

    Used for scheduling and time estimates only, never for correctness.
    """
    total_assets: int
    image_count: int
    video_count: int
    high_resolution_count: int
    average_pixels: int
    total_pixels: int
    complexity_score: float

    @property
    def is_high_complexity(self) -> bool:
        return self.complexity_score > 100.0

    @property
    def estimated_processing_seconds(self) -> int:
        # Roughly 0.1 seconds per complexity point
        return int(self.complexity_score * 0.1)


@dataclass(frozen=True)
class ScanProgress:
    """Progress counters for one emitted batch."""
    total_assets: int
    processed_assets: int
    current_batch_index: int
    total_batches: int
    similar_groups_found: int

    @property
    def percentage(self) -> float:
        if self.total_assets == 0:
            return 0.0
        return self.processed_assets / self.total_assets

    def to_dict(self) -> dict:
        return {
            'total': self.total_assets,
            'processed': self.processed_assets,
            'batch_index': self.current_batch_index,
            'total_batches': self.total_batches,
            'groups_found': self.similar_groups_found,
        }


@dataclass(frozen=True)
class SimilarityResult:
    """
    Snapshot emitted after each batch.

    similar_groups holds every group found so far in the scan; snapshots
    are never edited after emission.
    """
    similar_groups: tuple = field(default_factory=tuple)
    progress: ScanProgress = field(default_factory=lambda: ScanProgress(0, 0, 0, 0, 0))
    is_complete: bool = False

    @property
    def group_count(self) -> int:
        return len(self.similar_groups)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'similar_groups': [[h.identity for h in group] for group in self.similar_groups],
            'progress': self.progress.to_dict(),
            'is_complete': self.is_complete,
        }


__all__ = [
    'MEDIA_IMAGE',
    'MEDIA_VIDEO',
    'format_size',
    'ImageHandle',
    'ImageAsset',
    'handle_pixel_count',
    'fingerprint_to_hash',
    'hash_to_fingerprint',
    'FeatureVector',
    'SimilarityMetrics',
    'SimilarityQuality',
    'SimilarityMatrix',
    'BatchComplexityReport',
    'ScanProgress',
    'SimilarityResult',
]
