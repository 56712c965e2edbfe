"""
Batch scheduling for visualdupe.

Partitions an image set into batches sized from live device signals:
- Small sets run as a single batch
- Sets above the incremental threshold use small batches for responsive
  progress
- Everything in between is sized from available memory and a coarse
  compute tier
- Incremental scans skip processed images and slice large remainders by
  capture time
- Oversized batches can be re-split against a memory budget

Also owns the cancellation flag the orchestrator checks between batches.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, TypeVar

import psutil

from .config import (
    DEFAULT_BATCH_SIZE,
    MAX_BATCH_SIZE,
    INCREMENTAL_THRESHOLD,
    INCREMENTAL_BATCH_COUNT,
    LARGE_COLLECTION_BATCH_SIZE,
    MEMORY_PER_IMAGE_MB,
    HIGH_END_MEMORY_MB,
    HIGH_END_GPU_BATCH_SIZE,
    STANDARD_GPU_BATCH_SIZE,
    BYTES_PER_PIXEL,
    PER_IMAGE_OVERHEAD_BYTES,
    DEFAULT_MEMORY_BUDGET,
    HIGH_RESOLUTION_PIXELS,
)
from .models import BatchComplexityReport, ImageHandle, MEDIA_IMAGE, MEDIA_VIDEO, handle_pixel_count

_logger = logging.getLogger(__name__)

H = TypeVar('H', bound=ImageHandle)


@dataclass(frozen=True)
class DeviceCapabilities:
    """Coarse device signals used for batch sizing."""
    available_memory_mb: int
    is_high_end: bool


def probe_device_capabilities() -> DeviceCapabilities:
    """Read live available memory and guess the compute tier from it."""
    available_mb = int(psutil.virtual_memory().available // (1024 * 1024))
    return DeviceCapabilities(
        available_memory_mb=available_mb,
        is_high_end=available_mb > HIGH_END_MEMORY_MB,
    )


def estimate_memory(images: Iterable[ImageHandle]) -> int:
    """Estimated working set in bytes: 4 bytes per pixel plus 1 MiB per image."""
    return sum(
        handle_pixel_count(handle) * BYTES_PER_PIXEL + PER_IMAGE_OVERHEAD_BYTES
        for handle in images
    )


def _capture_sort_key(handle: ImageHandle) -> tuple[bool, float]:
    captured = handle.captured_at
    if captured is None:
        return (True, 0.0)
    return (False, captured.timestamp())


def _slice(images: Sequence[H], size: int) -> list[list[H]]:
    return [list(images[i:i + size]) for i in range(0, len(images), size)]


class BatchScheduler:
    """
    Splits image sets into batches.

    Usage:
        scheduler = BatchScheduler()
        for batch in scheduler.make_batches(images):
            if scheduler.is_cancelled:
                break
            process(batch)
    """

    def __init__(
        self,
        capabilities_provider: Optional[Callable[[], DeviceCapabilities]] = None,
        incremental_threshold: int = INCREMENTAL_THRESHOLD,
    ):
        """
        Initialize the scheduler.

        Args:
            capabilities_provider: Returns current device signals; defaults
                to probing live memory with psutil
            incremental_threshold: Default threshold for make_batches
        """
        self._capabilities_provider = capabilities_provider or probe_device_capabilities
        self.incremental_threshold = incremental_threshold
        self._cancelled = False
        self._lock = threading.Lock()

    # Cancellation

    def cancel(self) -> None:
        """Request that remaining batches be abandoned."""
        with self._lock:
            self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def reset_cancellation(self) -> None:
        with self._lock:
            self._cancelled = False

    # Batch sizing

    def capabilities(self) -> DeviceCapabilities:
        return self._capabilities_provider()

    def optimal_batch_size(self, count: int) -> int:
        """Batch size from device signals, capped by collection size tiers."""
        capabilities = self.capabilities()
        memory_based = capabilities.available_memory_mb // MEMORY_PER_IMAGE_MB
        tier_based = HIGH_END_GPU_BATCH_SIZE if capabilities.is_high_end else STANDARD_GPU_BATCH_SIZE
        base = min(memory_based, tier_based)

        if count < 100:
            return min(base, count)
        elif count < 1000:
            return min(base, DEFAULT_BATCH_SIZE)
        return min(base, LARGE_COLLECTION_BATCH_SIZE)

    def determine_batch_size(self, count: int, threshold: Optional[int] = None) -> int:
        """
        Pick the batch size for a collection of ``count`` images.

        Always between 1 and MAX_BATCH_SIZE.
        """
        threshold = self.incremental_threshold if threshold is None else threshold

        if count <= DEFAULT_BATCH_SIZE:
            size = count
        elif count > threshold:
            size = min(DEFAULT_BATCH_SIZE, threshold // 10)
        else:
            size = self.optimal_batch_size(count)

        return max(1, min(size, MAX_BATCH_SIZE))

    # Batch creation

    def make_batches(self, images: Sequence[H], incremental_threshold: Optional[int] = None) -> list[list[H]]:
        """Split images into ordered, non-empty batches."""
        images = list(images)
        if not images:
            return []

        size = self.determine_batch_size(len(images), incremental_threshold)
        batches = _slice(images, size)
        _logger.debug(f"Scheduled {len(images):,} images into {len(batches)} batches of up to {size}")
        return batches

    def make_incremental_batches(
        self,
        images: Sequence[H],
        processed: Iterable[str],
        incremental_threshold: Optional[int] = None,
    ) -> list[list[H]]:
        """
        Batch only the images whose identity is not in ``processed``.

        Large remainders are ordered by capture time (unknown times last)
        and sliced into about INCREMENTAL_BATCH_COUNT batches.
        """
        threshold = self.incremental_threshold if incremental_threshold is None else incremental_threshold
        processed = set(processed)
        remaining = [handle for handle in images if handle.identity not in processed]

        _logger.debug(f"Incremental scheduling: {len(remaining):,} of {len(images):,} images unprocessed")

        if not remaining:
            return []

        if len(remaining) > threshold:
            ordered = sorted(remaining, key=_capture_sort_key)
            size = max(1, min(math.ceil(len(ordered) / INCREMENTAL_BATCH_COUNT), MAX_BATCH_SIZE))
            return _slice(ordered, size)

        return self.make_batches(remaining, threshold)

    def optimize_batches_for_memory(
        self,
        batches: Iterable[Sequence[H]],
        memory_budget: int = DEFAULT_MEMORY_BUDGET,
    ) -> list[list[H]]:
        """
        Re-split batches whose estimated memory exceeds the budget.

        Images are packed greedily in order; a new sub-batch starts when the
        next image would push the running total over budget. An image that
        alone exceeds the budget gets a batch of its own.
        """
        optimized: list[list[H]] = []

        for batch in batches:
            batch = list(batch)
            if not batch:
                continue
            if estimate_memory(batch) <= memory_budget:
                optimized.append(batch)
                continue

            current: list[H] = []
            current_memory = 0
            for handle in batch:
                handle_memory = estimate_memory([handle])
                if current and current_memory + handle_memory > memory_budget:
                    optimized.append(current)
                    current = [handle]
                    current_memory = handle_memory
                else:
                    current.append(handle)
                    current_memory += handle_memory
            if current:
                optimized.append(current)

        return optimized

    def estimate_memory(self, images: Iterable[ImageHandle]) -> int:
        return estimate_memory(images)

    def analyze_complexity(self, images: Sequence[ImageHandle]) -> BatchComplexityReport:
        """Aggregate counts and a complexity score for time estimates."""
        total_pixels = 0
        image_count = 0
        video_count = 0
        high_resolution_count = 0

        for handle in images:
            pixels = handle_pixel_count(handle)
            total_pixels += pixels
            if handle.media_kind == MEDIA_VIDEO:
                video_count += 1
            elif handle.media_kind == MEDIA_IMAGE:
                image_count += 1
                if pixels > HIGH_RESOLUTION_PIXELS:
                    high_resolution_count += 1

        total = len(images)
        average_pixels = total_pixels // total if total else 0

        score = (
            total * 0.1
            + average_pixels / 1_000_000 * 2.0
            + high_resolution_count * 3.0
            + video_count * 5.0
        )

        return BatchComplexityReport(
            total_assets=total,
            image_count=image_count,
            video_count=video_count,
            high_resolution_count=high_resolution_count,
            average_pixels=average_pixels,
            total_pixels=total_pixels,
            complexity_score=score,
        )


__all__ = [
    'BatchScheduler',
    'DeviceCapabilities',
    'probe_device_capabilities',
    'estimate_memory',
]
