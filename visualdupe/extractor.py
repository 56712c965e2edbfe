"""
Feature extraction for visualdupe.

Turns image handles into FeatureVectors: cache lookup, pixel loading,
decode, texture upload and the three per-image kernels. Extraction runs on
a thread pool while a bounded pool of device tokens limits how many
images are on the compute device at once.
"""

from __future__ import annotations

import io
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Iterable, Optional, Sequence

import numpy as np

from .cache import FeatureCache, CacheStats
from .config import (
    DEFAULT_WORKERS,
    DEVICE_CONCURRENCY,
    HISTOGRAM_SIZE,
    DESCRIPTOR_LENGTH,
)
from .dependencies import Image, ImageOps, HAS_TQDM, _tqdm_class
from .errors import ExtractionFailedError
from .kernels import (
    ComputeDevice,
    KERNEL_COLOR_HISTOGRAM,
    KERNEL_LOCAL_DESCRIPTORS,
    KERNEL_PERCEPTUAL_FINGERPRINT,
)
from .models import FeatureVector, ImageHandle
from .sources import PixelSource, FilePixelSource

_logger = logging.getLogger(__name__)


def decode_image(data: bytes, max_dimension: int) -> tuple['Image.Image', tuple[int, int]]:
    """
    Decode encoded bytes into an RGB image no larger than max_dimension.

    Returns:
        Tuple of (decoded image, (width, height) before downscaling)
    """
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        img = ImageOps.exif_transpose(img)
        source_size = img.size
        if img.mode != 'RGB':
            img = img.convert('RGB')
        else:
            img = img.copy()

    if max(img.size) > max_dimension:
        img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    return img, source_size


class FeatureExtractor:
    """
    Cache-aware, bounded-concurrency feature extractor.

    Usage:
        extractor = FeatureExtractor(device, cache, MemoryPixelSource(payloads))
        features = extractor.extract(handles)
    """

    def __init__(
        self,
        device: ComputeDevice,
        cache: Optional[FeatureCache] = None,
        pixel_source: Optional[PixelSource] = None,
        max_concurrent: int = DEVICE_CONCURRENCY,
        max_workers: int = DEFAULT_WORKERS,
        use_cache: bool = True,
        show_progress: bool = False,
    ):
        """
        Initialize the extractor.

        Args:
            device: Compute device the kernels run on
            cache: Feature cache; a private one is created when omitted
            pixel_source: Resolves handles to encoded bytes (default: files)
            max_concurrent: Device tokens, i.e. images on the device at once
            max_workers: Thread pool size
            use_cache: Whether to read and populate the cache
            show_progress: Whether to show a tqdm progress bar
        """
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self.device = device
        self.cache = cache if cache is not None else FeatureCache()
        self.pixel_source = pixel_source if pixel_source is not None else FilePixelSource()
        self.max_concurrent = max_concurrent
        self.max_workers = max(1, max_workers)
        self.use_cache = use_cache
        self.show_progress = show_progress
        self._tokens = threading.BoundedSemaphore(max_concurrent)

    def _run_kernels(self, handle: ImageHandle) -> FeatureVector:
        data = self.pixel_source.load_pixels(handle)
        image, (width, height) = decode_image(data, self.device.max_texture_dimension)

        texture = self.device.upload_texture(image)

        histogram = self.device.allocate_buffer((HISTOGRAM_SIZE,), dtype=np.float32)
        self.device.dispatch(KERNEL_COLOR_HISTOGRAM, texture, histogram)

        descriptors = self.device.allocate_buffer((DESCRIPTOR_LENGTH,), dtype=np.float32)
        self.device.dispatch(KERNEL_LOCAL_DESCRIPTORS, texture, descriptors)

        fingerprint = self.device.allocate_buffer((1,), dtype=np.uint64)
        self.device.dispatch(KERNEL_PERCEPTUAL_FINGERPRINT, texture, fingerprint)

        return FeatureVector(
            identity=handle.identity,
            color_histogram=histogram,
            local_descriptors=descriptors,
            fingerprint=int(fingerprint[0]),
            width=width,
            height=height,
        )

    def extract_uncached(self, handle: ImageHandle) -> FeatureVector:
        """
        Extract one image, bypassing the cache lookup.

        The result is still inserted into the cache.

        Raises:
            ExtractionFailedError: On any load, decode, device or kernel failure
        """
        with self._tokens:
            # Read before loading so an invalidation during extraction wins
            generation = self.cache.generation
            try:
                features = self._run_kernels(handle)
            except Exception as e:
                raise ExtractionFailedError(handle.identity, str(e) or type(e).__name__, e) from e

            if self.use_cache:
                self.cache.put(features, generation)

        _logger.debug(f"Extracted {handle.identity}: {features.valid_descriptor_count} descriptors")
        return features

    def extract_one(self, handle: ImageHandle) -> FeatureVector:
        """
        Extract a single image, serving it from the cache when possible.

        Meant for retrying images individually after a batch failed.
        """
        if self.use_cache:
            cached = self.cache.get(handle.identity)
            if cached is not None:
                return cached
        return self.extract_uncached(handle)

    def extract_with_stats(self, images: Iterable[ImageHandle]) -> tuple[list[FeatureVector], CacheStats]:
        """
        Extract a batch of images.

        Returns:
            Tuple of (feature vectors in input order, CacheStats)

        Raises:
            ExtractionFailedError: The first failure in input order, if any
                image failed
        """
        images = list(images)
        stats = CacheStats(total_files=len(images))
        if not images:
            return [], stats

        results: list[Optional[FeatureVector]] = [None] * len(images)
        pending: list[int] = []

        if self.use_cache:
            for index, handle in enumerate(images):
                cached = self.cache.get(handle.identity)
                if cached is not None:
                    results[index] = cached
                    stats.cache_hits += 1
                else:
                    pending.append(index)
                    stats.cache_misses += 1

            if stats.cache_hits > 0:
                _logger.info(
                    f"Cache: {stats.cache_hits:,} hits, {stats.cache_misses:,} misses "
                    f"({stats.hit_rate:.1f}% hit rate)"
                )
        else:
            pending = list(range(len(images)))
            stats.cache_misses = len(images)

        failures: dict[int, ExtractionFailedError] = {}

        if pending:
            pbar: Optional[Any] = None
            if HAS_TQDM and self.show_progress and _tqdm_class is not None:
                pbar = _tqdm_class(
                    total=len(pending),
                    desc="Extracting features",
                    unit="img",
                    ncols=80,
                )

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self.extract_uncached, images[index]): index
                    for index in pending
                }

                for future in as_completed(futures):
                    index = futures[future]
                    try:
                        results[index] = future.result()
                    except ExtractionFailedError as e:
                        failures[index] = e

                    if pbar is not None:
                        pbar.update(1)

            if pbar is not None:
                pbar.close()

        if failures:
            first = failures[min(failures)]
            _logger.error(f"{len(failures)} of {len(images)} images failed; first: {first}")
            raise first

        return results, stats

    def extract(self, images: Sequence[ImageHandle]) -> list[FeatureVector]:
        """Extract a batch of images; see extract_with_stats."""
        features, _ = self.extract_with_stats(images)
        return features


__all__ = ['FeatureExtractor', 'decode_image']
