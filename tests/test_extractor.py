"""
Tests for feature extraction.
"""

import threading
import time

import pytest

from visualdupe.cache import FeatureCache
from visualdupe.errors import DeviceAllocationError, ExtractionFailedError
from visualdupe.extractor import FeatureExtractor, decode_image
from visualdupe.kernels import ComputeDevice
from visualdupe.models import ImageAsset
from visualdupe.sources import MemoryPixelSource

from conftest import checkerboard_image, png_bytes


class CountingPixelSource(MemoryPixelSource):
    """Records the peak number of concurrent loads."""

    def __init__(self, payloads):
        super().__init__(payloads)
        self.active = 0
        self.peak = 0
        self.calls = 0
        self._count_lock = threading.Lock()

    def load_pixels(self, handle):
        with self._count_lock:
            self.active += 1
            self.calls += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(0.02)
            return super().load_pixels(handle)
        finally:
            with self._count_lock:
                self.active -= 1


class TestDecodeImage:
    """Test decoding and downscaling."""

    def test_keeps_small_images(self):
        img, size = decode_image(png_bytes(checkerboard_image(size=16)), 64)
        assert img.size == (16, 16)
        assert size == (16, 16)
        assert img.mode == 'RGB'

    def test_downscales_large_images(self):
        img, size = decode_image(png_bytes(checkerboard_image(size=64)), 32)
        assert max(img.size) == 32
        assert size == (64, 64)


class TestFeatureExtractor:
    """Test FeatureExtractor behavior."""

    def test_order_preserved(self, extractor, abc_handles):
        features = extractor.extract(abc_handles)
        assert [f.identity for f in features] == ['A', 'B', 'C']
        assert features[0].width == 64
        assert features[0].height == 64

    def test_identical_pixels_identical_features(self, extractor, abc_handles):
        a, b, c = extractor.extract(abc_handles)
        assert a.fingerprint == b.fingerprint
        assert (a.color_histogram == b.color_histogram).all()
        assert (a.local_descriptors == b.local_descriptors).all()
        assert a.valid_descriptor_count > 0

    def test_second_call_served_from_cache(self, device, abc_payloads, abc_handles):
        source = CountingPixelSource(abc_payloads)
        extractor = FeatureExtractor(device, FeatureCache(), source, max_workers=2)

        first, stats = extractor.extract_with_stats(abc_handles)
        assert stats.cache_misses == 3
        second, stats = extractor.extract_with_stats(abc_handles)

        assert stats.cache_hits == 3
        assert stats.hit_rate == 100.0
        assert source.calls == 3
        assert all(x.same_values(y) for x, y in zip(first, second))

    def test_use_cache_disabled(self, device, cache, abc_payloads, abc_handles):
        source = CountingPixelSource(abc_payloads)
        extractor = FeatureExtractor(device, cache, source, max_workers=2, use_cache=False)
        extractor.extract(abc_handles)
        extractor.extract(abc_handles)

        assert source.calls == 6
        assert len(cache) == 0

    def test_empty_batch(self, extractor):
        features, stats = extractor.extract_with_stats([])
        assert features == []
        assert stats.total_files == 0

    def test_first_failure_in_input_order(self, device, cache, abc_payloads, abc_handles):
        payloads = {'A': abc_payloads['A']}
        extractor = FeatureExtractor(device, cache, MemoryPixelSource(payloads), max_workers=3)

        with pytest.raises(ExtractionFailedError) as exc_info:
            extractor.extract(abc_handles)

        assert exc_info.value.identity == 'B'
        assert isinstance(exc_info.value.cause, KeyError)
        # Successful images still land in the cache
        assert 'A' in cache

    def test_corrupt_bytes(self, device, cache):
        extractor = FeatureExtractor(device, cache, MemoryPixelSource({'x': b'not an image'}))
        with pytest.raises(ExtractionFailedError) as exc_info:
            extractor.extract([ImageAsset('x')])
        assert exc_info.value.identity == 'x'
        assert 'x' not in cache

    def test_device_allocation_failure_is_wrapped(self, cache, abc_payloads, abc_handles):
        device = ComputeDevice(max_buffer_bytes=100)
        extractor = FeatureExtractor(device, cache, MemoryPixelSource(abc_payloads))

        with pytest.raises(ExtractionFailedError) as exc_info:
            extractor.extract_one(abc_handles[0])
        assert isinstance(exc_info.value.cause, DeviceAllocationError)

    def test_extract_one_uses_cache(self, device, cache, abc_payloads, abc_handles):
        source = CountingPixelSource(abc_payloads)
        extractor = FeatureExtractor(device, cache, source)

        first = extractor.extract_one(abc_handles[0])
        second = extractor.extract_one(abc_handles[0])
        assert source.calls == 1
        assert first.same_values(second)

    def test_downscaled_images_keep_source_size(self, cache, abc_payloads, abc_handles):
        device = ComputeDevice(max_texture_dimension=32)
        extractor = FeatureExtractor(device, cache, MemoryPixelSource(abc_payloads))

        features = extractor.extract_one(abc_handles[0])
        assert (features.width, features.height) == (64, 64)

    def test_device_tokens_bound_concurrency(self, device, cache):
        board = png_bytes(checkerboard_image(size=16))
        payloads = {f"img-{i}": board for i in range(8)}
        source = CountingPixelSource(payloads)
        extractor = FeatureExtractor(device, cache, source, max_concurrent=2, max_workers=6)

        extractor.extract([ImageAsset(identity, 16, 16) for identity in payloads])

        assert source.calls == 8
        assert source.peak <= 2

    def test_rejects_zero_tokens(self, device):
        with pytest.raises(ValueError):
            FeatureExtractor(device, max_concurrent=0)
