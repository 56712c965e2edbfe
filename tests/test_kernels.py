"""
Tests for the compute kernels and the compute device.
"""

import numpy as np
import pytest
from PIL import Image

from visualdupe.config import (
    HISTOGRAM_SIZE,
    DESCRIPTOR_LENGTH,
    DESCRIPTOR_SLOTS,
    DESCRIPTOR_SIZE,
    FEATURE_ROW_SIZE,
)
from visualdupe.errors import DeviceAllocationError, DeviceUnavailableError, InvalidFeatureShapeError
from visualdupe.kernels import (
    ComputeDevice,
    DEFAULT_KERNELS,
    KERNEL_LOCAL_DESCRIPTORS,
    color_histogram,
    local_descriptors,
    perceptual_fingerprint,
    pack_features,
    unpack_fingerprints,
)

from conftest import checkerboard_image


def _solid_texture(rgb, size=8):
    texture = np.ones((size, size, 4), dtype=np.float32)
    texture[..., :3] = rgb
    return texture


class TestColorHistogram:
    """Test the histogram kernel."""

    def test_solid_red(self):
        out = np.zeros(HISTOGRAM_SIZE, dtype=np.float32)
        color_histogram(_solid_texture((1.0, 0.0, 0.0), size=4), out)

        assert out[255] == 16       # R saturates into the last bin
        assert out[256] == 16       # G = 0
        assert out[512] == 16       # B = 0
        assert out.sum() == 48

    def test_out_of_range_values_saturate(self):
        texture = _solid_texture((1.5, -0.2, 0.5), size=2)
        out = np.zeros(HISTOGRAM_SIZE, dtype=np.float32)
        color_histogram(texture, out)

        assert out[255] == 4
        assert out[256] == 4
        assert out[512 + 128] == 4

    def test_counts_per_channel_equal_pixel_count(self, device):
        texture = device.upload_texture(checkerboard_image(size=32))
        out = np.zeros(HISTOGRAM_SIZE, dtype=np.float32)
        color_histogram(texture, out)

        for channel in range(3):
            assert out[channel * 256:(channel + 1) * 256].sum() == 32 * 32

    def test_rejects_wrong_buffer_length(self):
        with pytest.raises(InvalidFeatureShapeError):
            color_histogram(_solid_texture((0.5, 0.5, 0.5)), np.zeros(767, dtype=np.float32))


class TestLocalDescriptors:
    """Test the descriptor kernel."""

    def test_checkerboard_has_features(self, device):
        texture = device.upload_texture(checkerboard_image())
        out = np.zeros(DESCRIPTOR_LENGTH, dtype=np.float32)
        local_descriptors(texture, out)

        slots = out.reshape(DESCRIPTOR_SLOTS, DESCRIPTOR_SIZE)
        valid = np.any(slots != 0, axis=1)
        assert valid.sum() > 0
        # Claimed slots come first, then only zeros
        assert not valid[valid.sum():].any()
        # Positions are normalized
        assert np.all(slots[valid, 0] < 1.0)
        assert np.all(slots[valid, 1] < 1.0)
        assert np.all(slots[valid, 2] > 0.5)

    def test_uniform_image_has_no_features(self):
        out = np.zeros(DESCRIPTOR_LENGTH, dtype=np.float32)
        local_descriptors(_solid_texture((0.3, 0.6, 0.9), size=16), out)
        assert not out.any()

    def test_at_most_500_slots(self, device):
        texture = device.upload_texture(checkerboard_image(size=128, square=2))
        out = np.zeros(DESCRIPTOR_LENGTH, dtype=np.float32)
        local_descriptors(texture, out)

        slots = out.reshape(DESCRIPTOR_SLOTS, DESCRIPTOR_SIZE)
        assert np.any(slots != 0, axis=1).sum() == DESCRIPTOR_SLOTS

    def test_rejects_wrong_buffer_length(self):
        with pytest.raises(InvalidFeatureShapeError):
            local_descriptors(_solid_texture((0.5, 0.5, 0.5)), np.zeros(100, dtype=np.float32))


class TestPerceptualFingerprint:
    """Test the fingerprint kernel."""

    def test_deterministic(self, device):
        texture = device.upload_texture(checkerboard_image())
        first = perceptual_fingerprint(texture, np.zeros(1, dtype=np.uint64))
        second = perceptual_fingerprint(texture.copy(), np.zeros(1, dtype=np.uint64))
        assert first[0] == second[0]

    @pytest.mark.parametrize('level', [0.1, 0.37, 0.5, 0.9])
    def test_uniform_image_sets_only_dc_bit(self, level):
        out = np.zeros(1, dtype=np.uint64)
        perceptual_fingerprint(_solid_texture((level, level, level), size=16), out)
        assert int(out[0]) == 1

    def test_tiny_texture(self):
        out = np.zeros(1, dtype=np.uint64)
        perceptual_fingerprint(_solid_texture((0.2, 0.4, 0.6), size=1), out)
        assert int(out[0]) & 1

    def test_requires_uint64_buffer(self):
        with pytest.raises(InvalidFeatureShapeError):
            perceptual_fingerprint(_solid_texture((0.5, 0.5, 0.5)), np.zeros(1, dtype=np.float32))


class TestPackFeatures:
    """Test the flattened similarity-kernel layout."""

    def test_fingerprint_survives_packing(self, feature_factory):
        features = [
            feature_factory('a', seed=1, fingerprint=0xFFFFFFFFFFFFFFFF),
            feature_factory('b', seed=2, fingerprint=0x8000000000000001),
        ]
        buffer = pack_features(features, np.zeros((2, FEATURE_ROW_SIZE), dtype=np.float32))

        fingerprints = unpack_fingerprints(buffer)
        assert int(fingerprints[0]) == 0xFFFFFFFFFFFFFFFF
        assert int(fingerprints[1]) == 0x8000000000000001
        np.testing.assert_array_equal(buffer[0, :HISTOGRAM_SIZE], features[0].color_histogram)


class TestComputeDevice:
    """Test the device abstraction."""

    def test_missing_kernel_makes_device_unavailable(self):
        kernels = dict(DEFAULT_KERNELS)
        del kernels[KERNEL_LOCAL_DESCRIPTORS]
        with pytest.raises(DeviceUnavailableError):
            ComputeDevice(kernels=kernels)

    def test_allocation_limit(self):
        device = ComputeDevice(max_buffer_bytes=1024)
        assert device.allocate_buffer((256,)).shape == (256,)
        with pytest.raises(DeviceAllocationError):
            device.allocate_buffer((257,))

    def test_buffers_are_zeroed(self, device):
        assert not device.allocate_buffer((4, 4)).any()

    def test_oversized_texture_rejected(self):
        device = ComputeDevice(max_texture_dimension=32)
        with pytest.raises(DeviceAllocationError):
            device.upload_texture(Image.new('RGB', (33, 10)))

    def test_upload_texture_layout(self, device):
        texture = device.upload_texture(Image.new('RGB', (5, 3), (255, 0, 128)))
        assert texture.shape == (3, 5, 4)
        assert texture.dtype == np.float32
        assert texture.min() >= 0.0
        assert texture.max() <= 1.0
        assert texture[0, 0, 0] == 1.0
        assert texture[0, 0, 3] == 1.0

    def test_dispatch_unknown_kernel(self, device):
        with pytest.raises(DeviceUnavailableError):
            device.dispatch('nope')
