"""
Unit tests for data models.
"""

import numpy as np
import pytest

from visualdupe.config import HISTOGRAM_SIZE, DESCRIPTOR_LENGTH
from visualdupe.errors import InvalidFeatureShapeError
from visualdupe.models import (
    ImageAsset,
    ImageHandle,
    FeatureVector,
    SimilarityMetrics,
    SimilarityQuality,
    SimilarityMatrix,
    BatchComplexityReport,
    ScanProgress,
    SimilarityResult,
    fingerprint_to_hash,
    hash_to_fingerprint,
    format_size,
)


def _vector(**overrides):
    fields = dict(
        identity='img',
        color_histogram=np.ones(HISTOGRAM_SIZE, dtype=np.float32),
        local_descriptors=np.zeros(DESCRIPTOR_LENGTH, dtype=np.float32),
        fingerprint=0xDEADBEEF,
        width=10,
        height=20,
    )
    fields.update(overrides)
    return FeatureVector(**fields)


class TestImageAsset:
    """Test ImageAsset dataclass."""

    def test_satisfies_handle_protocol(self):
        assert isinstance(ImageAsset('a', 10, 10), ImageHandle)

    def test_equality_by_identity(self):
        assert ImageAsset('a', 10, 10) == ImageAsset('a', 99, 99)
        assert hash(ImageAsset('a')) == hash(ImageAsset('a'))
        assert ImageAsset('a') != ImageAsset('b')

    def test_properties(self):
        asset = ImageAsset('/photos/cat.jpg', 2000, 1500)
        assert asset.pixel_count == 3_000_000
        assert asset.megapixels == 3.0
        assert asset.resolution == '2000x1500'
        assert asset.filename == 'cat.jpg'

    def test_to_dict(self):
        data = ImageAsset('a', 4, 3).to_dict()
        assert data['identity'] == 'a'
        assert data['captured_at'] is None
        assert data['media_kind'] == 'image'


class TestFeatureVector:
    """Test FeatureVector validation."""

    def test_valid_vector(self):
        vector = _vector()
        assert vector.color_histogram.shape == (HISTOGRAM_SIZE,)
        assert vector.local_descriptors.shape == (DESCRIPTOR_LENGTH,)
        assert vector.descriptor_slots.shape == (500, 32)

    @pytest.mark.parametrize('length', [767, 769, 0])
    def test_rejects_wrong_histogram_length(self, length):
        with pytest.raises(InvalidFeatureShapeError):
            _vector(color_histogram=np.ones(length, dtype=np.float32))

    def test_rejects_wrong_descriptor_length(self):
        with pytest.raises(InvalidFeatureShapeError):
            _vector(local_descriptors=np.zeros(DESCRIPTOR_LENGTH - 32, dtype=np.float32))

    def test_rejects_negative_histogram(self):
        histogram = np.ones(HISTOGRAM_SIZE, dtype=np.float32)
        histogram[3] = -1
        with pytest.raises(ValueError):
            _vector(color_histogram=histogram)

    @pytest.mark.parametrize('fingerprint', [-1, 2**64])
    def test_rejects_out_of_range_fingerprint(self, fingerprint):
        with pytest.raises(ValueError):
            _vector(fingerprint=fingerprint)

    def test_accepts_full_64_bit_fingerprint(self):
        assert _vector(fingerprint=2**64 - 1).fingerprint == 2**64 - 1

    def test_arrays_are_read_only(self):
        vector = _vector()
        with pytest.raises(ValueError):
            vector.color_histogram[0] = 5

    def test_does_not_alias_caller_arrays(self):
        histogram = np.ones(HISTOGRAM_SIZE, dtype=np.float32)
        vector = _vector(color_histogram=histogram)
        histogram[0] = 42
        assert vector.color_histogram[0] == 1
        assert histogram.flags.writeable

    def test_valid_descriptor_count(self):
        descriptors = np.zeros(DESCRIPTOR_LENGTH, dtype=np.float32)
        descriptors[0] = 0.5          # slot 0
        descriptors[32 * 7 + 3] = 1   # slot 7
        assert _vector(local_descriptors=descriptors).valid_descriptor_count == 2

    def test_same_values(self):
        assert _vector().same_values(_vector())
        assert not _vector().same_values(_vector(width=11))


class TestFingerprintHash:
    """Test conversion between fingerprints and imagehash objects."""

    def test_round_trip(self):
        for value in (0, 1, 0x8000000000000001, 2**64 - 1, 0x0123456789ABCDEF):
            assert hash_to_fingerprint(fingerprint_to_hash(value)) == value

    def test_bit_layout_row_major(self):
        grid = fingerprint_to_hash(1 << 9).hash
        assert grid[1, 1]
        assert grid.sum() == 1

    def test_hamming_distance(self):
        assert fingerprint_to_hash(0b1011) - fingerprint_to_hash(0b0001) == 2


class TestSimilarityMetrics:
    """Test SimilarityMetrics fusion."""

    def test_combine_weights(self):
        metrics = SimilarityMetrics.combine(1.0, 0.0, 0.0)
        assert metrics.fused == pytest.approx(0.3)
        metrics = SimilarityMetrics.combine(0.0, 1.0, 0.0)
        assert metrics.fused == pytest.approx(0.5)
        metrics = SimilarityMetrics.combine(0.0, 0.0, 1.0)
        assert metrics.fused == pytest.approx(0.2)

    def test_combine_all_ones(self):
        assert SimilarityMetrics.combine(1.0, 1.0, 1.0).fused == pytest.approx(1.0)


class TestSimilarityQuality:
    """Test quality descriptions."""

    def test_descriptions(self):
        assert SimilarityQuality(0.95, 0.9, True, True).description == "Strong Match"
        assert SimilarityQuality(0.8, 0.5, True, False).description == "Potential Match"
        assert SimilarityQuality(0.6, 0.5, False, False).description == "Weak Match"
        assert SimilarityQuality(0.3, 0.1, False, False).description == "No Match"


class TestSimilarityMatrix:
    """Test SimilarityMatrix construction."""

    def test_read_only(self):
        matrix = SimilarityMatrix(np.eye(2), ['a', 'b'])
        with pytest.raises(ValueError):
            matrix.values[0, 1] = 0.5

    def test_rejects_non_square(self):
        with pytest.raises(InvalidFeatureShapeError):
            SimilarityMatrix(np.zeros((2, 3)), ['a', 'b'])

    def test_rejects_identity_mismatch(self):
        with pytest.raises(InvalidFeatureShapeError):
            SimilarityMatrix(np.eye(3), ['a', 'b'])

    def test_accessors(self):
        matrix = SimilarityMatrix([[1.0, 0.25], [0.25, 1.0]], ['a', 'b'], backend='cpu')
        assert len(matrix) == 2
        assert matrix.score(0, 1) == pytest.approx(0.25)
        assert matrix.identities == ('a', 'b')
        assert matrix.to_list()[1][0] == pytest.approx(0.25)


class TestSnapshots:
    """Test report and snapshot models."""

    def test_complexity_thresholds(self):
        report = BatchComplexityReport(1000, 1000, 0, 0, 0, 0, complexity_score=150.0)
        assert report.is_high_complexity
        assert report.estimated_processing_seconds == 15

    def test_progress_percentage(self):
        assert ScanProgress(200, 50, 1, 4, 0).percentage == 0.25
        assert ScanProgress(0, 0, 0, 0, 0).percentage == 0.0

    def test_result_to_dict(self):
        group = (ImageAsset('a'), ImageAsset('b'))
        result = SimilarityResult((group,), ScanProgress(2, 2, 1, 1, 1), True)
        data = result.to_dict()
        assert data['similar_groups'] == [['a', 'b']]
        assert data['progress']['groups_found'] == 1
        assert result.group_count == 1

    def test_result_is_frozen(self):
        result = SimilarityResult()
        with pytest.raises(AttributeError):
            result.is_complete = True


def test_format_size():
    assert format_size(512) == "512.0 B"
    assert format_size(2048) == "2.0 KB"
