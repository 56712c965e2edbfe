"""
Tests for similarity metrics, backends, clustering and the engine.
"""

import numpy as np
import pytest

from visualdupe.config import GROUPING_THRESHOLD
from visualdupe.errors import DeviceAllocationError
from visualdupe.models import SimilarityMatrix, SimilarityMetrics
from visualdupe.similarity import (
    CpuSimilarityBackend,
    KernelSimilarityBackend,
    SimilarityBackend,
    SimilarityEngine,
    assess_quality,
    compute_metrics,
    descriptor_similarity,
    find_similar_clusters,
    fingerprint_similarity,
    histogram_similarity,
)


class FailingBackend(SimilarityBackend):
    name = "failing"

    def __init__(self):
        self.calls = 0

    def similarity_matrix(self, features):
        self.calls += 1
        raise DeviceAllocationError("out of device memory")


@pytest.fixture
def batch(feature_factory):
    """Five unrelated vectors plus an exact copy of the first."""
    features = [feature_factory(f"img-{i}", seed=i) for i in range(5)]
    twin = feature_factory("img-twin", seed=0)
    return features + [twin]


@pytest.fixture(params=['kernel', 'cpu'])
def backend(request, device):
    if request.param == 'kernel':
        return KernelSimilarityBackend(device)
    return CpuSimilarityBackend(max_workers=2)


class TestMetrics:
    """Test the scalar similarity formulas."""

    def test_histogram_self_similarity(self, feature_factory):
        features = feature_factory('a', seed=5)
        assert histogram_similarity(features.color_histogram, features.color_histogram) == pytest.approx(1.0)

    def test_histogram_disjoint(self):
        p = np.zeros(768)
        q = np.zeros(768)
        p[0] = 10
        q[1] = 10
        assert histogram_similarity(p, q) == 0.0

    def test_histogram_empty(self):
        assert histogram_similarity(np.zeros(768), np.ones(768)) == 0.0

    def test_fingerprint_identical_and_complement(self):
        value = 0x0123456789ABCDEF
        assert fingerprint_similarity(value, value) == 1.0
        assert fingerprint_similarity(value, value ^ (2**64 - 1)) == 0.0
        assert fingerprint_similarity(0, 0b111) == pytest.approx(61 / 64)

    def test_descriptor_no_mutual_slots(self, feature_factory):
        a = feature_factory('a', seed=1, valid_slots=40)
        b = feature_factory('b', seed=2, valid_slots=0)
        assert descriptor_similarity(a.local_descriptors, b.local_descriptors) == 0.0

    def test_descriptor_self_similarity(self, feature_factory):
        a = feature_factory('a', seed=1)
        assert descriptor_similarity(a.local_descriptors, a.local_descriptors) == 1.0

    def test_compute_metrics_symmetric(self, feature_factory):
        a = feature_factory('a', seed=1)
        b = feature_factory('b', seed=2)
        assert compute_metrics(a, b) == compute_metrics(b, a)


class TestAssessQuality:
    """Test confidence and agreement classification."""

    def test_agreeing_strong_signals(self):
        quality = assess_quality(SimilarityMetrics.combine(1.0, 1.0, 1.0))
        assert quality.confidence == 0.95
        assert quality.agreement == pytest.approx(1.0)
        assert quality.strong_match
        assert quality.is_potential_match

    def test_disagreeing_signals(self):
        quality = assess_quality(SimilarityMetrics.combine(1.0, 0.0, 0.0))
        assert quality.confidence == 0.3
        assert quality.agreement < 0.1
        assert not quality.is_potential_match
        assert not quality.strong_match

    def test_high_score_with_poor_agreement_is_not_strong(self):
        quality = assess_quality(SimilarityMetrics(0.2, 1.0, 1.0, 0.86))
        assert quality.is_potential_match
        assert not quality.strong_match


class TestBackends:
    """Both backends must satisfy the same matrix contract."""

    def test_symmetric_with_unit_diagonal(self, backend, batch):
        values = backend.similarity_matrix(batch)

        assert values.shape == (6, 6)
        np.testing.assert_array_equal(values, values.T)
        np.testing.assert_array_equal(np.diag(values), np.ones(6, dtype=np.float32))
        assert values.min() >= 0.0
        assert values.max() <= 1.0

    def test_twin_scores_one(self, backend, batch):
        values = backend.similarity_matrix(batch)
        assert values[0, 5] == pytest.approx(1.0, abs=1e-5)

    def test_single_image(self, backend, feature_factory):
        values = backend.similarity_matrix([feature_factory('solo')])
        assert values.tolist() == [[1.0]]

    def test_kernel_and_cpu_agree(self, device, batch):
        kernel = KernelSimilarityBackend(device).similarity_matrix(batch)
        cpu = CpuSimilarityBackend(max_workers=2).similarity_matrix(batch)
        np.testing.assert_allclose(kernel, cpu, atol=1e-5)

    def test_matrix_matches_pairwise_metrics(self, device, batch):
        values = KernelSimilarityBackend(device).similarity_matrix(batch)
        expected = compute_metrics(batch[1], batch[3]).fused
        assert values[1, 3] == pytest.approx(expected, abs=1e-5)


class TestClustering:
    """Test threshold clustering."""

    def test_transitive_grouping(self):
        values = np.eye(5)
        values[0, 1] = values[1, 0] = 0.9
        values[1, 2] = values[2, 1] = 0.9
        values[3, 4] = values[4, 3] = 0.5
        assert find_similar_clusters(values, 0.8) == [[0, 1, 2]]

    def test_threshold_is_inclusive(self):
        values = np.array([[1.0, 0.75], [0.75, 1.0]])
        assert find_similar_clusters(values, 0.75) == [[0, 1]]

    def test_pair_at_grouping_threshold_is_grouped(self):
        values = np.eye(3)
        values[0, 1] = values[1, 0] = GROUPING_THRESHOLD
        values[1, 2] = values[2, 1] = np.nextafter(GROUPING_THRESHOLD, 0.0)
        assert find_similar_clusters(values, GROUPING_THRESHOLD) == [[0, 1]]

    def test_clusters_ordered_by_smallest_member(self):
        values = np.eye(4)
        values[1, 3] = values[3, 1] = 1.0
        values[0, 2] = values[2, 0] = 1.0
        assert find_similar_clusters(values, 0.8) == [[0, 2], [1, 3]]

    def test_accepts_similarity_matrix(self):
        matrix = SimilarityMatrix(np.ones((3, 3)), ['a', 'b', 'c'])
        assert find_similar_clusters(matrix, 0.8) == [[0, 1, 2]]

    def test_deterministic_and_idempotent(self, device, batch):
        engine = SimilarityEngine(device)
        matrix = engine.similarities(batch)
        first = engine.clusters(matrix, 0.8)
        second = engine.clusters(matrix, 0.8)
        assert first == second == [[0, 5]]

    def test_permutation_invariant(self, device, batch):
        engine = SimilarityEngine(device)
        order = [3, 5, 1, 0, 4, 2]
        shuffled = [batch[i] for i in order]

        def identity_sets(features):
            matrix = engine.similarities(features)
            return {
                frozenset(matrix.identities[i] for i in cluster)
                for cluster in engine.clusters(matrix, 0.8)
            }

        assert identity_sets(batch) == identity_sets(shuffled)


class TestSimilarityEngine:
    """Test the SimilarityEngine facade."""

    def test_matrix_carries_identities(self, device, batch):
        matrix = SimilarityEngine(device).similarities(batch)
        assert matrix.identities == tuple(f.identity for f in batch)
        assert matrix.backend == 'kernel'

    def test_cpu_when_no_device(self, batch):
        matrix = SimilarityEngine().similarities(batch)
        assert matrix.backend == 'cpu'

    def test_falls_back_on_device_error(self, device, batch):
        failing = FailingBackend()
        engine = SimilarityEngine(backend=failing)
        matrix = engine.similarities(batch)

        assert failing.calls == 1
        assert matrix.backend == 'cpu'
        np.testing.assert_allclose(
            matrix.values,
            KernelSimilarityBackend(device).similarity_matrix(batch),
            atol=1e-5,
        )

    def test_no_fallback_to_itself(self, batch):
        failing = FailingBackend()
        engine = SimilarityEngine(backend=failing, fallback=failing)
        with pytest.raises(DeviceAllocationError):
            engine.similarities(batch)

    def test_pairwise_memo(self, feature_factory):
        engine = SimilarityEngine(pairwise_cache_size=2)
        a = feature_factory('a', seed=1)
        b = feature_factory('b', seed=2)

        first = engine.pairwise(a, b)
        second = engine.pairwise(b, a)
        assert first is second
        assert engine.pairwise_cache_size == 1

        engine.clear_pairwise_cache()
        assert engine.pairwise_cache_size == 0

    def test_pairwise_memo_is_bounded(self, feature_factory):
        engine = SimilarityEngine(pairwise_cache_size=2)
        vectors = [feature_factory(name, seed=i) for i, name in enumerate('abcd')]
        engine.pairwise(vectors[0], vectors[1])
        engine.pairwise(vectors[0], vectors[2])
        engine.pairwise(vectors[0], vectors[3])
        assert engine.pairwise_cache_size == 2
