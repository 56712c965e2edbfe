"""
Per-pair similarity metrics.

Scalar versions of the similarity kernel's formulas, used by the CPU
backend and by ad hoc pairwise comparisons:
- histogram_similarity: Bhattacharyya coefficient of L1-normalized histograms
- descriptor_similarity: Fraction of mutually valid slots correlating above 0.8
- fingerprint_similarity: (64 - Hamming distance) / 64 via imagehash
- assess_quality: Confidence and agreement of the three signals
"""

from __future__ import annotations

import numpy as np

from ..config import (
    DESCRIPTOR_SLOTS,
    DESCRIPTOR_SIZE,
    DESCRIPTOR_MATCH_THRESHOLD,
    FINGERPRINT_BITS,
    COMBINED_THRESHOLD,
    STRONG_MATCH_THRESHOLD,
)
from ..models import FeatureVector, SimilarityMetrics, SimilarityQuality, fingerprint_to_hash


def histogram_similarity(hist1: np.ndarray, hist2: np.ndarray) -> float:
    """Bhattacharyya coefficient, clamped to [0, 1]. Empty histograms score 0."""
    p = np.asarray(hist1, dtype=np.float64)
    q = np.asarray(hist2, dtype=np.float64)
    p_total = p.sum()
    q_total = q.sum()
    if p_total <= 0 or q_total <= 0:
        return 0.0
    coefficient = np.sum(np.sqrt((p / p_total) * (q / q_total)))
    return float(min(1.0, max(0.0, coefficient)))


def _standardize_slots(descriptors: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    slots = np.asarray(descriptors, dtype=np.float64).reshape(DESCRIPTOR_SLOTS, DESCRIPTOR_SIZE)
    valid = np.any(slots != 0.0, axis=1)
    centered = slots - slots.mean(axis=1, keepdims=True)
    norms = np.sqrt(np.sum(centered * centered, axis=1, keepdims=True))
    unit = np.divide(centered, norms, out=np.zeros_like(centered), where=norms > 0)
    return unit, valid


def descriptor_similarity(desc1: np.ndarray, desc2: np.ndarray) -> float:
    """
    Fraction of slots valid in both descriptors whose Pearson correlation
    exceeds 0.8; 0 when no slot is valid in both.
    """
    unit1, valid1 = _standardize_slots(desc1)
    unit2, valid2 = _standardize_slots(desc2)
    mutual = valid1 & valid2
    mutual_count = int(np.count_nonzero(mutual))
    if mutual_count == 0:
        return 0.0
    correlation = np.sum(unit1 * unit2, axis=1)
    matched = int(np.count_nonzero((correlation > DESCRIPTOR_MATCH_THRESHOLD) & mutual))
    return matched / mutual_count


def fingerprint_similarity(fingerprint1: int, fingerprint2: int) -> float:
    """(64 - Hamming distance) / 64."""
    distance = fingerprint_to_hash(fingerprint1) - fingerprint_to_hash(fingerprint2)
    return (FINGERPRINT_BITS - distance) / FINGERPRINT_BITS


def compute_metrics(features1: FeatureVector, features2: FeatureVector) -> SimilarityMetrics:
    """All three signals for one pair plus the fused score."""
    return SimilarityMetrics.combine(
        histogram=histogram_similarity(features1.color_histogram, features2.color_histogram),
        descriptor=descriptor_similarity(features1.local_descriptors, features2.local_descriptors),
        fingerprint=fingerprint_similarity(features1.fingerprint, features2.fingerprint),
    )


def signal_agreement(metrics: SimilarityMetrics) -> float:
    """1 - 2 * standard deviation of the three signals, floored at 0."""
    scores = np.array([metrics.histogram, metrics.descriptor, metrics.fingerprint])
    return float(max(0.0, 1.0 - float(np.std(scores)) * 2.0))


def assess_quality(metrics: SimilarityMetrics) -> SimilarityQuality:
    """
    Judge how trustworthy a fused score is.

    Signals that agree with each other and a high fused score give high
    confidence; disagreeing signals drag it down.
    """
    fused = metrics.fused
    agreement = signal_agreement(metrics)

    if agreement > 0.8 and fused > 0.8:
        confidence = 0.95
    elif agreement > 0.6 and fused > 0.6:
        confidence = 0.8
    elif agreement > 0.4 or fused > 0.5:
        confidence = 0.6
    else:
        confidence = 0.3

    return SimilarityQuality(
        confidence=confidence,
        agreement=agreement,
        is_potential_match=fused >= COMBINED_THRESHOLD,
        strong_match=fused >= STRONG_MATCH_THRESHOLD and agreement >= 0.7,
    )


__all__ = [
    'histogram_similarity',
    'descriptor_similarity',
    'fingerprint_similarity',
    'compute_metrics',
    'signal_agreement',
    'assess_quality',
]
