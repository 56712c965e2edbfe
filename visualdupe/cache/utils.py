"""
Shared utilities for the feature cache.

Provides:
- CacheStats: Statistics dataclass for tracking cache performance
- CacheCounters: Lifetime counters kept by a FeatureCache
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CacheStats:
    """Statistics about cache usage during one extraction call."""
    cache_hits: int = 0
    cache_misses: int = 0
    total_files: int = 0

    @property
    def hit_rate(self) -> float:
        """Return cache hit rate as percentage."""
        if self.total_files == 0:
            return 0.0
        return (self.cache_hits / self.total_files) * 100


@dataclass
class CacheCounters:
    """Lifetime counters of a FeatureCache."""
    hits: int = 0
    misses: int = 0
    insertions: int = 0
    evictions: int = 0
    errors: int = 0
    stale_writes: int = 0

    def to_dict(self) -> dict:
        return {
            'hits': self.hits,
            'misses': self.misses,
            'insertions': self.insertions,
            'evictions': self.evictions,
            'errors': self.errors,
            'stale_writes': self.stale_writes,
        }


__all__ = [
    'CacheStats',
    'CacheCounters',
]
