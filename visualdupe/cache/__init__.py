"""
In-memory feature cache for visualdupe.

Memoizes extracted feature vectors so repeated scans only extract images
they have not seen. Entries are keyed by image identity and evicted least
recently used first under entry-count and byte limits.

The cache is only ever invalidated wholesale (clear / invalidate_all);
per-image invalidation belongs to whoever observes the source of truth.

Public API:
- FeatureCache: Main cache class
- BoundedLRU: Generic count/cost-bounded LRU map
- CacheStats: Per-call statistics dataclass
- serialize_features / deserialize_features: Record format
"""

from __future__ import annotations

from .core import BoundedLRU, FeatureCache
from .serialization import serialize_features, deserialize_features
from .utils import CacheStats, CacheCounters


__all__ = [
    'FeatureCache',
    'BoundedLRU',
    'CacheStats',
    'CacheCounters',
    'serialize_features',
    'deserialize_features',
]
