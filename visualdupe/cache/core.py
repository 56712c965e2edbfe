"""
Bounded in-memory caches.

BoundedLRU is a thread-safe least-recently-used map limited by entry count
and, optionally, by the total cost of its values. FeatureCache layers the
feature-vector record format on top of it.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Iterable, Optional, TypeVar

from ..config import CACHE_MAX_ENTRIES, CACHE_MAX_BYTES
from ..errors import CacheError
from ..models import FeatureVector, format_size
from .serialization import serialize_features, deserialize_features
from .utils import CacheCounters

_logger = logging.getLogger(__name__)

V = TypeVar('V')


class BoundedLRU(Generic[V]):
    """
    Thread-safe LRU map with count and cost limits.

    Eviction is deterministic: the least recently read or written entry
    goes first, until both limits hold again.
    """

    def __init__(
        self,
        max_entries: int,
        max_cost: Optional[int] = None,
        cost: Optional[Callable[[V], int]] = None,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.max_cost = max_cost
        self._cost = cost or (lambda value: 0)
        self._entries: OrderedDict[Hashable, tuple[V, int]] = OrderedDict()
        self._total_cost = 0
        self._lock = threading.Lock()
        self.evictions = 0

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry[0]

    def put(self, key: Hashable, value: V) -> bool:
        """
        Insert or replace a value.

        Returns:
            False if the value alone exceeds the cost limit (not stored)
        """
        cost = self._cost(value)
        with self._lock:
            if self.max_cost is not None and cost > self.max_cost:
                return False
            previous = self._entries.pop(key, None)
            if previous is not None:
                self._total_cost -= previous[1]
            self._entries[key] = (value, cost)
            self._total_cost += cost
            self._evict_locked()
            return True

    def pop(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return None
            self._total_cost -= entry[1]
            return entry[0]

    def _evict_locked(self) -> None:
        while self._entries and (
            len(self._entries) > self.max_entries
            or (self.max_cost is not None and self._total_cost > self.max_cost)
        ):
            _, (_, cost) = self._entries.popitem(last=False)
            self._total_cost -= cost
            self.evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_cost = 0

    def keys(self) -> list:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries.keys())

    @property
    def total_cost(self) -> int:
        with self._lock:
            return self._total_cost

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries


class FeatureCache:
    """
    Identity-keyed cache of serialized feature vectors.

    Thread-safe for concurrent extraction workers. Serialization failures
    are logged and treated as misses, never raised to the caller.

    Every clear() or invalidate_all() starts a new generation. A worker
    that read ``generation`` before loading pixels passes it to put(), and
    the write is dropped if the cache was invalidated in the meantime.

    Usage:
        cache = FeatureCache()

        features = cache.get(handle.identity)
        if features is None:
            generation = cache.generation
            features = extract(handle)
            cache.put(features, generation)
    """

    def __init__(self, max_entries: int = CACHE_MAX_ENTRIES, max_bytes: int = CACHE_MAX_BYTES):
        """
        Initialize the feature cache.

        Args:
            max_entries: Maximum number of cached vectors
            max_bytes: Maximum total size of the serialized records
        """
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._store: BoundedLRU[bytes] = BoundedLRU(max_entries, max_bytes, cost=len)
        self._counters = CacheCounters()
        self._counter_lock = threading.Lock()
        self._generation = 0
        self._generation_lock = threading.Lock()

    @property
    def generation(self) -> int:
        """Invalidation counter; bumped by clear() and invalidate_all()."""
        with self._generation_lock:
            return self._generation

    def _count(self, name: str, amount: int = 1) -> None:
        with self._counter_lock:
            setattr(self._counters, name, getattr(self._counters, name) + amount)

    def get(self, identity: str) -> Optional[FeatureVector]:
        """Get the cached vector for an identity, or None on a miss."""
        record = self._store.get(identity)
        if record is None:
            self._count('misses')
            return None

        try:
            features = deserialize_features(record)
        except CacheError as e:
            _logger.warning(f"Dropping unreadable cache entry for {identity}: {e}")
            self._store.pop(identity)
            self._count('errors')
            self._count('misses')
            return None

        self._count('hits')
        return features

    def put(self, features: FeatureVector, generation: Optional[int] = None) -> bool:
        """
        Cache a FeatureVector.

        Args:
            features: Vector to store under its identity
            generation: Value of ``generation`` read before the features were
                computed; the write is dropped if the cache was invalidated
                since. None stores unconditionally.

        Returns:
            True if stored, False if it was stale, could not be serialized
            or is larger than the whole byte budget
        """
        try:
            record = serialize_features(features)
        except CacheError as e:
            _logger.warning(f"Not caching features for {features.identity}: {e}")
            self._count('errors')
            return False

        with self._generation_lock:
            if generation is not None and generation != self._generation:
                _logger.debug(f"Dropping stale features for {features.identity}")
                self._count('stale_writes')
                return False
            evictions_before = self._store.evictions
            stored = self._store.put(features.identity, record)
            evicted = self._store.evictions - evictions_before

        if stored:
            self._count('insertions')
            if evicted:
                self._count('evictions', evicted)
                _logger.debug(f"Feature cache evicted {evicted} entries")
        return stored

    def get_batch(self, identities: Iterable[str]) -> dict[str, Optional[FeatureVector]]:
        """Get cached vectors for multiple identities."""
        return {identity: self.get(identity) for identity in identities}

    def put_batch(self, features: Iterable[FeatureVector]) -> int:
        """Cache multiple vectors; returns how many were stored."""
        return sum(1 for f in features if self.put(f))

    def clear(self) -> None:
        """Drop every entry."""
        with self._generation_lock:
            self._generation += 1
            self._store.clear()
        _logger.debug("Feature cache cleared")

    def invalidate_all(self, reason: str = "") -> None:
        """Wholesale invalidation after the upstream image set changed."""
        with self._generation_lock:
            self._generation += 1
            count = len(self._store)
            self._store.clear()
        _logger.info(f"Feature cache invalidated ({count} entries){': ' + reason if reason else ''}")

    def __contains__(self, identity: str) -> bool:
        return identity in self._store

    def __len__(self) -> int:
        return len(self._store)

    @property
    def total_bytes(self) -> int:
        return self._store.total_cost

    def identities(self) -> list[str]:
        """Cached identities from least to most recently used."""
        return self._store.keys()

    def get_stats(self) -> dict:
        """Get cache statistics."""
        with self._counter_lock:
            counters = self._counters.to_dict()
        return {
            'entries': len(self._store),
            'max_entries': self.max_entries,
            'total_bytes': self.total_bytes,
            'total_size_formatted': format_size(self.total_bytes),
            'max_bytes': self.max_bytes,
            **counters,
        }


__all__ = ['BoundedLRU', 'FeatureCache']
