"""
Approximation Cache
===================
Memoization for derived numeric objects that depend only on a
distribution and a tolerance, never on the potato they are applied to:

    ('foxglynn', qt, ε)                 → FoxGlynnWeights
    ('weibull', scale, shape, ε)        → WeibullSurrogate
    (model, event, entry, params, ...)  → PotatoResult (assembler results)

The cache knows nothing about strategies; callers pass the key and a
zero-argument function that computes the value on a miss. It is safe to
share between worker threads.

Usage:
    from gsmp.cache import ApproximationCache
    cache = ApproximationCache()
    fg = cache.get_or_compute(('foxglynn', qt, eps), lambda: fox_glynn(qt, eps))
    cache.summary()    # → {'entries': 1, 'hits': 0, 'misses': 1, ...}
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)


class CacheMode(Enum):
    ENABLED = "enabled"     # store and reuse
    DISABLED = "disabled"   # always recompute (for testing strategy logic alone)


class ApproximationCache:
    """
    Thread-safe key → value memo with hit/miss accounting.

    Parameters
    ----------
    mode : CacheMode
        ENABLED (default) or DISABLED.
    max_entries : int, optional
        When set, the oldest entry is evicted once the cache is full.
    """

    def __init__(self, mode: CacheMode = CacheMode.ENABLED, max_entries: Optional[int] = None):
        self.mode = mode
        self.max_entries = max_entries
        self._store: Dict[Hashable, Any] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def compute_count(self) -> int:
        """How many values were actually computed (vs served from cache)."""
        return self._misses

    @property
    def hit_count(self) -> int:
        return self._hits

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._store

    def get_or_compute(self, key: Hashable, compute_fn: Callable[[], Any]) -> Any:
        if self.mode == CacheMode.ENABLED:
            with self._lock:
                if key in self._store:
                    self._hits += 1
                    return self._store[key]

        # computed outside the lock; two threads may race on the same key,
        # both results are identical and the first stored one wins
        value = compute_fn()

        with self._lock:
            self._misses += 1
            if self.mode == CacheMode.DISABLED:
                return value
            if key in self._store:
                return self._store[key]
            if self.max_entries is not None and len(self._store) >= self.max_entries:
                oldest = next(iter(self._store))
                del self._store[oldest]
            self._store[key] = value
        logger.debug(f"cache miss: {key!r}")
        return value

    def clear(self):
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0

    def summary(self) -> Dict[str, Any]:
        """Cache statistics for logging."""
        total = self._hits + self._misses
        return {
            'mode': self.mode.value,
            'entries': len(self._store),
            'hits': self._hits,
            'misses': self._misses,
            'hit_rate': self._hits / total if total else 0.0,
        }
