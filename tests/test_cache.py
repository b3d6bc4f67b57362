"""Tests for the approximation cache."""

import threading

import pytest

from gsmp.cache import ApproximationCache, CacheMode


class TestApproximationCache:

    def test_hit_and_miss_accounting(self):
        cache = ApproximationCache()
        calls = []

        def compute():
            calls.append(1)
            return 'value'

        assert cache.get_or_compute('k', compute) == 'value'
        assert cache.get_or_compute('k', compute) == 'value'
        assert len(calls) == 1
        assert (cache.compute_count, cache.hit_count) == (1, 1)
        assert 'k' in cache

    def test_disabled_always_recomputes(self):
        cache = ApproximationCache(mode=CacheMode.DISABLED)
        counter = iter(range(10))
        assert cache.get_or_compute('k', lambda: next(counter)) == 0
        assert cache.get_or_compute('k', lambda: next(counter)) == 1
        assert len(cache) == 0
        assert cache.compute_count == 2

    def test_failed_compute_not_stored(self):
        cache = ApproximationCache()

        def boom():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            cache.get_or_compute('k', boom)
        assert 'k' not in cache
        assert cache.compute_count == 0

    def test_eviction_drops_oldest(self):
        cache = ApproximationCache(max_entries=2)
        for key in ('a', 'b', 'c'):
            cache.get_or_compute(key, lambda: key)
        assert 'a' not in cache
        assert 'b' in cache and 'c' in cache

    def test_summary(self):
        cache = ApproximationCache()
        cache.get_or_compute('k', lambda: 1)
        cache.get_or_compute('k', lambda: 1)
        summary = cache.summary()
        assert summary == {'mode': 'enabled', 'entries': 1, 'hits': 1, 'misses': 1, 'hit_rate': 0.5}
        cache.clear()
        assert cache.summary()['entries'] == 0

    def test_concurrent_access(self):
        cache = ApproximationCache()
        results = []

        def worker(i):
            results.append(cache.get_or_compute(i % 5, lambda: (i % 5) * 10))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(set(results)) == [0, 10, 20, 30, 40]
        assert len(cache) == 5
        assert cache.hit_count + cache.compute_count == 50
