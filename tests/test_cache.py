"""
Unit tests for the single-flight thumbnail cache.

Tests cover:
1. Hits return the stored frame, bit-identical to a fresh render
2. Single-flight: concurrent requests for one key compute once
3. LRU eviction by entry count and by memory
4. Stale entries after a file changes
5. Failed computations, invalidation and stats
"""

import threading

import numpy as np
import pytest


def _identity(path="/data/a.fits", mtime_ns=1, size=100):
    from fitsexplorer.model import FileIdentity

    return FileIdentity(path, mtime_ns, size)


def _key(path="/data/a.fits", frame_index=0, mtime_ns=1):
    from fitsexplorer.cache import CacheKey

    return CacheKey(_identity(path, mtime_ns), frame_index, ("linear", "gray"))


def _frame(value=1.0, size=4):
    from fitsexplorer.render import render

    return render(np.full((size, size), value), black_point=0.0, white_point=2.0)


class TestCacheHits:
    """Tests for basic get_or_compute() behaviour."""

    def test_miss_then_hit(self):
        """The second request is served from the cache."""
        from fitsexplorer.cache import CacheState, ThumbnailCache

        cache = ThumbnailCache(capacity=4)
        calls = []

        def compute():
            calls.append(1)
            return _frame()

        first = cache.get_or_compute(_key(), compute)
        second = cache.get_or_compute(_key(), compute)
        assert first is second
        assert len(calls) == 1
        assert cache.state(_key()) is CacheState.READY
        assert cache.stats()["hits"] == 1

    def test_hit_is_bit_identical_to_fresh_render(self):
        """A cached raster equals a freshly rendered one."""
        from fitsexplorer.cache import ThumbnailCache
        from fitsexplorer.render import render

        data = np.random.default_rng(2).random((16, 16))
        cache = ThumbnailCache()
        cache.get_or_compute(_key(), lambda: render(data, width=8, height=8))
        cached = cache.get(_key())
        fresh = render(data, width=8, height=8)
        np.testing.assert_array_equal(cached.pixels, fresh.pixels)

    def test_failed_compute_leaves_key_absent(self):
        """Errors propagate and the next request retries."""
        from fitsexplorer.cache import CacheState, ThumbnailCache

        cache = ThumbnailCache()

        def fail():
            raise ValueError("decode failed")

        with pytest.raises(ValueError):
            cache.get_or_compute(_key(), fail)
        assert cache.state(_key()) is CacheState.ABSENT
        assert cache.get_or_compute(_key(), _frame) is not None

    def test_closed_cache_rejects_requests(self):
        """A closed cache cannot be used."""
        from fitsexplorer.cache import ThumbnailCache

        with ThumbnailCache() as cache:
            cache.get_or_compute(_key(), _frame)
        assert len(cache) == 0
        with pytest.raises(RuntimeError):
            cache.get_or_compute(_key(), _frame)

    def test_invalid_capacity(self):
        """Capacity must be at least one entry."""
        from fitsexplorer.cache import ThumbnailCache

        with pytest.raises(ValueError):
            ThumbnailCache(capacity=0)


class TestSingleFlight:
    """Tests for concurrent requests of one key."""

    def test_concurrent_requests_compute_once(self):
        """N threads asking for one key trigger exactly one computation."""
        from fitsexplorer.cache import CacheState, ThumbnailCache

        cache = ThumbnailCache()
        started = threading.Event()
        release = threading.Event()
        counter = []
        counter_lock = threading.Lock()
        results = []
        errors = []

        def compute():
            with counter_lock:
                counter.append(1)
            started.set()
            release.wait(timeout=5)
            return _frame()

        def worker():
            try:
                results.append(cache.get_or_compute(_key(), compute))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        assert started.wait(timeout=5)
        assert cache.state(_key()) is CacheState.COMPUTING
        release.set()
        for t in threads:
            t.join(timeout=5)

        assert errors == []
        assert len(counter) == 1
        assert len(results) == 8
        assert all(r is results[0] for r in results)
        assert cache.stats()["computations"] == 1

    def test_waiters_share_the_failure(self):
        """Callers waiting on a failing computation receive its exception."""
        from fitsexplorer.cache import ThumbnailCache

        cache = ThumbnailCache()
        started = threading.Event()
        release = threading.Event()
        errors = []

        def compute():
            started.set()
            release.wait(timeout=5)
            raise ValueError("boom")

        def worker():
            try:
                cache.get_or_compute(_key(), compute)
            except ValueError as e:
                errors.append(e)

        first = threading.Thread(target=worker)
        first.start()
        assert started.wait(timeout=5)
        second = threading.Thread(target=worker)
        second.start()
        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert len(errors) == 2
        assert len(cache) == 0

    def test_computing_entries_are_not_evicted(self):
        """An in-flight entry survives eviction pressure."""
        from fitsexplorer.cache import CacheState, ThumbnailCache

        cache = ThumbnailCache(capacity=1)
        started = threading.Event()
        release = threading.Event()

        def slow():
            started.set()
            release.wait(timeout=5)
            return _frame()

        t = threading.Thread(target=cache.get_or_compute, args=(_key("/data/slow.fits"), slow))
        t.start()
        assert started.wait(timeout=5)
        for i in range(3):
            cache.get_or_compute(_key(f"/data/{i}.fits"), _frame)
        assert cache.state(_key("/data/slow.fits")) is CacheState.COMPUTING
        release.set()
        t.join(timeout=5)
        assert cache.state(_key("/data/slow.fits")) is CacheState.READY


class TestEviction:
    """Tests for LRU eviction."""

    def test_least_recently_used_evicted_first(self):
        """Touching an entry protects it from the next eviction."""
        from fitsexplorer.cache import CacheState, ThumbnailCache

        cache = ThumbnailCache(capacity=2)
        a, b, c = _key("/data/a.fits"), _key("/data/b.fits"), _key("/data/c.fits")
        cache.get_or_compute(a, _frame)
        cache.get_or_compute(b, _frame)
        cache.get_or_compute(a, _frame)
        cache.get_or_compute(c, _frame)

        assert cache.state(a) is CacheState.READY
        assert cache.state(b) is CacheState.ABSENT
        assert cache.state(c) is CacheState.READY
        assert cache.stats()["evictions"] == 1

    def test_memory_bound(self):
        """Entries are evicted once rasters exceed the memory limit."""
        from fitsexplorer.cache import CacheState, ThumbnailCache

        nbytes = _frame().nbytes
        cache = ThumbnailCache(capacity=10, max_memory_bytes=2 * nbytes)
        keys = [_key(f"/data/{i}.fits") for i in range(3)]
        for key in keys:
            cache.get_or_compute(key, _frame)
        assert cache.state(keys[0]) is CacheState.ABSENT
        assert cache.stats()["memory_bytes"] == 2 * nbytes

    def test_oversize_frame_served_uncached(self):
        """A frame larger than the whole budget is returned but not kept."""
        from fitsexplorer.cache import CacheState, ThumbnailCache

        cache = ThumbnailCache(max_memory_bytes=10)
        frame = cache.get_or_compute(_key(), _frame)
        assert frame.pixels.shape == (4, 4, 3)
        assert cache.state(_key()) is CacheState.ABSENT


class TestStaleness:
    """Tests for file-identity changes."""

    def test_changed_file_is_recomputed(self):
        """A new mtime for the same path marks the old entry stale."""
        from fitsexplorer.cache import CacheState, ThumbnailCache

        cache = ThumbnailCache()
        old, new = _key(mtime_ns=1), _key(mtime_ns=2)
        first = cache.get_or_compute(old, lambda: _frame(0.5))
        assert cache.state(new) is CacheState.STALE
        assert new not in cache

        second = cache.get_or_compute(new, lambda: _frame(1.5))
        assert second is not first
        assert cache.state(new) is CacheState.READY
        assert cache.state(old) is CacheState.STALE
        assert cache.get(old) is None

    def test_invalidate_path(self):
        """invalidate() drops every frame of a file."""
        from fitsexplorer.cache import ThumbnailCache

        cache = ThumbnailCache()
        for i in range(3):
            cache.get_or_compute(_key(frame_index=i), _frame)
        cache.get_or_compute(_key("/data/other.fits"), _frame)
        assert cache.invalidate("/data/a.fits") == 3
        assert len(cache) == 1
        assert cache.stats()["memory_bytes"] == _frame().nbytes

    def test_thread_safety(self):
        """Concurrent mixed access keeps the cache consistent."""
        from fitsexplorer.cache import ThumbnailCache

        cache = ThumbnailCache(capacity=5)
        errors = []

        def hammer(tid):
            try:
                for i in range(50):
                    key = _key(f"/data/{(tid + i) % 8}.fits")
                    frame = cache.get_or_compute(key, _frame)
                    assert frame.pixels.shape == (4, 4, 3)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=hammer, args=(t,)) for t in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert len(cache) <= 5
