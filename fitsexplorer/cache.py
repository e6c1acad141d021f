"""Single-flight LRU cache of rendered frames."""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .config import CACHE_CAPACITY, CACHE_MAX_MEMORY_BYTES
from .model import FileIdentity
from .render import RenderedFrame

logger = logging.getLogger(__name__)


class CacheState(Enum):
    ABSENT = "absent"
    COMPUTING = "computing"
    READY = "ready"
    STALE = "stale"


@dataclass(frozen=True)
class CacheKey:
    """(file identity, frame index, render-parameter signature)."""

    identity: FileIdentity
    frame_index: int
    signature: tuple

    @property
    def slot(self) -> tuple:
        # Entries are stored per path so a changed file finds its stale entry
        return (self.identity.path, self.frame_index, self.signature)


class _Entry:
    __slots__ = ("identity", "future", "frame", "nbytes")

    def __init__(self, identity: FileIdentity):
        self.identity = identity
        self.future: Future = Future()
        self.frame: Optional[RenderedFrame] = None
        self.nbytes = 0


class ThumbnailCache:
    """Thread-safe LRU cache of rendered frames with single-flight computation.

    For each key at most one ``compute_fn`` runs at a time; concurrent callers
    for the same key wait on the in-flight computation and receive the same
    ``RenderedFrame`` (or the same exception). Ready entries are evicted
    least-recently-accessed first when the entry count exceeds ``capacity`` or
    their total size exceeds ``max_memory_bytes``. In-flight entries are never
    evicted.

    The lock only guards dictionary bookkeeping; computations run outside it,
    so a slow render never blocks lookups of other keys.
    """

    def __init__(
        self,
        capacity: int = CACHE_CAPACITY,
        max_memory_bytes: int = CACHE_MAX_MEMORY_BYTES,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._max_memory = max_memory_bytes
        self._current_memory = 0
        self._entries: "OrderedDict[tuple, _Entry]" = OrderedDict()
        self._lock = threading.Lock()
        self._closed = False
        self._hits = 0
        self._misses = 0
        self._computations = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def get_or_compute(
        self, key: CacheKey, compute_fn: Callable[[], RenderedFrame]
    ) -> RenderedFrame:
        """Return the cached frame for ``key``, computing it at most once.

        Raises whatever ``compute_fn`` raises; a failed computation leaves the
        key absent so the next request retries.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("cache is closed")
            entry = self._entries.get(key.slot)
            if entry is not None and entry.identity != key.identity:
                logger.debug("Discarding stale entry for %s frame %d", key.identity.path, key.frame_index)
                self._discard(key.slot)
                entry = None

            if entry is not None:
                self._entries.move_to_end(key.slot)
                self._hits += 1
                if entry.frame is not None:
                    return entry.frame
                future = entry.future
            else:
                self._misses += 1
                self._computations += 1
                entry = _Entry(key.identity)
                self._entries[key.slot] = entry
                self._evict()
                future = None

        if future is not None:
            # Another caller is computing this key
            return future.result()
        return self._compute(key, entry, compute_fn)

    def _compute(
        self, key: CacheKey, entry: _Entry, compute_fn: Callable[[], RenderedFrame]
    ) -> RenderedFrame:
        try:
            frame = compute_fn()
        except BaseException as e:
            with self._lock:
                if self._entries.get(key.slot) is entry:
                    del self._entries[key.slot]
            entry.future.set_exception(e)
            raise

        try:
            self._store(key, entry, frame)
        except MemoryError:
            logger.warning(
                "Failed to cache frame %d of %s; serving uncached",
                key.frame_index,
                key.identity.path,
            )
            with self._lock:
                if self._entries.get(key.slot) is entry:
                    del self._entries[key.slot]
        entry.future.set_result(frame)
        return frame

    def _store(self, key: CacheKey, entry: _Entry, frame: RenderedFrame) -> None:
        item_size = frame.nbytes
        with self._lock:
            if self._entries.get(key.slot) is not entry:
                # Invalidated or superseded while computing
                return
            if item_size > self._max_memory:
                logger.debug(
                    "Cannot cache frame (size %d bytes exceeds max %d bytes): %s",
                    item_size,
                    self._max_memory,
                    key,
                )
                del self._entries[key.slot]
                return
            entry.frame = frame
            entry.nbytes = item_size
            self._current_memory += item_size
            self._entries.move_to_end(key.slot)
            self._evict()

    def _evict(self) -> None:
        """Drop least-recently-used ready entries until within limits. Lock held."""
        while (
            len(self._entries) > self._capacity
            or self._current_memory > self._max_memory
        ):
            victim = next(
                (slot for slot, e in self._entries.items() if e.frame is not None),
                None,
            )
            if victim is None:
                return
            self._discard(victim)
            self._evictions += 1

    def _discard(self, slot: tuple) -> None:
        entry = self._entries.pop(slot)
        if entry.frame is not None:
            self._current_memory -= entry.nbytes

    def get(self, key: CacheKey) -> Optional[RenderedFrame]:
        """Ready frame for ``key`` (marking it recently used), else None."""
        with self._lock:
            entry = self._entries.get(key.slot)
            if entry is None or entry.frame is None or entry.identity != key.identity:
                return None
            self._entries.move_to_end(key.slot)
            return entry.frame

    def state(self, key: CacheKey) -> CacheState:
        with self._lock:
            entry = self._entries.get(key.slot)
            if entry is None:
                return CacheState.ABSENT
            if entry.identity != key.identity:
                return CacheState.STALE
            if entry.frame is None:
                return CacheState.COMPUTING
            return CacheState.READY

    def invalidate(self, path: str) -> int:
        """Remove every entry for ``path``. Returns the number removed."""
        path = str(path)
        with self._lock:
            slots = [s for s in self._entries if s[0] == path]
            for slot in slots:
                self._discard(slot)
        return len(slots)

    def clear(self) -> None:
        """Remove all entries. In-flight computations still resolve their waiters."""
        with self._lock:
            self._entries.clear()
            self._current_memory = 0

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._entries.clear()
            self._current_memory = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "memory_bytes": self._current_memory,
                "hits": self._hits,
                "misses": self._misses,
                "computations": self._computations,
                "evictions": self._evictions,
            }

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            entry = self._entries.get(key.slot)
            return entry is not None and entry.identity == key.identity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __enter__(self) -> "ThumbnailCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
