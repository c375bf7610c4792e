# segment_store.py - segment/bundle data model and the bundle storage backends
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Protocol


@dataclass(frozen=True)
class Segment:
    bundle_id: str
    index: int
    payload: str
    # only meaningful on segment 0
    total: Optional[int] = None
    txid: Optional[str] = None
    network: Optional[str] = None


@dataclass
class Bundle:
    bundle_id: str
    total: int = 0          # 0 until segment 0 arrives (unknown, not empty)
    txid: str = ""          # expected fingerprint, hex or z85
    network: Optional[str] = None
    segments: Dict[int, str] = field(default_factory=dict)

    def is_complete(self) -> bool:
        return self.total > 0 and all(i in self.segments for i in range(self.total))


class SegmentStorage(Protocol):
    """Capability every bundle storage backend provides."""

    def add_segment(self, segment: Segment) -> None: ...
    def delete_segment(self, bundle_id: str, index: int) -> None: ...
    def has_segment(self, bundle_id: str, index: int) -> bool: ...
    def get_segment(self, bundle_id: str, index: int) -> Optional[str]: ...
    def add_bundle(self, bundle_id: str) -> None: ...
    def delete_bundle(self, bundle_id: str) -> None: ...
    def has_bundle(self, bundle_id: str) -> bool: ...
    def get_bundle(self, bundle_id: str) -> Optional[Bundle]: ...
    def has_all_segments(self, bundle_id: str) -> bool: ...
    def add_processed_tx(self, bundle_id: str, txid: str) -> None: ...
    def has_processed_tx(self, bundle_id: str) -> bool: ...
    def bundle_lock(self, bundle_id: str): ...
    def mark_in_flight(self, bundle_id: str) -> bool: ...
    def clear_in_flight(self, bundle_id: str) -> None: ...
    def is_in_flight(self, bundle_id: str) -> bool: ...


class TTLCache:
    """
    Fixed-capacity LRU with a max age per entry. Age counts from the
    last set(); get() refreshes recency only.
    """
    def __init__(self, cap: int = 10000, ttl: Optional[float] = 3600.0, clock=time.monotonic):
        self.cap = cap
        self.ttl = ttl
        self._clock = clock
        self._d: "OrderedDict[str, tuple[float, object]]" = OrderedDict()

    def _expired(self, stamp: float) -> bool:
        return self.ttl is not None and self._clock() - stamp > self.ttl

    def has(self, key: str) -> bool:
        hit = self._d.get(key)
        if hit is None:
            return False
        if self._expired(hit[0]):
            del self._d[key]
            return False
        return True

    def get(self, key: str):
        if not self.has(key):
            return None
        self._d.move_to_end(key, last=True)
        return self._d[key][1]

    def set(self, key: str, value) -> None:
        self._d[key] = (self._clock(), value)
        self._d.move_to_end(key, last=True)
        while len(self._d) > self.cap:
            self._d.popitem(last=False)

    def delete(self, key: str) -> None:
        self._d.pop(key, None)

    def __len__(self) -> int:
        return len(self._d)


class _KeyedLocks:
    """One lock per key, dropped once nobody holds or waits on it."""
    def __init__(self):
        self._mu = threading.Lock()
        self._locks: Dict[str, list] = {}   # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._mu:
            slot = self._locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        slot[0].acquire()
        try:
            yield
        finally:
            slot[0].release()
            with self._mu:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class MemoryCacheStorage:
    """
    In-memory storage: one TTL/LRU cache of bundles, one of processed
    bundle ids (bundle_id -> txid). Both share cache_size and ttl.
    """
    def __init__(self, cache_size: int = 10000, ttl: Optional[float] = 3600.0, clock=time.monotonic):
        self._bundles = TTLCache(cache_size, ttl, clock)
        self._processed = TTLCache(cache_size, ttl, clock)
        self._mu = threading.RLock()
        self._bundle_locks = _KeyedLocks()
        self._in_flight: set = set()

    @classmethod
    def from_options(cls, options: dict) -> "MemoryCacheStorage":
        return cls(cache_size=int(options.get("cache_size", 10000)),
                   ttl=options.get("ttl", 3600.0))

    def bundle_lock(self, bundle_id: str):
        return self._bundle_locks.hold(bundle_id)

    def mark_in_flight(self, bundle_id: str) -> bool:
        """Claim a completed bundle for build + push. False if already claimed."""
        with self._mu:
            if bundle_id in self._in_flight:
                return False
            self._in_flight.add(bundle_id)
            return True

    def clear_in_flight(self, bundle_id: str) -> None:
        with self._mu:
            self._in_flight.discard(bundle_id)

    def is_in_flight(self, bundle_id: str) -> bool:
        with self._mu:
            return bundle_id in self._in_flight

    def add_segment(self, segment: Segment) -> None:
        with self._mu:
            bundle = self._bundles.get(segment.bundle_id)
            if bundle is None:
                bundle = Bundle(segment.bundle_id)
            if segment.index in bundle.segments:
                return
            bundle.segments[segment.index] = segment.payload
            # first writer of segment 0 wins; duplicates returned above
            if segment.index == 0:
                bundle.total = segment.total or 0
                bundle.txid = segment.txid or ""
                bundle.network = segment.network
            self._bundles.set(segment.bundle_id, bundle)

    def delete_segment(self, bundle_id: str, index: int) -> None:
        with self._mu:
            bundle = self._bundles.get(bundle_id)
            if bundle is not None and index in bundle.segments:
                del bundle.segments[index]
                self._bundles.set(bundle_id, bundle)

    def has_segment(self, bundle_id: str, index: int) -> bool:
        with self._mu:
            bundle = self._bundles.get(bundle_id)
            return bundle is not None and index in bundle.segments

    def get_segment(self, bundle_id: str, index: int) -> Optional[str]:
        with self._mu:
            bundle = self._bundles.get(bundle_id)
            return None if bundle is None else bundle.segments.get(index)

    def add_bundle(self, bundle_id: str) -> None:
        with self._mu:
            if not self._bundles.has(bundle_id):
                self._bundles.set(bundle_id, Bundle(bundle_id))

    def delete_bundle(self, bundle_id: str) -> None:
        with self._mu:
            self._bundles.delete(bundle_id)

    def has_bundle(self, bundle_id: str) -> bool:
        with self._mu:
            return self._bundles.has(bundle_id)

    def get_bundle(self, bundle_id: str) -> Optional[Bundle]:
        # hand out a copy; callers never mutate stored state directly
        with self._mu:
            bundle = self._bundles.get(bundle_id)
            if bundle is None:
                return None
            return Bundle(bundle.bundle_id, bundle.total, bundle.txid,
                          bundle.network, dict(bundle.segments))

    def has_all_segments(self, bundle_id: str) -> bool:
        with self._mu:
            bundle = self._bundles.get(bundle_id)
            return bundle is not None and bundle.is_complete()

    def add_processed_tx(self, bundle_id: str, txid: str) -> None:
        with self._mu:
            if not self._processed.has(bundle_id):
                self._processed.set(bundle_id, txid)

    def has_processed_tx(self, bundle_id: str) -> bool:
        with self._mu:
            return self._processed.has(bundle_id)

    def get_processed_tx(self, bundle_id: str) -> Optional[str]:
        with self._mu:
            return self._processed.get(bundle_id)


STORAGES = {
    "memory-cache": MemoryCacheStorage.from_options,
}
