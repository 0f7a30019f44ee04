"""Process-local caches behind a swappable interface."""

from __future__ import annotations

import hashlib
import json
import time
from collections import OrderedDict
from typing import TYPE_CHECKING, Callable, Generic, Protocol, TypeVar

if TYPE_CHECKING:
    from ..models import TryOnParams

V = TypeVar("V")


class CacheBackend(Protocol[V]):
    """Minimal cache contract, so a shared store can replace the in-memory one."""

    def get(self, key: str) -> V | None: ...

    def set(self, key: str, value: V) -> None: ...

    def delete(self, key: str) -> None: ...

    def prune(self) -> int: ...

    def clear(self) -> None: ...

    def __len__(self) -> int: ...


class MemoryCache(Generic[V]):
    """In-memory cache with optional TTL and LRU eviction.

    Expired entries are dropped lazily: on read, and by `prune()` once the
    cache grows past `max_entries`. If pruning alone cannot bring the cache
    back under the cap, the least recently used entries are evicted.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        ttl_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, V]] = OrderedDict()

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_s is not None and self._clock() - stored_at >= self.ttl_s

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._expired(stored_at):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            self.prune()
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def prune(self) -> int:
        """Drop expired entries; returns how many were removed."""
        expired = [k for k, (stored_at, _) in self._entries.items() if self._expired(stored_at)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


def fingerprint(model_image_ref: str, garment_image_ref: str, params: TryOnParams) -> str:
    """Cache key for a generation request.

    Hashes the full image references; distinct images that share a URL
    prefix never collide.
    """
    payload = json.dumps(
        [
            model_image_ref,
            garment_image_ref,
            "none" if params.seed is None else params.seed,
            params.mode.value,
            params.category.value,
            params.num_samples,
        ],
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
