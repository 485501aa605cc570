import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN_S = 300
MIN_REFRESH_MARGIN_S = 60


class TokenCache:
    """Bearer token holder for a client-credentials flow.

    The token is fetched lazily and treated as expired ``refresh_margin_s`` seconds
    before the provider's real expiry, so it is renewed before calls start failing.
    There is no lock: concurrent first use may fetch twice and the last write wins.
    """

    def __init__(self,
                 refresh_margin_s: int = DEFAULT_REFRESH_MARGIN_S,
                 clock: Callable[[], float] = time.time):
        self.refresh_margin_s = max(MIN_REFRESH_MARGIN_S, min(refresh_margin_s, DEFAULT_REFRESH_MARGIN_S))
        self._clock = clock
        self.token: Optional[str] = None
        self.expires_at_ms: float = 0

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def is_valid(self) -> bool:
        return bool(self.token) and self._now_ms() < self.expires_at_ms

    def store(self, token: str, expires_in_s: int) -> None:
        """Cache ``token`` which the provider says is valid for ``expires_in_s`` seconds."""
        self.token = token
        self.expires_at_ms = self._now_ms() + (expires_in_s - self.refresh_margin_s) * 1000

    def get_or_fetch(self, fetch: Callable[[], Tuple[str, int]]) -> str:
        """Return the cached token, calling ``fetch`` for a new one when expired.

        Args:
            fetch: returns ``(access_token, expires_in_seconds)``; its errors propagate

        Returns:
            A bearer token
        """
        if self.is_valid():
            return self.token
        logger.debug("Access token missing or about to expire, fetching a new one")
        token, expires_in = fetch()
        self.store(token, expires_in)
        return token

    def clear(self) -> None:
        self.token = None
        self.expires_at_ms = 0


K = TypeVar('K', bound=Hashable)
V = TypeVar('V')


class LRUCache(Generic[K, V]):
    """Bounded mapping with least-recently-used eviction.

    Uses OrderedDict for LRU ordering; reads move an entry to the most recent end,
    and inserts beyond ``max_size`` drop the oldest entry.
    """

    def __init__(self, max_size: int = 256):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._cache: "OrderedDict[K, V]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            if key not in self._cache:
                self._misses += 1
                return None
            self._cache.move_to_end(key)
            self._hits += 1
            return self._cache[key]

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._cache[key] = value
            self._cache.move_to_end(key)
            while len(self._cache) > self.max_size:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted!r}")

    def __contains__(self, key: K) -> bool:
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                'size': len(self._cache),
                'max_size': self.max_size,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / total if total else 0.0,
            }
