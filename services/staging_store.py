"""Fast keyed store used for chunk staging, session bookkeeping and preview caching.

Two implementations share one narrow interface: Redis for real deployments and an
in-process TTL dict for development and tests. Values are bytes or str; reads
always return bytes.
"""
import fnmatch
import threading
import time
from typing import Dict, Optional, Tuple, Union

import redis

from config import REDIS_URL
from logger import get_logger

logger = get_logger(__name__)

Value = Union[bytes, str]


class StagingStore:
    """Key -> value cache with per-key TTL."""

    def set(self, key: str, value: Value, ttl: int) -> None:
        raise NotImplementedError

    def set_if_absent(self, key: str, value: Value, ttl: int) -> bool:
        """Write only when the key is missing; True if this call wrote it."""
        raise NotImplementedError

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def expire(self, key: str, ttl: int) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def delete_pattern(self, pattern: str) -> int:
        raise NotImplementedError


def _to_bytes(value: Value) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


class RedisStagingStore(StagingStore):
    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStagingStore":
        return cls(redis.Redis.from_url(url, socket_timeout=10, retry_on_timeout=True))

    def set(self, key: str, value: Value, ttl: int) -> None:
        self.client.set(key, _to_bytes(value), ex=ttl)

    def set_if_absent(self, key: str, value: Value, ttl: int) -> bool:
        return bool(self.client.set(key, _to_bytes(value), ex=ttl, nx=True))

    def get(self, key: str) -> Optional[bytes]:
        return self.client.get(key)

    def expire(self, key: str, ttl: int) -> bool:
        return bool(self.client.expire(key, ttl))

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def delete_pattern(self, pattern: str) -> int:
        keys = list(self.client.scan_iter(match=pattern, count=500))
        if not keys:
            return 0
        return int(self.client.delete(*keys))


class InMemoryStagingStore(StagingStore):
    """Process-local store; expired entries are evicted lazily on access."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def _alive(self, key: str) -> Optional[Tuple[bytes, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._data[key]
            return None
        return entry

    def set(self, key: str, value: Value, ttl: int) -> None:
        with self._lock:
            self._data[key] = (_to_bytes(value), self._clock() + ttl)

    def set_if_absent(self, key: str, value: Value, ttl: int) -> bool:
        with self._lock:
            if self._alive(key) is not None:
                return False
            self._data[key] = (_to_bytes(value), self._clock() + ttl)
            return True

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._alive(key)
            return entry[0] if entry else None

    def expire(self, key: str, ttl: int) -> bool:
        with self._lock:
            entry = self._alive(key)
            if entry is None:
                return False
            self._data[key] = (entry[0], self._clock() + ttl)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._data[k]
            return len(keys)

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for k in list(self._data) if self._alive(k))


def build_staging_store(url: Optional[str] = REDIS_URL) -> StagingStore:
    if url:
        logger.info("Using Redis staging store at %s", url)
        return RedisStagingStore.from_url(url)
    logger.warning("REDIS_URL not set; using in-process staging store (single worker only).")
    return InMemoryStagingStore()
