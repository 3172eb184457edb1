"""
Read-through cache for list/get query results.

- MemoryCache: process-local, mutex-protected dict with lazy TTL expiry,
  oldest-first eviction at max_keys and a bounded sweep for expired entries.
- RedisCache: same surface over a redis client, for multi-process deployments.
- Keys are "<resource>:<operation>:<normalized params>" so a whole resource can
  be evicted with delete_by_prefix("<resource>:") after any write.

The cache is never a source of truth. Every failure is logged and degrades to
a miss (reads) or a no-op (writes/evictions).
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, TypeVar

import redis
from redis import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_KEYS = 10000
MAX_ITEM_BYTES = 1024 * 1024


class CacheStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_by_prefix(self, prefix: str) -> int: ...

    def clear(self) -> None: ...

    def stats(self) -> Dict[str, Any]: ...


def _drop_none(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_drop_none(v) for v in value]
    return value


def normalize_params(params: Any) -> str:
    """Serialize query params so that key order never changes the result."""
    if params is None:
        return ""
    if isinstance(params, Mapping):
        return json.dumps(_drop_none(params), sort_keys=True, separators=(",", ":"), default=str)
    return str(params)


def cache_key_for(resource: str, operation: str, params: Any = None) -> str:
    return f"{resource}:{operation}:{normalize_params(params)}"


def resource_prefix(resource: str) -> str:
    return f"{resource}:"


def _estimate_size(value: Any) -> int:
    try:
        return len(json.dumps(value, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        return 0


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: Optional[float]

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class MemoryCache:
    """In-memory TTL cache. A ttl of 0 or less stores the entry without expiry."""

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_keys: int = DEFAULT_MAX_KEYS,
        max_item_bytes: int = MAX_ITEM_BYTES,
        time_fn: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.max_keys = max(1, max_keys)
        self.max_item_bytes = max_item_bytes
        self.time_fn = time_fn
        self._lock = threading.Lock()
        self._data: Dict[str, CacheEntry] = {}
        self._sweep_backlog: List[str] = []
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def get(self, key: str) -> Optional[Any]:
        now = self.time_fn()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(now):
                del self._data[key]
                self._expirations += 1
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        if value is None:
            return
        size = _estimate_size(value)
        if size > self.max_item_bytes:
            logger.warning("[cache] skipping large item", extra={"cache_key": key, "size": size})
            return

        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        expires_at = self.time_fn() + ttl if ttl > 0 else None
        with self._lock:
            # Re-inserting moves the key to the back of the eviction order
            self._data.pop(key, None)
            while len(self._data) >= self.max_keys:
                oldest = next(iter(self._data))
                del self._data[oldest]
                self._evictions += 1
            self._data[key] = CacheEntry(key=key, value=value, expires_at=expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_by_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
        if doomed:
            logger.info("[cache] evict prefix", extra={"prefix": prefix, "count": len(doomed)})
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._sweep_backlog.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0

    def sweep_expired(self, batch: int = 500) -> int:
        """Drop expired entries, examining at most `batch` keys per call."""
        now = self.time_fn()
        removed = 0
        with self._lock:
            if not self._sweep_backlog:
                self._sweep_backlog = list(self._data.keys())
            chunk = self._sweep_backlog[:batch]
            del self._sweep_backlog[:batch]
            for key in chunk:
                entry = self._data.get(key)
                if entry is not None and entry.expired(now):
                    del self._data[key]
                    removed += 1
            self._expirations += removed
        return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "backend": "memory",
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "keys": len(self._data),
                "hit_rate": (self._hits / lookups) if lookups else 0.0,
            }


def _escape_glob(value: str) -> str:
    return "".join(f"\\{c}" if c in "*?[]\\" else c for c in value)


class RedisCache:
    """Redis-backed store. Values are JSON; redis TTLs replace the lazy sweep."""

    def __init__(
        self,
        client: Redis,
        *,
        namespace: str = "flashdeck:",
        default_ttl: float = DEFAULT_TTL_SECONDS,
        scan_count: int = 500,
    ):
        self.client = client
        self.namespace = namespace
        self.default_ttl = default_ttl
        self.scan_count = scan_count
        self._hits = 0
        self._misses = 0
        self._errors = 0

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisCache":
        return cls(Redis.from_url(url), **kwargs)

    def _k(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _failed(self, op: str, key: str, exc: Exception) -> None:
        self._errors += 1
        logger.warning(f"[cache] redis {op} failed: {exc}", extra={"cache_key": key})

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._k(key))
            if raw is None:
                self._misses += 1
                return None
            value = json.loads(raw)
        except (redis.RedisError, ValueError) as e:
            self._failed("get", key, e)
            self._misses += 1
            return None
        self._hits += 1
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        if value is None:
            return
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        try:
            payload = json.dumps(value, default=str)
            if len(payload) > MAX_ITEM_BYTES:
                logger.warning("[cache] skipping large item", extra={"cache_key": key})
                return
            if ttl > 0:
                self.client.setex(self._k(key), max(1, int(round(ttl))), payload)
            else:
                self.client.set(self._k(key), payload)
        except (redis.RedisError, TypeError, ValueError) as e:
            self._failed("set", key, e)

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._k(key))
        except redis.RedisError as e:
            self._failed("delete", key, e)

    def delete_by_prefix(self, prefix: str) -> int:
        removed = 0
        try:
            pattern = f"{_escape_glob(self._k(prefix))}*"
            batch: List[Any] = []
            for raw_key in self.client.scan_iter(match=pattern, count=self.scan_count):
                batch.append(raw_key)
                if len(batch) >= self.scan_count:
                    removed += self.client.delete(*batch)
                    batch = []
            if batch:
                removed += self.client.delete(*batch)
        except redis.RedisError as e:
            self._failed("delete_by_prefix", prefix, e)
        return removed

    def clear(self) -> None:
        self.delete_by_prefix("")
        self._hits = 0
        self._misses = 0

    def stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "backend": "redis",
            "hits": self._hits,
            "misses": self._misses,
            "errors": self._errors,
            "hit_rate": (self._hits / lookups) if lookups else 0.0,
        }


def read_through(
    cache: Optional[CacheStore],
    key: str,
    factory: Callable[[], T],
    ttl_seconds: Optional[float] = None,
) -> T:
    """Return the cached value for `key`, computing and storing it on a miss."""
    if cache is not None:
        try:
            hit = cache.get(key)
        except Exception as e:
            logger.warning(f"[cache] get failed, recomputing: {e}", extra={"cache_key": key})
            hit = None
        if hit is not None:
            return hit

    value = factory()

    if cache is not None:
        try:
            cache.set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning(f"[cache] set failed: {e}", extra={"cache_key": key})
    return value


def invalidate(cache: Optional[CacheStore], *resources: str) -> None:
    """Evict every cached list/get entry for the given resource types."""
    if cache is None:
        return
    for resource in resources:
        try:
            cache.delete_by_prefix(resource_prefix(resource))
        except Exception as e:
            logger.warning(f"[cache] invalidation failed: {e}", extra={"resource": resource})


class CacheSweeper:
    """Background thread that sweeps expired MemoryCache entries in small batches."""

    def __init__(self, cache: MemoryCache, *, interval_seconds: float = 60.0, batch: int = 500):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.batch = batch
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="cache-sweeper", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                removed = self.cache.sweep_expired(self.batch)
                if removed:
                    logger.debug(f"[cache] swept {removed} expired entries")
            except Exception:
                logger.exception("[cache] sweep failed")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None


def build_cache(cfg) -> CacheStore:
    """Construct the configured cache backend (memory unless CACHE_BACKEND=redis)."""
    backend = (getattr(cfg, "CACHE_BACKEND", "memory") or "memory").lower()
    ttl = getattr(cfg, "CACHE_DEFAULT_TTL_SECONDS", DEFAULT_TTL_SECONDS)
    if backend == "redis":
        logger.info("[cache] using redis backend")
        return RedisCache.from_url(cfg.REDIS_URL, default_ttl=ttl)
    return MemoryCache(default_ttl=ttl, max_keys=getattr(cfg, "CACHE_MAX_KEYS", DEFAULT_MAX_KEYS))
