"""
Cache Backends for Raw Audio and Metadata.

The cache is an optional accelerator. Every backend method swallows its
own failures (logged, counted) and degrades to "no caching", so a cache
outage can never fail a synthesis item.

Keys:
    tts:<id>     raw audio bytes of a synthesized item (1 hour TTL)
    audio:<id>   AudioMetadataRecord as JSON (7 days TTL)

Backends:
    RedisCache   redis.asyncio client; values JSON-encoded, bytes stored raw
    MemoryCache  in-process LRU with TTL (single process, tests, dev)
    NullCache    no-op; warns once that caching is disabled

Interface (async):
    get(key) -> Optional[Any]          set(key, value, ttl_s) -> bool
    get_bytes(key) -> Optional[bytes]  set_bytes(key, data, ttl_s) -> bool
    remove(key) -> bool                exists(key) -> bool
    is_connected() -> bool
"""
from __future__ import annotations

import json
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from news_tts.core.config import CacheConfig, Defaults
from news_tts.core.logging import debug, get_logger, info, verbose, warn

_LOG = get_logger("news-tts.cache")

AUDIO_KEY = "tts:{}"
METADATA_KEY = "audio:{}"


def audio_key(item_id: str) -> str:
    return AUDIO_KEY.format(item_id)


def metadata_key(item_id: str) -> str:
    return METADATA_KEY.format(item_id)


@dataclass
class AudioMetadataRecord:
    """Where an item's audio ended up."""
    id: str
    text: str
    local_path: str
    remote_path: Optional[str]
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CacheBackend:
    """Base backend. Subclasses must not raise from any public method."""

    name = "base"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.get_bytes(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            warn(_LOG, "cache_decode_error", backend=self.name, key=key, error=str(exc))
            return None

    async def set(self, key: str, value: Any, ttl_s: int) -> bool:
        return await self.set_bytes(key, json.dumps(value, ensure_ascii=False).encode("utf-8"), ttl_s)

    async def get_bytes(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    async def set_bytes(self, key: str, data: bytes, ttl_s: int) -> bool:
        raise NotImplementedError

    async def remove(self, key: str) -> bool:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    def is_connected(self) -> bool:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class NullCache(CacheBackend):
    """No-op backend used when caching is disabled or unreachable at startup."""

    name = "null"

    def __init__(self) -> None:
        self._warned = False

    def _warn_once(self) -> None:
        if not self._warned:
            self._warned = True
            warn(_LOG, "cache_disabled", detail="cache backend not configured, caching skipped")

    async def get_bytes(self, key: str) -> Optional[bytes]:
        self._warn_once()
        return None

    async def set_bytes(self, key: str, data: bytes, ttl_s: int) -> bool:
        self._warn_once()
        return False

    async def remove(self, key: str) -> bool:
        return False

    async def exists(self, key: str) -> bool:
        return False

    def is_connected(self) -> bool:
        return False


class MemoryCache(CacheBackend):
    """
    In-process LRU cache with per-entry TTL.

    When capacity is exceeded the least recently used entry is evicted;
    expired entries are dropped on access.
    """

    name = "memory"

    def __init__(self, max_items: int = Defaults.CACHE_MEMORY_MAX_ITEMS, clock=time.monotonic):
        self.max_items = int(max_items)
        self._clock = clock
        self._d: "OrderedDict[str, Tuple[bytes, float]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._expirations = 0

    async def get_bytes(self, key: str) -> Optional[bytes]:
        entry = self._d.get(key)
        if entry is None:
            self._misses += 1
            return None
        data, expires_at = entry
        if self._clock() >= expires_at:
            del self._d[key]
            self._expirations += 1
            self._misses += 1
            verbose(_LOG, "expired", key=key)
            return None
        self._d.move_to_end(key)
        self._hits += 1
        return data

    async def set_bytes(self, key: str, data: bytes, ttl_s: int) -> bool:
        self._d[key] = (bytes(data), self._clock() + ttl_s)
        self._d.move_to_end(key)
        while len(self._d) > self.max_items:
            self._d.popitem(last=False)
        return True

    async def remove(self, key: str) -> bool:
        return self._d.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return await self.get_bytes(key) is not None

    def is_connected(self) -> bool:
        return True

    def stats(self) -> Dict[str, int]:
        return {
            "hits": self._hits,
            "misses": self._misses,
            "size": len(self._d),
            "max_items": self.max_items,
            "expirations": self._expirations,
        }

    def __len__(self) -> int:
        return len(self._d)


class RedisCache(CacheBackend):
    """
    redis.asyncio backend.

    ``is_connected()`` reflects the last observed outcome: it flips to
    False on a RedisError and back to True on the next successful call.
    """

    name = "redis"

    def __init__(self, url: str = Defaults.CACHE_REDIS_URL, client: Optional[Redis] = None):
        self.url = url
        self._client = client or Redis.from_url(url, socket_timeout=5, socket_connect_timeout=5)
        self._connected = True

    async def ping(self) -> bool:
        try:
            await self._client.ping()
        except (RedisError, OSError) as exc:
            self._mark_down("ping", exc)
            return False
        self._connected = True
        return True

    async def get_bytes(self, key: str) -> Optional[bytes]:
        try:
            data = await self._client.get(key)
        except (RedisError, OSError) as exc:
            self._mark_down("get", exc, key)
            return None
        self._connected = True
        if data is None:
            debug(_LOG, "cache_miss", key=key)
        return data

    async def set_bytes(self, key: str, data: bytes, ttl_s: int) -> bool:
        try:
            await self._client.set(key, data, ex=int(ttl_s))
        except (RedisError, OSError) as exc:
            self._mark_down("set", exc, key)
            return False
        self._connected = True
        return True

    async def remove(self, key: str) -> bool:
        try:
            removed = await self._client.delete(key)
        except (RedisError, OSError) as exc:
            self._mark_down("remove", exc, key)
            return False
        return bool(removed)

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except (RedisError, OSError) as exc:
            self._mark_down("exists", exc, key)
            return False

    def is_connected(self) -> bool:
        return self._connected

    async def aclose(self) -> None:
        await self._client.aclose()

    def _mark_down(self, op: str, exc: BaseException, key: str = "") -> None:
        if self._connected:
            warn(_LOG, "cache_unavailable", backend=self.name, op=op, key=key, error=str(exc))
        self._connected = False


def build_cache(config: Optional[CacheConfig] = None) -> CacheBackend:
    """Create the configured backend; disabled caching yields NullCache."""
    config = config or CacheConfig()
    if not config.enabled or config.backend == "none":
        return NullCache()
    if config.backend == "memory":
        return MemoryCache(max_items=config.memory_max_items)
    info(_LOG, "cache_init", backend="redis", url=config.redis_url.split("@")[-1])
    return RedisCache(config.redis_url)
