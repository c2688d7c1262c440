"""
Cache Service

Two-tier key/value cache: an in-process memory tier in front of an optional
Redis tier. Redis failures are logged and never reach the caller; without a
REDIS_URL the service runs memory-only.
"""
import asyncio
import fnmatch
import json
import time
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
import structlog

from playgram.routes.metrics import track_cache_hit, track_cache_miss

logger = structlog.get_logger()

GLOB_CHARS = ("*", "?", "[")


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Memory-tier entry. Replaced wholesale on write, never mutated."""
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


def social_cache_key(platform: str, data_type: str, identifier: str) -> str:
    """Build a social-data cache key (social:<platform>:<dataType>:<identifier>)."""
    return f"social:{platform}:{data_type}:{identifier}"


class CacheService:
    """
    Layered cache owned by the application lifespan.

    Call start() to launch the memory sweep and shutdown() to stop it and
    close the Redis connection.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        default_ttl: int = 3600,
        memory_ttl_cap: int = 300,
        sweep_interval: float = 60,
    ):
        self.redis = redis_client
        self.default_ttl = default_ttl
        self.memory_ttl_cap = memory_ttl_cap
        self.sweep_interval = sweep_interval
        self._memory: dict[str, CacheEntry] = {}
        self._sweep_task: asyncio.Task | None = None

    @property
    def redis_enabled(self) -> bool:
        return self.redis is not None

    async def get(self, key: str) -> Any | None:
        """Get a value, checking memory first and promoting Redis hits."""
        now = time.monotonic()
        entry = self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                track_cache_hit("memory")
                return entry.value
            self._memory.pop(key, None)

        if self.redis is None:
            track_cache_miss()
            return None

        try:
            raw = await self.redis.get(key)
            if raw is None:
                track_cache_miss()
                return None
            value = json.loads(raw)
            remaining = await self.redis.ttl(key)
        except Exception as e:
            logger.warning("cache_redis_error", operation="get", key=key, error=str(e))
            return None

        # Promote with the shorter of the remaining Redis TTL and the cap
        promote_ttl = self.memory_ttl_cap
        if remaining is not None and remaining >= 0:
            promote_ttl = min(remaining, self.memory_ttl_cap)
        self._memory[key] = CacheEntry(value, time.monotonic() + promote_ttl)
        track_cache_hit("redis")
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Write to both tiers. The memory tier keeps at most memory_ttl_cap seconds."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        payload = json.dumps(value, default=str)

        memory_ttl = max(min(ttl, self.memory_ttl_cap), 0)
        self._memory[key] = CacheEntry(json.loads(payload), time.monotonic() + memory_ttl)

        if self.redis is None:
            return

        try:
            if ttl <= 0:
                # Redis rejects non-positive expiries
                await self.redis.delete(key)
            else:
                await self.redis.setex(key, ttl, payload)
        except Exception as e:
            logger.warning("cache_redis_error", operation="set", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        self._memory.pop(key, None)

        if self.redis is None:
            return

        try:
            await self.redis.delete(key)
        except Exception as e:
            logger.warning("cache_redis_error", operation="delete", key=key, error=str(e))

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        A pattern without glob characters matches as a substring. Returns the
        number of distinct keys removed across both tiers.
        """
        glob = pattern if any(c in pattern for c in GLOB_CHARS) else f"*{pattern}*"

        removed = {key for key in list(self._memory) if fnmatch.fnmatchcase(key, glob)}
        for key in removed:
            self._memory.pop(key, None)

        if self.redis is not None:
            try:
                keys = [key async for key in self.redis.scan_iter(match=glob, count=500)]
                if keys:
                    await self.redis.delete(*keys)
                removed.update(keys)
            except Exception as e:
                logger.warning("cache_redis_error", operation="delete_pattern", pattern=glob, error=str(e))

        logger.info("cache_pattern_deleted", pattern=glob, deleted=len(removed))
        return len(removed)

    async def exists(self, key: str) -> bool:
        entry = self._memory.get(key)
        if entry is not None and not entry.is_expired(time.monotonic()):
            return True

        if self.redis is None:
            return False

        try:
            return bool(await self.redis.exists(key))
        except Exception as e:
            logger.warning("cache_redis_error", operation="exists", key=key, error=str(e))
            return False

    def clear_memory(self) -> None:
        self._memory.clear()

    def sweep_expired(self) -> int:
        """Evict expired memory entries. Returns the number evicted."""
        now = time.monotonic()
        expired = [key for key, entry in list(self._memory.items()) if entry.is_expired(now)]
        for key in expired:
            self._memory.pop(key, None)
        return len(expired)

    async def get_stats(self) -> dict:
        connected = False
        if self.redis is not None:
            try:
                connected = bool(await self.redis.ping())
            except Exception as e:
                logger.warning("cache_redis_error", operation="ping", error=str(e))

        return {
            "memory_keys": len(self._memory),
            "redis_enabled": self.redis_enabled,
            "redis_connected": connected,
        }

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            evicted = self.sweep_expired()
            if evicted:
                logger.debug("cache_sweep", evicted=evicted, remaining=len(self._memory))

    def start(self) -> None:
        """Launch the periodic memory sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="cache-sweep")

    async def shutdown(self) -> None:
        """Cancel the sweep and close the Redis connection."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        if self.redis is not None:
            try:
                await self.redis.aclose()
            except Exception as e:
                logger.warning("cache_redis_error", operation="close", error=str(e))


def create_cache_service(settings) -> CacheService:
    """Build the cache from settings. Memory-only when REDIS_URL is unset."""
    client = None
    if settings.REDIS_URL:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("cache_redis_enabled")
    else:
        logger.info("cache_memory_only", reason="REDIS_URL not set")

    return CacheService(
        redis_client=client,
        default_ttl=settings.CACHE_DEFAULT_TTL_SECONDS,
        memory_ttl_cap=settings.CACHE_MEMORY_TTL_CAP_SECONDS,
        sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS,
    )
