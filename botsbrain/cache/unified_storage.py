"""
Unified Storage for botsbrain
Three-tier key/value engine: memory -> Redis -> database

Read Flow:
1. Check memory (Tier 1)
2. Miss -> check Redis (Tier 2), backfill memory
3. Miss -> check database (Tier 3), backfill Redis and memory
4. Miss everywhere -> None

Write Flow:
- Write-through to every configured tier, each with its own expiry
- Only a failing memory write makes set() report failure

Every tier error is caught and logged; callers only ever see sentinels.

Version: 1.0.0
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from loguru import logger

from botsbrain.cache.memory_cache import (
    DEFAULT_CLEANUP_INTERVAL,
    DEFAULT_MEMORY_TTL,
    MemoryCache,
)
from botsbrain.cache.redis_client import DEFAULT_REDIS_TTL, BotsRedisClient
from botsbrain.database.connection import DatabaseManager
from botsbrain.database.models import FAR_FUTURE
from botsbrain.database.repository import StorageCacheRepository


# TTL value meaning "never expires" in Redis and the database
NO_EXPIRY = 0


@dataclass
class StorageConfig:
    """Expiry settings of the tiered engine."""
    memory_ttl: int = DEFAULT_MEMORY_TTL
    redis_ttl: int = DEFAULT_REDIS_TTL
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageConfig":
        """Create config from dictionary"""
        return cls(
            memory_ttl=data.get('memory_ttl', DEFAULT_MEMORY_TTL),
            redis_ttl=data.get('redis_ttl', DEFAULT_REDIS_TTL),
            cleanup_interval=data.get('cleanup_interval', DEFAULT_CLEANUP_INTERVAL),
        )


@dataclass
class FanOutResult:
    """
    Outcome of a best-effort multi-key operation.

    Every key is attempted; partial success is a normal outcome and is
    reported per key rather than rolled back.
    """
    results: Dict[str, bool] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(self.results.values())

    @property
    def failed_keys(self) -> List[str]:
        return [key for key, success in self.results.items() if not success]

    def __bool__(self) -> bool:
        return self.ok


class UnifiedStorage:
    """
    Tiered key/value engine.

    Usage:
    ```python
    storage = UnifiedStorage(
        StorageConfig(),
        database=DatabaseManager(NeedsConnection(DatabaseConfig(url=postgres_url))),
        redis=BotsRedisClient(RedisConfig(url=redis_url)),
    )
    await storage.connect()

    await storage.set("user:state:42", {"field": "summary"})
    state = await storage.get("user:state:42")

    await storage.disconnect()
    ```
    """

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        database: Optional[DatabaseManager] = None,
        redis: Optional[BotsRedisClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or StorageConfig()
        self.database = database
        self.redis = redis
        self._clock = clock
        self.memory = MemoryCache(
            ttl=self.config.memory_ttl,
            cleanup_interval=self.config.cleanup_interval,
            clock=clock,
        )
        self._connected = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def redis_active(self) -> bool:
        return self.redis is not None and self.redis.is_available

    @property
    def database_active(self) -> bool:
        return self.database is not None and self.database.is_available

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    async def connect(self) -> None:
        """Connect the lower tiers and start the memory sweeper. Never raises."""
        if self._connected:
            return

        if self.redis is not None and not await self.redis.connect():
            logger.warning("Redis tier unavailable, running without distributed cache")
        if self.database is not None and not await self.database.connect():
            logger.warning("Database tier unavailable, running without durable storage")

        self.memory.start_sweeper()
        self._connected = True
        logger.info(
            f"UnifiedStorage connected (memory=on, redis={self.redis_active}, "
            f"database={self.database_active})"
        )

    async def disconnect(self) -> None:
        await self.memory.stop_sweeper()

        if self.redis is not None:
            await self.redis.close()
        if self.database is not None:
            try:
                await self.database.close()
            except Exception as e:
                logger.warning(f"Error closing database: {e}")

        self._connected = False
        logger.info("UnifiedStorage disconnected")

    # ------------------------------------------------------------------
    # Time helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _durable_ttl(self, ttl: Optional[int]) -> int:
        if ttl is None or ttl < 0:
            return self.config.redis_ttl
        return ttl

    def _seconds_left(self, expires_at: datetime, now: datetime) -> int:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at.year >= FAR_FUTURE.year:
            return NO_EXPIRY
        return max(1, math.ceil((expires_at - now).total_seconds()))

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """
        Read through the tiers, backfilling the faster ones on a lower-tier hit.

        Returns:
            The value, or None when absent, expired, or every tier failed
        """
        try:
            value = self.memory.get(key)
            if value is not None:
                return value
        except Exception as e:
            logger.warning(f"Memory GET error for key {key}: {e}")

        if self.redis_active:
            value = await self.redis.get(key)
            if value is not None:
                remaining = await self.redis.ttl(key)
                self._backfill_memory(key, value, remaining if remaining > 0 else None)
                return value

        if self.database_active:
            now = self._now()
            try:
                async with self.database.session_scope() as session:
                    entry = await StorageCacheRepository(session).get_entry(key, now)
                    found = entry is not None
                    if found:
                        value = entry.value
                        remaining = self._seconds_left(entry.expires_at, now)
            except Exception as e:
                logger.warning(f"Database GET error for key {key}: {e}")
                found = False

            if found:
                if self.redis_active:
                    await self.redis.set(key, value, remaining)
                self._backfill_memory(key, value, remaining or None)
                return value

        logger.debug(f"Storage miss for key {key}")
        return None

    def _backfill_memory(self, key: str, value: Any, ttl: Optional[int]) -> None:
        try:
            self.memory.set(key, value, ttl)
        except Exception as e:
            logger.warning(f"Memory backfill error for key {key}: {e}")

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Write through to every tier.

        Args:
            key: Storage key
            value: JSON-serializable value
            ttl: Seconds to live. None uses the tier defaults and
                NO_EXPIRY stores the value without expiry below memory.

        Returns:
            False only when the memory write itself failed
        """
        try:
            self.memory.set(key, value, ttl)
        except Exception as e:
            logger.error(f"Memory SET error for key {key}: {e}")
            return False

        durable_ttl = self._durable_ttl(ttl)

        if self.redis_active:
            await self.redis.set(key, value, durable_ttl)

        if self.database_active:
            now = self._now()
            expires_at = (
                FAR_FUTURE if durable_ttl == NO_EXPIRY
                else now + timedelta(seconds=durable_ttl)
            )
            try:
                async with self.database.session_scope() as session:
                    await StorageCacheRepository(session).upsert(key, value, expires_at, now)
            except Exception as e:
                logger.warning(f"Database SET error for key {key}: {e}")

        logger.debug(f"Stored key {key} (ttl={ttl if ttl is not None else 'default'})")
        return True

    async def delete(self, key: str) -> bool:
        """Remove a key from every tier. A missing key is not an error."""
        try:
            self.memory.delete(key)
        except Exception as e:
            logger.warning(f"Memory DELETE error for key {key}: {e}")

        if self.redis_active:
            await self.redis.delete(key)

        if self.database_active:
            try:
                async with self.database.session_scope() as session:
                    await StorageCacheRepository(session).delete(key)
            except Exception as e:
                logger.warning(f"Database DELETE error for key {key}: {e}")

        return True

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    # ------------------------------------------------------------------
    # Best-effort fan-out
    # ------------------------------------------------------------------

    async def set_many(
        self,
        items: Mapping[str, Any],
        ttl: Optional[int] = None,
    ) -> FanOutResult:
        """Write several keys concurrently. No ordering between keys is implied."""
        keys = list(items.keys())
        outcomes = await asyncio.gather(
            *(self.set(key, items[key], ttl) for key in keys),
            return_exceptions=True,
        )
        return self._collect("set", keys, outcomes)

    async def delete_many(self, keys: Iterable[str]) -> FanOutResult:
        """Delete several keys concurrently."""
        keys = list(dict.fromkeys(keys))
        outcomes = await asyncio.gather(
            *(self.delete(key) for key in keys),
            return_exceptions=True,
        )
        return self._collect("delete", keys, outcomes)

    @staticmethod
    def _collect(operation: str, keys: List[str], outcomes: List[Any]) -> FanOutResult:
        result = FanOutResult()
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Fan-out {operation} failed for key {key}: {outcome}")
                result.results[key] = False
            else:
                result.results[key] = bool(outcome)
        if not result.ok:
            logger.warning(f"Fan-out {operation} partially failed: {result.failed_keys}")
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup_expired_memory(self) -> int:
        return self.memory.cleanup_expired()

    async def purge_expired(self) -> int:
        """Sweep memory and physically delete expired database rows."""
        removed = self.memory.cleanup_expired()

        if self.database_active:
            try:
                async with self.database.session_scope() as session:
                    removed += await StorageCacheRepository(session).purge_expired(self._now())
            except Exception as e:
                logger.warning(f"Database purge error: {e}")

        return removed

    async def count_durable(self) -> Optional[int]:
        """Number of live database rows, or None without a database tier."""
        if not self.database_active:
            return None
        try:
            async with self.database.session_scope() as session:
                return await StorageCacheRepository(session).count(
                    include_expired=False, now=self._now()
                )
        except Exception as e:
            logger.warning(f"Database count error: {e}")
            return None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "memory_cache_size": len(self.memory),
            "memory_ttl": self.config.memory_ttl,
            "redis_ttl": self.config.redis_ttl,
            "layers": {
                "memory": True,
                "redis": self.redis_active,
                "database": self.database_active,
            },
            "memory": self.memory.get_stats(),
            "redis": self.redis.get_stats() if self.redis is not None else None,
        }

    def get_memory_contents(self) -> List[Dict[str, Any]]:
        return self.memory.get_memory_contents()

    def get_memory_stats(self) -> Dict[str, Any]:
        return self.memory.get_memory_stats()
