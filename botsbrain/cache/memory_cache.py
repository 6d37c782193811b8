"""
In-Process Memory Cache (Tier 1)
Bounded-lifetime key/value cache living inside the bot process

Features:
- Per-key absolute expiry kept in a side-table
- Lazy expiry on read
- Periodic background sweep to bound memory from abandoned keys
- Introspection helpers for debugging commands

Version: 1.0.0
"""

import asyncio
import copy
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


DEFAULT_MEMORY_TTL = 24 * 60 * 60  # 24 hours
DEFAULT_CLEANUP_INTERVAL = 60  # seconds

_MISSING = object()


def _approx_size(value: Any) -> int:
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return len(repr(value))


class MemoryCache:
    """
    Tier-1 cache with a value map and an expiry side-table.

    Only ever touched from the event loop, so no locking is needed.
    Values are copied on the way in and out; callers never share the
    cached object.

    Example:
        cache = MemoryCache(ttl=3600)
        cache.set("user:state:42", {"field": "summary"})
        cache.get("user:state:42")

        cache.start_sweeper()   # inside a running loop
        ...
        await cache.stop_sweeper()
    """

    def __init__(
        self,
        ttl: int = DEFAULT_MEMORY_TTL,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._values: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}
        self._sweep_task: Optional[asyncio.Task] = None

        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "sweeps": 0,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get a live value, dropping it first if it has expired."""
        expiration = self._expires.get(key)
        if expiration is not None and self._clock() > expiration:
            self._evict(key)
            self._stats["expired"] += 1
            self._stats["misses"] += 1
            return default

        value = self._values.get(key, _MISSING)
        if value is _MISSING:
            self._stats["misses"] += 1
            return default

        self._stats["hits"] += 1
        return copy.deepcopy(value)

    def contains(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: Any JSON-serializable payload
            ttl: Caller TTL in seconds; tier 1 never keeps an entry longer
                than the smaller of this and its own TTL
        """
        lifetime = self.ttl if not ttl or ttl <= 0 else min(self.ttl, ttl)
        self._values[key] = copy.deepcopy(value)
        self._expires[key] = self._clock() + lifetime

    def delete(self, key: str) -> bool:
        existed = key in self._values
        self._evict(key)
        return existed

    def clear(self) -> None:
        self._values.clear()
        self._expires.clear()

    def _evict(self, key: str) -> None:
        self._values.pop(key, None)
        self._expires.pop(key, None)

    def cleanup_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired_keys = [k for k, exp in self._expires.items() if now > exp]
        for key in expired_keys:
            self._evict(key)

        self._stats["sweeps"] += 1
        self._stats["expired"] += len(expired_keys)
        return len(expired_keys)

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    @property
    def sweeper_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start_sweeper(self) -> None:
        """Start the periodic sweep. Must be called from a running loop."""
        if self.sweeper_running or self.cleanup_interval <= 0:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.debug(f"Memory cache sweeper started (interval={self.cleanup_interval}s)")

    async def stop_sweeper(self) -> None:
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
            logger.debug("Memory cache sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.cleanup_interval)
                removed = self.cleanup_expired()
                if removed:
                    logger.debug(f"Memory cache sweep removed {removed} expired keys")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Memory cache sweep failed: {e}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._values)

    def get_memory_contents(self) -> List[Dict[str, Any]]:
        """List every entry, including ones that expired but were not swept yet."""
        now = self._clock()
        contents = []
        for key, value in self._values.items():
            expiration = self._expires.get(key)
            contents.append({
                "key": key,
                "value": value,
                "expires_at": (
                    datetime.fromtimestamp(expiration, tz=timezone.utc).isoformat()
                    if expiration is not None else "never"
                ),
                "is_expired": expiration is not None and now > expiration,
                "size": _approx_size(value),
            })
        return contents

    def get_memory_stats(self) -> Dict[str, Any]:
        now = self._clock()
        total_size = 0
        expired_count = 0
        key_types: Dict[str, Dict[str, int]] = {}

        for key, value in self._values.items():
            expiration = self._expires.get(key)
            size = _approx_size(value)
            total_size += size
            if expiration is not None and now > expiration:
                expired_count += 1

            # Categorize by namespace prefix
            key_type = key.split(":")[0] or "unknown"
            bucket = key_types.setdefault(key_type, {"count": 0, "size": 0})
            bucket["count"] += 1
            bucket["size"] += size

        return {
            "total_keys": len(self._values),
            "active_keys": len(self._values) - expired_count,
            "expired_keys": expired_count,
            "total_size_bytes": total_size,
            "total_size_kb": round(total_size / 1024, 2),
            "key_types": key_types,
            "memory_ttl": self.ttl,
        }

    def get_stats(self) -> Dict[str, Any]:
        total = self._stats["hits"] + self._stats["misses"]
        return {
            "size": len(self._values),
            "ttl": self.ttl,
            "hit_rate": self._stats["hits"] / total if total > 0 else 0,
            "sweeper_running": self.sweeper_running,
            **self._stats,
        }
