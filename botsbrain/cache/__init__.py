"""
botsbrain Cache System
Provides the tiered key/value engine behind the domain store

This module provides:
- MemoryCache: In-process cache with lazy expiry and a background sweep
- BotsRedisClient: Redis client for the shared distributed tier
- UnifiedStorage: Read-through / write-through engine over all tiers

Architecture:
- Tier 1 (Memory): Per-process hot cache, 24h default lifetime
- Tier 2 (Redis): Shared warm cache, 3 day default lifetime
- Tier 3 (Database): Durable table with an absolute expiry per row
"""

from botsbrain.cache.memory_cache import MemoryCache
from botsbrain.cache.redis_client import BotsRedisClient, RedisConfig
from botsbrain.cache.unified_storage import (
    NO_EXPIRY,
    FanOutResult,
    StorageConfig,
    UnifiedStorage,
)

__all__ = [
    # Tier 1
    "MemoryCache",
    # Tier 2
    "BotsRedisClient",
    "RedisConfig",
    # Engine
    "UnifiedStorage",
    "StorageConfig",
    "FanOutResult",
    "NO_EXPIRY",
]
