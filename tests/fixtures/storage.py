"""
Connected storage engines for store tests.
"""

from typing import Optional

from botsbrain.cache.redis_client import BotsRedisClient, RedisConfig
from botsbrain.cache.unified_storage import StorageConfig, UnifiedStorage
from botsbrain.database.connection import DatabaseManager

from .fake_redis import FakeRedis
from .manual_clock import ManualClock


async def connected_storage(
    clock: ManualClock,
    redis: Optional[FakeRedis] = None,
    database: Optional[DatabaseManager] = None,
    memory_ttl: int = 86400,
) -> UnifiedStorage:
    """UnifiedStorage on the manual clock, without the background sweeper."""
    storage = UnifiedStorage(
        StorageConfig(memory_ttl=memory_ttl, cleanup_interval=0),
        database=database,
        redis=(
            BotsRedisClient(RedisConfig(health_check_interval=0), client=redis)
            if redis is not None else None
        ),
        clock=clock,
    )
    await storage.connect()
    return storage
