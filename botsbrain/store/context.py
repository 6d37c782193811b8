"""
Storage Context for botsbrain
Owns construction and teardown of the process-wide BotsStore

The context is created once at process start and handed to whatever needs
storage, instead of living in module globals.

Usage:
```python
context = StorageContext()
store = await context.initialize(
    NeedsConnection(DatabaseConfig(url=os.environ["POSTGRES_URL"])),
    redis_url=os.environ.get("PLATFORM_REDIS_URL"),
)
...
await context.shutdown()
```
"""

import asyncio
import dataclasses
import time
from typing import Any, Callable, Optional

from loguru import logger

from botsbrain.cache.redis_client import BotsRedisClient, RedisConfig
from botsbrain.cache.unified_storage import StorageConfig, UnifiedStorage
from botsbrain.database.connection import (
    DatabaseConfig,
    DatabaseInput,
    DatabaseManager,
    NeedsConnection,
)
from botsbrain.store.bots_store import BotsStore
from botsbrain.store.errors import StoreNotInitializedError


class StorageContext:
    """
    Initialize-once holder of the BotsStore.

    Args:
        clock: Time source shared by every tier, injectable for tests
        serialize_customer_creation: Passed through to BotsStore
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        serialize_customer_creation: bool = False,
    ):
        self._clock = clock
        self._serialize_customer_creation = serialize_customer_creation
        self._store: Optional[BotsStore] = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._store is not None

    async def initialize(
        self,
        database: DatabaseInput,
        redis_url: Optional[str] = None,
        config: Optional[StorageConfig] = None,
        redis_config: Optional[RedisConfig] = None,
        redis_client: Optional[Any] = None,
    ) -> BotsStore:
        """
        Build, connect and keep the store. Later calls return the same store.

        Args:
            database: AlreadyConnected(engine) or NeedsConnection(config)
            redis_url: Address of the shared Redis; None runs without tier 2
            config: Engine expiry settings
            redis_config: Full Redis settings; ``redis_url`` overrides its url
            redis_client: Pre-built redis.asyncio compatible client
        """
        async with self._lock:
            if self._store is not None:
                return self._store

            redis_config = redis_config or RedisConfig()
            if redis_url:
                redis_config = dataclasses.replace(redis_config, url=redis_url)

            redis = None
            if redis_client is not None or redis_config.is_configured:
                redis = BotsRedisClient(redis_config, client=redis_client)

            storage = UnifiedStorage(
                config or StorageConfig(),
                database=DatabaseManager(database),
                redis=redis,
                clock=self._clock,
            )
            await storage.connect()

            self._store = BotsStore(
                storage,
                serialize_customer_creation=self._serialize_customer_creation,
            )
            logger.info("BotsStore initialized")
            return self._store

    async def initialize_from_config(self, app_config: Any) -> BotsStore:
        """Initialize from a loaded botsbrain Config."""
        self._serialize_customer_creation = app_config.store.serialize_customer_creation
        return await self.initialize(
            NeedsConnection(DatabaseConfig.from_dict(app_config.database.model_dump())),
            config=StorageConfig.from_dict(app_config.storage.model_dump()),
            redis_config=RedisConfig.from_dict(app_config.redis.model_dump()),
        )

    def get_instance(self) -> BotsStore:
        """Get the store; raises StoreNotInitializedError before initialize()."""
        if self._store is None:
            raise StoreNotInitializedError()
        return self._store

    @property
    def store(self) -> BotsStore:
        return self.get_instance()

    async def shutdown(self) -> None:
        """Disconnect the engine and forget the store so initialize() starts clean."""
        async with self._lock:
            if self._store is None:
                return
            store, self._store = self._store, None
            await store.storage.disconnect()
            logger.info("BotsStore shut down")

    async def __aenter__(self) -> "StorageContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
