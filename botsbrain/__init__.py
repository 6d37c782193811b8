"""
botsbrain - Tiered Storage for Support Bots

A key/value engine that reads through and writes through three tiers
(process memory, a shared Redis, a durable SQL table), and the domain
store a Telegram support bot keeps on top of it.

Quick start:
```python
from botsbrain import StorageContext, NeedsConnection, DatabaseConfig

context = StorageContext()
store = await context.initialize(
    NeedsConnection(DatabaseConfig(url="postgresql://bot@localhost/bot")),
    redis_url="redis://localhost:6379/0",
)
await store.store_ticket({...})
await context.shutdown()
```
"""

__version__ = "1.0.0"

from botsbrain.cache import NO_EXPIRY, FanOutResult, StorageConfig, UnifiedStorage
from botsbrain.database import AlreadyConnected, DatabaseConfig, NeedsConnection
from botsbrain.store import BotsStore, StorageContext, StoreNotInitializedError

__all__ = [
    "__version__",
    "UnifiedStorage",
    "StorageConfig",
    "FanOutResult",
    "NO_EXPIRY",
    "AlreadyConnected",
    "NeedsConnection",
    "DatabaseConfig",
    "BotsStore",
    "StorageContext",
    "StoreNotInitializedError",
]
