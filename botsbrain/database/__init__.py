"""
botsbrain Database Module
Durable storage tier built on SQLAlchemy (async)
"""

from botsbrain.database.connection import (
    AlreadyConnected,
    DatabaseConfig,
    DatabaseInput,
    DatabaseManager,
    NeedsConnection,
)
from botsbrain.database.models import FAR_FUTURE, Base, StorageCacheEntry
from botsbrain.database.repository import BaseRepository, StorageCacheRepository

__all__ = [
    "AlreadyConnected",
    "NeedsConnection",
    "DatabaseInput",
    "DatabaseConfig",
    "DatabaseManager",
    "Base",
    "StorageCacheEntry",
    "FAR_FUTURE",
    "BaseRepository",
    "StorageCacheRepository",
]
