"""
Redis Client Wrapper for botsbrain (Tier 2)
Provides an async Redis client for the distributed cache tier

Features:
- Connection from a redis:// URL
- JSON payloads (readable by every process sharing the tier)
- Native key expiry (SETEX)
- Health check support
- Graceful degradation: errors are logged and reported as misses

Version: 1.0.0
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from loguru import logger


DEFAULT_REDIS_TTL = 3 * 24 * 60 * 60  # 3 days


@dataclass
class RedisConfig:
    """
    Redis configuration

    Can be loaded from config.yaml or passed directly.
    An empty url means the tier is not configured.
    """
    url: str = ""
    enabled: bool = True

    # Connection settings
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    retry_on_timeout: bool = True
    max_connections: int = 50

    # Key settings (empty prefix keeps keys identical to other bot processes)
    key_prefix: str = ""
    default_ttl: int = DEFAULT_REDIS_TTL

    # Health check settings
    health_check_interval: int = 30  # seconds, 0 disables

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.url)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RedisConfig":
        """Create config from dictionary"""
        return cls(
            url=data.get('url', '') or '',
            enabled=data.get('enabled', True),
            socket_timeout=data.get('socket_timeout', 5.0),
            socket_connect_timeout=data.get('socket_connect_timeout', 5.0),
            retry_on_timeout=data.get('retry_on_timeout', True),
            max_connections=data.get('max_connections', 50),
            key_prefix=data.get('key_prefix', ''),
            default_ttl=data.get('default_ttl', DEFAULT_REDIS_TTL),
            health_check_interval=data.get('health_check_interval', 30),
        )


class BotsRedisClient:
    """
    Async Redis client for the distributed cache tier.

    Usage:
    ```python
    client = BotsRedisClient(RedisConfig(url="redis://localhost:6379/0"))
    await client.connect()

    await client.set("ticket:friendly:TKT-001", {"chatId": -100}, ttl=3600)
    data = await client.get("ticket:friendly:TKT-001")

    await client.close()
    ```

    A pre-built ``redis.asyncio`` compatible client may be injected through
    ``client=``; it is then used as-is and not created from the URL.
    """

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        client: Optional[Any] = None,
    ):
        self.config = config or RedisConfig()
        self._client = client
        self._owns_client = client is None
        self._connected = False
        self._health_task: Optional[asyncio.Task] = None

        # Stats
        self._stats = {
            "connections": 0,
            "disconnections": 0,
            "operations": 0,
            "errors": 0,
        }

    @property
    def is_available(self) -> bool:
        """Check if Redis is connected and usable"""
        return self._connected and self._client is not None

    @property
    def client(self) -> Optional[Any]:
        """Get the underlying Redis client"""
        return self._client

    async def connect(self) -> bool:
        """
        Connect to Redis

        Returns:
            True if connected successfully. Never raises.
        """
        if self._client is None:
            if not self.config.is_configured:
                logger.info("Redis URL not provided, distributed cache tier disabled")
                return False

            try:
                self._client = aioredis.from_url(
                    self.config.url,
                    socket_timeout=self.config.socket_timeout,
                    socket_connect_timeout=self.config.socket_connect_timeout,
                    retry_on_timeout=self.config.retry_on_timeout,
                    max_connections=self.config.max_connections,
                    decode_responses=True,
                )
            except Exception as e:
                logger.warning(f"Invalid Redis configuration: {e}")
                self._stats["errors"] += 1
                return False

        try:
            await self._client.ping()
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}")
            self._connected = False
            self._stats["errors"] += 1
            return False

        self._connected = True
        self._stats["connections"] += 1

        if self.config.health_check_interval > 0 and self._health_task is None:
            self._health_task = asyncio.create_task(self._health_check_loop())

        logger.info("Redis connected for bots-brain")
        return True

    async def close(self):
        """Close Redis connection"""
        if self._health_task:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._client = None

        if self._connected:
            self._stats["disconnections"] += 1
        self._connected = False
        logger.info("Redis connection closed")

    async def _health_check_loop(self):
        """Background health check loop"""
        while True:
            try:
                await asyncio.sleep(self.config.health_check_interval)
                healthy = await self.ping()
                if healthy and not self._connected:
                    logger.info("Redis connection recovered")
                elif not healthy and self._connected:
                    logger.warning("Redis health check failed, marking tier unavailable")
                self._connected = healthy
            except asyncio.CancelledError:
                break

    def _make_key(self, key: str) -> str:
        """Create full key with prefix"""
        if not self.config.key_prefix:
            return key
        return f"{self.config.key_prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from Redis

        Returns:
            Deserialized value or None (miss or error)
        """
        if not self.is_available:
            return None

        try:
            data = await self._client.get(self._make_key(key))
            self._stats["operations"] += 1
            if data is None:
                return None
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            return json.loads(data)

        except Exception as e:
            logger.warning(f"Redis GET error for key {key}: {e}")
            self._stats["errors"] += 1
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """
        Set value in Redis

        Args:
            key: Cache key (without prefix)
            value: JSON-serializable value
            ttl: Seconds to live; None uses the default, 0 stores without expiry

        Returns:
            True if successful
        """
        if not self.is_available:
            return False

        try:
            full_key = self._make_key(key)
            payload = json.dumps(value, default=str)

            if ttl == 0:
                await self._client.set(full_key, payload)
            else:
                await self._client.setex(full_key, ttl or self.config.default_ttl, payload)

            self._stats["operations"] += 1
            return True

        except Exception as e:
            logger.warning(f"Redis SET error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    async def delete(self, key: str) -> bool:
        """
        Delete key from Redis

        Returns:
            True if the call went through (whether or not the key existed)
        """
        if not self.is_available:
            return False

        try:
            await self._client.delete(self._make_key(key))
            self._stats["operations"] += 1
            return True

        except Exception as e:
            logger.warning(f"Redis DELETE error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    async def exists(self, key: str) -> bool:
        """Check if key exists"""
        if not self.is_available:
            return False

        try:
            return await self._client.exists(self._make_key(key)) > 0
        except Exception as e:
            logger.warning(f"Redis EXISTS error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    async def ttl(self, key: str) -> int:
        """Get TTL of key in seconds"""
        if not self.is_available:
            return -1

        try:
            return await self._client.ttl(self._make_key(key))
        except Exception as e:
            logger.warning(f"Redis TTL error for key {key}: {e}")
            return -1

    async def ping(self) -> bool:
        """Ping Redis server"""
        if self._client is None:
            return False

        try:
            await self._client.ping()
            return True
        except Exception:
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics"""
        return {
            "configured": self.config.is_configured or not self._owns_client,
            "connected": self._connected,
            **self._stats,
        }
