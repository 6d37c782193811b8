"""
Redis Client Unit Tests
Tests the distributed cache tier against an in-memory fake
"""

import json
import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
from fixtures.fake_redis import FakeRedis
from fixtures.manual_clock import ManualClock

from botsbrain.cache.redis_client import (
    DEFAULT_REDIS_TTL,
    BotsRedisClient,
    RedisConfig,
)


class TestRedisConfig:
    """Tests for RedisConfig"""

    def test_default_config(self):
        config = RedisConfig()

        assert config.url == ""
        assert config.default_ttl == DEFAULT_REDIS_TTL == 259200
        assert config.key_prefix == ""
        assert config.is_configured is False

    def test_from_dict(self):
        config = RedisConfig.from_dict({
            "url": "redis://cache:6379/2",
            "max_connections": 10,
            "key_prefix": "bots",
            "health_check_interval": 0,
        })

        assert config.url == "redis://cache:6379/2"
        assert config.max_connections == 10
        assert config.key_prefix == "bots"
        assert config.health_check_interval == 0
        assert config.is_configured is True

    def test_disabled_is_not_configured(self):
        assert RedisConfig(url="redis://x", enabled=False).is_configured is False


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fake(clock):
    return FakeRedis(clock=clock)


@pytest.fixture
def config():
    return RedisConfig(health_check_interval=0)


class TestBotsRedisClientConnection:
    """Connection handling"""

    @pytest.mark.asyncio
    async def test_connect_without_url(self):
        client = BotsRedisClient(RedisConfig())

        assert await client.connect() is False
        assert client.is_available is False

    @pytest.mark.asyncio
    async def test_connect_with_injected_client(self, fake, config):
        client = BotsRedisClient(config, client=fake)

        assert await client.connect() is True
        assert client.is_available is True
        assert client.get_stats()["connections"] == 1

    @pytest.mark.asyncio
    async def test_connect_fails_when_ping_fails(self, fake, config):
        fake.fail = True
        client = BotsRedisClient(config, client=fake)

        assert await client.connect() is False
        assert client.is_available is False
        assert client.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_connect_from_url(self, fake):
        config = RedisConfig(url="redis://localhost:6379/0", health_check_interval=0)
        with patch("botsbrain.cache.redis_client.aioredis.from_url", return_value=fake) as from_url:
            client = BotsRedisClient(config)
            assert await client.connect() is True

        from_url.assert_called_once()
        assert from_url.call_args.kwargs["decode_responses"] is True

        await client.close()
        # Client built from the URL is owned and closed
        assert fake.closed is True

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self, fake, config):
        client = BotsRedisClient(config, client=fake)
        await client.connect()
        await client.close()

        assert fake.closed is False
        assert client.is_available is False


class TestBotsRedisClientOperations:
    """Get/set/delete semantics"""

    @pytest.mark.asyncio
    async def test_values_stored_as_plain_json(self, fake, config):
        client = BotsRedisClient(config, client=fake)
        await client.connect()

        await client.set("ticket:friendly:TKT-1", {"chatId": -100}, ttl=60)

        assert json.loads(fake.data["ticket:friendly:TKT-1"]) == {"chatId": -100}
        assert await client.get("ticket:friendly:TKT-1") == {"chatId": -100}

    @pytest.mark.asyncio
    async def test_ttl_applied(self, fake, config, clock):
        client = BotsRedisClient(config, client=fake)
        await client.connect()

        await client.set("k", "v", ttl=60)
        assert await client.ttl("k") == 60

        clock.advance(61)
        assert await client.get("k") is None

    @pytest.mark.asyncio
    async def test_default_ttl_when_none(self, fake, config):
        client = BotsRedisClient(config, client=fake)
        await client.connect()

        await client.set("k", "v")

        assert await client.ttl("k") == DEFAULT_REDIS_TTL

    @pytest.mark.asyncio
    async def test_zero_ttl_persists(self, fake, config):
        client = BotsRedisClient(config, client=fake)
        await client.connect()

        await client.set("admin_profile_ids", [1, 2], ttl=0)

        assert "admin_profile_ids" not in fake.expires
        assert await client.ttl("admin_profile_ids") == -1
        assert fake.calls.get("setex") is None

    @pytest.mark.asyncio
    async def test_delete_and_exists(self, fake, config):
        client = BotsRedisClient(config, client=fake)
        await client.connect()

        await client.set("k", 1, ttl=60)
        assert await client.exists("k") is True

        assert await client.delete("k") is True
        assert await client.exists("k") is False
        # Deleting again is not an error
        assert await client.delete("k") is True

    @pytest.mark.asyncio
    async def test_key_prefix(self, fake):
        client = BotsRedisClient(RedisConfig(key_prefix="bots", health_check_interval=0), client=fake)
        await client.connect()

        await client.set("k", 1, ttl=60)

        assert "bots:k" in fake.data

    @pytest.mark.asyncio
    async def test_errors_become_sentinels(self, fake, config):
        client = BotsRedisClient(config, client=fake)
        await client.connect()
        fake.fail = True

        assert await client.get("k") is None
        assert await client.set("k", 1, ttl=60) is False
        assert await client.delete("k") is False
        assert await client.exists("k") is False
        assert client.get_stats()["errors"] == 4

    @pytest.mark.asyncio
    async def test_operations_skip_when_unavailable(self, fake, config):
        client = BotsRedisClient(config, client=fake)

        assert await client.set("k", 1) is False
        assert await client.get("k") is None
        assert fake.calls == {}
