"""
Fake async Redis client for unit testing.
Implements the subset of redis.asyncio.Redis used by BotsRedisClient,
with expiry driven by an injectable clock.
"""

import time
from typing import Callable, Dict, Optional


class FakeRedisError(Exception):
    """Raised by FakeRedis when failure injection is on."""


class FakeRedis:
    """
    In-memory stand-in for ``redis.asyncio.Redis`` (decode_responses=True).

    Set ``fail = True`` to make every command raise, simulating an outage.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.data: Dict[str, str] = {}
        self.expires: Dict[str, float] = {}
        self.fail = False
        self.closed = False
        self.calls: Dict[str, int] = {}

    def _check(self, command: str) -> None:
        self.calls[command] = self.calls.get(command, 0) + 1
        if self.fail:
            raise FakeRedisError(f"{command} failed")

    def _purge(self, key: str) -> None:
        expiration = self.expires.get(key)
        if expiration is not None and self._clock() >= expiration:
            self.data.pop(key, None)
            self.expires.pop(key, None)

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check("get")
        self._purge(key)
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._check("set")
        self.data[key] = value
        self.expires.pop(key, None)
        return True

    async def setex(self, key: str, seconds: int, value: str) -> bool:
        self._check("setex")
        self.data[key] = value
        self.expires[key] = self._clock() + seconds
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            self._purge(key)
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expires.pop(key, None)
        return removed

    async def exists(self, *keys: str) -> int:
        self._check("exists")
        count = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                count += 1
        return count

    async def ttl(self, key: str) -> int:
        self._check("ttl")
        self._purge(key)
        if key not in self.data:
            return -2
        expiration = self.expires.get(key)
        if expiration is None:
            return -1
        return int(expiration - self._clock())

    async def aclose(self) -> None:
        self.closed = True
