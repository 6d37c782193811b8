"""
Test fixtures for botsbrain unit tests.
Provides a fake Redis client, a manual clock, and sample records.
"""

from .fake_redis import FakeRedis, FakeRedisError
from .manual_clock import ManualClock
from .sample_records import (
    sample_admin,
    sample_group_config,
    sample_setup_session,
    sample_ticket,
)
from .storage import connected_storage

__all__ = [
    "connected_storage",
    "FakeRedis",
    "FakeRedisError",
    "ManualClock",
    "sample_admin",
    "sample_group_config",
    "sample_setup_session",
    "sample_ticket",
]
