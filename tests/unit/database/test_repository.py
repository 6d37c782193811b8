"""
Unit tests for StorageCacheRepository.

Runs against in-memory SQLite, which shares the upsert path with PostgreSQL
(INSERT ... ON CONFLICT DO UPDATE).
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from botsbrain.database.connection import DatabaseConfig, DatabaseManager, NeedsConnection
from botsbrain.database.models import FAR_FUTURE
from botsbrain.database.repository import StorageCacheRepository

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db_manager():
    """Create in-memory database."""
    manager = DatabaseManager(NeedsConnection(DatabaseConfig(url="sqlite+aiosqlite:///:memory:")))
    assert await manager.connect()
    yield manager
    await manager.close()


class TestStorageCacheRepository:
    """Tests for StorageCacheRepository."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, db_manager):
        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            await repo.upsert("ticket:friendly:TKT-1", {"chatId": -100}, NOW + timedelta(hours=1), NOW)

        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            assert await repo.get("ticket:friendly:TKT-1", NOW) == {"chatId": -100}
            assert await repo.exists("ticket:friendly:TKT-1", NOW) is True

    @pytest.mark.asyncio
    async def test_upsert_replaces_value_and_expiry(self, db_manager):
        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            await repo.upsert("k", "old", NOW + timedelta(seconds=10), NOW)
            await repo.upsert("k", "new", NOW + timedelta(hours=1), NOW + timedelta(seconds=5))

        later = NOW + timedelta(seconds=60)
        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            assert await repo.get("k", later) == "new"
            assert await repo.count() == 1

    @pytest.mark.asyncio
    async def test_expired_entry_invisible(self, db_manager):
        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            await repo.upsert("k", 1, NOW + timedelta(seconds=10), NOW)

        later = NOW + timedelta(seconds=11)
        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            assert await repo.get("k", later) is None
            assert await repo.get_entry("k", later) is None
            assert await repo.exists("k", later) is False
            # Still physically present until purged
            assert await repo.count() == 1
            assert await repo.count(include_expired=False, now=later) == 0

    @pytest.mark.asyncio
    async def test_purge_expired(self, db_manager):
        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            await repo.upsert("short", 1, NOW + timedelta(seconds=10), NOW)
            await repo.upsert("long", 2, NOW + timedelta(days=3), NOW)
            await repo.upsert("forever", 3, FAR_FUTURE, NOW)

        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            assert await repo.purge_expired(NOW + timedelta(hours=1)) == 1
            assert await repo.count() == 2

    @pytest.mark.asyncio
    async def test_far_future_never_expires(self, db_manager):
        async with db_manager.session_scope() as db:
            await StorageCacheRepository(db).upsert("admin_profile_ids", [1], FAR_FUTURE, NOW)

        async with db_manager.session_scope() as db:
            assert await StorageCacheRepository(db).get(
                "admin_profile_ids", NOW + timedelta(days=3650)
            ) == [1]

    @pytest.mark.asyncio
    async def test_delete(self, db_manager):
        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            await repo.upsert("k", 1, NOW + timedelta(hours=1), NOW)

            assert await repo.delete("k") is True
            assert await repo.delete("k") is False
            assert await repo.get("k", NOW) is None

    @pytest.mark.asyncio
    async def test_entry_to_dict(self, db_manager):
        async with db_manager.session_scope() as db:
            repo = StorageCacheRepository(db)
            await repo.upsert("k", {"a": 1}, NOW + timedelta(hours=1), NOW)
            entry = await repo.get_entry("k", NOW)

            data = entry.to_dict()
            assert data["key"] == "k"
            assert data["value"] == {"a": 1}
            assert data["expires_at"] is not None

    @pytest.mark.asyncio
    async def test_dialect_name(self, db_manager):
        async with db_manager.session_scope() as db:
            assert StorageCacheRepository(db).dialect_name == "sqlite"
