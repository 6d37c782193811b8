"""
Repository Pattern Implementation for botsbrain
Provides key/value operations on the durable storage table
"""

from datetime import datetime
from typing import Any, Optional

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from botsbrain.database.models import StorageCacheEntry


_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class BaseRepository:
    """Base repository bound to one async session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @property
    def dialect_name(self) -> str:
        return self.db.bind.dialect.name


class StorageCacheRepository(BaseRepository):
    """Repository for StorageCacheEntry operations."""

    async def get_entry(self, key: str, now: datetime) -> Optional[StorageCacheEntry]:
        """Get an unexpired entry, or None."""
        result = await self.db.execute(
            select(StorageCacheEntry).where(
                StorageCacheEntry.key == key,
                StorageCacheEntry.expires_at > now,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, key: str, now: datetime) -> Optional[Any]:
        """Get the value of an unexpired entry, or None."""
        entry = await self.get_entry(key, now)
        return entry.value if entry is not None else None

    async def upsert(
        self,
        key: str,
        value: Any,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        """Insert the entry or replace value and expiry of an existing one."""
        insert = _UPSERT_DIALECTS.get(self.dialect_name)

        if insert is None:
            entry = StorageCacheEntry(
                key=key,
                value=value,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
            await self.db.merge(entry)
            await self.db.flush()
            return

        stmt = insert(StorageCacheEntry).values(
            key=key,
            value=value,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[StorageCacheEntry.key],
            set_={
                "value": stmt.excluded.value,
                "expires_at": stmt.excluded.expires_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.db.execute(stmt)

    async def delete(self, key: str) -> bool:
        """Delete an entry. Returns True if a row was removed."""
        result = await self.db.execute(
            delete(StorageCacheEntry).where(StorageCacheEntry.key == key)
        )
        return result.rowcount > 0

    async def exists(self, key: str, now: datetime) -> bool:
        result = await self.db.execute(
            select(func.count()).select_from(StorageCacheEntry).where(
                StorageCacheEntry.key == key,
                StorageCacheEntry.expires_at > now,
            )
        )
        return result.scalar_one() > 0

    async def purge_expired(self, now: datetime) -> int:
        """Physically remove expired rows. Returns the number removed."""
        result = await self.db.execute(
            delete(StorageCacheEntry).where(StorageCacheEntry.expires_at <= now)
        )
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Purged {removed} expired storage entries")
        return removed

    async def count(self, include_expired: bool = True, now: Optional[datetime] = None) -> int:
        """Count entries, optionally only live ones."""
        stmt = select(func.count()).select_from(StorageCacheEntry)
        if not include_expired and now is not None:
            stmt = stmt.where(StorageCacheEntry.expires_at > now)
        result = await self.db.execute(stmt)
        return result.scalar_one()
