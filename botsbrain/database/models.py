"""
Database Models for botsbrain
SQLAlchemy ORM model for the durable storage tier (Tier 3)
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Horizon used for entries stored without expiry
FAR_FUTURE = datetime(9999, 12, 31, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StorageCacheEntry(Base):
    """One key/value pair of the durable tier with its absolute expiry."""

    __tablename__ = 'storage_cache'

    key = Column(String(255), primary_key=True)
    value = Column(JSON().with_variant(JSONB(), 'postgresql'), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_storage_cache_expires_at', 'expires_at'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'value': self.value,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<StorageCacheEntry(key={self.key!r}, expires_at={self.expires_at})>"
