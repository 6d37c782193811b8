"""
Database Connection Manager for botsbrain
Handles async engine construction and session management for the durable tier
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, Optional, Union

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from botsbrain.database.models import Base


@dataclass
class DatabaseConfig:
    """
    Durable tier connection configuration

    Either ``url`` (e.g. the value of POSTGRES_URL) or the individual
    connection fields may be given; ``url`` wins when both are set.
    """
    url: str = ""
    type: str = "postgresql"
    host: str = "localhost"
    port: int = 5432
    database: str = ""
    username: str = ""
    password: str = ""

    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False
    create_tables: bool = True

    @property
    def is_configured(self) -> bool:
        return bool(self.url or self.database)

    def get_async_url(self) -> str:
        """Get async connection URL"""
        if self.url:
            return self._normalize_url(self.url)

        if self.type == "postgresql":
            return f"postgresql+asyncpg://{self.username}:{self.password}@{self.host}:{self.port}/{self.database}"
        elif self.type == "sqlite":
            return f"sqlite+aiosqlite:///{self.database}"
        else:
            raise ValueError(f"Unsupported database type: {self.type}")

    @staticmethod
    def _normalize_url(url: str) -> str:
        scheme, sep, rest = url.partition("://")
        if not sep:
            raise ValueError(f"Malformed database URL: {url}")
        if "+" in scheme:
            return url
        if scheme in ("postgres", "postgresql"):
            return f"postgresql+asyncpg://{rest}"
        if scheme == "sqlite":
            return f"sqlite+aiosqlite://{rest}"
        raise ValueError(f"Unsupported database type: {scheme}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        """Create config from dictionary"""
        return cls(
            url=data.get('url', '') or '',
            type=data.get('type', 'postgresql'),
            host=data.get('host', 'localhost'),
            port=data.get('port', 5432),
            database=data.get('database', ''),
            username=data.get('username', ''),
            password=data.get('password', ''),
            pool_size=data.get('pool_size', 5),
            max_overflow=data.get('max_overflow', 10),
            pool_timeout=data.get('pool_timeout', 30),
            echo=data.get('echo', False),
            create_tables=data.get('create_tables', True),
        )


@dataclass(frozen=True)
class AlreadyConnected:
    """An engine created and owned by the caller."""
    engine: AsyncEngine


@dataclass(frozen=True)
class NeedsConnection:
    """Configuration from which the manager builds (and owns) its engine."""
    config: DatabaseConfig


DatabaseInput = Union[AlreadyConnected, NeedsConnection]


class DatabaseManager:
    """
    Async engine and session manager for the durable tier.

    The constructor input is resolved once: an ``AlreadyConnected`` engine
    is used as-is and left open on ``close()``, a ``NeedsConnection`` config
    produces an engine this manager disposes itself.
    """

    def __init__(self, database: DatabaseInput):
        self._engine: Optional[AsyncEngine] = None
        self._owns_engine = False
        self._create_tables = True
        self._connected = False

        if isinstance(database, AlreadyConnected):
            self._engine = database.engine
        elif isinstance(database, NeedsConnection):
            self._create_tables = database.config.create_tables
            self._engine = self._build_engine(database.config)
            self._owns_engine = self._engine is not None
        else:
            raise TypeError(
                f"Expected AlreadyConnected or NeedsConnection, got {type(database).__name__}"
            )

        self._session_factory = (
            sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                autoflush=False,
                expire_on_commit=False,
            )
            if self._engine is not None else None
        )

    @staticmethod
    def _build_engine(config: DatabaseConfig) -> Optional[AsyncEngine]:
        if not config.is_configured:
            logger.info("Database URL not provided, durable storage tier disabled")
            return None

        try:
            url = config.get_async_url()
            if url.startswith("sqlite"):
                # Single shared connection so in-memory databases survive
                return create_async_engine(
                    url,
                    echo=config.echo,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            return create_async_engine(
                url,
                echo=config.echo,
                pool_size=config.pool_size,
                max_overflow=config.max_overflow,
                pool_timeout=config.pool_timeout,
            )
        except Exception as e:
            logger.warning(f"Invalid database configuration: {e}")
            return None

    @property
    def engine(self) -> Optional[AsyncEngine]:
        """Get SQLAlchemy async engine."""
        return self._engine

    @property
    def owns_engine(self) -> bool:
        return self._owns_engine

    @property
    def is_configured(self) -> bool:
        return self._engine is not None

    @property
    def is_available(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """
        Check connectivity and create the storage table if missing.

        Returns:
            True if the database answered. Never raises.
        """
        if self._engine is None:
            return False

        try:
            async with self._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                if self._create_tables:
                    await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            logger.warning(f"Failed to connect to database: {e}")
            self._connected = False
            return False

        self._connected = True
        logger.info(f"Database connected ({self._engine.dialect.name})")
        return True

    async def create_tables(self) -> None:
        """Create the storage table. Raises on failure."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Storage tables ensured")

    async def close(self) -> None:
        """Release the engine if this manager created it."""
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            logger.info("Database engine disposed")
        self._connected = False

    def get_session(self) -> AsyncSession:
        """Get a new database session."""
        return self._session_factory()

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Context manager for database sessions with automatic commit/rollback."""
        session = self.get_session()
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.debug(f"Database session error: {e}")
            raise
        finally:
            await session.close()
