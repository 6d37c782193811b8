"""
botsbrain Storage CLI
Maintenance commands for the durable and distributed storage tiers
"""

import argparse
import asyncio
import json
import os
import sys
import uuid
from datetime import timedelta
from typing import List, Optional

from loguru import logger

from botsbrain.cache.redis_client import BotsRedisClient, RedisConfig
from botsbrain.cache.unified_storage import StorageConfig, UnifiedStorage
from botsbrain.config.config_loader import ENV_CONFIG_PATH, Config, ConfigLoader
from botsbrain.database.connection import DatabaseConfig, DatabaseManager, NeedsConnection
from botsbrain.database.models import utcnow
from botsbrain.database.repository import StorageCacheRepository

PROBE_TTL = 60


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def load_config(args: argparse.Namespace) -> Config:
    if args.config:
        os.environ[ENV_CONFIG_PATH] = args.config
    ConfigLoader.reset()
    config = ConfigLoader(args.config).config
    if args.database_url:
        config.database.url = args.database_url
    if args.redis_url:
        config.redis.url = args.redis_url
    return config


def build_database(config: Config) -> DatabaseManager:
    return DatabaseManager(NeedsConnection(DatabaseConfig.from_dict(config.database.model_dump())))


def build_storage(config: Config) -> UnifiedStorage:
    redis_config = RedisConfig.from_dict(config.redis.model_dump())
    return UnifiedStorage(
        StorageConfig.from_dict(config.storage.model_dump()),
        database=build_database(config),
        redis=BotsRedisClient(redis_config) if redis_config.is_configured else None,
    )


async def run_setup(config: Config) -> int:
    """Create the storage table and round-trip a probe row."""
    database = build_database(config)
    if not database.is_configured:
        print("No database configured (set POSTGRES_URL or database.url)")
        return 1

    try:
        await database.create_tables()
        print("Table storage_cache is ready")

        probe_key = f"setup_probe:{uuid.uuid4().hex[:8]}"
        probe_value = {"probe": True, "createdAt": utcnow().isoformat()}
        now = utcnow()
        expires_at = now + timedelta(seconds=PROBE_TTL)

        async with database.session_scope() as session:
            await StorageCacheRepository(session).upsert(probe_key, probe_value, expires_at, now)
        async with database.session_scope() as session:
            read_back = await StorageCacheRepository(session).get(probe_key, utcnow())
        async with database.session_scope() as session:
            await StorageCacheRepository(session).delete(probe_key)

        if read_back != probe_value:
            print(f"Probe round-trip failed: wrote {probe_value}, read {read_back}")
            return 1
        print("Probe row written, read back and deleted")
        return 0
    except Exception as e:
        logger.error(f"Storage setup failed: {e}")
        return 1
    finally:
        await database.close()


async def run_verify(config: Config) -> int:
    """Report which tiers are reachable."""
    storage = build_storage(config)
    await storage.connect()
    try:
        layers = storage.get_stats()["layers"]
        for name, active in layers.items():
            print(f"{name:<10} {'ok' if active else 'unavailable'}")

        probe_key = f"verify_probe:{uuid.uuid4().hex[:8]}"
        await storage.set(probe_key, {"probe": True}, PROBE_TTL)
        storage.memory.delete(probe_key)
        found = await storage.get(probe_key)
        await storage.delete(probe_key)
        lower_tiers = layers["redis"] or layers["database"]
        if lower_tiers:
            print(f"{'probe':<10} {'ok' if found else 'failed'}")
        return 0 if (found or not lower_tiers) else 1
    finally:
        await storage.disconnect()


async def run_purge(config: Config) -> int:
    """Delete expired durable rows."""
    storage = build_storage(config)
    await storage.connect()
    try:
        if not storage.database_active:
            print("Database tier unavailable, nothing to purge")
            return 1
        removed = await storage.purge_expired()
        print(f"Purged {removed} expired entries")
        return 0
    finally:
        await storage.disconnect()


async def run_stats(config: Config) -> int:
    """Print engine statistics as JSON."""
    storage = build_storage(config)
    await storage.connect()
    try:
        stats = storage.get_stats()
        stats["durable_rows"] = await storage.count_durable()
        print(json.dumps(stats, indent=2, default=str))
        return 0
    finally:
        await storage.disconnect()


COMMANDS = {
    "setup": run_setup,
    "verify": run_verify,
    "purge": run_purge,
    "stats": run_stats,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="botsbrain-storage",
        description="botsbrain - storage maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  botsbrain-storage setup     Create the storage table and test a round-trip
  botsbrain-storage verify    Check which storage tiers are reachable
  botsbrain-storage purge     Delete expired durable rows
  botsbrain-storage stats     Print storage statistics
        """
    )

    parser.add_argument(
        "command",
        choices=sorted(COMMANDS),
        help="Command to run"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file"
    )

    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Database URL (overrides POSTGRES_URL)"
    )

    parser.add_argument(
        "--redis-url",
        type=str,
        default=None,
        help="Redis URL (overrides PLATFORM_REDIS_URL)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        help="Log level (default: WARNING)"
    )

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    config = load_config(args)

    return asyncio.run(COMMANDS[args.command](config))


if __name__ == "__main__":
    sys.exit(main())
