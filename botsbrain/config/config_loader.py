"""
Configuration Loader for botsbrain
Loads and manages configuration from YAML files and the environment
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field
from loguru import logger


# Environment variables shared with the rest of the bot deployment
ENV_CONFIG_PATH = "BOTSBRAIN_CONFIG_PATH"
ENV_DATABASE_URL = "POSTGRES_URL"
ENV_REDIS_URL = "PLATFORM_REDIS_URL"


class SystemConfig(BaseModel):
    """System configuration."""
    name: str = "botsbrain"
    version: str = "1.0.0"
    log_level: str = "INFO"


class StorageSettings(BaseModel):
    """Tiered engine expiry settings."""
    memory_ttl: int = 86400
    redis_ttl: int = 259200
    cleanup_interval: float = 60


class RedisSettings(BaseModel):
    """Distributed cache tier."""
    url: str = ""
    enabled: bool = True
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    retry_on_timeout: bool = True
    max_connections: int = 50
    key_prefix: str = ""
    health_check_interval: int = 30


class DatabaseSettings(BaseModel):
    """Durable storage tier."""
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


class StoreSettings(BaseModel):
    """Domain store behaviour."""
    serialize_customer_creation: bool = False


class Config(BaseModel):
    """Main configuration model."""
    system: SystemConfig = Field(default_factory=SystemConfig)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)


class ConfigLoader:
    """Configuration loader and manager."""

    _instance: Optional['ConfigLoader'] = None
    _config: Optional[Config] = None

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._config is None:
            self._config_path = config_path or self._find_config_path()
            self._load_config()

    def _find_config_path(self) -> Optional[str]:
        """Find configuration file path."""
        possible_paths = [
            os.environ.get(ENV_CONFIG_PATH, ""),
            "./config.yaml",
            str(Path(__file__).parent / "config.yaml"),
        ]

        for path in possible_paths:
            if path and os.path.exists(path):
                return path
        return None

    def _load_config(self) -> None:
        """Load configuration from YAML file, then apply environment overrides."""
        raw_config: Dict[str, Any] = {}
        if self._config_path is None:
            logger.info("No configuration file found, using defaults")
        else:
            try:
                with open(self._config_path, 'r', encoding='utf-8') as f:
                    raw_config = yaml.safe_load(f) or {}
                logger.info(f"Configuration loaded from {self._config_path}")
            except Exception as e:
                logger.warning(f"Failed to load config: {e}, using defaults")
                raw_config = {}

        try:
            self._config = Config(**raw_config)
        except Exception as e:
            logger.warning(f"Invalid config in {self._config_path}: {e}, using defaults")
            self._config = Config()

        self._apply_env_overrides(self._config)

    @staticmethod
    def _apply_env_overrides(config: Config) -> None:
        database_url = os.environ.get(ENV_DATABASE_URL)
        if database_url:
            config.database.url = database_url
        redis_url = os.environ.get(ENV_REDIS_URL)
        if redis_url:
            config.redis.url = redis_url

    @property
    def config(self) -> Config:
        """Get configuration."""
        return self._config

    @property
    def config_path(self) -> Optional[str]:
        return self._config_path

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-separated key."""
        value = self._config
        try:
            for k in key.split('.'):
                if hasattr(value, k):
                    value = getattr(value, k)
                elif isinstance(value, dict):
                    value = value[k]
                else:
                    return default
            return value
        except (KeyError, AttributeError):
            return default

    def reload(self) -> None:
        """Reload configuration."""
        self._load_config()

    @classmethod
    def reset(cls) -> None:
        """Reset singleton instance."""
        cls._instance = None
        cls._config = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance."""
    return ConfigLoader(config_path).config
