"""
botsbrain Configuration Module
"""

from botsbrain.config.config_loader import Config, ConfigLoader, get_config

__all__ = ["Config", "ConfigLoader", "get_config"]
