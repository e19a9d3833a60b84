"""Configuration system for lvsnap-backup.

This module provides TOML-based configuration loading, validation,
and schema definitions for snapshot backup targets.
"""

from .loader import ConfigError, find_config_file, load_config
from .schema import Config, GlobalConfig, TargetConfig

__all__ = [
    "GlobalConfig",
    "TargetConfig",
    "Config",
    "load_config",
    "find_config_file",
    "ConfigError",
]
