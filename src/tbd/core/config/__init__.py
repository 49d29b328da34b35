"""
Configuration loading for tbd projects.
"""

from .loader import ConfigError, clear_cache, deep_merge, load_config, save_config
from .models import SyncConfig, TbdConfig

__all__ = [
    "ConfigError",
    "SyncConfig",
    "TbdConfig",
    "clear_cache",
    "deep_merge",
    "load_config",
    "save_config",
]
