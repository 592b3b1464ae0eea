# Configuration package

from .settings import ConfigManager, config, config_manager

__all__ = ["ConfigManager", "config", "config_manager"]
