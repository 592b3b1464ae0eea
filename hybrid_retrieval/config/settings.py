"""Configuration management for the hybrid retrieval core using OmegaConf."""

import os
from pathlib import Path
from typing import Any, Dict, Optional
from omegaconf import DictConfig, OmegaConf


DEFAULT_CONFIG_DIR = Path(__file__).parent


class ConfigManager:
    """Configuration manager using OmegaConf for YAML-based configuration."""

    def __init__(self, config_dir: Optional[str] = None, environment: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_dir: Directory containing configuration files (defaults to the
                directory shipped with the package)
            environment: Environment name (development, production, etc.)
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.environment = environment or os.getenv("ENVIRONMENT", "default")
        self._config: Optional[DictConfig] = None
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML files."""
        default_config_path = self.config_dir / "default.yaml"
        if not default_config_path.exists():
            # A custom directory may only carry overrides
            default_config_path = DEFAULT_CONFIG_DIR / "default.yaml"
        if not default_config_path.exists():
            raise FileNotFoundError(f"Default configuration file not found: {default_config_path}")

        config = OmegaConf.load(default_config_path)

        env_config_path = self.config_dir / f"{self.environment}.yaml"
        if self.environment != "default" and env_config_path.exists():
            env_config = OmegaConf.load(env_config_path)
            config = OmegaConf.merge(config, env_config)

        user_config_path = self.config_dir / "user.yaml"
        if user_config_path.exists():
            user_config = OmegaConf.load(user_config_path)
            config = OmegaConf.merge(config, user_config)

        config = self._apply_env_overrides(config)

        self._config = config

    def _apply_env_overrides(self, config: DictConfig) -> DictConfig:
        """Apply environment variable overrides to configuration."""
        env_mappings = {
            "HYBRID_TOP_K": "search.top_k",
            "HYBRID_BASE_THRESHOLD": "search.base_threshold",
            "HYBRID_BRANCH_TIMEOUT": "search.branch_timeout",
            "HYBRID_CACHE_POLICY": "cache.eviction_policy",
            "HYBRID_CACHE_SIZE": "cache.hybrid_max_size",
            "HYBRID_LEARNING_RATE": "learning.learning_rate",
            "HYBRID_PARAMETERS_PATH": "storage.parameters_path",
            "HYBRID_LOG_LEVEL": "logging.level",
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                if env_value.lower() in ("true", "false"):
                    env_value = env_value.lower() == "true"
                elif env_value.isdigit():
                    env_value = int(env_value)
                elif env_value.replace(".", "", 1).isdigit():
                    env_value = float(env_value)

                OmegaConf.update(config, config_path, env_value)

        return config

    @property
    def config(self) -> DictConfig:
        """Get the current configuration."""
        if self._config is None:
            self._load_config()
        return self._config

    def reload(self) -> None:
        """Reload configuration from files."""
        self._load_config()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.

        Args:
            key: Configuration key in dot notation (e.g., 'search.top_k')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value = OmegaConf.select(self.config, key, default=default)
        if isinstance(value, DictConfig):
            return OmegaConf.to_container(value, resolve=True)
        return value

    def section(self, name: str) -> Dict[str, Any]:
        """Return a configuration section as a plain dictionary."""
        node = OmegaConf.select(self.config, name)
        if node is None:
            return {}
        return OmegaConf.to_container(node, resolve=True)


# Global configuration manager instance
config_manager = ConfigManager()
config = config_manager.config


def get_collections_config() -> Dict[str, Any]:
    """Get collection naming configuration."""
    return config_manager.section("collections")


def get_search_config() -> Dict[str, Any]:
    """Get hybrid search configuration parameters."""
    return config_manager.section("search")


def get_vector_config() -> Dict[str, Any]:
    """Get vector engine configuration parameters."""
    return config_manager.section("vector")


def get_lexical_config() -> Dict[str, Any]:
    """Get BM25 engine configuration parameters."""
    return config_manager.section("lexical")


def get_rerank_config() -> Dict[str, Any]:
    """Get reranker configuration parameters."""
    return config_manager.section("rerank")


def get_filter_config() -> Dict[str, Any]:
    """Get dynamic filter configuration parameters."""
    return config_manager.section("filter")


def get_confidence_config() -> Dict[str, Any]:
    """Get confidence scorer configuration parameters."""
    return config_manager.section("confidence")


def get_learning_config() -> Dict[str, Any]:
    """Get learning engine configuration parameters."""
    return config_manager.section("learning")


def get_threshold_optimizer_config() -> Dict[str, Any]:
    """Get threshold optimizer configuration parameters."""
    return config_manager.section("threshold_optimizer")


def get_cache_config() -> Dict[str, Any]:
    """Get result cache configuration parameters."""
    return config_manager.section("cache")


def get_storage_config() -> Dict[str, Any]:
    """Get parameter storage configuration."""
    return config_manager.section("storage")


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration parameters."""
    return config_manager.section("logging")


def get_monitoring_config() -> Dict[str, Any]:
    """Get monitoring configuration parameters."""
    return config_manager.section("monitoring")
