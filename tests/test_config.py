"""Tests for configuration loading."""

import os
import tempfile
from pathlib import Path

import pytest
from unittest.mock import patch

from hybrid_retrieval.config.settings import (
    ConfigManager,
    get_cache_config,
    get_confidence_config,
    get_learning_config,
    get_rerank_config,
    get_search_config,
)


class TestConfigManager:
    """Test cases for ConfigManager."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_dir = Path(self.temp_dir.name)

    def teardown_method(self):
        """Clean up test fixtures."""
        self.temp_dir.cleanup()

    def test_packaged_defaults(self):
        """Test the defaults shipped with the package."""
        manager = ConfigManager()

        assert manager.get("search.top_k") == 10
        assert manager.get("search.vector_weight") == 0.6
        assert manager.get("search.text_weight") == 0.3
        assert manager.get("cache.eviction_policy") == "fifo"
        assert manager.get("vector.dimension") is None
        assert manager.get("logging.log_file") is None
        assert manager.get("rerank.order") == ["intent", "entities", "completeness", "freshness", "multi_source"]

    def test_missing_key_returns_default(self):
        manager = ConfigManager()
        assert manager.get("search.unknown", default=42) == 42
        assert manager.section("unknown") == {}

    def test_section_is_plain_dict(self):
        section = ConfigManager().section("confidence")
        assert isinstance(section, dict)
        assert isinstance(section["weights"], dict)
        assert sum(section["weights"].values()) == pytest.approx(1.0)

    def test_environment_file_overrides_defaults(self):
        """Test that <environment>.yaml is merged over the defaults."""
        (self.config_dir / "production.yaml").write_text(
            "search:\n  top_k: 25\ncache:\n  eviction_policy: lru\n", encoding="utf-8"
        )

        manager = ConfigManager(config_dir=str(self.config_dir), environment="production")

        assert manager.get("search.top_k") == 25
        assert manager.get("cache.eviction_policy") == "lru"
        # Untouched keys keep their packaged values
        assert manager.get("search.base_threshold") == 0.65

    def test_user_file_applied_last(self):
        (self.config_dir / "staging.yaml").write_text("search:\n  top_k: 20\n", encoding="utf-8")
        (self.config_dir / "user.yaml").write_text("search:\n  top_k: 7\n", encoding="utf-8")

        manager = ConfigManager(config_dir=str(self.config_dir), environment="staging")
        assert manager.get("search.top_k") == 7

    def test_env_overrides(self):
        """Test HYBRID_* environment variable overrides and type coercion."""
        env = {
            "HYBRID_TOP_K": "15",
            "HYBRID_BASE_THRESHOLD": "0.7",
            "HYBRID_CACHE_POLICY": "lru",
        }
        with patch.dict(os.environ, env):
            manager = ConfigManager()

        assert manager.get("search.top_k") == 15
        assert manager.get("search.base_threshold") == 0.7
        assert manager.get("cache.eviction_policy") == "lru"

    def test_reload_picks_up_changes(self):
        user_file = self.config_dir / "user.yaml"
        user_file.write_text("search:\n  top_k: 3\n", encoding="utf-8")
        manager = ConfigManager(config_dir=str(self.config_dir))
        assert manager.get("search.top_k") == 3

        user_file.write_text("search:\n  top_k: 4\n", encoding="utf-8")
        manager.reload()
        assert manager.get("search.top_k") == 4


class TestConfigAccessors:
    """Test cases for the section accessor functions."""

    def test_search_config(self):
        search = get_search_config()
        assert search["vector_weight"] + search["text_weight"] + search["semantic_weight"] == pytest.approx(1.0)
        assert search["context_boost"] == 0.15

    def test_rerank_config(self):
        rerank = get_rerank_config()
        assert rerank["intent_boost"] == 1.2
        assert rerank["multi_source_boost"] == 1.15

    def test_learning_and_cache_config(self):
        assert get_learning_config()["weight_update_interval"] == 20
        assert get_learning_config()["threshold_update_interval"] == 30
        assert get_cache_config()["hybrid_max_size"] == 100
        assert get_cache_config()["generic_max_size"] == 1000

    def test_confidence_config(self):
        assert get_confidence_config()["answer_threshold"] == 0.6
