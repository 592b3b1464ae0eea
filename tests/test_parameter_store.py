"""Tests for learned-parameter persistence."""

import json
import os
import tempfile
from pathlib import Path

from unittest.mock import patch

from hybrid_retrieval.services.parameter_store import JsonParameterStore, ParameterStore


class TestJsonParameterStore:
    """Test cases for JsonParameterStore."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "nested" / "params.json"
        self.store = JsonParameterStore(self.path)

    def teardown_method(self):
        """Clean up test fixtures."""
        self.temp_dir.cleanup()

    def test_implements_protocol(self):
        assert isinstance(self.store, ParameterStore)

    def test_load_missing_file(self):
        assert self.store.load() is None

    def test_save_creates_file(self):
        """Test that saving writes the record with a timestamp."""
        assert self.store.save({"vector_weight": 0.65, "patterns": {"intent_patterns": {"ACTIVITY_general": 3}}})

        data = self.store.load()
        assert data["vector_weight"] == 0.65
        assert data["patterns"]["intent_patterns"] == {"ACTIVITY_general": 3}
        assert "saved_at" in data

    def test_save_merges_with_existing_record(self):
        """Test that unrelated keys written by others survive a save."""
        self.path.parent.mkdir(parents=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"owner": "ops", "patterns": {"custom": {"x": 1}}, "vector_weight": 0.5}, f)

        self.store.save({"vector_weight": 0.7, "patterns": {"failed_queries": {"q": 2}}})

        data = self.store.load()
        assert data["owner"] == "ops"
        assert data["vector_weight"] == 0.7
        assert data["patterns"] == {"custom": {"x": 1}, "failed_queries": {"q": 2}}

    def test_no_temporary_files_left_behind(self):
        self.store.save({"a": 1})
        assert os.listdir(self.path.parent) == ["params.json"]

    def test_invalid_content_is_ignored(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("not json", encoding="utf-8")
        assert self.store.load() is None

        self.path.write_text("[1, 2]", encoding="utf-8")
        assert self.store.load() is None

    def test_failed_write_keeps_previous_file(self):
        """Test that a failed replace leaves the old record intact."""
        self.store.save({"vector_weight": 0.6})

        with patch("hybrid_retrieval.services.parameter_store.os.replace", side_effect=OSError("disk full")):
            assert self.store.save({"vector_weight": 0.9}) is False

        assert self.store.load()["vector_weight"] == 0.6
        assert os.listdir(self.path.parent) == ["params.json"]
