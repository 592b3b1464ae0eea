"""Tests for the distribution metadata in pyproject.toml."""

import importlib
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent


def project_entries(key):
    """Values of top-level ``key = "value"`` lines in pyproject.toml."""
    text = (PROJECT_ROOT / "pyproject.toml").read_text(encoding="utf-8")
    return [
        line.split("=", 1)[1].strip().strip('"')
        for line in text.splitlines()
        if line.split("=", 1)[0].strip() == key
    ]


class TestPackaging:
    """Test cases for the distribution metadata."""

    def test_long_description_is_a_readme(self):
        """Test that a declared readme is an existing README file, not a design document."""
        for readme in project_entries("readme"):
            assert Path(readme).stem.upper() == "README"
            assert (PROJECT_ROOT / readme).is_file()

    def test_console_script_resolves(self):
        (target,) = project_entries("hybrid-retrieval")
        module_name, function_name = target.split(":")
        assert callable(getattr(importlib.import_module(module_name), function_name))

    def test_packaged_config_is_present(self):
        assert (PROJECT_ROOT / "hybrid_retrieval" / "config" / "default.yaml").is_file()
