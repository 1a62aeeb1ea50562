"""Tests for config_manager.py - TOML configuration."""

import subprocess
import sys
from pathlib import Path

import pytest

from syster_cli.config_manager import (
    DEFAULT_CONFIG,
    load_export_config,
    load_full_config,
    load_stdlib_config,
    save_config,
)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class TestConfigManager:
    """Test loading and saving ~/.syster/config.toml."""

    def test_missing_file_gives_defaults(self, temp_dir):
        path = temp_dir / "config.toml"
        assert load_full_config(path) == {}
        assert load_stdlib_config(path) == DEFAULT_CONFIG["stdlib"]
        assert load_export_config(path) == {"self_contained": False}

    def test_save_and_load(self, temp_dir):
        path = temp_dir / "nested" / "config.toml"
        assert save_config({"stdlib": {"path": "/opt/sysml.library", "enabled": False}}, path)
        stdlib = load_stdlib_config(path)
        assert stdlib == {"enabled": False, "path": "/opt/sysml.library"}

    def test_sections_merge_over_defaults(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[export]\nself_contained = true\n", encoding="utf-8")
        assert load_export_config(path) == {"self_contained": True}
        assert load_stdlib_config(path) == {"enabled": True}

    def test_invalid_toml_is_ignored(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[stdlib\nenabled = ", encoding="utf-8")
        assert load_full_config(path) == {}

    def test_save_failure_returns_false(self, temp_dir):
        blocker = temp_dir / "file"
        blocker.write_text("", encoding="utf-8")
        assert save_config({"export": {}}, blocker / "config.toml") is False

    def test_default_path_is_config_file(self, monkeypatch, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[stdlib]\nenabled = false\n", encoding="utf-8")
        monkeypatch.setattr("syster_cli.config_manager.CONFIG_FILE", path)
        assert load_stdlib_config() == {"enabled": False}

    @pytest.mark.parametrize("module", ["syster_cli.config_manager", "syster_cli.config"])
    def test_imports_standalone(self, module):
        """Either config module can be the first one imported."""
        result = subprocess.run(
            [sys.executable, "-c", f"import {module}"],
            cwd=str(PROJECT_ROOT),
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0, result.stderr
