"""Configuration manager for syster-cli using TOML files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import toml

BASE_DIR = Path(os.environ.get("SYSTER_HOME", str(Path.home() / ".syster"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"


DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "stdlib": {
        "enabled": True,
    },
    "export": {
        "self_contained": False,
    },
}


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    A missing or unreadable file yields an empty dict; the tool must stay
    usable without any configuration.
    """
    config_path = path or CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError):
        return {}


def load_stdlib_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the ``[stdlib]`` section merged over the defaults.

    Returns:
        Dict with ``enabled`` and optionally ``path``.
    """
    section = dict(DEFAULT_CONFIG["stdlib"])
    section.update(load_full_config(path).get("stdlib", {}))
    return section


def load_export_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the ``[export]`` section merged over the defaults."""
    section = dict(DEFAULT_CONFIG["export"])
    section.update(load_full_config(path).get("export", {}))
    return section


def save_config(config: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Write the entire config dict to the TOML file.

    Returns:
        True if saved successfully, False otherwise
    """
    config_path = path or CONFIG_FILE
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError:
        return False

