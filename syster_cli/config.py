"""Configuration paths and defaults for syster-cli."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from .config_manager import BASE_DIR, CONFIG_FILE, load_export_config, load_stdlib_config  # noqa: F401

SUPPORTED_EXTENSIONS = {".sysml", ".kerml"}
STDLIB_MARKER = "sysml.library"

# Probed in order when no explicit stdlib path is given.
DEFAULT_STDLIB_PATHS: List[Path] = [
    Path("sysml.library"),
    Path("../sysml.library"),
    Path("../base/sysml.library"),
]

METADATA_SUFFIX = ".metadata.json"

# Load configuration from TOML file (if available)
_stdlib_config = load_stdlib_config()
_export_config = load_export_config()

STDLIB_ENABLED: bool = bool(_stdlib_config.get("enabled", True))
STDLIB_PATH: Optional[str] = os.environ.get("SYSTER_STDLIB") or _stdlib_config.get("path") or None
SELF_CONTAINED_DEFAULT: bool = bool(_export_config.get("self_contained", False))


def stdlib_candidates() -> List[Path]:
    """Return the ordered stdlib fallback chain, configured path first."""
    candidates: List[Path] = []
    if STDLIB_PATH:
        candidates.append(Path(STDLIB_PATH).expanduser())
    candidates.extend(DEFAULT_STDLIB_PATHS)
    return candidates
