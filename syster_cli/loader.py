"""Standard library discovery and source file loading."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from . import config
from .coordinator import AnalysisCoordinator
from .errors import InputNotFoundError, SourceReadError, StdlibNotFoundError
from .models import Diagnostic

logger = logging.getLogger(__name__)


class StdlibResolver:
    """Locate the standard library directory.

    An explicit path must exist.  Otherwise the configured path (environment
    or config file) and the default relative locations are probed in order
    and the first existing directory wins.
    """

    def __init__(self, explicit: Optional[Path] = None, candidates: Optional[List[Path]] = None) -> None:
        self.explicit = explicit
        self.candidates = candidates if candidates is not None else config.stdlib_candidates()

    def resolve(self) -> Optional[Path]:
        if self.explicit is not None:
            if not self.explicit.exists():
                raise StdlibNotFoundError(self.explicit)
            return self.explicit
        for candidate in self.candidates:
            if candidate.is_dir():
                return candidate
        logger.info("Standard library not found")
        return None


def discover_files(root: Path) -> List[Path]:
    """Return model source files under *root*, sorted and cycle-safe.

    Symbolic links are followed; a directory whose real path was already
    visited is not entered again.
    """
    found: List[Path] = []
    visited = set()
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        real = os.path.realpath(dirpath)
        if real in visited:
            dirnames[:] = []
            continue
        visited.add(real)
        dirnames.sort()
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if path.suffix in config.SUPPORTED_EXTENSIONS and path.is_file():
                found.append(path)
    return found


class SourceLoader:
    """Feed files from disk into an :class:`AnalysisCoordinator`."""

    def __init__(self, coordinator: AnalysisCoordinator) -> None:
        self.coordinator = coordinator

    def load_file(self, path: Path, is_library: bool = False) -> List[Diagnostic]:
        logger.info("  Loading: %s", path)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceReadError(path, str(exc)) from exc
        errors = self.coordinator.load(str(path), text, is_library=is_library)
        for error in errors:
            logger.debug(
                "parse error: %s:%d:%d: %s",
                path, error.span.start_line + 1, error.span.start_col + 1, error.message,
            )
        return errors

    def load_directory(self, directory: Path, is_library: bool = False) -> Dict[str, List[Diagnostic]]:
        logger.info("Scanning directory: %s", directory)
        return {str(path): self.load_file(path, is_library) for path in discover_files(directory)}

    def load_input(self, path: Path) -> Dict[str, List[Diagnostic]]:
        """Load a single file or a directory tree; parse errors are returned, not raised."""
        if path.is_file():
            return {str(path): self.load_file(path)}
        if path.is_dir():
            return self.load_directory(path)
        raise InputNotFoundError(path)

    def load_stdlib(self, resolver: StdlibResolver) -> Optional[Path]:
        logger.info("Loading standard library...")
        directory = resolver.resolve()
        if directory is not None:
            self.load_directory(directory, is_library=True)
        return directory


def load_workspace(
    input_path: Path,
    use_stdlib: bool = True,
    stdlib_path: Optional[Path] = None,
    coordinator: Optional[AnalysisCoordinator] = None,
) -> AnalysisCoordinator:
    """Load stdlib (optional) and the input into a coordinator; not yet indexed."""
    coordinator = coordinator or AnalysisCoordinator()
    loader = SourceLoader(coordinator)
    if use_stdlib:
        loader.load_stdlib(StdlibResolver(explicit=stdlib_path))
    loader.load_input(input_path)
    return coordinator
