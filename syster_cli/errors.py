"""Exception taxonomy for syster-cli.

Fatal operational failures are exceptions; parse errors and semantic
findings are never raised, they travel as diagnostics.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional


class SysterError(Exception):
    """Root exception for all user-facing syster-cli failures."""


class InputNotFoundError(SysterError):
    """The input path is neither a file nor a directory."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Path does not exist: {path}")


class SourceReadError(SysterError):
    """A required input file could not be read."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to read {path}: {reason}")


class StdlibNotFoundError(SysterError):
    """An explicitly requested standard library path is missing."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Stdlib path does not exist: {path}")


class UnsupportedFormatError(SysterError):
    """Requested interchange format is not known."""

    def __init__(self, name: str, choices: Optional[List[str]] = None) -> None:
        self.name = name
        options = ", ".join(choices or [])
        message = f"Unsupported format: {name}"
        if options:
            message += f". Use {options}."
        super().__init__(message)


class ImportStructuralError(SysterError):
    """An interchange document is malformed or has dangling references."""

    def __init__(self, reason: str, problems: Optional[List[str]] = None) -> None:
        self.reason = reason
        self.problems = list(problems or [])
        super().__init__(reason)


class ExportError(SysterError):
    """Export output could not be produced or written."""


class PhaseError(RuntimeError):
    """Coordinator operation called in the wrong pipeline phase.

    A programming error in the caller; not a :class:`SysterError`, so the
    CLI lets it propagate.
    """
