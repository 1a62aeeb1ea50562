"""Analysis coordinator: the single owner of the analysis engine.

Every read of engine state goes through here so the load / index / report
ordering is enforced in one place::

    EMPTY -> LOADING -> INDEXED -> DIAGNOSED | EXPORTED

Any load moves back to LOADING.  Queries made before the index is current
raise :class:`~syster_cli.errors.PhaseError`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import PhaseError
from .host import AnalysisHost, SymbolIndex
from .models import Diagnostic, Import, SourceFile, Symbol

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    INDEXED = "indexed"
    DIAGNOSED = "diagnosed"
    EXPORTED = "exported"


_READY = (Phase.INDEXED, Phase.DIAGNOSED, Phase.EXPORTED)


class AnalysisCoordinator:
    def __init__(self, host: Optional[AnalysisHost] = None) -> None:
        self._host = host or AnalysisHost()
        self._phase = Phase.EMPTY
        self._dirty = False

    @property
    def phase(self) -> Phase:
        return self._phase

    # -- loading -----------------------------------------------------------

    def load(self, path: str, text: str, is_library: bool = False) -> List[Diagnostic]:
        """Register (or overwrite) a file; returns its parse diagnostics."""
        errors = self._host.set_file_content(path, text, is_library=is_library)
        self._touch()
        return errors

    def load_model(self, symbols: List[Symbol], source: str) -> None:
        """Register symbols synthesized from an interchange document."""
        self._host.add_symbols_from_model(symbols, source)
        self._touch()

    def apply_metadata(self, entries: List[Dict[str, Any]]) -> int:
        """Pin element ids from companion metadata; requires a re-index."""
        applied = self._host.apply_metadata(entries)
        if applied:
            self._touch()
        return applied

    def reindex(self) -> None:
        """Rebuild the symbol index.  A no-op when nothing was loaded since."""
        if self._phase == Phase.EMPTY:
            self._host.rebuild_index()
            self._phase = Phase.INDEXED
            return
        if not self._dirty:
            return
        self._host.rebuild_index()
        self._dirty = False
        self._phase = Phase.INDEXED
        logger.debug("Re-indexed %d files", len(self._host.files()))

    def _touch(self) -> None:
        self._dirty = True
        self._phase = Phase.LOADING

    # -- queries -----------------------------------------------------------

    def _require_index(self, operation: str) -> None:
        if self._phase not in _READY:
            raise PhaseError(f"{operation} requires an indexed workspace (phase: {self._phase.value})")

    def query_summary(self) -> Tuple[int, int]:
        """Return ``(file_count, symbol_count)``."""
        self._require_index("query_summary")
        return len(self._host.files()), len(self._host.symbol_index())

    def index(self) -> SymbolIndex:
        self._require_index("index")
        return self._host.symbol_index()

    def symbols(self) -> List[Symbol]:
        return self.index().all_symbols()

    def files(self) -> List[SourceFile]:
        self._require_index("files")
        return self._host.files()

    def file_symbols(self, path: str) -> List[Symbol]:
        self._require_index("file_symbols")
        return self._host.file_symbols(path)

    def root_imports(self, path: str) -> List[Import]:
        self._require_index("root_imports")
        return self._host.root_imports(path)

    def check_file(self, path: str) -> List[Diagnostic]:
        self._require_index("check_file")
        return self._host.check_file(path)

    # -- reporting transitions --------------------------------------------

    def mark_diagnosed(self) -> None:
        self._require_index("diagnostics")
        self._phase = Phase.DIAGNOSED

    def mark_exported(self) -> None:
        self._require_index("export")
        self._phase = Phase.EXPORTED
