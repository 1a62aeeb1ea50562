"""Export pipeline: symbol index to interchange documents, AST and JSON."""

from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set

from .coordinator import AnalysisCoordinator
from .formats import get_format
from .host import SymbolIndex
from .interchange import (
    MEMBERSHIP_IMPORT,
    NAMESPACE_IMPORT,
    PROVENANCE_MODEL,
    PROVENANCE_SELF_CONTAINED,
    RELATIONSHIP_KINDS,
    ElementRecord,
    InterchangeDocument,
    element_kind,
    mint_id,
)
from .loader import load_workspace
from .metadata import load_companion_metadata
from .models import AnalysisResult, Symbol

logger = logging.getLogger(__name__)


class ExportPipeline:
    """Materialize the indexed workspace as an :class:`InterchangeDocument`.

    User symbols are emitted in load order then declaration order.  Library
    elements are listed as external references, or inlined (with owners and
    their own relationships, transitively) when *self_contained* is set.
    """

    def __init__(self, coordinator: AnalysisCoordinator, self_contained: bool = False, name: str = "model") -> None:
        self.coordinator = coordinator
        self.self_contained = self_contained
        self.name = name

    def build_document(self) -> InterchangeDocument:
        index = self.coordinator.index()
        builder = _DocumentBuilder(index, self.self_contained)
        for source in self.coordinator.files():
            if source.is_library:
                continue
            for symbol in self.coordinator.file_symbols(source.path):
                if not symbol.is_library:
                    builder.emit(symbol, PROVENANCE_MODEL)
        builder.drain()
        document = InterchangeDocument(
            records=builder.records,
            external_refs=builder.external_refs,
            metadata={"name": self.name, "selfContained": self.self_contained},
        )
        logger.info("Built document with %d records", len(document.records))
        return document

    def export(self, format_name: str) -> bytes:
        model_format = get_format(format_name)
        document = self.build_document()
        data = model_format.write(document)
        self.coordinator.mark_exported()
        return data


class _DocumentBuilder:
    def __init__(self, index: SymbolIndex, self_contained: bool) -> None:
        self.index = index
        self.self_contained = self_contained
        self.records: List[ElementRecord] = []
        self.external_refs: Dict[str, str] = {}
        self._emitted: Set[str] = set()
        self._visited: Set[int] = set()
        self._pending: Deque[Symbol] = deque()

    def id_for(self, symbol: Symbol) -> str:
        if symbol.kind.is_package:
            canonical = self.index.lookup(symbol.qualified_name)
            if canonical is not None and canonical.kind.is_package:
                symbol = canonical
        return symbol.element_id or mint_id(element_kind(symbol.kind), symbol.qualified_name)

    def _target_id(self, target: Symbol) -> str:
        target_id = self.id_for(target)
        if target.is_library and target_id not in self._emitted:
            if self.self_contained:
                self._pending.append(target)
            else:
                self.external_refs[target_id] = target.qualified_name
        return target_id

    def _relationship_id(self, carried: Optional[str], kind: str, key: str) -> str:
        if carried and carried not in self._emitted:
            return carried
        candidate = mint_id(kind, key)
        ordinal = 1
        while candidate in self._emitted:
            ordinal += 1
            candidate = mint_id(kind, f"{key}#{ordinal}")
        return candidate

    def emit(self, symbol: Symbol, provenance: str) -> None:
        if id(symbol) in self._visited:
            return
        self._visited.add(id(symbol))
        element_id = self.id_for(symbol)
        # A reopened package adds its relationships to the first declaration.
        # Duplicate members (E0201) share one minted id and merge the same way.
        if element_id not in self._emitted:
            self._emitted.add(element_id)
            self._element(symbol, element_id, provenance)
        self._relationships(symbol, element_id, provenance)

    def _element(self, symbol: Symbol, element_id: str, provenance: str) -> None:
        owner_id = None
        if symbol.owner:
            owner = self.index.lookup(symbol.owner)
            if owner is not None:
                owner_id = self._target_id(owner) if owner.is_library else self.id_for(owner)
        properties: Dict[str, Any] = {}
        if symbol.direction:
            properties["direction"] = symbol.direction
        self.records.append(ElementRecord(
            id=element_id,
            kind=element_kind(symbol.kind),
            name=symbol.name,
            qualified_name=symbol.qualified_name,
            owner=owner_id,
            doc=symbol.doc,
            short_name=symbol.short_name or None,
            is_abstract=symbol.is_abstract,
            properties=properties,
            provenance=provenance,
        ))

    def _relationships(self, symbol: Symbol, element_id: str, provenance: str) -> None:
        for reference in symbol.references:
            kind = RELATIONSHIP_KINDS[reference.kind]
            target = self.index.resolve_reference(reference, symbol)
            if target is not None:
                target_id = self._target_id(target)
                target_name = target.qualified_name
            elif reference.target_id:
                # Bound to an element that is not loaded (e.g. stdlib disabled).
                target_id = reference.target_id
                target_name = reference.target_qualified_name or reference.target
                self.external_refs.setdefault(target_id, target_name)
            else:
                continue
            relationship_id = self._relationship_id(
                reference.element_id, kind, f"{symbol.qualified_name}->{target_name}"
            )
            self._emitted.add(relationship_id)
            self.records.append(ElementRecord(
                id=relationship_id,
                kind=kind,
                owner=element_id,
                source=element_id,
                target=target_id,
                provenance=provenance,
            ))

        for imported in symbol.imports:
            kind = NAMESPACE_IMPORT if imported.is_namespace or imported.is_recursive else MEMBERSHIP_IMPORT
            target = self.index.resolve_import(imported, symbol.qualified_name)
            if target is not None:
                target_id = self._target_id(target)
                target_name = target.name
            elif imported.target_id:
                target_id = imported.target_id
                target_name = imported.path.split("::")[-1]
                self.external_refs.setdefault(target_id, imported.path)
            else:
                continue
            relationship_id = self._relationship_id(
                imported.element_id, kind, f"{symbol.qualified_name}->import:{imported.text}"
            )
            self._emitted.add(relationship_id)
            self.records.append(ElementRecord(
                id=relationship_id,
                kind=kind,
                name=target_name,
                owner=element_id,
                source=element_id,
                target=target_id,
                properties={"isRecursive": imported.is_recursive, "visibility": imported.visibility},
                provenance=provenance,
            ))

    def drain(self) -> None:
        """Inline pending library elements until the closure is complete."""
        while self._pending:
            symbol = self._pending.popleft()
            self.external_refs.pop(self.id_for(symbol), None)
            self.emit(symbol, PROVENANCE_SELF_CONTAINED)


# ===================================================================
# Whole-run helpers used by the CLI
# ===================================================================

def prepare_export(
    input_path: Path,
    use_stdlib: bool = True,
    stdlib_path: Optional[Path] = None,
) -> AnalysisCoordinator:
    """Load sources, pin ids from companion metadata and index."""
    coordinator = load_workspace(input_path, use_stdlib=use_stdlib, stdlib_path=stdlib_path)
    entries = load_companion_metadata(input_path)
    if entries:
        applied = coordinator.apply_metadata(entries)
        logger.info("Restored %d element IDs from metadata", applied)
    coordinator.reindex()
    return coordinator


def export_model(
    input_path: Path,
    format_name: str,
    use_stdlib: bool = True,
    stdlib_path: Optional[Path] = None,
    self_contained: bool = False,
) -> bytes:
    get_format(format_name)
    coordinator = prepare_export(input_path, use_stdlib=use_stdlib, stdlib_path=stdlib_path)
    pipeline = ExportPipeline(coordinator, self_contained=self_contained, name=input_path.stem or "model")
    return pipeline.export(format_name)


def ast_document(coordinator: AnalysisCoordinator) -> Dict[str, Any]:
    """Per-file symbol listing for user files, sorted by path, 1-indexed."""
    files = []
    for source in sorted(coordinator.files(), key=lambda f: f.path):
        if source.is_library:
            continue
        symbols = []
        for symbol in coordinator.file_symbols(source.path):
            entry: Dict[str, Any] = {
                "name": symbol.name,
                "qualified_name": symbol.qualified_name,
                "kind": symbol.kind.value,
                "file": source.path,
                "start_line": symbol.span.start_line + 1,
                "start_col": symbol.span.start_col + 1,
                "end_line": symbol.span.end_line + 1,
                "end_col": symbol.span.end_col + 1,
            }
            if symbol.doc is not None:
                entry["doc"] = symbol.doc
            if symbol.supertypes:
                entry["supertypes"] = symbol.supertypes
            symbols.append(entry)
        files.append({"path": source.path, "symbols": symbols})
    coordinator.mark_exported()
    return {"files": files}


def export_ast(input_path: Path, use_stdlib: bool = True, stdlib_path: Optional[Path] = None) -> str:
    coordinator = load_workspace(input_path, use_stdlib=use_stdlib, stdlib_path=stdlib_path)
    coordinator.reindex()
    return json.dumps(ast_document(coordinator), indent=2)


def export_json(result: AnalysisResult) -> str:
    return json.dumps(result.to_dict(), indent=2)
