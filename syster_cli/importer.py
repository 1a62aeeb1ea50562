"""Import pipeline: interchange documents into validation results or a live workspace."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from .coordinator import AnalysisCoordinator
from .errors import ImportStructuralError, SourceReadError
from .export import ExportPipeline
from .formats import detect_format
from .interchange import (
    IMPORT_KINDS,
    NAMESPACE_IMPORT,
    PROVENANCE_SELF_CONTAINED,
    REF_KINDS,
    ElementRecord,
    InterchangeDocument,
    symbol_kind,
)
from .models import Import, ImportResult, Reference, Symbol

logger = logging.getLogger(__name__)


def read_document(path: Path, format_name: Optional[str] = None) -> InterchangeDocument:
    """Read and parse an interchange file; malformed content is fatal."""
    model_format = detect_format(path, format_name)
    logger.info("Importing %s as %s", path, model_format.name)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise SourceReadError(path, str(exc)) from exc
    return model_format.read(data)


def validate(document: InterchangeDocument) -> ImportResult:
    """Count elements and relationships; each dangling reference is a message."""
    messages = document.dangling_references()
    seen = set()
    for record in document.records:
        if record.id in seen:
            messages.append(f"Duplicate element id {record.id}")
        seen.add(record.id)
    return ImportResult(
        element_count=len(document.elements()),
        relationship_count=len(document.relationships()),
        error_count=len(messages),
        messages=messages,
    )


def import_model(path: Path, format_name: Optional[str] = None) -> ImportResult:
    return validate(read_document(path, format_name))


class ImportPipeline:
    """Turn an interchange document into symbols that keep their original ids."""

    def __init__(self, coordinator: AnalysisCoordinator) -> None:
        self.coordinator = coordinator

    def import_document(self, document: InterchangeDocument, source: str) -> ImportResult:
        result = validate(document)
        if result.error_count:
            raise ImportStructuralError(
                f"Document has {result.error_count} dangling or duplicate references", result.messages
            )

        # Library elements inlined by a self-contained export bind to the
        # loaded standard library when it has the same qualified name.
        self.coordinator.reindex()
        index = self.coordinator.index()

        records = document.by_id()
        names: Dict[str, str] = dict(document.external_refs)
        symbols: Dict[str, Symbol] = {}
        ordered: List[Symbol] = []

        for record in document.records:
            if record.is_relationship:
                continue
            qualified_name = _qualified_name(record, records)
            names[record.id] = qualified_name
            if record.provenance == PROVENANCE_SELF_CONTAINED:
                existing = index.lookup(qualified_name)
                if existing is not None and existing.is_library:
                    existing.element_id = record.id
                    continue
            owner = records.get(record.owner) if record.owner else None
            symbol = Symbol(
                name=record.name or "",
                qualified_name=qualified_name,
                kind=symbol_kind(record.kind),
                file=source,
                owner=_qualified_name(owner, records) if owner is not None else None,
                short_name=record.short_name or "",
                doc=record.doc,
                is_abstract=record.is_abstract,
                direction=str(record.properties.get("direction", "")),
                is_library=record.provenance == PROVENANCE_SELF_CONTAINED,
                element_id=record.id,
            )
            symbols[record.id] = symbol
            ordered.append(symbol)

        skipped = 0
        for record in document.relationships():
            source_symbol = symbols.get(record.source or record.owner or "")
            if source_symbol is None:
                skipped += 1
                continue
            target_name = names.get(record.target or "", "")
            if record.kind in IMPORT_KINDS:
                source_symbol.imports.append(Import(
                    path=target_name,
                    is_namespace=record.kind == NAMESPACE_IMPORT,
                    is_recursive=bool(record.properties.get("isRecursive", False)),
                    visibility=str(record.properties.get("visibility", "private")),
                    element_id=record.id,
                    target_id=record.target,
                ))
            elif record.kind in REF_KINDS:
                source_symbol.references.append(Reference(
                    kind=REF_KINDS[record.kind],
                    target=target_name,
                    target_id=record.target,
                    target_qualified_name=target_name,
                    element_id=record.id,
                ))
            else:
                skipped += 1
        if skipped:
            logger.warning("Skipped %d relationships without a supported kind or source", skipped)

        self.coordinator.load_model(ordered, source)
        self.coordinator.reindex()
        logger.info("Loaded symbols into workspace with preserved element IDs")
        return ImportResult(
            element_count=result.element_count,
            relationship_count=result.relationship_count,
            symbol_count=len(ordered),
        )

    def import_file(self, path: Path, format_name: Optional[str] = None) -> ImportResult:
        return self.import_document(read_document(path, format_name), str(path))


def _qualified_name(record: ElementRecord, records: Dict[str, ElementRecord]) -> str:
    if record.qualified_name:
        return record.qualified_name
    parts: List[str] = []
    current: Optional[ElementRecord] = record
    seen = set()
    while current is not None and current.id not in seen:
        seen.add(current.id)
        if current.qualified_name:
            parts.append(current.qualified_name)
            break
        parts.append(current.name or current.id)
        current = records.get(current.owner) if current.owner else None
    return "::".join(reversed(parts))


class RoundtripController:
    """Import, re-index and export while keeping every element id."""

    def __init__(self, coordinator: Optional[AnalysisCoordinator] = None) -> None:
        self.coordinator = coordinator or AnalysisCoordinator()

    def run(
        self,
        document: InterchangeDocument,
        format_name: str,
        source: str = "<import>",
        self_contained: bool = False,
    ) -> bytes:
        ImportPipeline(self.coordinator).import_document(document, source)
        self.coordinator.reindex()
        name = document.metadata.get("name", "model")
        return ExportPipeline(self.coordinator, self_contained=self_contained, name=name).export(format_name)
