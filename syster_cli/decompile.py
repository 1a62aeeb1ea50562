"""Reconstruct SysML text from an interchange document."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from .interchange import (
    IMPORT_KINDS,
    NAMESPACE_IMPORT,
    REF_KINDS,
    ElementRecord,
    InterchangeDocument,
    symbol_kind,
)
from .importer import read_document
from .metadata import build_metadata
from .models import DecompileResult, RefKind, SymbolKind
from .parser import CASE_KEYWORDS, KERML_KEYWORDS, RESERVED, USAGE_KEYWORDS

logger = logging.getLogger(__name__)

INDENT = "    "

KEYWORDS: Dict[SymbolKind, str] = {
    SymbolKind.PACKAGE: "package",
    SymbolKind.LIBRARY_PACKAGE: "library package",
    SymbolKind.NAMESPACE: "namespace",
    SymbolKind.REFERENCE_USAGE: "ref",
    SymbolKind.USAGE: "",
}
for _keyword, (_definition, _usage) in USAGE_KEYWORDS.items():
    KEYWORDS[_definition] = f"{_keyword} def"
    KEYWORDS[_usage] = _keyword
for _keyword, (_definition, _usage) in CASE_KEYWORDS.items():
    KEYWORDS[_definition] = f"{_keyword} case def"
    KEYWORDS[_usage] = f"{_keyword} case"
for _keyword, _kind in KERML_KEYWORDS.items():
    KEYWORDS.setdefault(_kind, _keyword)

_PLAIN_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def quote_name(name: str) -> str:
    if _PLAIN_NAME.fullmatch(name) and name not in RESERVED:
        return name
    escaped = name.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def quote_path(path: str) -> str:
    return "::".join(quote_name(segment) for segment in path.split("::"))


def _operator(kind: RefKind, is_definition: bool) -> str:
    if kind == RefKind.TYPING:
        return ":"
    if kind == RefKind.REDEFINITION:
        return ":>>"
    if kind == RefKind.SPECIALIZATION:
        return ":>" if is_definition else "specializes"
    return "subsets" if is_definition else ":>"


class Decompiler:
    """Render the element tree of a document as SysML textual notation."""

    def __init__(self, document: InterchangeDocument) -> None:
        self.document = document
        self.records = document.by_id()
        self.children: Dict[Optional[str], List[ElementRecord]] = {}
        self.relationships: Dict[str, List[ElementRecord]] = {}
        for record in document.records:
            if record.is_relationship:
                self.relationships.setdefault(record.source or record.owner or "", []).append(record)
            else:
                parent = record.owner if record.owner in self.records else None
                self.children.setdefault(parent, []).append(record)

    def target_name(self, element_id: Optional[str]) -> str:
        record = self.records.get(element_id or "")
        if record is not None and record.qualified_name:
            return record.qualified_name
        if record is not None and record.name:
            return record.name
        return self.document.external_refs.get(element_id or "", element_id or "")

    def render(self) -> str:
        lines: List[str] = []
        for record in self.children.get(None, []):
            self._element(record, 0, lines)
        return "\n".join(lines) + ("\n" if lines else "")

    def _element(self, record: ElementRecord, depth: int, lines: List[str]) -> None:
        pad = INDENT * depth
        kind = symbol_kind(record.kind)
        keyword = KEYWORDS.get(kind)
        if keyword is None or not record.name:
            lines.append(f"{pad}// {record.kind} {record.name or record.id}")
            return

        header: List[str] = []
        if record.is_abstract:
            header.append("abstract")
        direction = record.properties.get("direction")
        if direction:
            header.append(str(direction))
        if keyword:
            header.append(keyword)
        if record.short_name:
            header.append(f"<{quote_name(record.short_name)}>")
        header.append(quote_name(record.name))

        imports: List[str] = []
        clauses: Dict[str, List[str]] = {}
        for relationship in self.relationships.get(record.id, []):
            if relationship.kind in IMPORT_KINDS:
                path = quote_path(self.target_name(relationship.target))
                if relationship.kind == NAMESPACE_IMPORT:
                    path += "::**" if relationship.properties.get("isRecursive") else "::*"
                visibility = relationship.properties.get("visibility", "private")
                prefix = "public import" if visibility == "public" else "import"
                imports.append(f"{prefix} {path};")
            elif relationship.kind in REF_KINDS:
                operator = _operator(REF_KINDS[relationship.kind], kind.is_definition)
                clauses.setdefault(operator, []).append(quote_path(self.target_name(relationship.target)))
        for operator, targets in clauses.items():
            header.append(f"{operator} {', '.join(targets)}")

        children = self.children.get(record.id, [])
        if not (children or imports or record.doc):
            lines.append(f"{pad}{' '.join(header)};")
            return
        lines.append(f"{pad}{' '.join(header)} {{")
        inner = INDENT * (depth + 1)
        if record.doc:
            body = record.doc.replace("*/", "* /")
            lines.append(f"{inner}doc /* {body} */")
        for statement in imports:
            lines.append(f"{inner}{statement}")
        for child in children:
            self._element(child, depth + 1, lines)
        lines.append(f"{pad}}}")


def decompile_document(document: InterchangeDocument, source_path: str = "") -> DecompileResult:
    text = Decompiler(document).render()
    metadata = build_metadata(document, source=source_path)
    return DecompileResult(
        sysml_text=text,
        metadata_json=json.dumps(metadata, indent=2),
        element_count=len(document.elements()),
        source_path=source_path,
    )


def decompile_model(path: Path, format_name: Optional[str] = None) -> DecompileResult:
    logger.info("Decompiling %s", path)
    return decompile_document(read_document(path, format_name), source_path=str(path))
