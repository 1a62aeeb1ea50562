"""Companion ``*.metadata.json`` files that pin element ids to source text.

Decompiling an interchange document writes SysML text plus a metadata file
mapping qualified names to the original element ids.  Exporting that text
again reads the metadata back so the ids survive the edit cycle.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from . import config
from .interchange import InterchangeDocument

logger = logging.getLogger(__name__)

METADATA_VERSION = 1


def build_metadata(document: InterchangeDocument, source: str = "") -> Dict[str, Any]:
    """Describe every record of *document* by qualified name."""
    records = document.by_id()

    def name_of(element_id: str) -> str:
        record = records.get(element_id)
        if record is not None and record.qualified_name:
            return record.qualified_name
        return document.external_refs.get(element_id, element_id)

    elements: List[Dict[str, Any]] = []
    relationships: List[Dict[str, Any]] = []
    for record in document.records:
        if record.is_relationship:
            relationships.append({
                "id": record.id,
                "kind": record.kind,
                "source": name_of(record.source or record.owner or ""),
                "target": name_of(record.target or ""),
            })
        elif record.qualified_name:
            elements.append({"id": record.id, "kind": record.kind, "qualifiedName": record.qualified_name})

    return {
        "version": METADATA_VERSION,
        "source": source,
        "elements": elements,
        "relationships": relationships,
    }


def read_metadata(path: Path) -> List[Dict[str, Any]]:
    """Flatten one metadata file into entries for ``apply_metadata``."""
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise ValueError(f"{path} does not contain a metadata object")
    entries = list(payload.get("elements", [])) + list(payload.get("relationships", []))
    return [entry for entry in entries if isinstance(entry, dict)]


def find_metadata_files(input_path: Path) -> List[Path]:
    directory = input_path if input_path.is_dir() else input_path.parent
    return sorted(directory.glob(f"*{config.METADATA_SUFFIX}"))


def load_companion_metadata(input_path: Path) -> List[Dict[str, Any]]:
    """Read every companion metadata file next to *input_path*.

    Unreadable files are skipped with a warning; they only carry ids.
    """
    entries: List[Dict[str, Any]] = []
    for path in find_metadata_files(input_path):
        try:
            entries.extend(read_metadata(path))
        except (OSError, ValueError) as exc:
            logger.warning("Note: Could not load metadata: %s", exc)
            continue
        logger.info("Loaded metadata from %s", path)
    return entries
