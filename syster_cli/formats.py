"""Interchange format readers and writers (XMI, YAML, JSON-LD, KPAR)."""

from __future__ import annotations

import io
import json
import logging
import xml.etree.ElementTree as ET
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ImportStructuralError, UnsupportedFormatError
from .interchange import PROVENANCE_MODEL, RELATIONSHIP_TYPES, ElementRecord, InterchangeDocument

logger = logging.getLogger(__name__)

XMI_NS = "http://www.omg.org/spec/XMI/20131001"
SYSML_NS = "http://www.omg.org/spec/SysML/20230201"
JSONLD_CONTEXT = {
    "@vocab": "https://www.omg.org/spec/SysML/20230201/vocab#",
    "sysml": SYSML_NS,
}

ET.register_namespace("xmi", XMI_NS)
ET.register_namespace("sysml", SYSML_NS)


class ModelFormat(ABC):
    """Abstract base class for interchange serializers."""

    name: str = ""
    extensions: Tuple[str, ...] = ()
    binary: bool = False

    @abstractmethod
    def write(self, document: InterchangeDocument) -> bytes:
        ...

    @abstractmethod
    def read(self, data: bytes) -> InterchangeDocument:
        ...


# ===================================================================
# Mapping form shared by YAML and JSON-LD
# ===================================================================

def _ref(value: Optional[str]) -> Optional[Dict[str, str]]:
    return {"@id": value} if value else None


def _unref(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("@id")
    return str(value) if value else None


def record_to_mapping(record: ElementRecord, owned: List[str]) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {"@id": record.id, "@type": record.kind}
    if record.name is not None:
        mapping["name"] = record.name
    if record.short_name:
        mapping["shortName"] = record.short_name
    if record.qualified_name is not None:
        mapping["qualifiedName"] = record.qualified_name
    if record.owner:
        mapping["owner"] = _ref(record.owner)
    if record.source:
        mapping["source"] = _ref(record.source)
    if record.target:
        mapping["target"] = _ref(record.target)
    if record.is_abstract:
        mapping["isAbstract"] = True
    if record.doc:
        mapping["documentation"] = record.doc
    for key, value in record.properties.items():
        mapping[key] = value
    if record.provenance != PROVENANCE_MODEL:
        mapping["provenance"] = record.provenance
    if owned:
        mapping["ownedMember"] = [{"@id": child} for child in owned]
    return mapping


_MAPPING_KEYS = {
    "@id", "@type", "name", "shortName", "qualifiedName", "owner", "source",
    "target", "isAbstract", "documentation", "provenance", "ownedMember",
}


def mapping_to_record(mapping: Any) -> ElementRecord:
    if not isinstance(mapping, dict):
        raise ImportStructuralError(f"Expected an element mapping, got {type(mapping).__name__}")
    if not mapping.get("@id"):
        raise ImportStructuralError(f"Element without '@id': {mapping!r}")
    if not mapping.get("@type"):
        raise ImportStructuralError(f"Element {mapping['@id']} has no '@type'")
    return ElementRecord(
        id=str(mapping["@id"]),
        kind=str(mapping["@type"]),
        name=mapping.get("name"),
        qualified_name=mapping.get("qualifiedName"),
        owner=_unref(mapping.get("owner")),
        source=_unref(mapping.get("source")),
        target=_unref(mapping.get("target")),
        doc=mapping.get("documentation"),
        short_name=mapping.get("shortName"),
        is_abstract=bool(mapping.get("isAbstract", False)),
        properties={k: v for k, v in mapping.items() if k not in _MAPPING_KEYS},
        provenance=mapping.get("provenance", PROVENANCE_MODEL),
    )


def _owned_index(document: InterchangeDocument) -> Dict[str, List[str]]:
    owned: Dict[str, List[str]] = {}
    for record in document.records:
        if record.owner and not record.is_relationship:
            owned.setdefault(record.owner, []).append(record.id)
    return owned


def _external_list(document: InterchangeDocument) -> List[Dict[str, str]]:
    return [{"@id": key, "qualifiedName": value} for key, value in document.external_refs.items()]


def _external_map(entries: Any) -> Dict[str, str]:
    if not entries:
        return {}
    if isinstance(entries, dict):
        return {str(k): str(v) for k, v in entries.items()}
    if not isinstance(entries, list):
        raise ImportStructuralError("externalReferences must be a list")
    result: Dict[str, str] = {}
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("@id"):
            raise ImportStructuralError(f"Malformed external reference: {entry!r}")
        result[str(entry["@id"])] = str(entry.get("qualifiedName", ""))
    return result


# ===================================================================
# JSON-LD
# ===================================================================

class JsonLdFormat(ModelFormat):
    name = "jsonld"
    extensions = (".jsonld", ".json")

    def write(self, document: InterchangeDocument) -> bytes:
        owned = _owned_index(document)
        payload = {
            "@context": JSONLD_CONTEXT,
            "metadata": document.metadata,
            "@graph": [record_to_mapping(r, owned.get(r.id, [])) for r in document.records],
            "externalReferences": _external_list(document),
        }
        return (json.dumps(payload, indent=2, ensure_ascii=False) + "\n").encode("utf-8")

    def read(self, data: bytes) -> InterchangeDocument:
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ImportStructuralError(f"Invalid JSON-LD: {exc}") from exc
        if isinstance(payload, list):
            graph, external, metadata = payload, [], {}
        elif isinstance(payload, dict) and "@graph" in payload:
            graph = payload["@graph"]
            external = payload.get("externalReferences", [])
            metadata = payload.get("metadata", {}) or {}
        elif isinstance(payload, dict) and "@id" in payload:
            graph, external, metadata = [payload], [], {}
        else:
            raise ImportStructuralError("Invalid JSON-LD: expected '@graph' or a list of elements")
        if not isinstance(graph, list):
            raise ImportStructuralError("Invalid JSON-LD: '@graph' must be a list")
        return InterchangeDocument(
            records=[mapping_to_record(m) for m in graph],
            external_refs=_external_map(external),
            metadata=dict(metadata),
        )


# ===================================================================
# YAML
# ===================================================================

class YamlFormat(ModelFormat):
    name = "yaml"
    extensions = (".yaml", ".yml")

    def write(self, document: InterchangeDocument) -> bytes:
        owned = _owned_index(document)
        payload = {
            "metadata": dict(document.metadata),
            "elements": [record_to_mapping(r, owned.get(r.id, [])) for r in document.records],
            "externalReferences": _external_list(document),
        }
        text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True, default_flow_style=False)
        return text.encode("utf-8")

    def read(self, data: bytes) -> InterchangeDocument:
        try:
            payload = yaml.safe_load(data.decode("utf-8"))
        except (UnicodeDecodeError, yaml.YAMLError) as exc:
            raise ImportStructuralError(f"Invalid YAML: {exc}") from exc
        if isinstance(payload, list):
            payload = {"elements": payload}
        if not isinstance(payload, dict) or not isinstance(payload.get("elements", []), list):
            raise ImportStructuralError("Invalid YAML: expected a mapping with an 'elements' list")
        return InterchangeDocument(
            records=[mapping_to_record(m) for m in payload.get("elements") or []],
            external_refs=_external_map(payload.get("externalReferences")),
            metadata=dict(payload.get("metadata") or {}),
        )


# ===================================================================
# XMI
# ===================================================================

def _xmi(attr: str) -> str:
    return f"{{{XMI_NS}}}{attr}"


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _from_text(value: str) -> Any:
    if value == "true":
        return True
    if value == "false":
        return False
    return value


_XMI_ATTRS = {"name", "qualifiedName", "shortName", "source", "target", "isAbstract", "provenance"}

# Containment wrappers that carry no element of their own.
_XMI_WRAPPERS = {"ownedMember", "ownedRelationship", "ownedRelatedElement", "ownedElement", "member"}


class XmiFormat(ModelFormat):
    name = "xmi"
    extensions = (".xmi", ".sysmlx", ".kermlx")

    def write(self, document: InterchangeDocument) -> bytes:
        root = ET.Element(_xmi("XMI"), {_xmi("version"): "2.5.1"})
        known = {record.id for record in document.records}
        children: Dict[Optional[str], List[ElementRecord]] = {}
        for record in document.records:
            parent = record.owner if record.owner in known else None
            children.setdefault(parent, []).append(record)

        def emit(parent: ET.Element, record: ElementRecord, nested: bool) -> None:
            tag = f"{{{SYSML_NS}}}{record.kind}"
            if nested:
                wrapper = "ownedRelationship" if record.is_relationship else "ownedMember"
                parent = ET.SubElement(parent, wrapper)
            element = ET.SubElement(parent, tag, {_xmi("id"): record.id})
            if record.name is not None:
                element.set("name", record.name)
            if record.short_name:
                element.set("shortName", record.short_name)
            if record.qualified_name is not None:
                element.set("qualifiedName", record.qualified_name)
            if record.source:
                element.set("source", record.source)
            if record.target:
                element.set("target", record.target)
            if record.is_abstract:
                element.set("isAbstract", "true")
            for key, value in record.properties.items():
                element.set(key, _to_text(value))
            if record.provenance != PROVENANCE_MODEL:
                element.set("provenance", record.provenance)
            if record.doc:
                ET.SubElement(element, "documentation").text = record.doc
            for child in children.get(record.id, []):
                emit(element, child, nested=True)

        for record in children.get(None, []):
            emit(root, record, nested=False)

        extension = ET.SubElement(root, _xmi("Extension"), {"extender": "syster"})
        ET.SubElement(extension, "metadata", {k: _to_text(v) for k, v in document.metadata.items()})
        for element_id, qualified_name in document.external_refs.items():
            ET.SubElement(extension, "externalReference", {_xmi("idref"): element_id, "qualifiedName": qualified_name})

        ET.indent(root)
        return ET.tostring(root, encoding="UTF-8", xml_declaration=True) + b"\n"

    def read(self, data: bytes) -> InterchangeDocument:
        try:
            root = ET.fromstring(data)
        except ET.ParseError as exc:
            raise ImportStructuralError(f"Invalid XMI: {exc}") from exc

        document = InterchangeDocument()
        if _local(root.tag) == "XMI":
            for child in root:
                self._visit(child, None, None, document)
        else:
            self._visit(root, None, None, document)
        return document

    def _visit(
        self,
        element: ET.Element,
        owner: Optional[str],
        owner_name: Optional[str],
        document: InterchangeDocument,
    ) -> None:
        local = _local(element.tag)
        if local == "Extension":
            self._read_extension(element, document)
            return
        if local == "documentation":
            return
        kind = element.get(_xmi("type"), "").split(":")[-1] or (local if local not in _XMI_WRAPPERS else "")
        element_id = element.get(_xmi("id"))
        if not kind or (element_id is None and local in _XMI_WRAPPERS):
            for child in element:
                self._visit(child, owner, owner_name, document)
            return
        if not element_id:
            raise ImportStructuralError(f"Element <{local}> has no xmi:id")

        name = element.get("name")
        qualified_name = element.get("qualifiedName")
        is_relationship = kind in RELATIONSHIP_TYPES or element.get("source") is not None
        if qualified_name is None and name is not None and not is_relationship:
            qualified_name = f"{owner_name}::{name}" if owner_name else name
        documentation = element.find("documentation")
        record = ElementRecord(
            id=element_id,
            kind=kind,
            name=name,
            qualified_name=qualified_name,
            owner=owner,
            source=element.get("source"),
            target=element.get("target"),
            doc=documentation.text if documentation is not None else None,
            short_name=element.get("shortName"),
            is_abstract=element.get("isAbstract") == "true",
            properties={
                k: _from_text(v) for k, v in element.attrib.items()
                if k not in _XMI_ATTRS and not k.startswith("{")
            },
            provenance=element.get("provenance", PROVENANCE_MODEL),
        )
        document.records.append(record)
        child_name = owner_name if is_relationship else qualified_name
        for child in element:
            self._visit(child, element_id, child_name, document)

    @staticmethod
    def _read_extension(element: ET.Element, document: InterchangeDocument) -> None:
        for child in element:
            local = _local(child.tag)
            if local == "metadata":
                document.metadata.update({k: _from_text(v) for k, v in child.attrib.items()})
            elif local == "externalReference":
                element_id = child.get(_xmi("idref"))
                if not element_id:
                    raise ImportStructuralError("externalReference without xmi:idref")
                document.external_refs[element_id] = child.get("qualifiedName", "")


# ===================================================================
# KPAR (zip package archive)
# ===================================================================

KPAR_MODEL_ENTRY = "model.xmi"
KPAR_MANIFEST = ".project.json"
KPAR_META = ".meta.json"
_ZIP_DATE = (1980, 1, 1, 0, 0, 0)


class KparFormat(ModelFormat):
    """Zip archive holding a project manifest and the model as XMI."""

    name = "kpar"
    extensions = (".kpar",)
    binary = True

    def __init__(self) -> None:
        self._xmi = XmiFormat()

    def write(self, document: InterchangeDocument) -> bytes:
        manifest = {
            "name": document.metadata.get("name", "model"),
            "version": document.metadata.get("version", ""),
            "model": KPAR_MODEL_ENTRY,
            "selfContained": bool(document.metadata.get("selfContained", False)),
        }
        meta = {"tool": document.metadata.get("tool"), "elementCount": len(document.records)}
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for entry, payload in (
                (KPAR_MANIFEST, json.dumps(manifest, indent=2).encode("utf-8")),
                (KPAR_META, json.dumps(meta, indent=2).encode("utf-8")),
                (KPAR_MODEL_ENTRY, self._xmi.write(document)),
            ):
                info = zipfile.ZipInfo(entry, date_time=_ZIP_DATE)
                info.compress_type = zipfile.ZIP_DEFLATED
                archive.writestr(info, payload)
        return buffer.getvalue()

    def read(self, data: bytes) -> InterchangeDocument:
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                names = archive.namelist()
                entry = KPAR_MODEL_ENTRY
                if KPAR_MANIFEST in names:
                    manifest = json.loads(archive.read(KPAR_MANIFEST).decode("utf-8"))
                    entry = manifest.get("model", entry)
                if entry not in names:
                    candidates = [n for n in names if Path(n).suffix in self._xmi.extensions]
                    if not candidates:
                        raise ImportStructuralError("KPAR archive contains no model entry")
                    entry = candidates[0]
                payload = archive.read(entry)
        except (zipfile.BadZipFile, json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ImportStructuralError(f"Invalid KPAR archive: {exc}") from exc
        return self._xmi.read(payload)


# ===================================================================
# Registry
# ===================================================================

FORMATS: Dict[str, ModelFormat] = {
    "xmi": XmiFormat(),
    "yaml": YamlFormat(),
    "jsonld": JsonLdFormat(),
    "kpar": KparFormat(),
}

ALIASES: Dict[str, str] = {"json-ld": "jsonld", "yml": "yaml", "json": "jsonld"}


def get_format(name: str) -> ModelFormat:
    key = ALIASES.get(name.lower(), name.lower())
    if key not in FORMATS:
        raise UnsupportedFormatError(name, list(FORMATS))
    return FORMATS[key]


def detect_format(path: Path, override: Optional[str] = None) -> ModelFormat:
    """Pick a format from an explicit override or the file extension."""
    if override:
        return get_format(override)
    suffix = path.suffix.lower()
    for model_format in FORMATS.values():
        if suffix in model_format.extensions:
            return model_format
    raise UnsupportedFormatError(suffix or path.name, [ext for f in FORMATS.values() for ext in f.extensions])
