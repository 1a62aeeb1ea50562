"""Format-agnostic element graph shared by every serializer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from . import __version__
from .models import RefKind, SymbolKind

TOOL_NAME = "syster"

# Fixed namespace so minted ids are identical across runs and machines.
ID_NAMESPACE = uuid.UUID("6f1c3a52-8d3e-5b1e-9a8c-2f4e7d9b0c11")

PROVENANCE_MODEL = "model"
PROVENANCE_SELF_CONTAINED = "self-contained"

RELATIONSHIP_KINDS: Dict[RefKind, str] = {
    RefKind.TYPING: "FeatureTyping",
    RefKind.SPECIALIZATION: "Specialization",
    RefKind.SUBSETTING: "Subsetting",
    RefKind.REDEFINITION: "Redefinition",
}
REF_KINDS: Dict[str, RefKind] = {value: key for key, value in RELATIONSHIP_KINDS.items()}

NAMESPACE_IMPORT = "NamespaceImport"
MEMBERSHIP_IMPORT = "MembershipImport"
IMPORT_KINDS = (NAMESPACE_IMPORT, MEMBERSHIP_IMPORT)

RELATIONSHIP_TYPES = set(RELATIONSHIP_KINDS.values()) | set(IMPORT_KINDS)


def element_kind(kind: SymbolKind) -> str:
    """Interchange metaclass name for an engine symbol kind."""
    if kind.value.endswith("Def"):
        return kind.value[:-3] + "Definition"
    return kind.value


ELEMENT_KINDS: Dict[str, SymbolKind] = {element_kind(kind): kind for kind in SymbolKind}


def symbol_kind(name: str) -> SymbolKind:
    """Engine symbol kind for an interchange metaclass name (``Element`` if unknown)."""
    if name in ELEMENT_KINDS:
        return ELEMENT_KINDS[name]
    try:
        return SymbolKind(name)
    except ValueError:
        return SymbolKind.ELEMENT


def mint_id(kind: str, qualified_name: str) -> str:
    """Deterministic element id from the kind-qualified name."""
    return str(uuid.uuid5(ID_NAMESPACE, f"{kind}:{qualified_name}"))


@dataclass
class ElementRecord:
    """One element or relationship of an interchange document.

    References to other records (``owner``, ``source``, ``target``) are
    weak, by id.
    """

    id: str
    kind: str
    name: Optional[str] = None
    qualified_name: Optional[str] = None
    owner: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    doc: Optional[str] = None
    short_name: Optional[str] = None
    is_abstract: bool = False
    properties: Dict[str, Any] = field(default_factory=dict)
    provenance: str = PROVENANCE_MODEL

    @property
    def is_relationship(self) -> bool:
        return self.kind in RELATIONSHIP_TYPES or self.source is not None

    def references(self) -> Iterator[str]:
        for value in (self.owner, self.source, self.target):
            if value:
                yield value


@dataclass
class InterchangeDocument:
    records: List[ElementRecord] = field(default_factory=list)
    external_refs: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.metadata.setdefault("tool", TOOL_NAME)
        self.metadata.setdefault("version", __version__)
        self.metadata.setdefault("selfContained", False)

    def get(self, element_id: str) -> Optional[ElementRecord]:
        for record in self.records:
            if record.id == element_id:
                return record
        return None

    def by_id(self) -> Dict[str, ElementRecord]:
        return {record.id: record for record in self.records}

    def ids(self) -> List[str]:
        return [record.id for record in self.records]

    def elements(self) -> List[ElementRecord]:
        return [record for record in self.records if not record.is_relationship]

    def relationships(self) -> List[ElementRecord]:
        return [record for record in self.records if record.is_relationship]

    def children_of(self, owner_id: Optional[str]) -> List[ElementRecord]:
        return [record for record in self.records if record.owner == owner_id]

    def dangling_references(self) -> List[str]:
        """Describe every id reference that resolves neither locally nor externally."""
        known = {record.id for record in self.records} | set(self.external_refs)
        problems: List[str] = []
        for record in self.records:
            for role in ("owner", "source", "target"):
                value = getattr(record, role)
                if value and value not in known:
                    problems.append(f"{record.kind} {record.id}: {role} references unknown element {value}")
        return problems
