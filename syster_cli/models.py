"""Core data models used by the analysis engine, diagnostics and exports."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Severity(str, Enum):
    """Closed set of diagnostic severities."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"

    @property
    def prefix(self) -> str:
        return self.value


class SymbolKind(str, Enum):
    """Kinds of named elements produced by the analysis engine.

    Values are the short kind names used in the AST export.
    """

    PACKAGE = "Package"
    LIBRARY_PACKAGE = "LibraryPackage"
    NAMESPACE = "Namespace"

    PART_DEF = "PartDef"
    PART_USAGE = "PartUsage"
    ATTRIBUTE_DEF = "AttributeDef"
    ATTRIBUTE_USAGE = "AttributeUsage"
    PORT_DEF = "PortDef"
    PORT_USAGE = "PortUsage"
    ITEM_DEF = "ItemDef"
    ITEM_USAGE = "ItemUsage"
    ACTION_DEF = "ActionDef"
    ACTION_USAGE = "ActionUsage"
    STATE_DEF = "StateDef"
    STATE_USAGE = "StateUsage"
    REQUIREMENT_DEF = "RequirementDef"
    REQUIREMENT_USAGE = "RequirementUsage"
    CONSTRAINT_DEF = "ConstraintDef"
    CONSTRAINT_USAGE = "ConstraintUsage"
    INTERFACE_DEF = "InterfaceDef"
    INTERFACE_USAGE = "InterfaceUsage"
    CONNECTION_DEF = "ConnectionDef"
    CONNECTION_USAGE = "ConnectionUsage"
    ALLOCATION_DEF = "AllocationDef"
    ALLOCATION_USAGE = "AllocationUsage"
    FLOW_DEF = "FlowDef"
    FLOW_USAGE = "FlowUsage"
    VIEW_DEF = "ViewDef"
    VIEW_USAGE = "ViewUsage"
    VIEWPOINT_DEF = "ViewpointDef"
    VIEWPOINT_USAGE = "ViewpointUsage"
    RENDERING_DEF = "RenderingDef"
    RENDERING_USAGE = "RenderingUsage"
    CONCERN_DEF = "ConcernDef"
    CONCERN_USAGE = "ConcernUsage"
    CALCULATION_DEF = "CalculationDef"
    CALCULATION_USAGE = "CalculationUsage"
    CASE_DEF = "CaseDef"
    CASE_USAGE = "CaseUsage"
    ANALYSIS_CASE_DEF = "AnalysisCaseDef"
    ANALYSIS_CASE_USAGE = "AnalysisCaseUsage"
    VERIFICATION_CASE_DEF = "VerificationCaseDef"
    VERIFICATION_CASE_USAGE = "VerificationCaseUsage"
    USE_CASE_DEF = "UseCaseDef"
    USE_CASE_USAGE = "UseCaseUsage"
    ENUMERATION_DEF = "EnumerationDef"
    ENUMERATION_USAGE = "EnumerationUsage"
    OCCURRENCE_DEF = "OccurrenceDef"
    OCCURRENCE_USAGE = "OccurrenceUsage"
    METADATA_DEF = "MetadataDef"
    METADATA_USAGE = "MetadataUsage"
    REFERENCE_USAGE = "ReferenceUsage"
    USAGE = "Usage"

    # KerML
    CLASSIFIER = "Classifier"
    CLASS = "Class"
    STRUCTURE = "Structure"
    DATA_TYPE = "DataType"
    ASSOCIATION = "Association"
    BEHAVIOR = "Behavior"
    FUNCTION = "Function"
    PREDICATE = "Predicate"
    INTERACTION = "Interaction"
    METACLASS = "Metaclass"
    TYPE = "Type"
    FEATURE = "Feature"
    STEP = "Step"
    EXPRESSION = "Expression"
    CONNECTOR = "Connector"

    ELEMENT = "Element"

    @property
    def is_definition(self) -> bool:
        return self.value.endswith("Def") or self in _KERML_CLASSIFIERS

    @property
    def is_package(self) -> bool:
        return self in (SymbolKind.PACKAGE, SymbolKind.LIBRARY_PACKAGE, SymbolKind.NAMESPACE)


_KERML_CLASSIFIERS = {
    SymbolKind.CLASSIFIER,
    SymbolKind.CLASS,
    SymbolKind.STRUCTURE,
    SymbolKind.DATA_TYPE,
    SymbolKind.ASSOCIATION,
    SymbolKind.BEHAVIOR,
    SymbolKind.FUNCTION,
    SymbolKind.PREDICATE,
    SymbolKind.INTERACTION,
    SymbolKind.METACLASS,
    SymbolKind.TYPE,
}


class RefKind(str, Enum):
    """Outgoing reference kinds carried by a symbol."""

    TYPING = "typing"
    SPECIALIZATION = "specialization"
    SUBSETTING = "subsetting"
    REDEFINITION = "redefinition"


@dataclass
class Span:
    """0-indexed source range."""
    start_line: int = 0
    start_col: int = 0
    end_line: int = 0
    end_col: int = 0


@dataclass
class Reference:
    kind: RefKind
    target: str
    span: Span = field(default_factory=Span)
    # Set for symbols synthesized from an interchange document.
    target_id: Optional[str] = None
    target_qualified_name: Optional[str] = None
    element_id: Optional[str] = None


@dataclass
class Import:
    path: str
    is_namespace: bool = False
    is_recursive: bool = False
    visibility: str = "private"
    span: Span = field(default_factory=Span)
    element_id: Optional[str] = None
    target_id: Optional[str] = None

    @property
    def text(self) -> str:
        if self.is_recursive:
            return f"{self.path}::**"
        if self.is_namespace:
            return f"{self.path}::*"
        return self.path


@dataclass
class Symbol:
    name: str
    qualified_name: str
    kind: SymbolKind
    file: str
    span: Span = field(default_factory=Span)
    owner: Optional[str] = None
    short_name: str = ""
    doc: Optional[str] = None
    is_abstract: bool = False
    direction: str = ""
    references: List[Reference] = field(default_factory=list)
    imports: List[Import] = field(default_factory=list)
    is_library: bool = False
    element_id: Optional[str] = None

    @property
    def supertypes(self) -> List[str]:
        return [
            r.target for r in self.references
            if r.kind in (RefKind.SPECIALIZATION, RefKind.SUBSETTING, RefKind.TYPING)
        ]


@dataclass
class Diagnostic:
    """Engine diagnostic with 0-indexed coordinates."""
    file: str
    span: Span
    message: str
    severity: Severity
    code: Optional[str] = None


@dataclass
class SourceFile:
    path: str
    text: str
    parse_errors: List[Diagnostic] = field(default_factory=list)
    is_library: bool = False


@dataclass
class DiagnosticInfo:
    """A diagnostic at the reporting boundary (1-indexed)."""
    file: str
    line: int
    col: int
    end_line: int
    end_col: int
    message: str
    severity: Severity
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["severity"] = self.severity.value
        return payload

    def format(self) -> str:
        suffix = f"[{self.code}]" if self.code else ""
        return f"{self.severity.prefix}{suffix}: {self.file}:{self.line}:{self.col}: {self.message}"


@dataclass
class AnalysisResult:
    file_count: int
    symbol_count: int
    error_count: int
    warning_count: int
    info_count: int = 0
    hint_count: int = 0
    diagnostics: List[DiagnosticInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_count": self.file_count,
            "symbol_count": self.symbol_count,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "info_count": self.info_count,
            "hint_count": self.hint_count,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


@dataclass
class ImportResult:
    element_count: int
    relationship_count: int
    error_count: int = 0
    messages: List[str] = field(default_factory=list)
    symbol_count: int = 0


@dataclass
class DecompileResult:
    sysml_text: str
    metadata_json: str
    element_count: int
    source_path: str
