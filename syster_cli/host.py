"""Analysis host: owns loaded files, the symbol index and semantic checks."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .models import (
    Diagnostic,
    Import,
    RefKind,
    Reference,
    Severity,
    SourceFile,
    Span,
    Symbol,
    SymbolKind,
)
from .parser import Parser, SysMLParser

logger = logging.getLogger(__name__)

UNRESOLVED_TYPE = "E0101"
UNRESOLVED_SPECIALIZATION = "E0102"
UNRESOLVED_REDEFINITION = "E0103"
DUPLICATE_MEMBER = "E0201"
UNRESOLVED_IMPORT = "W0301"
SPECIALIZATION_CYCLE = "W0302"
DUPLICATE_IMPORT = "I0401"
UNTYPED_REFERENCE = "H0501"

_INHERITING = (RefKind.TYPING, RefKind.SPECIALIZATION, RefKind.SUBSETTING, RefKind.REDEFINITION)

_PATH_SPLIT = re.compile(r"::|\.")


def split_path(path: str) -> List[str]:
    return [segment for segment in _PATH_SPLIT.split(path) if segment]


def parent_name(qualified_name: str) -> Optional[str]:
    if "::" not in qualified_name:
        return None
    return qualified_name.rsplit("::", 1)[0]


class SymbolIndex:
    """Lookup tables over every symbol of the loaded files plus name resolution.

    ``children`` maps an owner qualified name (``None`` for the root
    namespace) to its members, so packages reopened across several files
    share one member list.
    """

    def __init__(self, symbols: Iterable[Symbol], root_imports: Dict[str, List[Import]]) -> None:
        self._symbols: List[Symbol] = list(symbols)
        self._root_imports = root_imports
        self.by_qualified_name: Dict[str, List[Symbol]] = defaultdict(list)
        self.children: Dict[Optional[str], List[Symbol]] = defaultdict(list)
        self.by_id: Dict[str, Symbol] = {}
        for symbol in self._symbols:
            self.by_qualified_name[symbol.qualified_name].append(symbol)
            self.children[symbol.owner].append(symbol)
            if symbol.element_id:
                self.by_id.setdefault(symbol.element_id, symbol)
        self._cache: Dict[Tuple[str, Optional[str], str], Optional[Symbol]] = {}
        self._resolving: Set[Tuple[str, Optional[str], str]] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def all_symbols(self) -> List[Symbol]:
        return list(self._symbols)

    def __len__(self) -> int:
        return len(self._symbols)

    def lookup(self, qualified_name: str) -> Optional[Symbol]:
        found = self.by_qualified_name.get(qualified_name)
        return found[0] if found else None

    def lookup_id(self, element_id: str) -> Optional[Symbol]:
        return self.by_id.get(element_id)

    def members(self, qualified_name: Optional[str]) -> List[Symbol]:
        return list(self.children.get(qualified_name, []))

    def imports_of(self, namespace: Optional[str], file: str) -> List[Import]:
        if namespace is None:
            return list(self._root_imports.get(file, []))
        imports: List[Import] = []
        for symbol in self.by_qualified_name.get(namespace, []):
            imports.extend(symbol.imports)
        return imports

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, path: str, scope: Optional[str], file: str) -> Optional[Symbol]:
        """Resolve *path* as seen from namespace *scope* in *file*.

        The first segment walks the scope chain (members, inherited members,
        imports at each level); remaining segments descend through members.
        Falls back to the global qualified name.
        """
        key = (path, scope, file)
        if key in self._cache:
            return self._cache[key]
        if key in self._resolving:
            return None
        self._resolving.add(key)
        try:
            found = self._resolve_uncached(path, scope, file)
        finally:
            self._resolving.discard(key)
        self._cache[key] = found
        return found

    def resolve_reference(self, reference: Reference, symbol: Symbol) -> Optional[Symbol]:
        """Resolve an outgoing reference of *symbol*, preferring a bound id."""
        if reference.target_id:
            bound = self.by_id.get(reference.target_id)
            if bound is not None:
                return bound
        if reference.target_qualified_name:
            bound = self.lookup(reference.target_qualified_name)
            if bound is not None:
                return bound
        if reference.kind == RefKind.REDEFINITION and symbol.owner is not None:
            # Redefined features are inherited members of the owner, never its own.
            inherited = self._inherited_member(symbol.owner, split_path(reference.target)[-1], symbol.file)
            if inherited is not None:
                return inherited
            # The owner's own scope would find the redefining feature itself.
            found = self.resolve(reference.target, parent_name(symbol.owner), symbol.file)
            return None if found is symbol else found
        return self.resolve(reference.target, symbol.owner, symbol.file)

    def resolve_import(self, imported: Import, scope: Optional[str]) -> Optional[Symbol]:
        """Resolve the namespace or member named by an import."""
        if imported.target_id:
            bound = self.by_id.get(imported.target_id)
            if bound is not None:
                return bound
        found = self.lookup(imported.path)
        if found is not None:
            return found
        current = scope
        while current is not None:
            found = self.lookup(f"{current}::{imported.path}")
            if found is not None:
                return found
            current = parent_name(current)
        return None

    def _inherited_member(self, namespace: str, name: str, file: str) -> Optional[Symbol]:
        visited = {namespace}
        for symbol in self.by_qualified_name.get(namespace, []):
            for reference in symbol.references:
                if reference.kind not in _INHERITING:
                    continue
                supertype = self.resolve_reference(reference, symbol)
                if supertype is None or supertype.qualified_name == namespace:
                    continue
                found = self._member(supertype.qualified_name, name, file, visited)
                if found is not None:
                    return found
        return None

    def _resolve_uncached(self, path: str, scope: Optional[str], file: str) -> Optional[Symbol]:
        segments = split_path(path)
        if not segments:
            return None
        current = self._resolve_simple(segments[0], scope, file)
        for segment in segments[1:]:
            if current is None:
                break
            current = self._member(current.qualified_name, segment, file, set())
        if current is not None:
            return current
        return self.lookup(path)

    def _resolve_simple(self, name: str, scope: Optional[str], file: str) -> Optional[Symbol]:
        current = scope
        while True:
            found = self._lookup_in_namespace(name, current, file)
            if found is not None:
                return found
            if current is None:
                return None
            owner = self.lookup(current)
            current = owner.owner if owner is not None else parent_name(current)

    def _lookup_in_namespace(self, name: str, namespace: Optional[str], file: str) -> Optional[Symbol]:
        found = self._member(namespace, name, file, set())
        if found is not None:
            return found
        return self._through_imports(name, namespace, file, set(), public_only=False)

    def _member(self, namespace: Optional[str], name: str, file: str, visited: Set[str]) -> Optional[Symbol]:
        """Direct or inherited member *name* of *namespace*."""
        for child in self.children.get(namespace, []):
            if child.name == name or (child.short_name and child.short_name == name):
                return child
        if namespace is None or namespace in visited:
            return None
        visited.add(namespace)
        for symbol in self.by_qualified_name.get(namespace, []):
            for reference in symbol.references:
                if reference.kind not in _INHERITING:
                    continue
                supertype = self.resolve_reference(reference, symbol)
                if supertype is None or supertype.qualified_name == namespace:
                    continue
                found = self._member(supertype.qualified_name, name, file, visited)
                if found is not None:
                    return found
        return None

    def _through_imports(
        self,
        name: str,
        namespace: Optional[str],
        file: str,
        visited: Set[str],
        public_only: bool,
    ) -> Optional[Symbol]:
        marker = namespace if namespace is not None else f"<root:{file}>"
        if marker in visited:
            return None
        visited.add(marker)
        for imported in self.imports_of(namespace, file):
            if public_only and imported.visibility != "public":
                continue
            target = self.resolve_import(imported, namespace)
            if target is None:
                continue
            if not (imported.is_namespace or imported.is_recursive):
                if target.name == name:
                    return target
                continue
            found = self._member(target.qualified_name, name, file, set())
            if found is None and imported.is_recursive:
                found = self._descendant(target.qualified_name, name)
            if found is None:
                found = self._through_imports(name, target.qualified_name, file, visited, public_only=True)
            if found is not None:
                return found
        return None

    def _descendant(self, namespace: str, name: str) -> Optional[Symbol]:
        queue = list(self.children.get(namespace, []))
        while queue:
            symbol = queue.pop(0)
            if symbol.name == name:
                return symbol
            queue.extend(self.children.get(symbol.qualified_name, []))
        return None


class AnalysisHost:
    """Holds loaded files and answers index and diagnostic queries.

    The index is rebuilt only on :meth:`rebuild_index`; loading a file leaves
    the previous index in place until then.
    """

    def __init__(self, parser: Optional[Parser] = None) -> None:
        self._parser = parser or SysMLParser()
        self._files: Dict[str, SourceFile] = {}
        self._symbols: Dict[str, List[Symbol]] = {}
        self._root_imports: Dict[str, List[Import]] = {}
        self._index: Optional[SymbolIndex] = None
        self._semantic: Dict[str, List[Diagnostic]] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def set_file_content(self, path: str, text: str, is_library: bool = False) -> List[Diagnostic]:
        """Register or replace *path* and return its parse diagnostics."""
        result = self._parser.parse(path, text, is_library=is_library)
        self._files.pop(path, None)
        self._files[path] = SourceFile(path=path, text=text, parse_errors=result.errors, is_library=is_library)
        self._symbols[path] = result.symbols
        self._root_imports[path] = result.imports
        return list(result.errors)

    def add_symbols_from_model(self, symbols: List[Symbol], source: str) -> None:
        """Register symbols synthesized from an interchange document under *source*."""
        self._files.pop(source, None)
        self._files[source] = SourceFile(path=source, text="")
        self._symbols[source] = list(symbols)
        self._root_imports[source] = []

    def rebuild_index(self) -> SymbolIndex:
        symbols: List[Symbol] = []
        for path in self._files:
            symbols.extend(self._symbols.get(path, []))
        self._index = SymbolIndex(symbols, self._root_imports)
        self._semantic = self._run_checks(self._index)
        logger.debug("Indexed %d symbols across %d files", len(symbols), len(self._files))
        return self._index

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def files(self) -> List[SourceFile]:
        return list(self._files.values())

    def symbol_index(self) -> SymbolIndex:
        if self._index is None:
            return self.rebuild_index()
        return self._index

    def file_symbols(self, path: str) -> List[Symbol]:
        return list(self._symbols.get(path, []))

    def root_imports(self, path: str) -> List[Import]:
        return list(self._root_imports.get(path, []))

    def check_file(self, path: str) -> List[Diagnostic]:
        """Parse diagnostics followed by semantic diagnostics for *path*."""
        source = self._files.get(path)
        if source is None:
            return []
        self.symbol_index()
        return list(source.parse_errors) + list(self._semantic.get(path, []))

    def apply_metadata(self, entries: List[Dict[str, Any]]) -> int:
        """Pin element ids from decompile metadata onto matching symbols.

        Element entries carry ``qualifiedName``; relationship entries carry
        ``source``, ``kind`` and ``target`` qualified names.  Returns the
        number of ids applied.
        """
        by_qn: Dict[str, List[Symbol]] = defaultdict(list)
        for path in self._files:
            for symbol in self._symbols.get(path, []):
                by_qn[symbol.qualified_name].append(symbol)

        applied = 0
        for entry in entries:
            element_id = entry.get("id")
            if not element_id:
                continue
            if "qualifiedName" in entry:
                for symbol in by_qn.get(entry["qualifiedName"], [])[:1]:
                    symbol.element_id = element_id
                    applied += 1
                continue
            source = by_qn.get(entry.get("source", ""), [])
            if not source:
                continue
            applied += _pin_relationship(source[0], entry, element_id)
        if applied:
            self._index = None
        return applied

    # ------------------------------------------------------------------
    # Semantic checks
    # ------------------------------------------------------------------

    def _run_checks(self, index: SymbolIndex) -> Dict[str, List[Diagnostic]]:
        found: Dict[str, List[Diagnostic]] = defaultdict(list)
        duplicates = _duplicate_members(index.all_symbols())

        for path, source in self._files.items():
            if source.is_library:
                continue
            diagnostics = found[path]
            seen_root: Set[str] = set()
            for imported in self._root_imports.get(path, []):
                diagnostics.extend(_check_import(index, imported, None, path, seen_root))

            for symbol in self._symbols.get(path, []):
                if id(symbol) in duplicates:
                    diagnostics.append(_diagnostic(
                        symbol.file, symbol.span,
                        f"duplicate member '{symbol.name}' in {symbol.owner or 'root namespace'}",
                        Severity.ERROR, DUPLICATE_MEMBER,
                    ))
                for reference in symbol.references:
                    if reference.target_id:
                        continue
                    if index.resolve_reference(reference, symbol) is None:
                        diagnostics.append(_unresolved(symbol, reference))
                seen: Set[str] = set()
                for imported in symbol.imports:
                    diagnostics.extend(_check_import(index, imported, symbol.qualified_name, path, seen))
                if symbol.kind.is_definition and _in_cycle(index, symbol):
                    diagnostics.append(_diagnostic(
                        symbol.file, symbol.span,
                        f"specialization cycle involving '{symbol.qualified_name}'",
                        Severity.WARNING, SPECIALIZATION_CYCLE,
                    ))
                if symbol.kind == SymbolKind.REFERENCE_USAGE and not any(
                    r.kind == RefKind.TYPING for r in symbol.references
                ):
                    diagnostics.append(_diagnostic(
                        symbol.file, symbol.span,
                        f"reference usage '{symbol.name}' has no type",
                        Severity.HINT, UNTYPED_REFERENCE,
                    ))
        return dict(found)


def _diagnostic(file: str, span: Span, message: str, severity: Severity, code: str) -> Diagnostic:
    return Diagnostic(file=file, span=span, message=message, severity=severity, code=code)


def _unresolved(symbol: Symbol, reference: Reference) -> Diagnostic:
    if reference.kind == RefKind.TYPING:
        message, code = f"unresolved type '{reference.target}'", UNRESOLVED_TYPE
    elif reference.kind == RefKind.REDEFINITION:
        message, code = f"unresolved redefinition target '{reference.target}'", UNRESOLVED_REDEFINITION
    else:
        message, code = f"unresolved {reference.kind.value} target '{reference.target}'", UNRESOLVED_SPECIALIZATION
    return _diagnostic(symbol.file, reference.span, message, Severity.ERROR, code)


def _check_import(
    index: SymbolIndex,
    imported: Import,
    scope: Optional[str],
    path: str,
    seen: Set[str],
) -> List[Diagnostic]:
    diagnostics: List[Diagnostic] = []
    if imported.text in seen:
        diagnostics.append(_diagnostic(
            path, imported.span, f"duplicate import '{imported.text}'", Severity.INFO, DUPLICATE_IMPORT,
        ))
    seen.add(imported.text)
    if index.resolve_import(imported, scope) is None:
        diagnostics.append(_diagnostic(
            path, imported.span, f"unresolved import '{imported.text}'", Severity.WARNING, UNRESOLVED_IMPORT,
        ))
    return diagnostics


def _duplicate_members(symbols: List[Symbol]) -> Set[int]:
    """Later declarations that reuse a sibling's name.

    Packages sharing a qualified name are reopenings, not duplicates.
    Returns the ``id()`` of each duplicate symbol.
    """
    first: Dict[Tuple[Optional[str], str], Symbol] = {}
    duplicates: Set[int] = set()
    for symbol in symbols:
        key = (symbol.owner, symbol.name)
        previous = first.get(key)
        if previous is None:
            first[key] = symbol
            continue
        if previous.kind.is_package and symbol.kind.is_package:
            continue
        duplicates.add(id(symbol))
    return duplicates


def _in_cycle(index: SymbolIndex, start: Symbol) -> bool:
    stack = [start]
    visited: Set[str] = set()
    while stack:
        current = stack.pop()
        for reference in current.references:
            if reference.kind != RefKind.SPECIALIZATION:
                continue
            target = index.resolve_reference(reference, current)
            if target is None:
                continue
            if target.qualified_name == start.qualified_name:
                return True
            if target.qualified_name not in visited:
                visited.add(target.qualified_name)
                stack.append(target)
    return False


def _pin_relationship(symbol: Symbol, entry: Dict[str, Any], element_id: str) -> int:
    kind = entry.get("kind", "")
    target = entry.get("target", "")
    if kind in ("NamespaceImport", "MembershipImport"):
        for imported in symbol.imports:
            if imported.path == target and not imported.element_id:
                imported.element_id = element_id
                return 1
        return 0
    for reference in symbol.references:
        if reference.element_id:
            continue
        if reference.target == target or reference.target_qualified_name == target or target.endswith(
            f"::{reference.target}"
        ):
            if _RELATIONSHIP_KINDS.get(kind) in (None, reference.kind):
                reference.element_id = element_id
                return 1
    return 0


_RELATIONSHIP_KINDS: Dict[str, RefKind] = {
    "FeatureTyping": RefKind.TYPING,
    "Specialization": RefKind.SPECIALIZATION,
    "Subsetting": RefKind.SUBSETTING,
    "Redefinition": RefKind.REDEFINITION,
}
