"""Error-tolerant parser for the SysML v2 / KerML declaration subset.

The parser extracts what the orchestration layer needs from a source file:

- named declarations (packages, definitions, usages, KerML types/features)
  in declaration order, each with its owner and outgoing references
- imports, attached to the namespace that owns them
- ``doc /* ... */`` documentation

Everything else (expressions, multiplicities, behavioural statements) is
skipped.  Syntax problems never abort parsing; they are returned as
``E0001`` diagnostics and the reader recovers at the next statement.
"""

from __future__ import annotations

import bisect
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .models import Diagnostic, Import, RefKind, Reference, Severity, Span, Symbol, SymbolKind

logger = logging.getLogger(__name__)

SYNTAX_ERROR = "E0001"

# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------

# keyword -> (definition kind, usage kind)
USAGE_KEYWORDS: Dict[str, Tuple[SymbolKind, SymbolKind]] = {
    "part": (SymbolKind.PART_DEF, SymbolKind.PART_USAGE),
    "attribute": (SymbolKind.ATTRIBUTE_DEF, SymbolKind.ATTRIBUTE_USAGE),
    "port": (SymbolKind.PORT_DEF, SymbolKind.PORT_USAGE),
    "item": (SymbolKind.ITEM_DEF, SymbolKind.ITEM_USAGE),
    "action": (SymbolKind.ACTION_DEF, SymbolKind.ACTION_USAGE),
    "state": (SymbolKind.STATE_DEF, SymbolKind.STATE_USAGE),
    "requirement": (SymbolKind.REQUIREMENT_DEF, SymbolKind.REQUIREMENT_USAGE),
    "constraint": (SymbolKind.CONSTRAINT_DEF, SymbolKind.CONSTRAINT_USAGE),
    "interface": (SymbolKind.INTERFACE_DEF, SymbolKind.INTERFACE_USAGE),
    "connection": (SymbolKind.CONNECTION_DEF, SymbolKind.CONNECTION_USAGE),
    "allocation": (SymbolKind.ALLOCATION_DEF, SymbolKind.ALLOCATION_USAGE),
    "flow": (SymbolKind.FLOW_DEF, SymbolKind.FLOW_USAGE),
    "view": (SymbolKind.VIEW_DEF, SymbolKind.VIEW_USAGE),
    "viewpoint": (SymbolKind.VIEWPOINT_DEF, SymbolKind.VIEWPOINT_USAGE),
    "rendering": (SymbolKind.RENDERING_DEF, SymbolKind.RENDERING_USAGE),
    "concern": (SymbolKind.CONCERN_DEF, SymbolKind.CONCERN_USAGE),
    "calc": (SymbolKind.CALCULATION_DEF, SymbolKind.CALCULATION_USAGE),
    "case": (SymbolKind.CASE_DEF, SymbolKind.CASE_USAGE),
    "enum": (SymbolKind.ENUMERATION_DEF, SymbolKind.ENUMERATION_USAGE),
    "occurrence": (SymbolKind.OCCURRENCE_DEF, SymbolKind.OCCURRENCE_USAGE),
    "metadata": (SymbolKind.METADATA_DEF, SymbolKind.METADATA_USAGE),
}

# Two-word keywords ending in "case".
CASE_KEYWORDS: Dict[str, Tuple[SymbolKind, SymbolKind]] = {
    "analysis": (SymbolKind.ANALYSIS_CASE_DEF, SymbolKind.ANALYSIS_CASE_USAGE),
    "verification": (SymbolKind.VERIFICATION_CASE_DEF, SymbolKind.VERIFICATION_CASE_USAGE),
    "use": (SymbolKind.USE_CASE_DEF, SymbolKind.USE_CASE_USAGE),
}

KERML_KEYWORDS: Dict[str, SymbolKind] = {
    "classifier": SymbolKind.CLASSIFIER,
    "class": SymbolKind.CLASS,
    "struct": SymbolKind.STRUCTURE,
    "datatype": SymbolKind.DATA_TYPE,
    "assoc": SymbolKind.ASSOCIATION,
    "behavior": SymbolKind.BEHAVIOR,
    "function": SymbolKind.FUNCTION,
    "predicate": SymbolKind.PREDICATE,
    "interaction": SymbolKind.INTERACTION,
    "metaclass": SymbolKind.METACLASS,
    "type": SymbolKind.TYPE,
    "feature": SymbolKind.FEATURE,
    "step": SymbolKind.STEP,
    "expr": SymbolKind.EXPRESSION,
    "connector": SymbolKind.CONNECTOR,
}

VISIBILITY = {"public", "private", "protected"}
DIRECTIONS = {"in", "out", "inout"}
MODIFIERS = {
    "variation", "variant", "individual", "readonly", "derived", "end",
    "composite", "portion", "const", "constant", "var", "standard",
}

RESERVED = (
    set(USAGE_KEYWORDS) | set(CASE_KEYWORDS) | set(KERML_KEYWORDS)
    | VISIBILITY | DIRECTIONS | MODIFIERS
    | {
        "def", "package", "namespace", "library", "import", "alias", "doc",
        "comment", "about", "rep", "language", "locale", "abstract", "ref",
        "specializes", "subsets", "redefines", "references", "typed",
        "defined", "by", "ordered", "nonunique", "default", "all", "for",
        "from", "to", "of", "first", "then", "if", "else", "while", "until",
        "loop", "do", "entry", "exit", "accept", "send", "via", "at",
        "after", "when", "assign", "assert", "assume", "require", "satisfy",
        "verify", "subject", "actor", "objective", "stakeholder", "return",
        "perform", "exhibit", "include", "expose", "filter", "render",
        "frame", "dependency", "connect", "bind", "allocate", "succession",
        "transition", "message", "event", "snapshot", "timeslice", "merge",
        "decide", "join", "fork", "not", "and", "or", "xor", "implies",
        "true", "false", "null", "new", "istype", "hastype", "as", "meta",
        "conjugates", "disjoint", "chains", "inverse", "featured", "unions",
        "intersects", "differences", "multiplicity", "member",
    }
)

# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

IDENT = "ident"
NAME = "name"
STRING = "string"
NUMBER = "number"
SYMBOL = "symbol"
COMMENT = "comment"
EOF = "eof"

_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<line_comment>//[^\n]*)
    | (?P<block_comment>/\*.*?\*/)
    | (?P<open_comment>/\*)
    | (?P<name>'(?:[^'\\\n]|\\.)*')
    | (?P<string>"(?:[^"\\\n]|\\.)*")
    | (?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
    | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<symbol>::>|:>>|::|:>|:=|\*\*|\.\.|->|==|!=|<=|>=|=>|[:;{}\[\](),=~.<>*#@+\-/%!?&|^$])
    """,
    re.VERBOSE | re.DOTALL,
)


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    line: int
    col: int
    end_line: int
    end_col: int

    def is_symbol(self, value: str) -> bool:
        return self.kind == SYMBOL and self.value == value

    def is_keyword(self, value: str) -> bool:
        return self.kind == IDENT and self.value == value

    @property
    def span(self) -> Span:
        return Span(self.line, self.col, self.end_line, self.end_col)


def tokenize(text: str) -> Tuple[List[Token], List[Tuple[str, Token]]]:
    """Split *text* into tokens with 0-indexed positions.

    Returns the token list (always terminated by an EOF token) and a list of
    ``(message, token)`` lexical errors.
    """
    line_starts = [0] + [m.end() for m in re.finditer(r"\n", text)]

    def position(offset: int) -> Tuple[int, int]:
        line = bisect.bisect_right(line_starts, offset) - 1
        return line, offset - line_starts[line]

    def make(kind: str, value: str, start: int, end: int) -> Token:
        line, col = position(start)
        end_line, end_col = position(end)
        return Token(kind, value, line, col, end_line, end_col)

    tokens: List[Token] = []
    errors: List[Tuple[str, Token]] = []
    offset = 0
    length = len(text)
    while offset < length:
        match = _TOKEN_RE.match(text, offset)
        if match is None:
            bad = make(SYMBOL, text[offset], offset, offset + 1)
            errors.append((f"unexpected character '{text[offset]}'", bad))
            offset += 1
            continue
        group = match.lastgroup
        value = match.group()
        start, end = match.span()
        offset = end
        if group in ("ws", "line_comment"):
            continue
        if group == "open_comment":
            errors.append(("unterminated block comment", make(COMMENT, value, start, end)))
            break
        if group == "block_comment":
            tokens.append(make(COMMENT, value, start, end))
        elif group == "name":
            tokens.append(make(NAME, value[1:-1], start, end))
        elif group == "string":
            tokens.append(make(STRING, value[1:-1], start, end))
        elif group == "number":
            tokens.append(make(NUMBER, value, start, end))
        elif group == "ident":
            tokens.append(make(IDENT, value, start, end))
        else:
            tokens.append(make(SYMBOL, value, start, end))

    tokens.append(make(EOF, "", length, length))
    return tokens, errors


def clean_comment(raw: str) -> str:
    """Strip ``/* */`` delimiters and leading ``*`` gutters from a comment."""
    body = raw[2:-2] if raw.startswith("/*") and raw.endswith("*/") else raw
    lines = []
    for line in body.splitlines():
        line = line.strip()
        if line.startswith("*"):
            line = line[1:].strip()
        lines.append(line)
    return "\n".join(lines).strip()


# ---------------------------------------------------------------------------
# Parser interface
# ---------------------------------------------------------------------------

@dataclass
class ParseResult:
    symbols: List[Symbol] = field(default_factory=list)
    imports: List[Import] = field(default_factory=list)
    errors: List[Diagnostic] = field(default_factory=list)


class Parser(ABC):
    """Abstract base class for model source parsers."""

    @abstractmethod
    def parse(self, path: str, text: str, is_library: bool = False) -> ParseResult:
        """Parse *text* (the content of *path*) into symbols and errors."""
        ...


class SysMLParser(Parser):
    """Parser for ``.sysml`` and ``.kerml`` textual notation."""

    def parse(self, path: str, text: str, is_library: bool = False) -> ParseResult:
        result = _Reader(path, text, is_library).run()
        logger.debug("Parsed %s: %d symbols, %d errors", path, len(result.symbols), len(result.errors))
        return result


# ---------------------------------------------------------------------------
# Recursive-descent reader
# ---------------------------------------------------------------------------

@dataclass
class _Prefixes:
    visibility: Optional[str] = None
    is_abstract: bool = False
    direction: str = ""
    is_ref: bool = False
    is_library: bool = False


class _Reader:
    def __init__(self, path: str, text: str, is_library: bool) -> None:
        self.path = path
        self.is_library = is_library
        self.tokens, lex_errors = tokenize(text)
        self.pos = 0
        self.last: Optional[Token] = None
        self.result = ParseResult()
        for message, token in lex_errors:
            self._error(token, message)

    def run(self) -> ParseResult:
        while not self._at_eof():
            if self._peek().is_symbol("}"):
                self._error(self._advance(), "unexpected '}'")
                continue
            self._element(None)
        return self.result

    # -- token access ------------------------------------------------------

    def _skip_comments(self) -> None:
        while self.tokens[self.pos].kind == COMMENT:
            self.pos += 1

    def _peek(self, ahead: int = 0) -> Token:
        index = self.pos
        seen = -1
        while True:
            token = self.tokens[index]
            if token.kind != COMMENT:
                seen += 1
                if seen == ahead or token.kind == EOF:
                    return token
            index += 1

    def _advance(self) -> Token:
        self._skip_comments()
        token = self.tokens[self.pos]
        if token.kind != EOF:
            self.pos += 1
        self.last = token
        return token

    def _at_eof(self) -> bool:
        return self._peek().kind == EOF

    def _error(self, token: Token, message: str) -> None:
        self.result.errors.append(
            Diagnostic(
                file=self.path,
                span=token.span,
                message=message,
                severity=Severity.ERROR,
                code=SYNTAX_ERROR,
            )
        )

    @staticmethod
    def _is_name(token: Token) -> bool:
        return token.kind == NAME or (token.kind == IDENT and token.value not in RESERVED)

    # -- statements --------------------------------------------------------

    def _element(self, owner: Optional[Symbol]) -> None:
        prefixes = self._prefixes()
        token = self._peek()
        if token.kind == EOF or token.is_symbol("}"):
            return
        if token.is_symbol(";"):
            self._advance()
            return

        if token.kind == IDENT:
            keyword = token.value
            if keyword == "import":
                self._import(owner, prefixes.visibility)
                return
            if keyword == "doc":
                self._doc(owner)
                return
            if keyword in ("comment", "rep"):
                self._comment()
                return
            if keyword in ("package", "namespace"):
                self._advance()
                if keyword == "namespace":
                    kind = SymbolKind.NAMESPACE
                elif prefixes.is_library:
                    kind = SymbolKind.LIBRARY_PACKAGE
                else:
                    kind = SymbolKind.PACKAGE
                self._declaration(kind, owner, prefixes, requires_name=True)
                return
            pair = self._usage_keyword()
            if pair is not None:
                if self._peek().is_keyword("def"):
                    self._advance()
                    self._declaration(pair[0], owner, prefixes, requires_name=True)
                else:
                    self._declaration(pair[1], owner, prefixes, requires_name=False)
                return
            if keyword in KERML_KEYWORDS:
                self._advance()
                if keyword == "assoc" and self._peek().is_keyword("struct"):
                    self._advance()
                kind = KERML_KEYWORDS[keyword]
                self._declaration(kind, owner, prefixes, requires_name=kind.is_definition)
                return

        if prefixes.is_ref:
            self._declaration(SymbolKind.REFERENCE_USAGE, owner, prefixes, requires_name=False)
            return
        if token.is_symbol(":>>") or token.is_keyword("redefines"):
            self._declaration(SymbolKind.USAGE, owner, prefixes, requires_name=False)
            return
        if self._is_name(token) and (prefixes.direction or self._relationship(self._peek(1), SymbolKind.USAGE)):
            self._declaration(SymbolKind.USAGE, owner, prefixes, requires_name=False)
            return
        self._skip_statement()

    def _prefixes(self) -> _Prefixes:
        prefixes = _Prefixes()
        while True:
            token = self._peek()
            if token.is_symbol("#"):
                self._advance()
                self._qualified_name(allow_chain=False)
                continue
            if token.kind != IDENT:
                break
            value = token.value
            if value in VISIBILITY:
                prefixes.visibility = value
            elif value == "abstract":
                prefixes.is_abstract = True
            elif value in DIRECTIONS:
                prefixes.direction = value
            elif value == "ref":
                prefixes.is_ref = True
            elif value == "library":
                prefixes.is_library = True
            elif value in MODIFIERS:
                pass
            else:
                break
            self._advance()
        return prefixes

    def _usage_keyword(self) -> Optional[Tuple[SymbolKind, SymbolKind]]:
        token = self._peek()
        if token.value in CASE_KEYWORDS and self._peek(1).is_keyword("case"):
            self._advance()
            self._advance()
            return CASE_KEYWORDS[token.value]
        if token.value in USAGE_KEYWORDS:
            self._advance()
            return USAGE_KEYWORDS[token.value]
        return None

    def _starts_declaration(self, token: Token) -> bool:
        if token.kind != IDENT:
            return False
        if token.value in ("package", "namespace", "import"):
            return True
        if token.value == "library" and self._peek(1).is_keyword("package"):
            return True
        return token.value in USAGE_KEYWORDS and self._peek(1).is_keyword("def")

    def _relationship(self, token: Token, kind: SymbolKind) -> Optional[RefKind]:
        if token.kind == SYMBOL:
            if token.value == ":":
                return RefKind.TYPING
            if token.value == ":>":
                return RefKind.SPECIALIZATION if kind.is_definition else RefKind.SUBSETTING
            if token.value == ":>>":
                return RefKind.REDEFINITION
            if token.value == "::>":
                return RefKind.SUBSETTING
            return None
        if token.kind != IDENT:
            return None
        if token.value == "specializes":
            return RefKind.SPECIALIZATION
        if token.value in ("subsets", "references"):
            return RefKind.SUBSETTING
        if token.value == "redefines":
            return RefKind.REDEFINITION
        if token.value in ("typed", "defined") and self._peek(1).is_keyword("by"):
            return RefKind.TYPING
        return None

    def _declaration(
        self,
        kind: SymbolKind,
        owner: Optional[Symbol],
        prefixes: _Prefixes,
        requires_name: bool,
    ) -> None:
        start = self._peek()
        short_name = ""
        if start.is_symbol("<"):
            self._advance()
            if self._is_name(self._peek()):
                short_name = self._advance().value
            if self._peek().is_symbol(">"):
                self._advance()
            else:
                self._error(self._peek(), "expected '>' after short name")

        name_token: Optional[Token] = None
        if self._is_name(self._peek()):
            name_token = self._advance()

        references: List[Reference] = []
        has_body = False
        while True:
            token = self._peek()
            if token.kind == EOF:
                self._error(token, "expected ';' or '{' before end of file")
                break
            if token.is_symbol(";"):
                self._advance()
                break
            if token.is_symbol("{"):
                has_body = True
                break
            if token.is_symbol("}"):
                self._error(token, "expected ';' or '{' before '}'")
                break
            rel = self._relationship(token, kind)
            if rel is not None:
                operator = self._advance()
                if operator.value in ("typed", "defined"):
                    self._advance()
                targets = self._targets(rel)
                if not targets:
                    self._error(self._peek(), f"expected a name after '{operator.value}'")
                references.extend(targets)
                continue
            if token.is_symbol("["):
                self._skip_balanced("[", "]")
                continue
            if token.is_symbol("("):
                self._skip_balanced("(", ")")
                continue
            if token.is_symbol("=") or token.is_symbol(":=") or token.is_keyword("default"):
                self._skip_expression()
                continue
            if self._starts_declaration(token):
                self._error(token, f"expected ';' or '{{' before '{token.value}'")
                break
            self._advance()

        name = name_token.value if name_token else None
        if name is None:
            redefined = [r for r in references if r.kind == RefKind.REDEFINITION]
            if redefined:
                name = re.split(r"::|\.", redefined[0].target)[-1]
            elif requires_name:
                self._error(start, f"expected a name for {kind.value}")

        symbol: Optional[Symbol] = None
        if name is not None:
            anchor = name_token or start
            qualified = f"{owner.qualified_name}::{name}" if owner else name
            symbol = Symbol(
                name=name,
                qualified_name=qualified,
                kind=kind,
                file=self.path,
                span=Span(anchor.line, anchor.col, anchor.end_line, anchor.end_col),
                owner=owner.qualified_name if owner else None,
                short_name=short_name,
                is_abstract=prefixes.is_abstract,
                direction=prefixes.direction,
                references=references,
                is_library=self.is_library,
            )
            self.result.symbols.append(symbol)

        if has_body:
            self._body(symbol or owner)
        if symbol is not None and self.last is not None:
            symbol.span.end_line = self.last.end_line
            symbol.span.end_col = self.last.end_col

    def _body(self, owner: Optional[Symbol]) -> None:
        opening = self._advance()
        while True:
            token = self._peek()
            if token.kind == EOF:
                self._error(opening, "expected '}' to close this block")
                return
            if token.is_symbol("}"):
                self._advance()
                return
            self._element(owner)

    def _targets(self, kind: RefKind) -> List[Reference]:
        references: List[Reference] = []
        while True:
            if self._peek().is_symbol("~"):
                self._advance()
            start = self._peek()
            path = self._qualified_name(allow_chain=True)
            if path is None:
                break
            end = self.last or start
            references.append(
                Reference(kind=kind, target=path, span=Span(start.line, start.col, end.end_line, end.end_col))
            )
            if not self._peek().is_symbol(","):
                break
            self._advance()
        return references

    def _qualified_name(self, allow_chain: bool) -> Optional[str]:
        if not self._is_name(self._peek()):
            return None
        parts = [self._advance().value]
        while True:
            separator = self._peek()
            if not (separator.is_symbol("::") or (allow_chain and separator.is_symbol("."))):
                break
            if not self._is_name(self._peek(1)):
                break
            self._advance()
            parts.append(separator.value)
            parts.append(self._advance().value)
        return "".join(parts)

    def _import(self, owner: Optional[Symbol], visibility: Optional[str]) -> None:
        keyword = self._advance()
        if self._peek().is_keyword("all"):
            self._advance()
        start = self._peek()
        path = self._qualified_name(allow_chain=False)
        if path is None:
            self._error(start, f"expected a name after '{keyword.value}'")
            self._skip_statement()
            return
        is_namespace = False
        is_recursive = False
        while self._peek().is_symbol("::"):
            follower = self._peek(1)
            if follower.is_symbol("*"):
                is_namespace = True
            elif follower.is_symbol("**"):
                is_recursive = True
            else:
                break
            self._advance()
            self._advance()
        end = self.last or start
        if self._peek().is_symbol("["):
            self._skip_balanced("[", "]")
        if self._peek().is_symbol(";"):
            self._advance()
        else:
            self._error(self._peek(), "expected ';' after import")
            self._skip_statement()

        imported = Import(
            path=path,
            is_namespace=is_namespace,
            is_recursive=is_recursive,
            visibility=visibility or "private",
            span=Span(start.line, start.col, end.end_line, end.end_col),
        )
        if owner is not None:
            owner.imports.append(imported)
        else:
            self.result.imports.append(imported)

    def _doc(self, owner: Optional[Symbol]) -> None:
        keyword = self._advance()
        if self.tokens[self.pos].kind != COMMENT and self._is_name(self._peek()):
            self._advance()
        if self._peek().is_keyword("locale"):
            self._advance()
            if self._peek().kind == STRING:
                self._advance()
        raw = self.tokens[self.pos]
        if raw.kind != COMMENT:
            self._error(keyword, "expected a comment body after 'doc'")
            return
        self.pos += 1
        text = clean_comment(raw.value)
        if owner is not None:
            owner.doc = f"{owner.doc}\n\n{text}" if owner.doc else text

    def _comment(self) -> None:
        self._advance()
        while True:
            raw = self.tokens[self.pos]
            if raw.kind == COMMENT:
                self.pos += 1
                return
            if raw.kind == EOF or raw.is_symbol("}") or raw.is_symbol("{"):
                return
            self.pos += 1
            if raw.is_symbol(";"):
                return

    # -- recovery ----------------------------------------------------------

    def _skip_statement(self) -> None:
        while True:
            token = self._peek()
            if token.kind == EOF or token.is_symbol("}"):
                return
            if token.is_symbol("{"):
                self._skip_balanced("{", "}")
                return
            self._advance()
            if token.is_symbol(";"):
                return

    def _skip_expression(self) -> None:
        self._advance()
        depth = 0
        while True:
            token = self._peek()
            if token.kind == EOF:
                return
            if token.kind == SYMBOL:
                if token.value in ("(", "["):
                    depth += 1
                elif token.value in (")", "]"):
                    depth = max(depth - 1, 0)
                elif depth == 0 and token.value in (";", "{", "}"):
                    return
            self._advance()

    def _skip_balanced(self, opening: str, closing: str) -> None:
        first = self._advance()
        depth = 1
        while depth:
            token = self._peek()
            if token.kind == EOF:
                self._error(first, f"expected '{closing}' to match '{opening}'")
                return
            if token.is_symbol(opening):
                depth += 1
            elif token.is_symbol(closing):
                depth -= 1
            self._advance()
