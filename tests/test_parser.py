"""Tests for parser.py - tokenizer and declaration reader."""

from syster_cli.models import RefKind, SymbolKind
from syster_cli.parser import SYNTAX_ERROR, SysMLParser, clean_comment, tokenize


def parse(text, path="test.sysml", is_library=False):
    return SysMLParser().parse(path, text, is_library=is_library)


def by_name(result):
    return {symbol.qualified_name: symbol for symbol in result.symbols}


class TestTokenize:
    """Test the regex tokenizer."""

    def test_positions_are_zero_indexed(self):
        """Line and column of each token start at zero."""
        tokens, errors = tokenize("package P {\n  part def A;\n}")
        assert errors == []
        part = next(t for t in tokens if t.value == "part")
        assert (part.line, part.col) == (1, 2)

    def test_unrestricted_names_lose_quotes(self):
        tokens, _ = tokenize("part def 'Fuel Tank';")
        assert any(t.kind == "name" and t.value == "Fuel Tank" for t in tokens)

    def test_unexpected_character_is_reported(self):
        """Characters outside the lexical grammar become errors, not exceptions."""
        _, errors = tokenize("part def A` ;")
        assert len(errors) == 1
        assert "unexpected character" in errors[0][0]

    def test_unterminated_block_comment(self):
        _, errors = tokenize("package P { /* never closed")
        assert errors[0][0] == "unterminated block comment"

    def test_clean_comment_strips_gutters(self):
        assert clean_comment("/*\n * first\n * second\n */") == "first\nsecond"


class TestDeclarations:
    """Test extraction of packages, definitions and usages."""

    def test_nested_qualified_names(self, vehicle_source):
        result = parse(vehicle_source)
        symbols = by_name(result)
        assert result.errors == []
        assert "Vehicles::Engine::power" in symbols
        assert symbols["Vehicles::Engine"].kind == SymbolKind.PART_DEF
        assert symbols["Vehicles::Engine::power"].kind == SymbolKind.ATTRIBUTE_USAGE
        assert symbols["Vehicles::Engine"].owner == "Vehicles"

    def test_declaration_order_is_kept(self, vehicle_source):
        names = [symbol.name for symbol in parse(vehicle_source).symbols]
        assert names == ["Vehicles", "Engine", "power", "Vehicle", "engine", "SportsCar", "engine", "Real"]

    def test_typing_and_specialization(self, vehicle_source):
        symbols = by_name(parse(vehicle_source))
        power = symbols["Vehicles::Engine::power"]
        assert [(r.kind, r.target) for r in power.references] == [(RefKind.TYPING, "Real")]
        sports_car = symbols["Vehicles::SportsCar"]
        assert [(r.kind, r.target) for r in sports_car.references] == [(RefKind.SPECIALIZATION, "Vehicle")]

    def test_subsetting_on_usages(self):
        """``:>`` on a usage means subsetting, on a definition specialization."""
        symbols = by_name(parse("part def Car { part wheels; part frontWheels :> wheels; }"))
        assert symbols["Car::frontWheels"].references[0].kind == RefKind.SUBSETTING

    def test_anonymous_redefinition_takes_target_name(self, vehicle_source):
        symbols = by_name(parse(vehicle_source))
        redefined = symbols["Vehicles::SportsCar::engine"]
        assert redefined.kind == SymbolKind.PART_USAGE
        assert redefined.references[0].kind == RefKind.REDEFINITION
        assert redefined.references[0].target == "engine"

    def test_keyword_relationships(self):
        source = """
        package P {
            part def B specializes A;
            part x typed by B;
            attribute y redefines z;
        }
        """
        symbols = by_name(parse(source))
        assert symbols["P::B"].references[0].kind == RefKind.SPECIALIZATION
        assert symbols["P::x"].references[0].kind == RefKind.TYPING
        assert symbols["P::x"].references[0].target == "B"
        assert symbols["P::y"].references[0].kind == RefKind.REDEFINITION

    def test_prefixes(self):
        source = "abstract part def Base; port def P { in attribute fuel : Real; } ref r : Base;"
        symbols = by_name(parse(source))
        assert symbols["Base"].is_abstract
        assert symbols["P::fuel"].direction == "in"
        assert symbols["r"].kind == SymbolKind.REFERENCE_USAGE

    def test_short_name(self):
        symbols = by_name(parse("part def <V> Vehicle;"))
        assert symbols["Vehicle"].short_name == "V"

    def test_expressions_and_multiplicities_are_skipped(self):
        source = "part def Car { attribute mass : Real = 1200.0 * (2 + 1); part wheels : Wheel[4]; }"
        result = parse(source)
        assert result.errors == []
        assert by_name(result)["Car::wheels"].references[0].target == "Wheel"

    def test_library_package_and_kerml(self, stdlib_dir):
        text = (stdlib_dir / "Kernel Libraries" / "ScalarValues.kerml").read_text(encoding="utf-8")
        result = parse(text, path="ScalarValues.kerml", is_library=True)
        symbols = by_name(result)
        assert result.errors == []
        assert symbols["ScalarValues"].kind == SymbolKind.LIBRARY_PACKAGE
        assert symbols["ScalarValues::Real"].kind == SymbolKind.DATA_TYPE
        assert symbols["ScalarValues::Real"].is_library
        assert symbols["ScalarValues::ScalarValue"].is_abstract

    def test_case_keywords(self):
        symbols = by_name(parse("use case def Drive; analysis case a;"))
        assert symbols["Drive"].kind == SymbolKind.USE_CASE_DEF
        assert symbols["a"].kind == SymbolKind.ANALYSIS_CASE_USAGE


class TestDocAndImports:
    """Test documentation comments and imports."""

    def test_doc_attaches_to_owner(self, vehicle_source):
        assert by_name(parse(vehicle_source))["Vehicles"].doc == "Road vehicles."

    def test_plain_comments_are_ignored(self):
        result = parse("// line\npackage P { /* block */ comment /* note */ part def A; }")
        assert result.errors == []
        assert [s.name for s in result.symbols] == ["P", "A"]

    def test_imports(self):
        source = """
        import Root::*;
        package P {
            public import Lib::**;
            import Other::Thing;
        }
        """
        result = parse(source)
        assert [i.text for i in result.imports] == ["Root::*"]
        imports = by_name(result)["P"].imports
        assert imports[0].is_recursive and imports[0].visibility == "public"
        assert imports[1].path == "Other::Thing"
        assert not imports[1].is_namespace


class TestSyntaxErrors:
    """Test error recovery; parsing never raises."""

    def test_missing_name_is_reported_and_parsing_continues(self):
        result = parse("package Test { part def ; part def B; }")
        assert len(result.errors) == 1
        assert result.errors[0].code == SYNTAX_ERROR
        assert "expected a name" in result.errors[0].message
        assert "Test::B" in by_name(result)

    def test_unclosed_block(self):
        result = parse("package P { part def A;")
        assert any("expected '}'" in e.message for e in result.errors)
        assert set(by_name(result)) == {"P", "P::A"}

    def test_stray_closing_brace(self):
        result = parse("package P { } }")
        assert [e.message for e in result.errors] == ["unexpected '}'"]

    def test_missing_semicolon_before_next_declaration(self):
        result = parse("package P { part def A\n part def B; }")
        assert any("expected ';' or '{'" in e.message for e in result.errors)
        assert "P::B" in by_name(result)

    def test_error_position(self):
        result = parse("package P {\n    part def ;\n}")
        span = result.errors[0].span
        assert (span.start_line, span.start_col) == (1, 13)

    def test_empty_and_comment_only_sources(self):
        assert parse("").symbols == []
        assert parse("   \n\t").errors == []
        assert parse("// only a comment\n/* and another */").symbols == []
