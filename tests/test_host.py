"""Tests for host.py - name resolution and semantic checks."""

from syster_cli.host import (
    DUPLICATE_IMPORT,
    DUPLICATE_MEMBER,
    SPECIALIZATION_CYCLE,
    UNRESOLVED_IMPORT,
    UNRESOLVED_REDEFINITION,
    UNRESOLVED_SPECIALIZATION,
    UNRESOLVED_TYPE,
    UNTYPED_REFERENCE,
    AnalysisHost,
    split_path,
)
from syster_cli.models import Severity


def build(**files):
    host = AnalysisHost()
    for path, text in files.items():
        host.set_file_content(f"{path}.sysml", text)
    host.rebuild_index()
    return host


def codes(host, path):
    return [d.code for d in host.check_file(f"{path}.sysml")]


def resolved(host, qualified_name):
    index = host.symbol_index()
    symbol = index.lookup(qualified_name)
    target = index.resolve_reference(symbol.references[0], symbol)
    return target.qualified_name if target else None


class TestResolution:
    """Test scope, import and inheritance based resolution."""

    def test_split_path(self):
        assert split_path("A::B.c") == ["A", "B", "c"]

    def test_enclosing_scope(self, vehicle_source):
        host = build(vehicles=vehicle_source)
        assert resolved(host, "Vehicles::Engine::power") == "Vehicles::Real"
        assert codes(host, "vehicles") == []

    def test_redefinition_uses_inherited_member(self, vehicle_source):
        host = build(vehicles=vehicle_source)
        assert resolved(host, "Vehicles::SportsCar::engine") == "Vehicles::Vehicle::engine"

    def test_anonymous_redefinition_of_inherited_member(self):
        host = build(model="package P { part def A { part x; } part def B :> A { part :>> x; } }")
        assert resolved(host, "P::B::x") == "P::A::x"
        assert codes(host, "model") == []

    def test_redefinition_never_resolves_to_itself(self):
        host = build(model="package P { part def A { part x; } part def B :> A { part :>> missing; } }")
        assert resolved(host, "P::B::missing") is None

    def test_qualified_reference(self):
        host = build(model="package Lib { part def Wheel; } package Car { part w : Lib::Wheel; }")
        assert resolved(host, "Car::w") == "Lib::Wheel"

    def test_namespace_import_across_files(self):
        host = build(
            lib="package Lib { part def Wheel; }",
            car="package Car { import Lib::*; part w : Wheel; }",
        )
        assert resolved(host, "Car::w") == "Lib::Wheel"
        assert codes(host, "car") == []

    def test_membership_import(self):
        host = build(model="package Lib { part def Wheel; } package Car { import Lib::Wheel; part w : Wheel; }")
        assert resolved(host, "Car::w") == "Lib::Wheel"

    def test_recursive_import(self):
        host = build(
            model="package Lib { package Inner { part def Wheel; } } package Car { import Lib::**; part w : Wheel; }"
        )
        assert resolved(host, "Car::w") == "Lib::Inner::Wheel"

    def test_public_import_is_reexported(self):
        host = build(model="""
            package Base { part def Wheel; }
            package Facade { public import Base::*; }
            package Car { import Facade::*; part w : Wheel; }
        """)
        assert resolved(host, "Car::w") == "Base::Wheel"

    def test_private_import_is_not_reexported(self):
        host = build(model="""
            package Base { part def Wheel; }
            package Facade { import Base::*; }
            package Car { import Facade::*; part w : Wheel; }
        """)
        assert UNRESOLVED_TYPE in codes(host, "model")

    def test_root_level_import(self):
        host = build(model="import Lib::*; package Lib { part def Wheel; } part w : Wheel;")
        assert resolved(host, "w") == "Lib::Wheel"

    def test_inherited_member_of_supertype(self):
        host = build(model="""
            package P {
                part def Engine;
                part def Base { part def Gear; }
                part def Car :> Base { part g : Gear; }
            }
        """)
        assert resolved(host, "P::Car::g") == "P::Base::Gear"

    def test_reopened_package_shares_members(self):
        host = build(a="package P { part def A; }", b="package P { part x : A; }")
        assert resolved(host, "P::x") == "P::A"
        assert codes(host, "a") == [] and codes(host, "b") == []


class TestSemanticChecks:
    """Test the diagnostics produced by the index checks."""

    def test_unresolved_type(self):
        host = build(model="package Test { part p : Unknown; }")
        diagnostics = host.check_file("model.sysml")
        assert [d.code for d in diagnostics] == [UNRESOLVED_TYPE]
        assert "Unknown" in diagnostics[0].message
        assert diagnostics[0].severity == Severity.ERROR

    def test_unresolved_specialization(self):
        host = build(model="package P { part def A :> Missing; }")
        assert codes(host, "model") == [UNRESOLVED_SPECIALIZATION]

    def test_unresolved_redefinition(self):
        host = build(model="package P { part def A { part x; } part def B :> A { part :>> missing; } }")
        assert codes(host, "model") == [UNRESOLVED_REDEFINITION]

    def test_duplicate_member(self):
        host = build(model="package P { part def A; part def A; }")
        diagnostics = host.check_file("model.sysml")
        assert [d.code for d in diagnostics] == [DUPLICATE_MEMBER]
        assert diagnostics[0].span.start_col == 33

    def test_unresolved_import_is_a_warning(self):
        host = build(model="package P { import Nowhere::*; }")
        diagnostics = host.check_file("model.sysml")
        assert [d.code for d in diagnostics] == [UNRESOLVED_IMPORT]
        assert diagnostics[0].severity == Severity.WARNING

    def test_duplicate_import_is_info(self):
        host = build(model="package Lib { part def A; } package P { import Lib::*; import Lib::*; }")
        diagnostics = host.check_file("model.sysml")
        assert [d.code for d in diagnostics] == [DUPLICATE_IMPORT]
        assert diagnostics[0].severity == Severity.INFO

    def test_specialization_cycle(self):
        host = build(model="package P { part def A :> B; part def B :> A; }")
        assert codes(host, "model") == [SPECIALIZATION_CYCLE, SPECIALIZATION_CYCLE]

    def test_untyped_reference_hint(self):
        host = build(model="package P { ref r; }")
        diagnostics = host.check_file("model.sysml")
        assert [d.code for d in diagnostics] == [UNTYPED_REFERENCE]
        assert diagnostics[0].severity == Severity.HINT

    def test_parse_errors_come_first(self):
        host = build(model="package P { part def ; part q : Nope; }")
        assert codes(host, "model") == ["E0001", UNRESOLVED_TYPE]

    def test_library_files_are_not_checked(self):
        host = AnalysisHost()
        host.set_file_content("lib.kerml", "package L { feature f : Missing; }", is_library=True)
        host.rebuild_index()
        assert host.check_file("lib.kerml") == []

    def test_unknown_file(self):
        assert AnalysisHost().check_file("missing.sysml") == []


class TestApplyMetadata:
    """Test pinning element ids from companion metadata."""

    def test_elements_and_relationships_are_pinned(self, vehicle_source):
        host = build(vehicles=vehicle_source)
        applied = host.apply_metadata([
            {"id": "engine-id", "kind": "PartDefinition", "qualifiedName": "Vehicles::Engine"},
            {
                "id": "typing-id",
                "kind": "FeatureTyping",
                "source": "Vehicles::Engine::power",
                "target": "Vehicles::Real",
            },
            {"id": "ignored", "qualifiedName": "Vehicles::Nothing"},
        ])
        assert applied == 2
        index = host.symbol_index()
        assert index.lookup_id("engine-id").qualified_name == "Vehicles::Engine"
        assert index.lookup("Vehicles::Engine::power").references[0].element_id == "typing-id"
