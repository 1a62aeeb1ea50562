"""Tests for decompile.py and metadata.py - text reconstruction with id pinning."""

import json

from syster_cli.coordinator import AnalysisCoordinator
from syster_cli.decompile import decompile_document, decompile_model, quote_name
from syster_cli.diagnostics import DiagnosticCollector
from syster_cli.export import ExportPipeline, export_model
from syster_cli.formats import XmiFormat
from syster_cli.interchange import ElementRecord, InterchangeDocument
from syster_cli.metadata import build_metadata, find_metadata_files, read_metadata


class TestDecompiler:
    """Test rendering interchange documents as SysML text."""

    def test_vehicle_model(self, indexed):
        text = decompile_document(ExportPipeline(indexed).build_document()).sysml_text
        assert text.startswith("package Vehicles {\n    doc /* Road vehicles. */\n")
        assert "    part def Engine {\n        attribute power : Vehicles::Real;\n    }" in text
        assert "part def SportsCar :> Vehicles::Vehicle {" in text
        assert "part engine :>> Vehicles::Vehicle::engine;" in text
        assert "    attribute def Real;\n}\n" in text

    def test_output_reparses_cleanly(self, indexed):
        text = decompile_document(ExportPipeline(indexed).build_document()).sysml_text
        coordinator = AnalysisCoordinator()
        coordinator.load("roundtrip.sysml", text)
        coordinator.reindex()
        result = DiagnosticCollector(coordinator).analyze()
        assert result.diagnostics == []
        assert result.symbol_count == 8

    def test_quoting(self):
        assert quote_name("Engine") == "Engine"
        assert quote_name("Fuel Tank") == "'Fuel Tank'"
        assert quote_name("part") == "'part'"

    def test_imports_and_modifiers(self):
        document = InterchangeDocument(records=[
            ElementRecord(id="lib", kind="Package", name="Lib", qualified_name="Lib"),
            ElementRecord(id="car", kind="Package", name="Car", qualified_name="Car"),
            ElementRecord(
                id="imp", kind="NamespaceImport", owner="car", source="car", target="lib",
                properties={"isRecursive": True, "visibility": "public"},
            ),
            ElementRecord(
                id="base", kind="PartDefinition", name="Base", qualified_name="Car::Base",
                owner="car", is_abstract=True,
            ),
            ElementRecord(
                id="port", kind="PortUsage", name="p", qualified_name="Car::Base::p",
                owner="base", properties={"direction": "in"},
            ),
        ])
        text = decompile_document(document).sysml_text
        assert "public import Lib::**;" in text
        assert "abstract part def Base {" in text
        assert "in port p;" in text

    def test_external_targets_use_their_names(self):
        document = InterchangeDocument(
            records=[
                ElementRecord(id="t", kind="AttributeDefinition", name="Temperature", qualified_name="Temperature"),
                ElementRecord(id="s", kind="Specialization", owner="t", source="t", target="real-id"),
            ],
            external_refs={"real-id": "ScalarValues::Real"},
        )
        text = decompile_document(document).sysml_text
        assert text == "attribute def Temperature :> ScalarValues::Real;\n"

    def test_unknown_kind_is_a_comment(self):
        document = InterchangeDocument(records=[ElementRecord(id="x", kind="Mystery", name="M")])
        assert decompile_document(document).sysml_text == "// Mystery M\n"


class TestMetadata:
    """Test the companion metadata produced alongside decompiled text."""

    def test_build_metadata(self, indexed):
        document = ExportPipeline(indexed).build_document()
        metadata = build_metadata(document, source="vehicles.xmi")
        assert metadata["source"] == "vehicles.xmi"
        assert len(metadata["elements"]) == 8
        typing = metadata["relationships"][0]
        assert typing == {
            "id": document.relationships()[0].id,
            "kind": "FeatureTyping",
            "source": "Vehicles::Engine::power",
            "target": "Vehicles::Real",
        }

    def test_read_and_find(self, temp_dir):
        path = temp_dir / "m.metadata.json"
        path.write_text(json.dumps({
            "elements": [{"id": "e", "qualifiedName": "P"}],
            "relationships": [{"id": "r", "kind": "Specialization", "source": "P::A", "target": "P::B"}],
        }), encoding="utf-8")
        (temp_dir / "m.sysml").write_text("package P;", encoding="utf-8")
        assert find_metadata_files(temp_dir / "m.sysml") == [path]
        assert [entry["id"] for entry in read_metadata(path)] == ["e", "r"]


class TestDecompileModel:
    """Test the file based decompile and the edit cycle back to XMI."""

    def test_decompile_model(self, temp_dir, nested_xmi):
        path = temp_dir / "test.xmi"
        path.write_bytes(nested_xmi)
        result = decompile_model(path)
        assert result.element_count == 2
        assert result.source_path == str(path)
        assert result.sysml_text == "package TestPkg {\n    part def Widget;\n}\n"
        assert json.loads(result.metadata_json)["elements"][1] == {
            "id": "part-uuid-67890", "kind": "PartDefinition", "qualifiedName": "TestPkg::Widget",
        }

    def test_ids_survive_decompile_and_export(self, indexed, temp_dir):
        original = ExportPipeline(indexed).build_document()
        source = temp_dir / "model.xmi"
        source.write_bytes(XmiFormat().write(original))

        result = decompile_model(source)
        text_path = temp_dir / "model.sysml"
        text_path.write_text(result.sysml_text, encoding="utf-8")
        (temp_dir / "model.metadata.json").write_text(result.metadata_json, encoding="utf-8")

        exported = XmiFormat().read(export_model(text_path, "xmi", use_stdlib=False))
        assert set(exported.ids()) == set(original.ids())
