"""Pytest configuration and fixtures for syster-cli tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from syster_cli.coordinator import AnalysisCoordinator
from syster_cli.loader import SourceLoader


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Keep user config and environment out of every test."""
    monkeypatch.delenv("SYSTER_STDLIB", raising=False)
    monkeypatch.setattr("syster_cli.config_manager.CONFIG_FILE", tmp_path / "config.toml")
    monkeypatch.setattr("syster_cli.config.STDLIB_PATH", None)
    monkeypatch.setattr("syster_cli.config.STDLIB_ENABLED", True)
    monkeypatch.setattr("syster_cli.config.SELF_CONTAINED_DEFAULT", False)
    monkeypatch.setattr("syster_cli.config.DEFAULT_STDLIB_PATHS", [])


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def write_model(temp_dir: Path) -> Callable[[str, str], Path]:
    """Write a model source file under the temp directory and return its path."""

    def _write(name: str, text: str) -> Path:
        path = temp_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def stdlib_dir(temp_dir: Path) -> Path:
    """A tiny standard library with ScalarValues and Base packages."""
    root = temp_dir / "sysml.library"
    (root / "Kernel Libraries").mkdir(parents=True)
    (root / "Kernel Libraries" / "ScalarValues.kerml").write_text(
        """standard library package ScalarValues {
    abstract datatype ScalarValue;
    datatype Boolean specializes ScalarValue;
    datatype String specializes ScalarValue;
    abstract datatype NumericalValue specializes ScalarValue;
    datatype Real specializes NumericalValue;
    datatype Integer specializes Real;
}
""",
        encoding="utf-8",
    )
    (root / "Kernel Libraries" / "Base.kerml").write_text(
        """standard library package Base {
    abstract classifier Anything;
    abstract feature things : Anything;
}
""",
        encoding="utf-8",
    )
    return root


@pytest.fixture
def vehicle_source() -> str:
    """Sample model used across export and import tests."""
    return """package Vehicles {
    doc /* Road vehicles. */
    part def Engine {
        attribute power : Real;
    }
    part def Vehicle {
        part engine : Engine;
    }
    part def SportsCar :> Vehicle {
        part :>> engine;
    }
    attribute def Real;
}
"""


@pytest.fixture
def indexed(vehicle_source: str) -> AnalysisCoordinator:
    """Coordinator with the vehicle model loaded and indexed."""
    coordinator = AnalysisCoordinator()
    coordinator.load("vehicles.sysml", vehicle_source)
    coordinator.reindex()
    return coordinator


@pytest.fixture
def temperature_source() -> str:
    """Model that specializes a standard library type."""
    return """package TestModel {
    attribute def Temperature :> ScalarValues::Real;
    part def Sensor {
        attribute temp : Temperature;
    }
}
"""


@pytest.fixture
def stdlib_workspace(stdlib_dir: Path, temperature_source: str) -> AnalysisCoordinator:
    """Coordinator with the stdlib and the temperature model indexed."""
    coordinator = AnalysisCoordinator()
    SourceLoader(coordinator).load_directory(stdlib_dir, is_library=True)
    coordinator.load("model.sysml", temperature_source)
    coordinator.reindex()
    return coordinator


@pytest.fixture
def simple_xmi() -> bytes:
    return b"""<?xml version="1.0" encoding="UTF-8"?>
<xmi:XMI xmlns:xmi="http://www.omg.org/spec/XMI/20131001" xmlns:sysml="http://www.omg.org/spec/SysML/20230201">
  <sysml:Package xmi:id="TestPackage" name="TestPackage"/>
</xmi:XMI>"""


@pytest.fixture
def nested_xmi() -> bytes:
    """Package with one member inside an ``ownedMember`` wrapper."""
    return b"""<?xml version="1.0" encoding="UTF-8"?>
<xmi:XMI xmlns:xmi="http://www.omg.org/spec/XMI/20131001" xmlns:sysml="http://www.omg.org/spec/SysML/20230201">
  <sysml:Package xmi:id="pkg-uuid-12345" name="TestPkg" qualifiedName="TestPkg">
    <ownedMember>
      <sysml:PartDefinition xmi:id="part-uuid-67890" name="Widget"/>
    </ownedMember>
  </sysml:Package>
</xmi:XMI>"""
