"""Typer-based CLI for syster: analyze, export, import and decompile SysML models."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

from . import __version__, config
from .coordinator import AnalysisCoordinator
from .decompile import decompile_model
from .diagnostics import DiagnosticCollector
from .errors import ExportError, SysterError
from .export import ExportPipeline, export_ast, export_json, export_model
from .formats import get_format
from .importer import ImportPipeline, import_model
from .loader import SourceLoader, StdlibResolver, load_workspace
from .models import Severity

app = typer.Typer(
    help="Analyze SysML v2 / KerML models and convert them to and from interchange formats.",
    add_completion=False,
)

err_console = Console(stderr=True, highlight=False, soft_wrap=True)

SEVERITY_STYLES = {
    Severity.ERROR: "bold red",
    Severity.WARNING: "yellow",
    Severity.INFO: "cyan",
    Severity.HINT: "dim",
}

_log_handler: Optional[logging.Handler] = None


def _configure_logging(verbose: bool) -> None:
    """Route package logging to the stderr console; INFO when verbose, WARNING otherwise."""
    global _log_handler
    package_logger = logging.getLogger("syster_cli")
    if _log_handler is None:
        _log_handler = RichHandler(
            console=err_console, show_time=False, show_level=False, show_path=False, markup=False
        )
        package_logger.addHandler(_log_handler)
    package_logger.setLevel(logging.INFO if verbose else logging.WARNING)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"syster {__version__}")
        raise typer.Exit()


def _write_output(content: Union[str, bytes], output: Optional[Path]) -> None:
    """Write to *output* or stdout.  Binary content that is not UTF-8 goes out raw."""
    if output is not None:
        data = content.encode("utf-8") if isinstance(content, str) else content
        try:
            output.write_bytes(data)
        except OSError as exc:
            raise ExportError(f"failed to write output: {exc}") from exc
        return
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError:
            typer.echo(content, nl=False)
            return
    typer.echo(content.rstrip("\n"))


def _write_file(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise ExportError(f"failed to write {path}: {exc}") from exc
    typer.echo(f"  Wrote: {path}")


def _require_kpar_output(export: Optional[str], output: Optional[Path]) -> None:
    if export and get_format(export).binary and output is None:
        raise ExportError("KPAR output is binary and requires --output")


@app.command()
def main(
    input: Path = typer.Argument(..., help="SysML/KerML file or directory, or an interchange file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show loading progress."),
    no_stdlib: bool = typer.Option(False, "--no-stdlib", help="Do not load the standard library."),
    stdlib_path: Optional[Path] = typer.Option(None, "--stdlib-path", help="Explicit standard library directory."),
    export: Optional[str] = typer.Option(None, "--export", help="Export format: xmi, yaml, jsonld, kpar."),
    export_ast_flag: bool = typer.Option(False, "--export-ast", help="Export per-file symbols as JSON."),
    json_output: bool = typer.Option(False, "--json", help="Print the analysis result as JSON."),
    import_flag: bool = typer.Option(False, "--import", help="Validate an interchange file."),
    import_workspace: bool = typer.Option(
        False, "--import-workspace", help="Import an interchange file into the workspace (ids preserved)."
    ),
    decompile: bool = typer.Option(False, "--decompile", help="Convert an interchange file to SysML text."),
    self_contained: bool = typer.Option(
        False, "--self-contained", help="Inline referenced standard library elements in exports."
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write output to FILE instead of stdout."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Analyze a SysML v2 / KerML model, or convert it between formats."""
    _configure_logging(verbose)
    use_stdlib = not no_stdlib and (config.STDLIB_ENABLED or stdlib_path is not None)
    self_contained = self_contained or config.SELF_CONTAINED_DEFAULT
    if verbose:
        # stdout carries only data when a document is written there.
        data_to_stdout = output is None and (export is not None or export_ast_flag or json_output)
        typer.echo(f"Analyzing: {input}", err=data_to_stdout)

    try:
        if decompile:
            _run_decompile(input, output)
        elif import_flag:
            _run_import(input)
        elif import_workspace:
            _run_import_workspace(input, export, output, use_stdlib, stdlib_path, self_contained)
        elif export:
            _require_kpar_output(export, output)
            data = export_model(input, export, use_stdlib, stdlib_path, self_contained)
            _write_output(data, output)
        elif export_ast_flag:
            _write_output(export_ast(input, use_stdlib, stdlib_path), output)
        else:
            _run_analysis(input, use_stdlib, stdlib_path, json_output, output)
    except SysterError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)


def _run_decompile(input: Path, output: Optional[Path]) -> None:
    result = decompile_model(input)
    typer.echo(f"✓ Decompiled {result.element_count} elements from {result.source_path}")
    sysml_path = output or input.with_suffix(".sysml")
    _write_file(sysml_path, result.sysml_text)
    _write_file(sysml_path.with_suffix(config.METADATA_SUFFIX), result.metadata_json)


def _run_import(input: Path) -> None:
    result = import_model(input)
    typer.echo(f"✓ Imported {result.element_count} elements, {result.relationship_count} relationships")
    if result.error_count:
        typer.echo(f"  {result.error_count} validation issues:", err=True)
        for message in result.messages:
            typer.echo(f"    {message}", err=True)
        raise typer.Exit(code=1)


def _run_import_workspace(
    input: Path,
    export: Optional[str],
    output: Optional[Path],
    use_stdlib: bool,
    stdlib_path: Optional[Path],
    self_contained: bool,
) -> None:
    _require_kpar_output(export, output)
    coordinator = AnalysisCoordinator()
    if use_stdlib:
        SourceLoader(coordinator).load_stdlib(StdlibResolver(explicit=stdlib_path))

    result = ImportPipeline(coordinator).import_file(input)

    # stdout carries only data when exporting.
    status_to_stderr = export is not None
    typer.echo(
        f"✓ Imported {result.element_count} elements ({result.symbol_count} symbols) into workspace",
        err=status_to_stderr,
    )
    typer.echo(f"  Total symbols in workspace: {len(coordinator.symbols())}", err=status_to_stderr)
    typer.echo("  Element IDs preserved: ✓", err=status_to_stderr)

    if export is not None:
        pipeline = ExportPipeline(coordinator, self_contained=self_contained, name=input.stem or "model")
        _write_output(pipeline.export(export), output)


def _run_analysis(
    input: Path,
    use_stdlib: bool,
    stdlib_path: Optional[Path],
    json_output: bool,
    output: Optional[Path],
) -> None:
    coordinator = load_workspace(input, use_stdlib=use_stdlib, stdlib_path=stdlib_path)
    coordinator.reindex()
    result = DiagnosticCollector(coordinator).analyze()

    if json_output:
        _write_output(export_json(result), output)
        if result.error_count:
            raise typer.Exit(code=1)
        return

    for diagnostic in result.diagnostics:
        err_console.print(Text(diagnostic.format(), style=SEVERITY_STYLES[diagnostic.severity]))

    if result.error_count == 0:
        typer.echo(
            f"✓ Analyzed {result.file_count} files: {result.symbol_count} symbols, "
            f"{result.warning_count} warnings"
        )
        return
    err_console.print(
        Text(
            f"✗ Analyzed {result.file_count} files: {result.error_count} errors, "
            f"{result.warning_count} warnings",
            style="bold red",
        )
    )
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
