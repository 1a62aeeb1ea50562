"""Diagnostic collection and ordering."""

from __future__ import annotations

from typing import List, Tuple

from .coordinator import AnalysisCoordinator
from .models import AnalysisResult, Diagnostic, DiagnosticInfo, Severity


def to_info(diagnostic: Diagnostic) -> DiagnosticInfo:
    """Convert an engine diagnostic to the 1-indexed reporting form."""
    span = diagnostic.span
    return DiagnosticInfo(
        file=diagnostic.file,
        line=span.start_line + 1,
        col=span.start_col + 1,
        end_line=span.end_line + 1,
        end_col=span.end_col + 1,
        message=diagnostic.message,
        severity=diagnostic.severity,
        code=diagnostic.code,
    )


class DiagnosticCollector:
    """Gather diagnostics from every loaded user file in one global order.

    Ordering key is ``(file, line, col, emission_index)`` where the emission
    index is the position at which the engine reported the diagnostic, so
    diagnostics at the same position keep engine order.  Library files are
    not reported.
    """

    def __init__(self, coordinator: AnalysisCoordinator) -> None:
        self.coordinator = coordinator

    def collect(self) -> List[DiagnosticInfo]:
        keyed: List[Tuple[Tuple[str, int, int, int], DiagnosticInfo]] = []
        emission = 0
        for source in self.coordinator.files():
            if source.is_library:
                continue
            for diagnostic in self.coordinator.check_file(source.path):
                info = to_info(diagnostic)
                keyed.append(((info.file, info.line, info.col, emission), info))
                emission += 1
        keyed.sort(key=lambda item: item[0])
        return [info for _, info in keyed]

    def analyze(self) -> AnalysisResult:
        """Collect diagnostics and counts; marks the coordinator DIAGNOSED."""
        diagnostics = self.collect()
        file_count, symbol_count = self.coordinator.query_summary()
        self.coordinator.mark_diagnosed()
        return AnalysisResult(
            file_count=file_count,
            symbol_count=symbol_count,
            error_count=_count(diagnostics, Severity.ERROR),
            warning_count=_count(diagnostics, Severity.WARNING),
            info_count=_count(diagnostics, Severity.INFO),
            hint_count=_count(diagnostics, Severity.HINT),
            diagnostics=diagnostics,
        )


def _count(diagnostics: List[DiagnosticInfo], severity: Severity) -> int:
    return sum(1 for d in diagnostics if d.severity == severity)
