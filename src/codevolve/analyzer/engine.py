"""Analyzer engine: runs check passes over the codebase and records results."""

from __future__ import annotations

import ast
import fnmatch
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from codevolve.analyzer.checks import build_checks
from codevolve.analyzer.checks.complexity import function_stats
from codevolve.analyzer.suggestions import SuggestionGenerator
from codevolve.core.config import EvolveConfig, load_config
from codevolve.core.errors import AnalysisError
from codevolve.core.models import (
    AnalysisResult,
    AnalysisType,
    AutomationLevel,
    ExecutionStatus,
    Finding,
    Impact,
    Suggestion,
    utcnow,
)
from codevolve.storage.store import EvolutionStore

logger = logging.getLogger(__name__)


def compute_confidence(findings: list[Finding], suggestions: list[Suggestion]) -> float:
    """Share of fixable findings and automatic suggestions, weighted 0.6/0.4."""
    if not findings:
        return 1.0
    fixable = sum(1 for f in findings if f.fixable) / len(findings)
    automatic = 0.0
    if suggestions:
        automatic = sum(1 for s in suggestions if s.automation_level == AutomationLevel.AUTOMATIC) / len(suggestions)
    return round(fixable * 0.6 + automatic * 0.4, 4)


class Analyzer:
    """Runs the performance, security, style and complexity passes."""

    def __init__(
        self,
        project_path: Path | None = None,
        store: EvolutionStore | None = None,
        config: EvolveConfig | None = None,
        generator: SuggestionGenerator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.project_path = (project_path or Path.cwd()).resolve()
        self.config = config or load_config(self.project_path)
        self.store = store or EvolutionStore.for_project(self.project_path)
        self.clock = clock
        self.generator = generator or SuggestionGenerator(self.project_path, clock=clock)

    def collect_files(self) -> list[Path]:
        """Enumerate source files, excluding configured patterns.

        Raises :class:`AnalysisError` when the tree cannot be listed.
        """
        try:
            candidates: set[Path] = set()
            for pattern in self.config.analysis.include:
                candidates.update(p for p in self.project_path.glob(pattern) if p.is_file())
        except OSError as exc:
            raise AnalysisError(f"Could not list files under {self.project_path}: {exc}") from exc

        files = []
        for path in candidates:
            rel = path.relative_to(self.project_path).as_posix()
            if any(self._excluded(rel, excl) for excl in self.config.exclude):
                continue
            files.append(path)
        return sorted(files)

    @staticmethod
    def _excluded(rel: str, pattern: str) -> bool:
        if pattern.endswith("/"):
            prefix = pattern.rstrip("/")
            return rel.startswith(prefix + "/") or f"/{prefix}/" in f"/{rel}"
        return fnmatch.fnmatch(rel, pattern)

    def analyze(self, analysis_type: AnalysisType, files: list[Path] | None = None) -> AnalysisResult:
        """Run one pass and persist its result.

        Unreadable or unparsable files are skipped and listed in
        ``result.errors``; the rest of the pass continues.
        """
        if files is None:
            files = self.collect_files()
        checks = build_checks(analysis_type, self.config.analysis)

        findings: list[Finding] = []
        suggestions: list[Suggestion] = []
        errors: list[str] = []
        total_lines = 0
        analyzed = 0
        complexities: list[int] = []

        for path in files:
            rel = self._relative(path)
            try:
                source = path.read_text(encoding="utf-8")
                tree = ast.parse(source, filename=str(path))
            except (OSError, UnicodeDecodeError, SyntaxError, ValueError) as exc:
                logger.debug("Skipping %s: %s", rel, exc)
                errors.append(f"{rel}: {exc}")
                continue

            analyzed += 1
            total_lines += len(source.splitlines())
            if analysis_type == AnalysisType.COMPLEXITY:
                complexities.extend(s.branches for s in function_stats(tree))

            file_findings: list[Finding] = []
            for check in checks:
                try:
                    file_findings.extend(check.run(rel, source, tree))
                except Exception as exc:
                    logger.warning("Check %s failed on %s: %s", check.check_id, rel, exc)
                    errors.append(f"{rel}: {check.check_id} failed: {exc}")
            findings.extend(file_findings)
            if file_findings:
                suggestions.extend(self.generator.generate(rel, source, file_findings))

        metrics: dict[str, float] = {
            "lines_of_code": float(total_lines),
            "files_analyzed": float(analyzed),
        }
        if complexities:
            metrics["average_complexity"] = round(sum(complexities) / len(complexities), 2)
            metrics["max_complexity"] = float(max(complexities))
        coverage = self.read_test_coverage()
        if coverage is not None:
            metrics["test_coverage"] = coverage

        result = AnalysisResult(
            analysis_type=analysis_type,
            findings=findings,
            suggestions=suggestions,
            metrics=metrics,
            confidence=compute_confidence(findings, suggestions),
            severity=Impact.worst([f.impact for f in findings]),
            errors=errors,
            analyzed_at=self.clock(),
        )
        for suggestion in suggestions:
            suggestion.analysis_id = result.id
        self.store.save_analysis_result(result)
        logger.info(
            "%s analysis: %d finding(s), %d suggestion(s), %d error(s)",
            analysis_type.value, len(findings), len(suggestions), len(errors),
        )
        return result

    def perform_full_codebase_analysis(self, analysis_types: list[AnalysisType] | None = None) -> list[AnalysisResult]:
        """Run every pass over the same file listing.

        A listing failure aborts the whole run before any pass starts.
        """
        files = self.collect_files()
        return [self.analyze(t, files) for t in (analysis_types or list(AnalysisType))]

    def read_test_coverage(self) -> float | None:
        """Coverage percent from coverage.json, else from the newest completed execution."""
        coverage_file = self.project_path / self.config.analysis.coverage_file
        if coverage_file.exists():
            try:
                data = json.loads(coverage_file.read_text())
                return round(float(data["totals"]["percent_covered"]), 2)
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Ignoring unreadable coverage file %s: %s", coverage_file, exc)

        for execution in self.store.list_executions(status=ExecutionStatus.COMPLETED):
            if execution.test_results.coverage > 0:
                return execution.test_results.coverage
        return None

    def get_latest_analysis_results(self, limit: int = 10) -> list[AnalysisResult]:
        return self.store.list_analysis_results(limit=limit)

    def get_analysis_history(self, analysis_type: AnalysisType | None = None, limit: int | None = None) -> list[AnalysisResult]:
        return self.store.list_analysis_results(analysis_type=analysis_type, limit=limit)

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.project_path).as_posix()
        except ValueError:
            return path.as_posix()
