"""Turns findings into reviewable suggestions.

One suggestion is produced per file per finding family (performance
findings are further split by kind: loop, database, bundle). The mapping
rules:

* ``priority`` mirrors the worst contributing impact.
* ``automation_level`` is ``automatic`` only when every contributing finding
  is fixable and none is ``critical``; otherwise ``manual``.
* ``confidence`` is the mean finding certainty, less a penalty when fewer
  than two findings corroborate each other.
"""

from __future__ import annotations

import ast
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Callable

from codevolve.core.models import (
    AutomationLevel,
    ChangeOperation,
    EstimatedImpact,
    FileChange,
    Finding,
    FindingType,
    Impact,
    Implementation,
    Priority,
    Suggestion,
    SuggestionType,
    clamp,
    utcnow,
)

logger = logging.getLogger(__name__)

SINGLE_FINDING_PENALTY = 0.1

PERFORMANCE_KINDS = [
    ("loop", SuggestionType.OPTIMIZE_LOOP, "Optimize loops"),
    ("database", SuggestionType.OPTIMIZE_QUERY, "Optimize data access"),
    ("bundle", SuggestionType.REDUCE_IMPORT_COST, "Reduce import cost"),
]

ROLLBACK_PLANS = {
    SuggestionType.OPTIMIZE_LOOP: "Restore the original loop bodies from the execution backup.",
    SuggestionType.OPTIMIZE_QUERY: "Restore the original query code from the execution backup and re-run data tests.",
    SuggestionType.REDUCE_IMPORT_COST: "Restore the module-level imports from the execution backup.",
    SuggestionType.SECURITY_FIX: (
        "Restore the file from the execution backup; re-provision any secret moved to the environment."
    ),
    SuggestionType.STYLE_IMPROVEMENT: "Restore the original identifiers from the execution backup.",
    SuggestionType.REDUCE_COMPLEXITY: "Restore the original function from the execution backup.",
}


def automation_level_for(findings: list[Finding]) -> AutomationLevel:
    worst = Impact.worst([f.impact for f in findings])
    if all(f.fixable for f in findings) and worst.rank <= Impact.HIGH.rank:
        return AutomationLevel.AUTOMATIC
    return AutomationLevel.MANUAL


def confidence_for(findings: list[Finding]) -> float:
    if not findings:
        return 0.0
    mean = sum(f.certainty for f in findings) / len(findings)
    if len(findings) < 2:
        mean -= SINGLE_FINDING_PENALTY
    return round(clamp(mean), 4)


def apply_rewrites(content: str, findings: list[Finding]) -> str:
    """Apply each finding's proposed rewrite to *content*.

    Naming findings rename the identifier across the file. Every other
    fixable finding with ``after_code`` replaces its source line; the first
    finding for a line wins. Unfixable findings only carry a reviewer hint.
    """
    lines = content.splitlines(keepends=True)
    replaced: set[int] = set()
    for finding in sorted(findings, key=lambda f: f.line):
        after = finding.context.after_code
        if after is None or not finding.fixable or "naming" in finding.tags:
            continue
        index = finding.line - 1
        if index in replaced or not 0 <= index < len(lines):
            continue
        ending = "\n" if lines[index].endswith("\n") else ""
        lines[index] = after + ending
        replaced.add(index)
    new_content = "".join(lines)

    for finding in findings:
        if "naming" in finding.tags and finding.context.after_code:
            old = re.escape(finding.context.before_code)
            new_content = re.sub(rf"\b{old}\b", finding.context.after_code, new_content)

    needed = {t.split(":", 1)[1] for f in findings for t in f.tags if t.startswith("needs-import:")}
    for module in sorted(needed):
        new_content = ensure_import(new_content, module)
    return new_content


def ensure_import(content: str, module: str) -> str:
    """Add ``import <module>`` after the docstring and __future__ imports."""
    if re.search(rf"^\s*import {re.escape(module)}\b", content, re.MULTILINE):
        return content
    lines = content.splitlines(keepends=True)
    insert_at = 0
    try:
        tree = ast.parse(content)
    except SyntaxError:
        tree = None
    if tree is not None:
        for node in tree.body:
            is_docstring = (
                isinstance(node, ast.Expr)
                and isinstance(node.value, ast.Constant)
                and isinstance(node.value.value, str)
            )
            is_future = isinstance(node, ast.ImportFrom) and node.module == "__future__"
            if is_docstring or is_future:
                insert_at = node.end_lineno or node.lineno
            else:
                break
    lines.insert(insert_at, f"import {module}\n")
    return "".join(lines)


class SuggestionGenerator:
    """Maps findings for one file to suggestions, one generator per family."""

    def __init__(self, project_path: Path | None = None, clock: Callable[[], datetime] = utcnow):
        self.project_path = project_path
        self.clock = clock

    def generate(self, file: str, content: str, findings: list[Finding]) -> list[Suggestion]:
        by_type: dict[FindingType, list[Finding]] = {}
        for finding in findings:
            by_type.setdefault(finding.type, []).append(finding)

        suggestions: list[Suggestion] = []
        suggestions += self.generate_performance_suggestions(
            file, content, by_type.get(FindingType.PERFORMANCE_ISSUE, [])
        )
        suggestions += self.generate_security_suggestions(
            file, content, by_type.get(FindingType.SECURITY_VULNERABILITY, [])
        )
        suggestions += self.generate_style_suggestions(file, content, by_type.get(FindingType.STYLE_VIOLATION, []))
        suggestions += self.generate_complexity_suggestions(file, content, by_type.get(FindingType.CODE_SMELL, []))
        return suggestions

    def generate_performance_suggestions(self, file: str, content: str, findings: list[Finding]) -> list[Suggestion]:
        suggestions = []
        claimed: set[str] = set()
        for tag, suggestion_type, title in PERFORMANCE_KINDS:
            group = [f for f in findings if tag in f.tags and f.id not in claimed]
            if not group:
                continue
            claimed.update(f.id for f in group)
            n = len(group)
            if suggestion_type == SuggestionType.OPTIMIZE_QUERY:
                impact = EstimatedImpact(performance=clamp(0.5 + 0.1 * n), maintainability=0.2)
            elif suggestion_type == SuggestionType.OPTIMIZE_LOOP:
                impact = EstimatedImpact(performance=clamp(0.3 + 0.1 * n), maintainability=0.2, readability=0.3)
            else:
                impact = EstimatedImpact(performance=clamp(0.3 + 0.05 * n), maintainability=0.1)
            suggestions.append(self._build(suggestion_type, f"{title} in {file}", file, content, group, impact))
        return suggestions

    def generate_security_suggestions(self, file: str, content: str, findings: list[Finding]) -> list[Suggestion]:
        if not findings:
            return []
        weight = sum(f.impact.rank + 1 for f in findings)
        impact = EstimatedImpact(security=clamp(0.3 + 0.1 * weight), maintainability=0.1)
        return [self._build(
            SuggestionType.SECURITY_FIX, f"Fix security issues in {file}", file, content, findings, impact,
        )]

    def generate_style_suggestions(self, file: str, content: str, findings: list[Finding]) -> list[Suggestion]:
        if not findings:
            return []
        impact = EstimatedImpact(maintainability=0.2, readability=clamp(0.3 + 0.05 * len(findings)))
        return [self._build(
            SuggestionType.STYLE_IMPROVEMENT, f"Make naming consistent in {file}", file, content, findings, impact,
        )]

    def generate_complexity_suggestions(self, file: str, content: str, findings: list[Finding]) -> list[Suggestion]:
        if not findings:
            return []
        impact = EstimatedImpact(maintainability=clamp(0.5 + 0.1 * len(findings)), readability=0.4)
        return [self._build(
            SuggestionType.REDUCE_COMPLEXITY, f"Reduce complexity in {file}", file, content, findings, impact,
        )]

    def _build(
        self,
        suggestion_type: SuggestionType,
        title: str,
        file: str,
        content: str,
        findings: list[Finding],
        impact: EstimatedImpact,
    ) -> Suggestion:
        worst = Impact.worst([f.impact for f in findings])
        level = automation_level_for(findings)
        new_content = apply_rewrites(content, findings)
        changes = []
        if new_content != content:
            changes.append(FileChange(
                file=file,
                operation=ChangeOperation.UPDATE,
                old_content=content,
                new_content=new_content,
            ))

        unfixable = sum(1 for f in findings if not f.fixable)
        reasoning = f"{len(findings)} finding(s); worst impact {worst.value}"
        if unfixable:
            reasoning += f"; {unfixable} without a safe automatic rewrite"

        suggestion = Suggestion(
            type=suggestion_type,
            priority=Priority.from_impact(worst),
            title=title,
            description="\n".join(f"line {f.line}: {f.description}" for f in findings),
            files=[file],
            estimated_impact=impact,
            automation_level=level,
            implementation=Implementation(
                changes=changes,
                tests=self._related_tests(file),
                rollback_plan=ROLLBACK_PLANS[suggestion_type],
            ),
            confidence=confidence_for(findings),
            reasoning=reasoning,
            finding_ids=[f.id for f in findings],
            created_at=self.clock(),
        )
        logger.debug(
            "Generated %s for %s (priority=%s, automation=%s)",
            suggestion_type.value, file, suggestion.priority.value, level.value,
        )
        return suggestion

    def _related_tests(self, file: str) -> list[str]:
        if self.project_path is None:
            return []
        stem = Path(file).stem
        tests_dir = self.project_path / "tests"
        if not tests_dir.is_dir():
            return []
        return sorted(p.relative_to(self.project_path).as_posix() for p in tests_dir.rglob(f"test_{stem}.py"))
