"""Base check class for all analyzer checks."""

from __future__ import annotations

import ast
from abc import ABC, abstractmethod

from codevolve.core.models import Effort, Finding, FindingContext, FindingType, Impact, new_id


class BaseCheck(ABC):
    """Abstract base class for all analyzer checks."""

    check_id: str = ""
    finding_type: FindingType = FindingType.CODE_SMELL
    impact: Impact = Impact.LOW
    effort: Effort = Effort.EASY
    tags: frozenset[str] = frozenset()
    fixable: bool = True
    certainty: float = 0.8
    description: str = ""

    @abstractmethod
    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        """Run the check on a single file. Return list of findings."""
        ...

    def _make_finding(
        self,
        description: str,
        file: str,
        line: int,
        source: str,
        before_code: str | None = None,
        after_code: str | None = None,
        impact: Impact | None = None,
        extra_tags: frozenset[str] = frozenset(),
    ) -> Finding:
        """Helper to create a Finding with this check's defaults."""
        lines = source.splitlines()
        if before_code is None:
            before_code = lines[line - 1].strip() if 0 < line <= len(lines) else ""
        start = max(0, line - 3)
        return Finding(
            id=new_id(self.check_id.lower()),
            type=self.finding_type,
            file=file,
            line=line,
            description=description,
            impact=impact or self.impact,
            effort=self.effort,
            tags=self.tags | extra_tags,
            context=FindingContext(
                before_code=before_code,
                surrounding_code="\n".join(lines[start:line + 2]),
                after_code=after_code,
            ),
            fixable=self.fixable,
            certainty=self.certainty,
        )


def line_indent(source: str, line: int) -> str:
    lines = source.splitlines()
    if not 0 < line <= len(lines):
        return ""
    text = lines[line - 1]
    return text[: len(text) - len(text.lstrip())]


def source_line(source: str, line: int) -> str:
    lines = source.splitlines()
    return lines[line - 1] if 0 < line <= len(lines) else ""


def call_name(node: ast.Call) -> str:
    """Dotted name of the called object, e.g. ``requests.get``."""
    parts: list[str] = []
    func: ast.AST = node.func
    while isinstance(func, ast.Attribute):
        parts.append(func.attr)
        func = func.value
    if isinstance(func, ast.Name):
        parts.append(func.id)
    return ".".join(reversed(parts))


def annotate(source: str, line: int, hint: str) -> str:
    """The source line with a trailing reviewer hint."""
    return f"{source_line(source, line).rstrip()}  # codevolve: {hint}"
