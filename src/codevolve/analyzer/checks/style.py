"""Naming-convention consistency check (STYLE-001)."""

from __future__ import annotations

import ast
import re

from codevolve.analyzer.checks.base import BaseCheck
from codevolve.core.models import Effort, Finding, FindingType, Impact

SNAKE_RE = re.compile(r"^[a-z][a-z0-9]*(?:_[a-z0-9]+)+$")
CAMEL_RE = re.compile(r"^[a-z][a-z0-9]*(?:[A-Z][a-z0-9]*)+$")


def naming_style(name: str) -> str | None:
    """``"snake"``, ``"camel"`` or None for single words and everything else."""
    if SNAKE_RE.match(name):
        return "snake"
    if CAMEL_RE.match(name):
        return "camel"
    return None


def to_snake(name: str) -> str:
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name).lower()


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def collect_identifiers(tree: ast.Module) -> dict[str, int]:
    """Function and variable names mapped to the line they first appear on."""
    names: dict[str, int] = {}

    def add(name: str, line: int) -> None:
        if name.startswith("_"):
            return
        if name not in names or line < names[name]:
            names[name] = line

    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            add(node.name, node.lineno)
        elif isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store):
            add(node.id, node.lineno)
    return names


class STYLE001MixedNaming(BaseCheck):
    """Flag identifiers that break the file's dominant naming convention.

    Only function and variable names vote. Single-word names carry no
    convention and are ignored. Ties produce no findings.
    """

    check_id = "STYLE-001"
    finding_type = FindingType.STYLE_VIOLATION
    impact = Impact.LOW
    effort = Effort.TRIVIAL
    tags = frozenset({"naming"})
    certainty = 0.7
    description = "Inconsistent identifier naming"

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        identifiers = collect_identifiers(tree)
        styles = {name: naming_style(name) for name in identifiers}
        snake = [n for n, s in styles.items() if s == "snake"]
        camel = [n for n, s in styles.items() if s == "camel"]
        if len(snake) == len(camel) or not (snake and camel):
            return []

        if len(camel) > len(snake):
            dominant, minority, convert = "camelCase", snake, to_camel
        else:
            dominant, minority, convert = "snake_case", camel, to_snake

        findings = []
        taken = set(identifiers)
        for name in sorted(minority, key=lambda n: identifiers[n]):
            new_name = convert(name)
            if new_name in taken:
                continue
            taken.add(new_name)
            findings.append(self._make_finding(
                description=f"'{name}' does not follow the file's {dominant} convention; rename to '{new_name}'",
                file=file,
                line=identifiers[name],
                source=source,
                before_code=name,
                after_code=new_name,
            ))
        return findings
