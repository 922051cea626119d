"""Complexity checks (CPLX-001, CPLX-002)."""

from __future__ import annotations

import ast
from dataclasses import dataclass

from codevolve.analyzer.checks.base import BaseCheck
from codevolve.core.models import Effort, Finding, FindingType, Impact

BRANCH_NODES = (ast.If, ast.For, ast.AsyncFor, ast.While, ast.Match, ast.match_case, ast.ExceptHandler, ast.IfExp)
NESTING_NODES = (ast.If, ast.For, ast.AsyncFor, ast.While, ast.With, ast.AsyncWith, ast.Try, ast.Match)


@dataclass
class FunctionStats:
    name: str
    line: int
    branches: int
    depth: int
    length: int


def count_branches(func: ast.AST) -> int:
    branches = 0
    for child in ast.walk(func):
        if isinstance(child, BRANCH_NODES):
            branches += 1
        elif isinstance(child, ast.BoolOp):
            branches += len(child.values) - 1
    return branches


def max_depth(node: ast.AST, depth: int = 0) -> int:
    deepest = depth
    for child in ast.iter_child_nodes(node):
        if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            continue
        child_depth = depth + 1 if isinstance(child, NESTING_NODES) else depth
        deepest = max(deepest, max_depth(child, child_depth))
    return deepest


def function_stats(tree: ast.Module) -> list[FunctionStats]:
    stats = []
    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            stats.append(FunctionStats(
                name=node.name,
                line=node.lineno,
                branches=count_branches(node),
                depth=max_depth(node),
                length=(node.end_lineno or node.lineno) - node.lineno + 1,
            ))
    return stats


class CPLX001BranchingComplexity(BaseCheck):
    """Detect functions with too many branches or too deep nesting."""

    check_id = "CPLX-001"
    finding_type = FindingType.CODE_SMELL
    impact = Impact.MEDIUM
    effort = Effort.HARD
    tags = frozenset({"complexity"})
    fixable = False
    certainty = 0.9
    description = "High cyclomatic complexity"

    def __init__(self, max_complexity: int = 10, max_nesting: int = 4):
        self.max_complexity = max_complexity
        self.max_nesting = max_nesting

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        for stats in function_stats(tree):
            if stats.branches <= self.max_complexity and stats.depth <= self.max_nesting:
                continue
            impact = Impact.HIGH if stats.branches > 2 * self.max_complexity else Impact.MEDIUM
            findings.append(self._make_finding(
                description=(
                    f"Function '{stats.name}' has {stats.branches} branches "
                    f"(max {self.max_complexity}) and nesting depth {stats.depth} (max {self.max_nesting})"
                ),
                file=file,
                line=stats.line,
                source=source,
                impact=impact,
            ))
        return findings


class CPLX002FunctionLength(BaseCheck):
    """Detect functions over the configured maximum length."""

    check_id = "CPLX-002"
    finding_type = FindingType.CODE_SMELL
    impact = Impact.LOW
    effort = Effort.MEDIUM
    tags = frozenset({"function-length"})
    fixable = False
    certainty = 0.95
    description = "Function too long"

    def __init__(self, max_length: int = 50):
        self.max_length = max_length

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        for stats in function_stats(tree):
            if stats.length > self.max_length:
                findings.append(self._make_finding(
                    description=f"Function '{stats.name}' is {stats.length} lines (max {self.max_length})",
                    file=file,
                    line=stats.line,
                    source=source,
                ))
        return findings
