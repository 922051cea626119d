"""Performance checks (PERF-001 through PERF-004)."""

from __future__ import annotations

import ast

from codevolve.analyzer.checks.base import BaseCheck, annotate, call_name, line_indent
from codevolve.core.models import Effort, Finding, FindingType, Impact

DATA_ACCESS_METHODS = {
    "execute", "executemany", "fetchone", "fetchall", "fetchmany",
    "query", "filter", "filter_by", "get_object", "find", "find_one",
    "aggregate", "raw",
}

BLOCKING_CALLS = {
    "requests.get", "requests.post", "requests.put", "requests.patch",
    "requests.delete", "requests.head", "requests.request",
    "urllib.request.urlopen", "urlopen", "time.sleep",
}


class PERF001IndexLoop(BaseCheck):
    """Detect ``for i in range(len(items))`` index loops."""

    check_id = "PERF-001"
    finding_type = FindingType.PERFORMANCE_ISSUE
    impact = Impact.MEDIUM
    effort = Effort.EASY
    tags = frozenset({"loop"})
    certainty = 0.85
    description = "Index-based loop over a collection"

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        for node in ast.walk(tree):
            if not isinstance(node, ast.For):
                continue
            seq = self._range_len_target(node.iter)
            if seq is None:
                continue
            seq_text = ast.unparse(seq)
            after_code = None
            if isinstance(node.target, ast.Name):
                index = node.target.id
                after_code = f"{line_indent(source, node.lineno)}for {index}, item in enumerate({seq_text}):"
            findings.append(self._make_finding(
                description=f"Loop indexes into '{seq_text}' via range(len(...)); iterate directly",
                file=file,
                line=node.lineno,
                source=source,
                after_code=after_code,
            ))
        return findings

    @staticmethod
    def _range_len_target(node: ast.AST) -> ast.expr | None:
        if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id == "range"):
            return None
        if len(node.args) != 1:
            return None
        inner = node.args[0]
        if isinstance(inner, ast.Call) and isinstance(inner.func, ast.Name) and inner.func.id == "len":
            if len(inner.args) == 1:
                return inner.args[0]
        return None


class PERF002DataAccessInLoop(BaseCheck):
    """Detect data-access calls issued once per loop iteration (N+1)."""

    check_id = "PERF-002"
    finding_type = FindingType.PERFORMANCE_ISSUE
    impact = Impact.HIGH
    effort = Effort.MEDIUM
    fixable = False
    tags = frozenset({"database"})
    certainty = 0.6
    description = "Data access inside a loop"

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        seen: set[int] = set()
        for loop in ast.walk(tree):
            if not isinstance(loop, (ast.For, ast.AsyncFor, ast.While)):
                continue
            for stmt in loop.body:
                for node in ast.walk(stmt):
                    if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Attribute):
                        continue
                    if node.func.attr not in DATA_ACCESS_METHODS or node.lineno in seen:
                        continue
                    seen.add(node.lineno)
                    findings.append(self._make_finding(
                        description=f"'{call_name(node)}' runs on every loop iteration; batch it",
                        file=file,
                        line=node.lineno,
                        source=source,
                        after_code=annotate(source, node.lineno, "batch this query outside the loop"),
                    ))
        return findings


class PERF003BlockingCallInAsync(BaseCheck):
    """Detect synchronous I/O inside ``async def``."""

    check_id = "PERF-003"
    finding_type = FindingType.PERFORMANCE_ISSUE
    impact = Impact.HIGH
    effort = Effort.MEDIUM
    fixable = False
    tags = frozenset({"database", "blocking-io"})
    certainty = 0.75
    description = "Blocking call inside coroutine"

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        for func in ast.walk(tree):
            if not isinstance(func, ast.AsyncFunctionDef):
                continue
            for node in ast.walk(func):
                if isinstance(node, ast.Call) and call_name(node) in BLOCKING_CALLS:
                    name = call_name(node)
                    findings.append(self._make_finding(
                        description=f"Blocking call '{name}' inside async function '{func.name}'",
                        file=file,
                        line=node.lineno,
                        source=source,
                        after_code=annotate(source, node.lineno, "use an async client or run in a thread"),
                    ))
        return findings


class PERF004HeavyImport(BaseCheck):
    """Detect module-level imports of heavy libraries."""

    check_id = "PERF-004"
    finding_type = FindingType.PERFORMANCE_ISSUE
    impact = Impact.MEDIUM
    effort = Effort.EASY
    fixable = False
    tags = frozenset({"bundle"})
    certainty = 0.9
    description = "Heavy module imported at load time"

    def __init__(self, heavy_modules: list[str] | None = None):
        self.heavy_modules = set(heavy_modules or [
            "pandas", "numpy", "scipy", "matplotlib", "tensorflow", "torch", "sklearn",
        ])

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        for node in tree.body:
            modules: list[str] = []
            if isinstance(node, ast.Import):
                modules = [alias.name for alias in node.names]
            elif isinstance(node, ast.ImportFrom) and node.module and not node.level:
                modules = [node.module]
            heavy = sorted({m.split(".")[0] for m in modules} & self.heavy_modules)
            if heavy:
                findings.append(self._make_finding(
                    description=f"Module-level import of {', '.join(heavy)} slows every import of this file",
                    file=file,
                    line=node.lineno,
                    source=source,
                    after_code=annotate(source, node.lineno, "import lazily inside the functions that use it"),
                ))
        return findings
