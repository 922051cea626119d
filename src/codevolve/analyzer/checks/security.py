"""Security checks (SEC-001 through SEC-003)."""

from __future__ import annotations

import ast
import re

from codevolve.analyzer.checks.base import BaseCheck, annotate, call_name, line_indent
from codevolve.core.models import Effort, Finding, FindingType, Impact

# Patterns that suggest a variable holds a secret
SECRET_NAME_PATTERNS = [
    r"(?i)(api[_-]?key|secret[_-]?key|access[_-]?key|auth[_-]?token)",
    r"(?i)(password|passwd|pwd)",
    r"(?i)(private[_-]?key|secret)",
    r"(?i)(access[_-]?token|refresh[_-]?token)",
]

PLACEHOLDER_VALUES = {"", "none", "null", "todo", "changeme", "xxx", "your-key-here"}

SQL_PATTERNS = [
    r"\bSELECT\b.+\bFROM\b",
    r"\bINSERT\b.+\bINTO\b",
    r"\bUPDATE\b.+\bSET\b",
    r"\bDELETE\b.+\bFROM\b",
    r"\bDROP\b\s+\b(?:TABLE|DATABASE|INDEX)\b",
]

DYNAMIC_EXECUTION = {"eval", "exec", "compile", "__import__"}


def _is_sql(text: str) -> bool:
    upper = text.upper()
    return any(re.search(pat, upper, re.DOTALL) for pat in SQL_PATTERNS)


class SEC001SQLInjection(BaseCheck):
    """Detect SQL built by string interpolation."""

    check_id = "SEC-001"
    finding_type = FindingType.SECURITY_VULNERABILITY
    impact = Impact.CRITICAL
    effort = Effort.MEDIUM
    fixable = False
    tags = frozenset({"sql-injection"})
    certainty = 0.8
    description = "SQL injection risk"

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        seen: set[int] = set()
        for node in ast.walk(tree):
            how = self._interpolation(node)
            if how is None or node.lineno in seen:
                continue
            seen.add(node.lineno)
            findings.append(self._make_finding(
                description=f"SQL query built with {how}; use a parameterized query",
                file=file,
                line=node.lineno,
                source=source,
                after_code=annotate(source, node.lineno, "use a parameterized query"),
            ))
        return findings

    @staticmethod
    def _interpolation(node: ast.AST) -> str | None:
        if isinstance(node, ast.JoinedStr):
            text = " ".join(str(v.value) for v in node.values if isinstance(v, ast.Constant))
            if any(isinstance(v, ast.FormattedValue) for v in node.values) and _is_sql(text):
                return "an f-string"
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Attribute) and node.func.attr == "format":
            target = node.func.value
            if isinstance(target, ast.Constant) and isinstance(target.value, str) and _is_sql(target.value):
                return ".format()"
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Mod):
            if isinstance(node.left, ast.Constant) and isinstance(node.left.value, str) and _is_sql(node.left.value):
                return "% formatting"
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
            sides = (node.left, node.right)
            literal = [s for s in sides if isinstance(s, ast.Constant) and isinstance(s.value, str)]
            dynamic = [s for s in sides if not isinstance(s, ast.Constant)]
            if literal and dynamic and any(_is_sql(s.value) for s in literal):
                return "string concatenation"
        return None


class SEC002HardcodedSecret(BaseCheck):
    """Detect string literals assigned to secret-looking names."""

    check_id = "SEC-002"
    finding_type = FindingType.SECURITY_VULNERABILITY
    impact = Impact.HIGH
    effort = Effort.EASY
    tags = frozenset({"secrets"})
    certainty = 0.85
    description = "Hardcoded secret"

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Assign):
                targets, value = node.targets, node.value
            elif isinstance(node, ast.AnnAssign) and node.value is not None:
                targets, value = [node.target], node.value
            else:
                continue
            if not (isinstance(value, ast.Constant) and isinstance(value.value, str)):
                continue
            if len(value.value) <= 3 or value.value.lower() in PLACEHOLDER_VALUES:
                continue
            for target in targets:
                if not isinstance(target, ast.Name):
                    continue
                if not any(re.search(p, target.id) for p in SECRET_NAME_PATTERNS):
                    continue
                env_name = target.id.upper()
                findings.append(self._make_finding(
                    description=f"Hardcoded secret in '{target.id}'; read it from the environment",
                    file=file,
                    line=node.lineno,
                    source=source,
                    before_code=f"{target.id} = '***'",
                    after_code=f'{line_indent(source, node.lineno)}{target.id} = os.environ["{env_name}"]',
                    extra_tags=frozenset({"needs-import:os"}),
                ))
        return findings


class SEC003DynamicCodeExecution(BaseCheck):
    """Detect eval/exec style calls. No safe automatic rewrite exists."""

    check_id = "SEC-003"
    finding_type = FindingType.SECURITY_VULNERABILITY
    impact = Impact.CRITICAL
    effort = Effort.HARD
    tags = frozenset({"code-injection"})
    fixable = False
    certainty = 0.95
    description = "Dynamic code execution"

    def run(self, file: str, source: str, tree: ast.Module) -> list[Finding]:
        findings = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
                if node.func.id in DYNAMIC_EXECUTION:
                    findings.append(self._make_finding(
                        description=f"{call_name(node)}() can execute arbitrary code",
                        file=file,
                        line=node.lineno,
                        source=source,
                    ))
        return findings
