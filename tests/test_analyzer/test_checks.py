"""Tests for the analyzer checks (PERF, SEC, STYLE, CPLX)."""

from __future__ import annotations

import ast
import textwrap

from codevolve.analyzer.checks import build_checks
from codevolve.analyzer.checks.complexity import CPLX001BranchingComplexity, CPLX002FunctionLength
from codevolve.analyzer.checks.performance import (
    PERF001IndexLoop,
    PERF002DataAccessInLoop,
    PERF003BlockingCallInAsync,
    PERF004HeavyImport,
)
from codevolve.analyzer.checks.security import (
    SEC001SQLInjection,
    SEC002HardcodedSecret,
    SEC003DynamicCodeExecution,
)
from codevolve.analyzer.checks.style import STYLE001MixedNaming, naming_style, to_camel, to_snake
from codevolve.core.config import AnalysisConfig
from codevolve.core.models import AnalysisType, Finding, FindingType, Impact

FAKE_FILE = "app/module.py"


def _run_check(check, source: str) -> list[Finding]:
    """Helper: parse source and run a check."""
    source = textwrap.dedent(source)
    return check.run(FAKE_FILE, source, ast.parse(source))


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------
class TestPERF001IndexLoop:
    def test_detects_range_len_loop(self):
        """range(len(...)) loops are flagged with an enumerate rewrite."""
        findings = _run_check(PERF001IndexLoop(), """\
def total(xs):
    result = 0
    for i in range(len(xs)):
        result += xs[i]
    return result
""")
        assert len(findings) == 1
        finding = findings[0]
        assert finding.type == FindingType.PERFORMANCE_ISSUE
        assert finding.impact == Impact.MEDIUM
        assert finding.line == 3
        assert "loop" in finding.tags
        assert finding.context.after_code == "    for i, item in enumerate(xs):"

    def test_direct_iteration_is_clean(self):
        """Iterating a collection directly is not flagged."""
        assert _run_check(PERF001IndexLoop(), "for x in items:\n    print(x)\n") == []

    def test_range_with_start_is_clean(self):
        """range(1, len(xs)) is a different idiom and is left alone."""
        assert _run_check(PERF001IndexLoop(), "for i in range(1, len(xs)):\n    pass\n") == []


class TestPERF002DataAccessInLoop:
    def test_detects_query_per_iteration(self):
        """A cursor call inside a loop body is an N+1 pattern."""
        findings = _run_check(PERF002DataAccessInLoop(), """\
for user_id in ids:
    cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
""")
        assert len(findings) == 1
        assert findings[0].line == 2
        assert "database" in findings[0].tags
        assert "cursor.execute" in findings[0].description
        assert not findings[0].fixable
        assert findings[0].context.after_code.endswith("# codevolve: batch this query outside the loop")

    def test_query_outside_loop_is_clean(self):
        """A single batched query is fine."""
        assert _run_check(PERF002DataAccessInLoop(), "rows = cursor.fetchall()\n") == []


class TestPERF003BlockingCallInAsync:
    def test_detects_requests_in_coroutine(self):
        """Synchronous HTTP inside async def blocks the event loop."""
        findings = _run_check(PERF003BlockingCallInAsync(), """\
import requests

async def fetch(url):
    return requests.get(url)
""")
        assert len(findings) == 1
        assert "fetch" in findings[0].description
        assert findings[0].impact == Impact.HIGH
        assert not findings[0].fixable

    def test_sync_function_is_clean(self):
        """The same call in a regular function is not flagged."""
        assert _run_check(PERF003BlockingCallInAsync(), "def fetch(url):\n    return requests.get(url)\n") == []


class TestPERF004HeavyImport:
    def test_detects_module_level_pandas(self):
        """Heavy imports at module level are flagged."""
        findings = _run_check(PERF004HeavyImport(), "import pandas as pd\nimport os\n")
        assert len(findings) == 1
        assert "pandas" in findings[0].description
        assert not findings[0].fixable

    def test_function_level_import_is_clean(self):
        """A lazy import inside a function is the recommended form."""
        assert _run_check(PERF004HeavyImport(), "def load():\n    import pandas\n") == []

    def test_custom_module_list(self):
        """The heavy module list comes from configuration."""
        check = PERF004HeavyImport(heavy_modules=["boto3"])
        assert len(_run_check(check, "import boto3\nimport pandas\n")) == 1


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------
class TestSEC001SQLInjection:
    def test_detects_fstring_query(self):
        """An f-string SQL query is critical."""
        findings = _run_check(SEC001SQLInjection(), """\
def find(name):
    return db.execute(f"SELECT * FROM users WHERE name = '{name}'")
""")
        assert len(findings) == 1
        assert findings[0].impact == Impact.CRITICAL
        assert "f-string" in findings[0].description

    def test_detects_concatenation(self):
        """String concatenation into SQL is flagged."""
        findings = _run_check(SEC001SQLInjection(), 'q = "DELETE FROM users WHERE id = " + user_id\n')
        assert len(findings) == 1

    def test_parameterized_query_is_clean(self):
        """Placeholders with separate parameters are safe."""
        source = 'db.execute("SELECT * FROM users WHERE id = ?", (user_id,))\n'
        assert _run_check(SEC001SQLInjection(), source) == []


class TestSEC002HardcodedSecret:
    def test_detects_secret_assignment(self):
        """A literal assigned to a secret-looking name is flagged and redacted."""
        findings = _run_check(SEC002HardcodedSecret(), 'API_KEY = "sk-live-123"\n')
        assert len(findings) == 1
        finding = findings[0]
        assert finding.impact == Impact.HIGH
        assert "needs-import:os" in finding.tags
        assert finding.context.after_code == 'API_KEY = os.environ["API_KEY"]'
        assert "sk-live-123" not in finding.context.before_code

    def test_short_and_placeholder_values_are_ignored(self):
        """Values of three characters or fewer and placeholders are not secrets."""
        source = 'password = "abc"\nsecret = "changeme"\ntoken_name = "long-enough"\n'
        assert _run_check(SEC002HardcodedSecret(), source) == []

    def test_annotated_assignment(self):
        """Annotated assignments are checked too."""
        findings = _run_check(SEC002HardcodedSecret(), 'db_password: str = "hunter22"\n')
        assert len(findings) == 1


class TestSEC003DynamicCodeExecution:
    def test_detects_eval(self):
        """eval() is critical and has no automatic fix."""
        findings = _run_check(SEC003DynamicCodeExecution(), "result = eval(user_input)\n")
        assert len(findings) == 1
        assert findings[0].impact == Impact.CRITICAL
        assert not findings[0].fixable

    def test_method_named_eval_is_clean(self):
        """model.eval() is not the builtin."""
        assert _run_check(SEC003DynamicCodeExecution(), "model.eval()\n") == []


# ---------------------------------------------------------------------------
# Style
# ---------------------------------------------------------------------------
class TestSTYLE001MixedNaming:
    def test_flags_minority_convention(self):
        """camelCase names in a snake_case file are flagged with a rename."""
        findings = _run_check(STYLE001MixedNaming(), """\
def load_user(user_id):
    user_name = lookup(user_id)
    return user_name

def saveUser(user):
    pass
""")
        assert len(findings) == 1
        assert findings[0].context.before_code == "saveUser"
        assert findings[0].context.after_code == "save_user"
        assert findings[0].line == 5

    def test_tie_produces_nothing(self):
        """With no dominant convention nothing is flagged."""
        source = "def load_user():\n    pass\n\ndef saveUser():\n    pass\n"
        assert _run_check(STYLE001MixedNaming(), source) == []

    def test_single_words_do_not_vote(self):
        """Single-word identifiers carry no convention."""
        assert naming_style("total") is None
        assert naming_style("user_id") == "snake"
        assert naming_style("userId") == "camel"

    def test_conversions(self):
        assert to_snake("saveUserData") == "save_user_data"
        assert to_camel("save_user_data") == "saveUserData"


# ---------------------------------------------------------------------------
# Complexity
# ---------------------------------------------------------------------------
class TestComplexityChecks:
    def test_branching_over_limit(self):
        """A function with more branches than allowed is flagged."""
        body = "\n".join(f"    if x == {i}:\n        return {i}" for i in range(4))
        findings = _run_check(CPLX001BranchingComplexity(max_complexity=3), f"def pick(x):\n{body}\n")
        assert len(findings) == 1
        assert "4 branches" in findings[0].description
        assert not findings[0].fixable

    def test_deep_nesting(self):
        """Nesting beyond the limit is flagged even with few branches."""
        source = """\
def walk(rows):
    for row in rows:
        if row:
            with open(row) as f:
                pass
"""
        findings = _run_check(CPLX001BranchingComplexity(max_complexity=10, max_nesting=2), source)
        assert len(findings) == 1

    def test_long_function(self):
        """Functions longer than the maximum are flagged."""
        body = "\n".join(f"    x{i} = {i}" for i in range(10))
        findings = _run_check(CPLX002FunctionLength(max_length=5), f"def long():\n{body}\n")
        assert len(findings) == 1
        assert "11 lines" in findings[0].description


class TestBuildChecks:
    def test_each_pass_has_checks(self):
        """Every analysis type maps to at least one check."""
        for analysis_type in AnalysisType:
            assert build_checks(analysis_type)

    def test_thresholds_come_from_config(self):
        """Configured limits are passed through to the checks."""
        config = AnalysisConfig(max_complexity=3, max_function_length=7)
        complexity, length = build_checks(AnalysisType.COMPLEXITY, config)
        assert complexity.max_complexity == 3
        assert length.max_length == 7
