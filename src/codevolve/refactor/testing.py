"""Test runners used to gate refactor executions."""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Protocol

from codevolve.refactor.models import TestResults

logger = logging.getLogger(__name__)

_COUNT_RE = re.compile(r"(\d+) (passed|failed|skipped|errors?)\b")
_TOTAL_RE = re.compile(r"^TOTAL\s+.*?(\d+(?:\.\d+)?)%\s*$", re.MULTILINE)

# pytest exit codes: 0 all passed, 1 some failed, 5 nothing collected.
_NORMAL_EXIT_CODES = {0, 1, 5}


class TestRunner(Protocol):
    __test__ = False

    def run(self, tests: list[str]) -> TestResults: ...


def parse_pytest_output(output: str) -> TestResults:
    """Pull counts from pytest's summary line and coverage from the TOTAL row."""
    results = TestResults()
    summary = ""
    for line in output.splitlines():
        if _COUNT_RE.search(line):
            summary = line
    for count, kind in _COUNT_RE.findall(summary):
        if kind == "passed":
            results.passed = int(count)
        elif kind == "failed":
            results.failed += int(count)
        elif kind == "skipped":
            results.skipped = int(count)
        else:
            results.failed += int(count)
            results.errors.append(f"{count} collection/setup error(s)")

    coverage = _TOTAL_RE.search(output)
    if coverage:
        results.coverage = float(coverage.group(1))

    for line in output.splitlines():
        if line.startswith(("FAILED ", "ERROR ")):
            results.errors.append(line.strip())
    return results


class PytestRunner:
    """Runs pytest in a subprocess under a timeout.

    An empty test list runs the configured command as-is, which usually means
    the whole suite.
    """

    __test__ = False

    def __init__(self, project_path: Path, command: list[str] | None = None, timeout: float = 600.0):
        self.project_path = project_path
        self.command = command or ["python", "-m", "pytest", "-q"]
        self.timeout = timeout

    def run(self, tests: list[str]) -> TestResults:
        args = [*self.command, *tests]
        logger.info("Running tests: %s", " ".join(args))
        proc = subprocess.run(
            args,
            cwd=self.project_path,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )
        output = proc.stdout + "\n" + proc.stderr
        if proc.returncode not in _NORMAL_EXIT_CODES:
            tail = "\n".join(output.strip().splitlines()[-5:])
            raise RuntimeError(f"Test run exited with code {proc.returncode}: {tail}")

        results = parse_pytest_output(output)
        if proc.returncode == 1 and results.failed == 0:
            results.failed = 1
            results.errors.append("pytest reported failures but no summary was found")
        logger.info(
            "Tests finished: %d passed, %d failed, %d skipped",
            results.passed, results.failed, results.skipped,
        )
        return results
