"""Tests for running pytest and reading its output."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from codevolve.refactor import testing
from codevolve.refactor.testing import PytestRunner, parse_pytest_output


def _completed(returncode: int, stdout: str) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


class TestParsePytestOutput:
    def test_counts_and_coverage(self):
        output = (
            "FAILED tests/test_a.py::test_x - AssertionError\n"
            "TOTAL                 120     12    90.00%\n"
            "==== 1 failed, 7 passed, 2 skipped in 0.52s ====\n"
        )
        results = parse_pytest_output(output)
        assert (results.passed, results.failed, results.skipped) == (7, 1, 2)
        assert results.coverage == 90.0
        assert results.errors == ["FAILED tests/test_a.py::test_x - AssertionError"]

    def test_collection_errors_count_as_failures(self):
        results = parse_pytest_output("==== 3 passed, 1 error in 0.10s ====\n")
        assert results.passed == 3
        assert results.failed == 1
        assert results.errors == ["1 collection/setup error(s)"]

    def test_no_summary(self):
        results = parse_pytest_output("no tests ran in 0.01s\n")
        assert (results.passed, results.failed) == (0, 0)


class TestPytestRunner:
    def test_runs_selected_tests_in_project(self, tmp_path: Path, monkeypatch):
        calls = []

        def fake_run(args, **kwargs):
            calls.append((args, kwargs))
            return _completed(0, "==== 4 passed in 0.20s ====\n")

        monkeypatch.setattr(testing.subprocess, "run", fake_run)

        results = PytestRunner(tmp_path, ["pytest", "-q"], timeout=30).run(["tests/test_a.py"])

        assert results.passed == 4
        ((args, kwargs),) = calls
        assert args == ["pytest", "-q", "tests/test_a.py"]
        assert kwargs["cwd"] == tmp_path
        assert kwargs["timeout"] == 30

    def test_failure_exit_without_summary_counts_as_failed(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(testing.subprocess, "run", lambda args, **kwargs: _completed(1, "boom\n"))

        results = PytestRunner(tmp_path).run([])

        assert results.failed == 1

    def test_unexpected_exit_code_raises(self, tmp_path: Path, monkeypatch):
        """Usage errors and interrupts are not test results."""
        monkeypatch.setattr(testing.subprocess, "run", lambda args, **kwargs: _completed(4, "usage: pytest\n"))

        with pytest.raises(RuntimeError, match="exited with code 4"):
            PytestRunner(tmp_path).run([])
