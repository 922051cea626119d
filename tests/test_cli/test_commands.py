"""Tests for the click command line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from codevolve.cli.main import cli
from codevolve.cli.runtime import CliState, Runtime
from codevolve.control.models import EventType
from codevolve.core.models import SuggestionStatus, SuggestionType

SECRET_SOURCE = 'API_KEY = "sk-live-123"\n'


@pytest.fixture
def state(project, config, store, analyzer, executor, canary, orchestrator, scheduler) -> CliState:
    """CLI state wired to the in-process fakes instead of threads and HTTP."""
    runtime = Runtime(project, config, store, analyzer, executor, canary, orchestrator, scheduler)
    return CliState(runtime=runtime)


@pytest.fixture
def invoke(state: CliState, project: Path):
    def run(*args: str):
        return CliRunner().invoke(
            cli, ["--project", str(project), "--tenant", "acme", "--actor", "alice", *args], obj=state,
        )

    return run


def _analyzed(invoke, project: Path) -> list[dict]:
    (project / "app" / "service.py").write_text(SECRET_SOURCE)
    result = invoke("analyze", "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.output[result.output.index("["):])


class TestTopLevel:
    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "codevolve" in result.output

    def test_library_errors_exit_with_status_one(self, invoke):
        result = invoke("suggestions", "show", "sug-missing")
        assert result.exit_code == 1
        assert "Suggestion sug-missing not found" in result.output


class TestAnalyze:
    def test_json_output_and_queued_suggestions(self, invoke, project: Path, executor):
        results = _analyzed(invoke, project)

        assert {r["analysis_type"] for r in results} == {"performance", "security", "style", "complexity"}
        (pending,) = executor.get_pending_suggestions()
        assert pending.type == SuggestionType.SECURITY_FIX
        assert (project / "app" / "service.py").read_text() == SECRET_SOURCE

    def test_single_pass(self, invoke, project: Path):
        (project / "app" / "service.py").write_text(SECRET_SOURCE)
        result = invoke("analyze", "--type", "style", "--json")
        parsed = json.loads(result.output[result.output.index("["):])
        assert [r["analysis_type"] for r in parsed] == ["style"]


class TestSuggestions:
    def test_list_json(self, invoke, project: Path):
        _analyzed(invoke, project)

        result = invoke("suggestions", "list", "--json")

        (item,) = json.loads(result.output)
        assert item["type"] == "security_fix"
        assert item["status"] == "pending"

    def test_approve_then_execute(self, invoke, project: Path, executor, scheduler):
        """Approval queues the debounced run; execute applies it right away."""
        _analyzed(invoke, project)
        (suggestion,) = executor.get_pending_suggestions()

        approved = invoke("suggestions", "approve", suggestion.id, "--rating", "5")

        assert approved.exit_code == 0, approved.output
        assert "suggestions execute" in approved.output
        assert executor.get_suggestion(suggestion.id).status == SuggestionStatus.APPROVED
        assert [t.name for t in scheduler.active] == [f"execute-{suggestion.id}"]
        (feedback,) = executor.get_suggestion_feedback(suggestion.id)
        assert feedback.user_id == "alice"

        executed = invoke("suggestions", "execute", suggestion.id, "--yes")

        assert executed.exit_code == 0, executed.output
        assert (project / "app" / "service.py").read_text().startswith("import os\n")
        (execution,) = executor.get_execution_history(suggestion.id)
        assert execution.executed_by == "alice"

    def test_execute_requires_approval(self, invoke, project: Path, executor):
        _analyzed(invoke, project)
        (suggestion,) = executor.get_pending_suggestions()

        result = invoke("suggestions", "execute", suggestion.id, "--yes")

        assert result.exit_code == 1
        assert executor.get_execution_history(suggestion.id) == []

    def test_reject(self, invoke, project: Path, executor):
        _analyzed(invoke, project)
        (suggestion,) = executor.get_pending_suggestions()

        result = invoke("suggestions", "reject", suggestion.id, "-m", "not now")

        assert result.exit_code == 0
        assert executor.get_suggestion(suggestion.id).status == SuggestionStatus.REJECTED

    def test_apply_blocked_by_safeguards(self, invoke, project: Path, executor, orchestrator):
        """A refused apply names the safeguard and exits non-zero."""
        _analyzed(invoke, project)
        (suggestion,) = executor.get_pending_suggestions()
        orchestrator.emergency_stop("acme", "ops", "incident")
        invoke("evolution", "enable")

        result = invoke("suggestions", "apply", suggestion.id)

        assert result.exit_code == 1
        assert "Emergency stop is active" in result.output
        assert executor.get_execution_history(suggestion.id) == []

    def test_apply_when_disabled(self, invoke, project: Path, executor):
        _analyzed(invoke, project)
        (suggestion,) = executor.get_pending_suggestions()

        result = invoke("suggestions", "apply", suggestion.id)

        assert result.exit_code == 1
        assert "Evolution is disabled" in result.output
        assert (project / "app" / "service.py").read_text() == SECRET_SOURCE

    def test_apply_when_enabled(self, invoke, project: Path, executor):
        _analyzed(invoke, project)
        (suggestion,) = executor.get_pending_suggestions()
        invoke("evolution", "enable")

        result = invoke("suggestions", "apply", suggestion.id)

        assert result.exit_code == 0, result.output
        assert (project / "app" / "service.py").read_text().startswith("import os\n")


class TestHistory:
    def test_empty_history_json(self, invoke):
        result = invoke("history", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output) == []


class TestEvolution:
    def test_enable_with_options(self, invoke, orchestrator):
        result = invoke("evolution", "enable", "--auto-refactor", "--max-daily-changes", "2")

        assert result.exit_code == 0, result.output
        settings = orchestrator.get_evolution_settings("acme")
        assert settings.enabled
        assert settings.features.auto_refactor.enabled
        assert not settings.features.canary_testing.enabled
        assert settings.safeguards.max_daily_changes == 2
        assert settings.last_modified_by == "alice"

    def test_status_json(self, invoke):
        result = invoke("evolution", "status", "--json")
        data = json.loads(result.output)
        assert data["tenant"] == "acme"
        assert data["enabled"] is False

    def test_emergency_stop_and_clear(self, invoke, orchestrator):
        """A stop survives a plain enable and is lifted by --clear-stop."""
        invoke("evolution", "enable")

        stopped = invoke("evolution", "stop", "--reason", "bad deploy", "--yes")
        assert stopped.exit_code == 0, stopped.output
        assert "Emergency stop activated" in stopped.output
        assert "Emergency stop is active" in invoke("evolution", "status").output

        reenabled = invoke("evolution", "enable")
        assert "--clear-stop" in reenabled.output
        assert not orchestrator.check_safeguards("acme")

        invoke("evolution", "enable", "--clear-stop")
        assert orchestrator.check_safeguards("acme")

    def test_stop_requires_reason(self, invoke):
        result = invoke("evolution", "stop", "--yes")
        assert result.exit_code == 2

    def test_run_when_disabled_skips(self, invoke):
        result = invoke("evolution", "run", "--cycle", "analysis")
        assert result.exit_code == 0
        assert "skipped" in result.output

    def test_acknowledge_event(self, invoke, orchestrator):
        invoke("evolution", "enable")
        (event,) = orchestrator.get_evolution_events("acme")

        result = invoke("evolution", "events", "--ack", event.id)

        assert result.exit_code == 0
        assert orchestrator.get_evolution_events("acme")[0].acknowledged_by == "alice"


class TestCanary:
    def test_baseline_then_deploy(self, invoke, canary, orchestrator, tmp_path: Path):
        registered = invoke(
            "canary", "baseline", "--name", "summarizer", "--version", "2.0",
            "--provider", "openai", "--model-id", "gpt-4o",
        )
        assert registered.exit_code == 0, registered.output
        (baseline,) = canary.get_canary_history()

        spec_file = tmp_path / "canary.json"
        spec_file.write_text(json.dumps({
            "name": "summarizer",
            "version": "2.1",
            "comparison_baseline": baseline.id,
            "configuration": {"provider": "openai", "model_id": "gpt-4o-mini"},
        }))
        deployed = invoke("canary", "deploy", str(spec_file), "--traffic", "10")

        assert deployed.exit_code == 0, deployed.output
        assert "10% traffic" in deployed.output
        (model,) = canary.get_active_canaries()
        assert model.traffic_percentage == 10
        (event,) = orchestrator.get_evolution_events("acme")
        assert event.type == EventType.CANARY_DEPLOYED

    def test_deploy_with_unknown_baseline(self, invoke, tmp_path: Path):
        spec_file = tmp_path / "canary.toml"
        spec_file.write_text(
            'name = "summarizer"\nversion = "2.1"\ncomparison_baseline = "canary-nope"\n'
            '[configuration]\nprovider = "openai"\nmodel_id = "gpt-4o-mini"\n'
        )
        result = invoke("canary", "deploy", str(spec_file))
        assert result.exit_code == 1
