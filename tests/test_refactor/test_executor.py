"""Tests for the suggestion lifecycle and test-gated execution."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from codevolve.core.errors import ExecutionError, InvalidTransition, NotApproved, NotAutomatic, SuggestionNotFound
from codevolve.core.models import (
    SYSTEM_ACTOR,
    AnalysisResult,
    AnalysisType,
    AutomationLevel,
    ChangeOperation,
    EstimatedImpact,
    ExecutionStatus,
    FeedbackAction,
    FileChange,
    Implementation,
    Priority,
    Suggestion,
    SuggestionStatus,
    SuggestionType,
)
from codevolve.refactor.executor import RefactorExecutor
from codevolve.refactor.models import RefactorFeedback, TestResults
from codevolve.storage.store import EvolutionStore

ORIGINAL = 'API_KEY = "sk-live-123"\n\n\ndef total(items):\n    return sum(items)\n'
UPDATED = 'import os\nAPI_KEY = os.environ["API_KEY"]\n\n\ndef total(items):\n    return sum(items)\n'


def _make_suggestion(
    changes: list[FileChange],
    automation_level: AutomationLevel = AutomationLevel.AUTOMATIC,
    priority: Priority = Priority.MEDIUM,
    confidence: float = 0.95,
) -> Suggestion:
    return Suggestion(
        type=SuggestionType.SECURITY_FIX,
        priority=priority,
        title="Move secret to the environment",
        description="line 1: Hardcoded secret in 'API_KEY'",
        files=sorted({c.file for c in changes}),
        estimated_impact=EstimatedImpact(security=0.6),
        automation_level=automation_level,
        implementation=Implementation(changes=changes, tests=["tests/test_service.py"], rollback_plan="restore"),
        confidence=confidence,
    )


@pytest.fixture
def source(project: Path) -> Path:
    path = project / "app" / "service.py"
    path.write_text(ORIGINAL)
    return path


@pytest.fixture
def update() -> FileChange:
    return FileChange(
        file="app/service.py", operation=ChangeOperation.UPDATE, old_content=ORIGINAL, new_content=UPDATED,
    )


def _feedback(suggestion_id: str, action: FeedbackAction, rating: int = 4) -> RefactorFeedback:
    return RefactorFeedback(suggestion_id=suggestion_id, user_id="alice", action=action, rating=rating)


class TestAutoApply:
    def test_manual_suggestion_raises_without_execution(self, executor: RefactorExecutor, source: Path, update):
        """A non-automatic suggestion is refused and leaves no execution behind."""
        for level in (AutomationLevel.MANUAL, AutomationLevel.ASSISTED):
            suggestion = executor.store_suggestion(_make_suggestion([update], automation_level=level))

            with pytest.raises(NotAutomatic):
                executor.auto_apply_suggestion(suggestion.id)

            assert executor.get_execution_history(suggestion.id) == []
        assert source.read_text() == ORIGINAL

    def test_successful_apply_completes(self, executor: RefactorExecutor, source: Path, update):
        """Passing tests leave the change in place and record system approval."""
        suggestion = executor.store_suggestion(_make_suggestion([update]))

        execution = executor.auto_apply_suggestion(suggestion.id)

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.executed_by == SYSTEM_ACTOR
        assert source.read_text() == UPDATED
        assert executor.get_suggestion(suggestion.id).status == SuggestionStatus.APPROVED
        feedback = executor.get_suggestion_feedback(suggestion.id)
        assert [(f.action, f.rating) for f in feedback] == [(FeedbackAction.APPROVED, 5)]
        assert feedback[0].is_automatic

    def test_rejected_suggestion_cannot_be_auto_applied(self, executor: RefactorExecutor, source: Path, update):
        """Rejection is final for automatic application."""
        suggestion = executor.store_suggestion(_make_suggestion([update]))
        executor.submit_feedback(_feedback(suggestion.id, FeedbackAction.REJECTED, 1))

        with pytest.raises(InvalidTransition):
            executor.auto_apply_suggestion(suggestion.id)
        assert source.read_text() == ORIGINAL

    def test_unknown_suggestion(self, executor: RefactorExecutor):
        """Unknown IDs raise SuggestionNotFound."""
        with pytest.raises(SuggestionNotFound):
            executor.auto_apply_suggestion("sug-missing")


class TestRollback:
    def test_failing_tests_restore_files_byte_for_byte(
        self, executor: RefactorExecutor, runner, project: Path, source: Path, update,
    ):
        """Every touched path is restored exactly, including files the change created."""
        raw = b'API_KEY = "sk-live-123"\r\n\r\n\xef\xbb\xbf# trailing bytes\n'
        source.write_bytes(raw)
        created = FileChange(file="app/new_module.py", operation=ChangeOperation.CREATE, new_content="x = 1\n")
        suggestion = executor.store_suggestion(_make_suggestion([update, created]))
        runner.results = TestResults(passed=2, failed=1)

        execution = executor.auto_apply_suggestion(suggestion.id)

        assert execution.status == ExecutionStatus.ROLLED_BACK
        assert source.read_bytes() == raw
        assert not (project / "app" / "new_module.py").exists()
        assert execution.metadata["rollback_reason"] == "1 test(s) failed"
        assert Path(execution.backup_path).is_dir()

    def test_rollback_records_synthetic_rejection(self, executor: RefactorExecutor, runner, source: Path, update):
        """A rolled back execution rejects the suggestion with a rating of 1."""
        suggestion = executor.store_suggestion(_make_suggestion([update]))
        runner.results = TestResults(failed=2)

        executor.auto_apply_suggestion(suggestion.id)

        assert executor.get_suggestion(suggestion.id).status == SuggestionStatus.REJECTED
        feedback = executor.get_suggestion_feedback(suggestion.id)
        assert [(f.action, f.rating, f.user_id) for f in feedback] == [(FeedbackAction.REJECTED, 1, SYSTEM_ACTOR)]

    def test_runner_error_marks_failed_and_restores(self, executor: RefactorExecutor, runner, source: Path, update):
        """A crashing test run fails the execution, restores files and re-raises."""
        suggestion = executor.store_suggestion(_make_suggestion([update]))
        runner.error = RuntimeError("pytest exited with code 4")

        with pytest.raises(ExecutionError):
            executor.auto_apply_suggestion(suggestion.id)

        (execution,) = executor.get_execution_history(suggestion.id)
        assert execution.status == ExecutionStatus.FAILED
        assert "code 4" in execution.metadata["error"]
        assert source.read_text() == ORIGINAL

    def test_force_rollback_of_in_flight_execution(self, executor: RefactorExecutor, runner, source: Path, update):
        """A forced rollback mid-run wins over the normal completion."""
        suggestion = executor.store_suggestion(_make_suggestion([update]))
        forced = []

        def stop_midway():
            (running,) = executor.store.list_executions(status=ExecutionStatus.IN_PROGRESS)
            forced.append(executor.force_rollback(running.id, "operator stop"))

        runner.on_run = stop_midway
        execution = executor.auto_apply_suggestion(suggestion.id)

        assert execution.status == ExecutionStatus.ROLLED_BACK
        assert execution.metadata["forced"] is True
        assert forced[0].id == execution.id
        assert source.read_text() == ORIGINAL

    def test_stop_during_backup_is_not_overwritten(
        self, executor: RefactorExecutor, runner, source: Path, update, monkeypatch,
    ):
        """A stop that lands while the backup is written ends the run before any change."""
        suggestion = executor.store_suggestion(_make_suggestion([update]))
        create = executor.backups.create

        def create_then_stop(execution_id, paths, when):
            session = create(execution_id, paths, when)
            executor.force_rollback(execution_id, "operator stop")
            return session

        monkeypatch.setattr(executor.backups, "create", create_then_stop)

        execution = executor.auto_apply_suggestion(suggestion.id)

        assert execution.status == ExecutionStatus.ROLLED_BACK
        assert executor.get_execution(execution.id).status == ExecutionStatus.ROLLED_BACK
        assert source.read_text() == ORIGINAL
        assert runner.calls == []
        assert executor.get_suggestion_feedback(suggestion.id) == []

    def test_stop_between_changes_restores_everything(
        self, executor: RefactorExecutor, runner, project: Path, source: Path, update, monkeypatch,
    ):
        """Changes written after a forced rollback are undone and the rest are never applied."""
        other = project / "app" / "other.py"
        other.write_text("y = 1\n")
        second = FileChange(
            file="app/other.py", operation=ChangeOperation.UPDATE, old_content="y = 1\n", new_content="y = 2\n",
        )
        suggestion = executor.store_suggestion(_make_suggestion([update, second]))
        apply = executor.applier.apply
        applied = []

        def apply_then_stop(change):
            apply(change)
            applied.append(change.file)
            if len(applied) == 1:
                (running,) = executor.store.list_executions(status=ExecutionStatus.IN_PROGRESS)
                executor.force_rollback(running.id, "operator stop")

        monkeypatch.setattr(executor.applier, "apply", apply_then_stop)

        execution = executor.auto_apply_suggestion(suggestion.id)

        assert applied == ["app/service.py"]
        assert execution.status == ExecutionStatus.ROLLED_BACK
        assert execution.metadata["rollback_reason"] == "operator stop"
        assert source.read_text() == ORIGINAL
        assert other.read_text() == "y = 1\n"
        assert runner.calls == []
        assert executor.get_suggestion_feedback(suggestion.id) == []

    def test_restore_failure_after_failing_tests(
        self, executor: RefactorExecutor, runner, source: Path, update, monkeypatch,
    ):
        """If the backup cannot be put back the execution fails instead of staying in progress."""
        suggestion = executor.store_suggestion(_make_suggestion([update]))
        runner.results = TestResults(failed=1)

        def refuse(session):
            raise PermissionError("read-only file system")

        monkeypatch.setattr(executor.backups, "restore", refuse)

        with pytest.raises(ExecutionError):
            executor.auto_apply_suggestion(suggestion.id)

        (execution,) = executor.get_execution_history(suggestion.id)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.completed_at is not None
        assert "read-only" in execution.metadata["error"]
        assert "read-only" in execution.metadata["restore_error"]
        assert executor.store.list_executions(status=ExecutionStatus.IN_PROGRESS) == []


class TestFeedback:
    def test_approve_twice_transitions_once(self, executor: RefactorExecutor, scheduler, source: Path, update):
        """A second approval records feedback but does not queue or transition again."""
        suggestion = executor.store_suggestion(_make_suggestion([update], AutomationLevel.MANUAL))

        executor.submit_feedback(_feedback(suggestion.id, FeedbackAction.APPROVED))
        executor.submit_feedback(_feedback(suggestion.id, FeedbackAction.APPROVED))

        assert executor.get_suggestion(suggestion.id).status == SuggestionStatus.APPROVED
        assert len(executor.get_suggestion_feedback(suggestion.id)) == 2
        assert [t.name for t in scheduler.active] == [f"execute-{suggestion.id}"]

    def test_debounced_execution_runs_after_approval(
        self, executor: RefactorExecutor, scheduler, source: Path, update,
    ):
        """Approval schedules execution after the debounce window."""
        suggestion = executor.store_suggestion(_make_suggestion([update], AutomationLevel.MANUAL))
        executor.submit_feedback(_feedback(suggestion.id, FeedbackAction.APPROVED))
        assert scheduler.active[0].delay == executor.config.debounce_seconds
        assert executor.is_queued(suggestion.id)

        scheduler.run_pending()

        (execution,) = executor.get_execution_history(suggestion.id)
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.executed_by == "alice"
        assert source.read_text() == UPDATED
        assert not executor.is_queued(suggestion.id)

    def test_reject_after_approval(self, executor: RefactorExecutor, scheduler, source: Path, update):
        """A queued execution of a since-rejected suggestion does nothing."""
        suggestion = executor.store_suggestion(_make_suggestion([update], AutomationLevel.MANUAL))
        executor.submit_feedback(_feedback(suggestion.id, FeedbackAction.APPROVED))
        executor.submit_feedback(_feedback(suggestion.id, FeedbackAction.REJECTED, 2))

        scheduler.run_pending()

        assert executor.get_suggestion(suggestion.id).status == SuggestionStatus.REJECTED
        assert executor.get_execution_history(suggestion.id) == []
        assert source.read_text() == ORIGINAL

    def test_cancel_queued_executions(self, executor: RefactorExecutor, scheduler, source: Path, update):
        """A cancelled debounced run does nothing even if its timer still fires."""
        suggestion = executor.store_suggestion(_make_suggestion([update], AutomationLevel.MANUAL))
        executor.submit_feedback(_feedback(suggestion.id, FeedbackAction.APPROVED))
        (task,) = scheduler.active

        assert executor.cancel_queued() == [suggestion.id]
        task.callback()

        assert task.cancelled
        assert not executor.is_queued(suggestion.id)
        assert executor.get_execution_history(suggestion.id) == []
        assert source.read_text() == ORIGINAL
        assert executor.cancel_queued() == []

    def test_execute_requires_approval(self, executor: RefactorExecutor, source: Path, update):
        """Manual execution of a pending suggestion is refused."""
        suggestion = executor.store_suggestion(_make_suggestion([update], AutomationLevel.MANUAL))
        with pytest.raises(NotApproved):
            executor.execute_approved_suggestion(suggestion.id, "alice")


class TestPendingSuggestions:
    def test_sorted_by_priority_confidence_then_recency(self, executor: RefactorExecutor, clock):
        """Ordering holds with ties on priority and confidence."""
        specs = [
            ("low-new", Priority.LOW, 0.9, 3),
            ("high-weak", Priority.HIGH, 0.5, 0),
            ("high-strong-old", Priority.HIGH, 0.8, 0),
            ("high-strong-new", Priority.HIGH, 0.8, 2),
            ("critical", Priority.CRITICAL, 0.1, 0),
            ("high-strong-same-time", Priority.HIGH, 0.8, 2),
        ]
        for title, priority, confidence, minutes in specs:
            suggestion = _make_suggestion([], priority=priority, confidence=confidence)
            suggestion.title = title
            suggestion.created_at = clock.now + timedelta(minutes=minutes)
            executor.store_suggestion(suggestion)

        titles = [s.title for s in executor.get_pending_suggestions()]

        assert titles == [
            "critical",
            "high-strong-same-time",
            "high-strong-new",
            "high-strong-old",
            "high-weak",
            "low-new",
        ]

    def test_limit_and_status_filter(self, executor: RefactorExecutor):
        """Only pending suggestions are returned, up to the limit."""
        ids = [executor.store_suggestion(_make_suggestion([])).id for _ in range(4)]
        executor.submit_feedback(_feedback(ids[0], FeedbackAction.REJECTED, 1))

        pending = executor.get_pending_suggestions(limit=2)

        assert len(pending) == 2
        assert ids[0] not in {s.id for s in pending}


class TestProcessNewSuggestions:
    def test_stores_all_and_applies_confident_automatic(
        self, executor: RefactorExecutor, store: EvolutionStore, source: Path, update,
    ):
        """Only automatic suggestions above the threshold are applied."""
        automatic = _make_suggestion([update], confidence=0.95)
        weak = _make_suggestion([], confidence=0.5)
        manual = _make_suggestion([], AutomationLevel.MANUAL, confidence=0.99)
        result = AnalysisResult(analysis_type=AnalysisType.SECURITY, suggestions=[automatic, weak, manual])

        report = executor.process_new_suggestions([result])

        assert sorted(report.stored) == sorted([automatic.id, weak.id, manual.id])
        assert report.applied == [automatic.id]
        assert store.get_suggestion(manual.id).analysis_id == result.id
        assert source.read_text() == UPDATED

    def test_guard_halts_batch(self, executor: RefactorExecutor, source: Path, update):
        """Once the guard says no, nothing further is applied."""
        suggestion = _make_suggestion([update])
        result = AnalysisResult(analysis_type=AnalysisType.SECURITY, suggestions=[suggestion])

        report = executor.process_new_suggestions([result], guard=lambda: False)

        assert report.stored == [suggestion.id]
        assert report.applied == []
        assert source.read_text() == ORIGINAL


class TestRefactorMetrics:
    def test_rates_and_ratings(self, executor: RefactorExecutor, runner, source: Path, update):
        """Metrics reflect statuses, executions and feedback."""
        applied = executor.store_suggestion(_make_suggestion([update]))
        executor.auto_apply_suggestion(applied.id)
        rejected = executor.store_suggestion(_make_suggestion([], AutomationLevel.MANUAL))
        executor.submit_feedback(_feedback(rejected.id, FeedbackAction.REJECTED, 2))
        executor.store_suggestion(_make_suggestion([], AutomationLevel.MANUAL))

        metrics = executor.get_refactor_metrics()

        assert metrics.total_suggestions == 3
        assert metrics.approved_suggestions == 1
        assert metrics.rejected_suggestions == 1
        assert metrics.pending_suggestions == 1
        assert metrics.automatic_applied == 1
        assert metrics.success_rate == 1.0
        assert metrics.average_rating == pytest.approx(3.5)
        assert metrics.approval_rate == pytest.approx(1 / 3)
