"""Suggestion lifecycle: storage, feedback, execution and rollback.

A suggestion moves ``pending -> approved -> executed`` or ``pending ->
rejected``. Every application attempt gets its own :class:`RefactorExecution`
row that ends ``completed`` (tests passed), ``rolled_back`` (tests failed and
every touched file was restored) or ``failed`` (applying a change or running
the tests raised; the error is re-raised to the caller).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable

from codevolve.core.config import STATE_DIRNAME, RefactorConfig
from codevolve.core.errors import (
    EvolutionError,
    ExecutionError,
    ExecutionNotFound,
    InvalidTransition,
    NotApproved,
    NotAutomatic,
    SuggestionNotFound,
)
from codevolve.core.models import (
    SYSTEM_ACTOR,
    AnalysisResult,
    AutomationLevel,
    ExecutionStatus,
    FeedbackAction,
    Suggestion,
    SuggestionStatus,
    utcnow,
)
from codevolve.core.scheduler import Handle, Scheduler
from codevolve.refactor.applier import ChangeApplier
from codevolve.refactor.backup import BackupManager
from codevolve.refactor.locks import FileLockRegistry
from codevolve.refactor.models import RefactorExecution, RefactorFeedback, RefactorMetrics
from codevolve.refactor.testing import TestRunner
from codevolve.storage.files import FileStorage
from codevolve.storage.store import EvolutionStore

logger = logging.getLogger(__name__)


@dataclass
class ProcessReport:
    """What :meth:`RefactorExecutor.process_new_suggestions` did."""

    stored: list[str] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    rolled_back: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class RefactorExecutor:
    """Owns suggestions from storage through execution."""

    def __init__(
        self,
        store: EvolutionStore,
        files: FileStorage,
        test_runner: TestRunner,
        scheduler: Scheduler,
        *,
        config: RefactorConfig | None = None,
        backups: BackupManager | None = None,
        locks: FileLockRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.files = files
        self.test_runner = test_runner
        self.scheduler = scheduler
        self.config = config or RefactorConfig()
        self.backups = backups or BackupManager(files, Path(files.root) / STATE_DIRNAME / "backups")
        self.locks = locks or FileLockRegistry()
        self.clock = clock
        self.applier = ChangeApplier(files)
        self._queued: dict[str, Handle] = {}
        self._queue_lock = threading.Lock()
        self._state_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Suggestions and feedback
    # ------------------------------------------------------------------

    def store_suggestion(self, suggestion: Suggestion, analysis_id: str = "") -> Suggestion:
        suggestion.status = SuggestionStatus.PENDING
        if analysis_id:
            suggestion.analysis_id = analysis_id
        self.store.save_suggestion(suggestion)
        logger.debug("Stored suggestion %s (%s)", suggestion.id, suggestion.type.value)
        return suggestion

    def get_suggestion(self, suggestion_id: str) -> Suggestion:
        suggestion = self.store.get_suggestion(suggestion_id)
        if suggestion is None:
            raise SuggestionNotFound(suggestion_id)
        return suggestion

    def submit_feedback(self, feedback: RefactorFeedback) -> RefactorFeedback:
        """Record a reviewer's verdict and move the suggestion accordingly.

        Approving a pending suggestion queues its execution after the debounce
        window. Approving an already-approved suggestion records the feedback
        but changes nothing else.
        """
        self.get_suggestion(feedback.suggestion_id)
        self.store.save_feedback(feedback)

        if feedback.action == FeedbackAction.APPROVED:
            moved = self.store.transition_suggestion(
                feedback.suggestion_id,
                SuggestionStatus.APPROVED,
                allowed_from=(SuggestionStatus.PENDING,),
            )
            if moved:
                logger.info("Suggestion %s approved by %s", feedback.suggestion_id, feedback.user_id)
                self._queue_execution(feedback.suggestion_id, feedback.user_id)
        else:
            moved = self.store.transition_suggestion(
                feedback.suggestion_id,
                SuggestionStatus.REJECTED,
                allowed_from=(SuggestionStatus.PENDING, SuggestionStatus.APPROVED),
            )
            if moved:
                logger.info("Suggestion %s rejected by %s", feedback.suggestion_id, feedback.user_id)
        return feedback

    def get_suggestion_feedback(self, suggestion_id: str) -> list[RefactorFeedback]:
        return self.store.list_feedback(suggestion_ids=[suggestion_id])

    def _queue_execution(self, suggestion_id: str, user_id: str) -> None:
        with self._queue_lock:
            if suggestion_id in self._queued:
                return
            self._queued[suggestion_id] = self.scheduler.call_later(
                self.config.debounce_seconds,
                lambda: self._run_queued(suggestion_id, user_id),
                name=f"execute-{suggestion_id}",
            )

    def _run_queued(self, suggestion_id: str, user_id: str) -> None:
        with self._queue_lock:
            if self._queued.pop(suggestion_id, None) is None:
                return
        try:
            self.execute_approved_suggestion(suggestion_id, user_id)
        except EvolutionError as exc:
            logger.warning("Queued execution of %s did not complete: %s", suggestion_id, exc)

    def is_queued(self, suggestion_id: str) -> bool:
        with self._queue_lock:
            return suggestion_id in self._queued

    def cancel_queued(self) -> list[str]:
        """Cancel every debounced execution that has not started yet."""
        with self._queue_lock:
            queued, self._queued = self._queued, {}
        for suggestion_id, handle in queued.items():
            handle.cancel()
            logger.info("Cancelled queued execution of %s", suggestion_id)
        return list(queued)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_approved_suggestion(self, suggestion_id: str, executed_by: str) -> RefactorExecution:
        suggestion = self.get_suggestion(suggestion_id)
        if suggestion.status != SuggestionStatus.APPROVED:
            raise NotApproved(suggestion_id, suggestion.status.value)
        return self._execute(suggestion, executed_by)

    def auto_apply_suggestion(self, suggestion_id: str) -> RefactorExecution:
        """Apply an ``automatic`` suggestion without a human approval."""
        suggestion = self.get_suggestion(suggestion_id)
        if suggestion.automation_level != AutomationLevel.AUTOMATIC:
            raise NotAutomatic(suggestion_id, suggestion.automation_level.value)
        if suggestion.status == SuggestionStatus.REJECTED:
            raise InvalidTransition(f"Suggestion {suggestion_id}", suggestion.status.value, "approved")

        self.store.transition_suggestion(
            suggestion_id, SuggestionStatus.APPROVED, allowed_from=(SuggestionStatus.PENDING,)
        )
        try:
            execution = self._execute(suggestion, SYSTEM_ACTOR)
        except ExecutionError as exc:
            self._record_system_feedback(
                suggestion_id, FeedbackAction.REJECTED, 1, f"Execution failed: {exc.__cause__ or exc}"
            )
            raise

        if execution.status == ExecutionStatus.COMPLETED:
            self._record_system_feedback(
                suggestion_id, FeedbackAction.APPROVED, 5, "Automatically applied successfully"
            )
        return execution

    def _execute(self, suggestion: Suggestion, executed_by: str) -> RefactorExecution:
        execution = RefactorExecution(
            suggestion_id=suggestion.id,
            executed_by=executed_by,
            changes=list(suggestion.implementation.changes),
            rollback_plan=suggestion.implementation.rollback_plan,
            started_at=self.clock(),
        )
        self.store.save_execution(execution)
        paths = execution.touched_paths()

        with self.locks.hold(paths):
            execution.status = ExecutionStatus.IN_PROGRESS
            self.store.save_execution(execution)
            logger.info("Executing suggestion %s as %s (%s)", suggestion.id, execution.id, executed_by)

            try:
                backup = self.backups.create(execution.id, paths, self.clock())
                execution.backup_path = str(backup)
                if not self._checkpoint(execution):
                    return self._finish(execution, ExecutionStatus.ROLLED_BACK)

                for change in execution.changes:
                    self.applier.apply(change)
                    if self._stopped(execution.id):
                        return self._finish(execution, ExecutionStatus.ROLLED_BACK)

                execution.test_results = self.test_runner.run(list(suggestion.implementation.tests))
                if execution.test_results.failed == 0:
                    return self._finish(execution, ExecutionStatus.COMPLETED)

                self.backups.restore(Path(execution.backup_path))
                execution.metadata["rollback_reason"] = f"{execution.test_results.failed} test(s) failed"
                finished = self._finish(execution, ExecutionStatus.ROLLED_BACK)
            except Exception as exc:
                self._fail(execution, exc)
                raise ExecutionError(execution.id, str(exc)) from exc

        if not finished.metadata.get("forced"):
            self._record_system_feedback(
                suggestion.id, FeedbackAction.REJECTED, 1, "Tests failed after application"
            )
        return finished

    def _stopped(self, execution_id: str) -> bool:
        """True once a forced rollback has already closed the execution."""
        current = self.store.get_execution(execution_id)
        return current is not None and current.status.is_terminal

    def _checkpoint(self, execution: RefactorExecution) -> bool:
        """Save progress unless the execution was force-rolled-back meanwhile."""
        with self._state_lock:
            if self._stopped(execution.id):
                return False
            self.store.save_execution(execution)
            return True

    def _fail(self, execution: RefactorExecution, exc: Exception) -> None:
        logger.error("Execution %s failed: %s", execution.id, exc)
        execution.metadata["error"] = str(exc)
        if execution.backup_path:
            try:
                self.backups.restore(Path(execution.backup_path))
                execution.metadata["restored"] = True
            except OSError as restore_exc:
                logger.exception("Could not restore backup for %s", execution.id)
                execution.metadata["restore_error"] = str(restore_exc)
        self._finish(execution, ExecutionStatus.FAILED, restore=False)

    def _finish(
        self, execution: RefactorExecution, status: ExecutionStatus, restore: bool = True
    ) -> RefactorExecution:
        """Move to a terminal state unless an emergency stop got there first.

        A forced rollback may have restored the backup while changes were
        still being written, so the backup is restored once more here.
        """
        with self._state_lock:
            current = self.store.get_execution(execution.id)
            if current is not None and current.status.is_terminal:
                logger.warning(
                    "Execution %s already %s; not marking %s", execution.id, current.status.value, status.value
                )
                if restore and current.metadata.get("forced") and execution.backup_path:
                    self.backups.restore(Path(execution.backup_path))
                return current
            execution.status = status
            execution.completed_at = self.clock()
            self.store.save_execution(execution)
        logger.info("Execution %s %s", execution.id, status.value)
        return execution

    def force_rollback(self, execution_id: str, reason: str) -> RefactorExecution:
        """Roll an in-flight execution back without waiting for it.

        Takes no file locks; the running execution notices the terminal
        status at its next step and undoes anything it wrote after this.
        """
        with self._state_lock:
            execution = self.store.get_execution(execution_id)
            if execution is None:
                raise ExecutionNotFound(execution_id)
            if execution.status.is_terminal:
                raise InvalidTransition(f"Execution {execution_id}", execution.status.value, "rolled_back")
            if execution.backup_path and Path(execution.backup_path).exists():
                self.backups.restore(Path(execution.backup_path))
            execution.status = ExecutionStatus.ROLLED_BACK
            execution.completed_at = self.clock()
            execution.metadata["rollback_reason"] = reason
            execution.metadata["forced"] = True
            self.store.save_execution(execution)
        logger.warning("Execution %s forced to rolled_back: %s", execution_id, reason)
        return execution

    def _record_system_feedback(self, suggestion_id: str, action: FeedbackAction, rating: int, comments: str) -> None:
        feedback = RefactorFeedback(
            suggestion_id=suggestion_id,
            user_id=SYSTEM_ACTOR,
            action=action,
            rating=rating,
            comments=comments,
            metadata={"automatic": True},
            created_at=self.clock(),
        )
        self.store.save_feedback(feedback)
        if action == FeedbackAction.REJECTED:
            self.store.transition_suggestion(
                suggestion_id,
                SuggestionStatus.REJECTED,
                allowed_from=(SuggestionStatus.PENDING, SuggestionStatus.APPROVED),
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_execution(self, execution_id: str) -> RefactorExecution:
        execution = self.store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id)
        return execution

    def get_execution_history(self, suggestion_id: str | None = None) -> list[RefactorExecution]:
        return self.store.list_executions(suggestion_ids=[suggestion_id] if suggestion_id else None)

    def get_pending_suggestions(self, limit: int = 20) -> list[Suggestion]:
        return self.store.list_pending_suggestions(limit)

    def get_refactor_metrics(self, start: datetime | None = None, end: datetime | None = None) -> RefactorMetrics:
        """Aggregate over suggestions created between *start* and *end*."""
        suggestions = self.store.list_suggestions(created_from=start, created_to=end)
        ids = [s.id for s in suggestions]
        feedback = self.store.list_feedback(suggestion_ids=ids)
        executions = self.store.list_executions(suggestion_ids=ids)

        metrics = RefactorMetrics(total_suggestions=len(suggestions))
        for suggestion in suggestions:
            if suggestion.status == SuggestionStatus.PENDING:
                metrics.pending_suggestions += 1
            elif suggestion.status == SuggestionStatus.APPROVED:
                metrics.approved_suggestions += 1
            elif suggestion.status == SuggestionStatus.REJECTED:
                metrics.rejected_suggestions += 1

        completed = [e for e in executions if e.status == ExecutionStatus.COMPLETED]
        metrics.total_executions = len(executions)
        metrics.automatic_applied = sum(1 for e in completed if e.is_automatic)
        metrics.manual_applied = len(completed) - metrics.automatic_applied
        metrics.rolled_back_executions = sum(1 for e in executions if e.status == ExecutionStatus.ROLLED_BACK)
        metrics.failed_executions = sum(1 for e in executions if e.status == ExecutionStatus.FAILED)
        if executions:
            metrics.success_rate = len(completed) / len(executions)

        ratings = [f.rating for f in feedback]
        metrics.rating_count = len(ratings)
        if ratings:
            metrics.average_rating = sum(ratings) / len(ratings)

        durations = [h for h in (e.duration_hours for e in completed) if h is not None and h > 0]
        if durations:
            metrics.time_to_implementation = sum(durations) / len(durations)
        return metrics

    # ------------------------------------------------------------------
    # Batch entry point
    # ------------------------------------------------------------------

    def process_new_suggestions(
        self,
        results: list[AnalysisResult],
        *,
        auto_apply: bool = True,
        threshold: float | None = None,
        guard: Callable[[], bool] | None = None,
    ) -> ProcessReport:
        """Store every suggestion, then auto-apply the confident automatic ones.

        *guard* is consulted before each application; once it returns False
        no further suggestions are applied in this batch.
        """
        report = ProcessReport()
        threshold = self.config.auto_apply_confidence if threshold is None else threshold
        candidates: list[Suggestion] = []

        for result in results:
            for suggestion in result.suggestions:
                try:
                    self.store_suggestion(suggestion, result.id)
                except EvolutionError as exc:
                    report.errors.append(f"{suggestion.id}: {exc}")
                    continue
                report.stored.append(suggestion.id)
                if suggestion.automation_level == AutomationLevel.AUTOMATIC and suggestion.confidence >= threshold:
                    candidates.append(suggestion)

        if auto_apply:
            self._auto_apply(candidates, guard, report)
        return report

    def auto_apply_pending(
        self,
        *,
        threshold: float | None = None,
        guard: Callable[[], bool] | None = None,
        limit: int = 20,
    ) -> ProcessReport:
        """Auto-apply stored pending suggestions that are automatic and confident enough."""
        threshold = self.config.auto_apply_confidence if threshold is None else threshold
        candidates = [
            s for s in self.get_pending_suggestions(limit)
            if s.automation_level == AutomationLevel.AUTOMATIC and s.confidence >= threshold
        ]
        report = ProcessReport()
        self._auto_apply(candidates, guard, report)
        return report

    def _auto_apply(
        self,
        candidates: list[Suggestion],
        guard: Callable[[], bool] | None,
        report: ProcessReport,
    ) -> None:
        for suggestion in candidates:
            if guard is not None and not guard():
                logger.info("Auto-apply halted by guard after %d application(s)", len(report.applied))
                break
            try:
                execution = self.auto_apply_suggestion(suggestion.id)
            except EvolutionError as exc:
                report.errors.append(f"{suggestion.id}: {exc}")
                continue
            if execution.status == ExecutionStatus.COMPLETED:
                report.applied.append(suggestion.id)
            else:
                report.rolled_back.append(suggestion.id)
