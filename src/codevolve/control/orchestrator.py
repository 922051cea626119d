"""Per-tenant control of the evolution loop.

The orchestrator owns :class:`EvolutionSettings`, runs the periodic
analysis, refactor and canary cycles, and gates every automatic action
behind :meth:`EvolutionOrchestrator.check_safeguards`. A blocked action is a
no-op that leaves a ``warning`` event behind; nothing is raised unless a
caller asks for a strict check.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Any, Callable

from codevolve.analyzer.engine import Analyzer
from codevolve.canary.controller import CanaryController, EvaluationReport, MonitorReport
from codevolve.canary.models import CanaryModel, CanarySpec, CanaryStatus
from codevolve.control.events import EventLog
from codevolve.control.models import (
    EventSeverity,
    EventType,
    EvolutionEvent,
    EvolutionMetricsSnapshot,
    EvolutionSettings,
    Features,
    Safeguards,
)
from codevolve.core.config import EvolveConfig
from codevolve.core.errors import EvolutionError, NotFoundError, SafeguardBlocked
from codevolve.core.models import AnalysisResult, ExecutionStatus, format_datetime, utcnow
from codevolve.core.scheduler import Handle, Scheduler
from codevolve.refactor.executor import ProcessReport, RefactorExecutor
from codevolve.refactor.models import RefactorExecution
from codevolve.storage.store import EvolutionStore

logger = logging.getLogger(__name__)

MIN_APPROVAL_RATE = 0.3
MAX_REJECTION_RATE = 0.5
MIN_AVERAGE_RATING = 3.0


class EvolutionOrchestrator:
    """Drives the loop for one or more tenants over shared components."""

    def __init__(
        self,
        store: EvolutionStore,
        analyzer: Analyzer,
        executor: RefactorExecutor,
        canary: CanaryController,
        scheduler: Scheduler,
        *,
        config: EvolveConfig | None = None,
        events: EventLog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.analyzer = analyzer
        self.executor = executor
        self.canary = canary
        self.scheduler = scheduler
        self.config = config or EvolveConfig()
        self.clock = clock
        self.events = events or EventLog(store, clock)
        self._handles: dict[str, list[Handle]] = {}

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_evolution_settings(self, tenant: str) -> EvolutionSettings:
        """Return the tenant's settings, creating defaults on first use."""
        settings = self.store.get_settings(tenant)
        if settings is not None:
            return settings
        defaults = self.config.safeguards
        settings = EvolutionSettings(
            tenant=tenant,
            features=Features.from_dict(
                {"auto_refactor": {"confidence_threshold": self.config.refactor.auto_apply_confidence}}
            ),
            safeguards=Safeguards(
                max_daily_changes=defaults.max_daily_changes,
                test_coverage_threshold=defaults.test_coverage_threshold,
            ),
            updated_at=self.clock(),
        )
        self.store.save_settings(settings)
        logger.info("Created default evolution settings for %s", tenant)
        return settings

    def update_evolution_settings(self, tenant: str, updates: dict[str, Any], actor: str) -> EvolutionSettings:
        """Merge *updates* (the ``to_dict`` shape, possibly partial) into the settings.

        Nested ``features`` and ``safeguards`` dicts are merged key by key;
        the result is validated through ``from_dict`` before it is saved.
        """
        current = self.get_evolution_settings(tenant).to_dict()
        merged = _deep_merge(current, updates)
        merged["tenant"] = tenant
        merged["last_modified_by"] = actor
        merged["updated_at"] = format_datetime(self.clock())
        settings = EvolutionSettings.from_dict(merged)
        self.store.save_settings(settings)
        self.events.emit(
            tenant,
            EventType.SETTINGS_UPDATED,
            EventSeverity.INFO,
            "Evolution settings updated",
            data={"updates": updates},
            triggered_by=actor,
        )
        return settings

    def toggle_evolution(self, tenant: str, enabled: bool, actor: str) -> EvolutionSettings:
        settings = self.get_evolution_settings(tenant)
        settings.enabled = enabled
        settings.last_modified_by = actor
        settings.updated_at = self.clock()
        self.store.save_settings(settings)

        if enabled:
            event_type, title = EventType.EVOLUTION_ENABLED, "Evolution enabled"
        else:
            event_type, title = EventType.EVOLUTION_DISABLED, "Evolution disabled"
            self.stop(tenant)
        description = ""
        if enabled and settings.safeguards.emergency_stop:
            description = "Emergency stop is still set; automatic actions stay blocked until it is cleared"
        self.events.emit(tenant, event_type, EventSeverity.INFO, title, description, triggered_by=actor)
        return settings

    def clear_emergency_stop(self, tenant: str, actor: str) -> EvolutionSettings:
        return self.update_evolution_settings(tenant, {"safeguards": {"emergency_stop": False}}, actor)

    # ------------------------------------------------------------------
    # Safeguards
    # ------------------------------------------------------------------

    def safeguard_violations(self, tenant: str, settings: EvolutionSettings | None = None) -> list[str]:
        """Reasons automatic changes are currently not allowed (empty when clear)."""
        settings = settings or self.get_evolution_settings(tenant)
        safeguards = settings.safeguards
        reasons: list[str] = []

        if safeguards.emergency_stop:
            reasons.append("Emergency stop is active")

        now = self.clock()
        midnight = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        today = self.store.count_executions(since=midnight)
        if today >= safeguards.max_daily_changes:
            reasons.append(f"Daily change limit reached ({today}/{safeguards.max_daily_changes})")

        coverage = self._latest_coverage()
        if coverage is not None and coverage < safeguards.test_coverage_threshold:
            reasons.append(
                f"Test coverage {coverage:.1f}% below threshold {safeguards.test_coverage_threshold:g}%"
            )
        return reasons

    def check_safeguards(self, tenant: str, settings: EvolutionSettings | None = None) -> bool:
        return not self.safeguard_violations(tenant, settings)

    def _latest_coverage(self) -> float | None:
        for result in self.analyzer.get_latest_analysis_results():
            if result.test_coverage is not None:
                return result.test_coverage
        return None

    def _gate(self, tenant: str, action: str) -> bool:
        """Check safeguards before *action*; record a warning event when blocked."""
        reasons = self.safeguard_violations(tenant)
        if not reasons:
            return True
        logger.warning("Safeguards blocked %s for %s: %s", action, tenant, "; ".join(reasons))
        self.events.emit(
            tenant,
            EventType.SAFEGUARD_BLOCKED,
            EventSeverity.WARNING,
            f"Safeguards blocked {action}",
            "; ".join(reasons),
            data={"action": action, "reasons": reasons},
        )
        return False

    def emergency_stop(self, tenant: str, actor: str, reason: str) -> list[RefactorExecution]:
        """Halt all automation for *tenant* and roll back work in flight.

        Returns the executions that were forced to ``rolled_back``.
        """
        now = self.clock()
        settings = self.get_evolution_settings(tenant)
        settings.enabled = False
        settings.safeguards.emergency_stop = True
        settings.metadata.update({
            "emergency_stop_reason": reason,
            "emergency_stop_at": format_datetime(now),
            "emergency_stop_by": actor,
        })
        settings.last_modified_by = actor
        settings.updated_at = now
        self.store.save_settings(settings)
        self.stop(tenant)
        cancelled = self.executor.cancel_queued()

        rolled_back: list[RefactorExecution] = []
        errors: list[str] = []
        for execution in self.store.list_executions(status=ExecutionStatus.IN_PROGRESS):
            try:
                rolled_back.append(self.executor.force_rollback(execution.id, f"Emergency stop: {reason}"))
            except (EvolutionError, OSError) as exc:
                logger.error("Emergency rollback of %s failed: %s", execution.id, exc)
                errors.append(f"{execution.id}: {exc}")

        self.events.emit(
            tenant,
            EventType.EMERGENCY_STOP,
            EventSeverity.CRITICAL,
            "Emergency stop activated",
            reason,
            data={"rolled_back": [e.id for e in rolled_back], "cancelled": cancelled, "errors": errors},
            triggered_by=actor,
        )
        return rolled_back

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def run_analysis_cycle(self, tenant: str) -> list[AnalysisResult]:
        """Analyze the codebase and store the resulting suggestions for review."""
        settings = self.get_evolution_settings(tenant)
        if not settings.enabled or not settings.features.code_analysis.enabled:
            logger.debug("Analysis cycle skipped for %s", tenant)
            return []

        try:
            results = self.analyzer.perform_full_codebase_analysis(settings.features.code_analysis.analysis_types)
        except EvolutionError as exc:
            self._error(tenant, "Analysis cycle failed", exc)
            return []
        report = self.executor.process_new_suggestions(results, auto_apply=False)

        findings = sum(len(r.findings) for r in results)
        self.events.emit(
            tenant,
            EventType.ANALYSIS_COMPLETED,
            EventSeverity.INFO,
            f"Analysis found {findings} issue(s)",
            data={
                "results": [r.id for r in results],
                "findings": findings,
                "suggestions": len(report.stored),
                "errors": report.errors,
            },
        )
        return results

    def run_refactor_cycle(self, tenant: str) -> ProcessReport | None:
        """Auto-apply confident automatic suggestions while safeguards allow it."""
        settings = self.get_evolution_settings(tenant)
        if not settings.enabled or not settings.features.auto_refactor.enabled:
            logger.debug("Refactor cycle skipped for %s", tenant)
            return None
        if not self._gate(tenant, "automatic refactoring"):
            return None

        report = self.executor.auto_apply_pending(
            threshold=settings.features.auto_refactor.confidence_threshold,
            guard=lambda: self._gate(tenant, "automatic refactoring"),
        )
        self._refactor_events(tenant, report)
        return report

    def apply_suggestion(self, tenant: str, suggestion_id: str, *, strict: bool = False) -> RefactorExecution | None:
        """Auto-apply a single suggestion if evolution is enabled and safeguards allow it.

        A refused request returns None, or raises :class:`SafeguardBlocked`
        when *strict* is set.
        """
        if not self.get_evolution_settings(tenant).enabled:
            logger.info("Auto-apply of %s skipped: evolution disabled for %s", suggestion_id, tenant)
            if strict:
                raise SafeguardBlocked(tenant, ["Evolution is disabled"])
            return None
        if not self._gate(tenant, f"auto-apply of {suggestion_id}"):
            if strict:
                raise SafeguardBlocked(tenant, self.safeguard_violations(tenant))
            return None
        try:
            execution = self.executor.auto_apply_suggestion(suggestion_id)
        except EvolutionError as exc:
            self._error(tenant, f"Auto-apply of {suggestion_id} failed", exc)
            raise
        report = ProcessReport()
        if execution.status == ExecutionStatus.COMPLETED:
            report.applied.append(suggestion_id)
        else:
            report.rolled_back.append(suggestion_id)
        self._refactor_events(tenant, report)
        return execution

    def _refactor_events(self, tenant: str, report: ProcessReport) -> None:
        for suggestion_id in report.applied:
            self.events.emit(
                tenant,
                EventType.REFACTOR_APPLIED,
                EventSeverity.INFO,
                f"Applied suggestion {suggestion_id}",
                data={"suggestion_id": suggestion_id},
            )
        for suggestion_id in report.rolled_back:
            self.events.emit(
                tenant,
                EventType.REFACTOR_ROLLED_BACK,
                EventSeverity.WARNING,
                f"Rolled back suggestion {suggestion_id}",
                "Tests failed after application",
                data={"suggestion_id": suggestion_id},
            )
        if report.errors:
            self.events.emit(
                tenant,
                EventType.ERROR,
                EventSeverity.ERROR,
                f"{len(report.errors)} suggestion(s) could not be applied",
                data={"errors": report.errors},
            )

    def deploy_canary(self, tenant: str, spec: CanarySpec, actor: str) -> CanaryModel:
        model = self.canary.deploy_canary_model(spec)
        self.events.emit(
            tenant,
            EventType.CANARY_DEPLOYED,
            EventSeverity.INFO,
            f"Canary {model.name} v{model.version} deployed",
            data={"canary_id": model.id, "traffic_percentage": model.traffic_percentage},
            triggered_by=actor,
        )
        return model

    def run_canary_cycle(self, tenant: str) -> tuple[MonitorReport, EvaluationReport] | None:
        """Refresh canary metrics, then promote or roll back what is ready."""
        settings = self.get_evolution_settings(tenant)
        if not settings.enabled or not settings.features.canary_testing.enabled:
            logger.debug("Canary cycle skipped for %s", tenant)
            return None
        if not self._gate(tenant, "canary evaluation"):
            return None

        monitor = self.canary.monitor_canaries()
        evaluation = self.canary.evaluate_promotions()
        for canary_id in evaluation.promoted:
            self.events.emit(
                tenant,
                EventType.CANARY_PROMOTED,
                EventSeverity.INFO,
                f"Canary {canary_id} promoted",
                data={"canary_id": canary_id},
            )
        for canary_id in evaluation.rolled_back:
            model = self.store.get_canary(canary_id)
            reason = model.metadata.get("rollback_reason", "") if model else ""
            self.events.emit(
                tenant,
                EventType.CANARY_ROLLED_BACK,
                EventSeverity.WARNING,
                f"Canary {canary_id} rolled back",
                reason,
                data={"canary_id": canary_id},
            )
        errors = monitor.errors + evaluation.errors
        if errors:
            self.events.emit(
                tenant,
                EventType.ERROR,
                EventSeverity.ERROR,
                f"Canary cycle hit {len(errors)} error(s)",
                data={"errors": errors},
            )
        return monitor, evaluation

    def run_evolution_cycle(self, tenant: str) -> EvolutionMetricsSnapshot | None:
        settings = self.get_evolution_settings(tenant)
        if not settings.enabled:
            return None
        if not self._gate(tenant, "evolution cycle"):
            return None
        if settings.features.auto_refactor.enabled:
            self.run_refactor_cycle(tenant)
        return self.update_evolution_metrics(tenant)

    def _error(self, tenant: str, title: str, exc: Exception) -> None:
        logger.error("%s for %s: %s", title, tenant, exc)
        self.events.emit(tenant, EventType.ERROR, EventSeverity.ERROR, title, str(exc))

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def update_evolution_metrics(self, tenant: str) -> EvolutionMetricsSnapshot:
        """Roll up the last metrics window and warn on poor suggestion quality."""
        end = self.clock()
        start = end - timedelta(hours=self.config.scheduler.metrics_window_hours)

        refactor = self.executor.get_refactor_metrics(start, end)
        results = [r for r in self.analyzer.get_analysis_history() if r.analyzed_at >= start]
        canaries = self.store.canary_status_counts(since=start)

        warnings: list[str] = []
        if refactor.total_suggestions:
            if refactor.approval_rate < MIN_APPROVAL_RATE:
                warnings.append(
                    f"Approval rate {refactor.approval_rate:.1%} below {MIN_APPROVAL_RATE:.0%}"
                )
            if refactor.rejection_rate > MAX_REJECTION_RATE:
                warnings.append(
                    f"Rejection rate {refactor.rejection_rate:.1%} above {MAX_REJECTION_RATE:.0%}"
                )
        if refactor.rating_count and refactor.average_rating < MIN_AVERAGE_RATING:
            warnings.append(f"Average rating {refactor.average_rating:.2f} below {MIN_AVERAGE_RATING:g}")

        snapshot = EvolutionMetricsSnapshot(
            tenant=tenant,
            period_start=start,
            period_end=end,
            analysis={
                "runs": len(results),
                "findings": sum(len(r.findings) for r in results),
                "suggestions": sum(len(r.suggestions) for r in results),
                "average_confidence": (
                    sum(r.confidence for r in results) / len(results) if results else 0.0
                ),
            },
            refactoring=refactor.to_dict(),
            canary={
                "deployed": sum(canaries.values()),
                "promoted": canaries.get(CanaryStatus.PROMOTED.value, 0),
                "rolled_back": canaries.get(CanaryStatus.ROLLED_BACK.value, 0),
                "testing": canaries.get(CanaryStatus.TESTING.value, 0),
            },
            warnings=warnings,
            created_at=end,
        )
        self.store.save_metrics_snapshot(snapshot)

        if warnings:
            self.events.emit(
                tenant,
                EventType.METRICS_WARNING,
                EventSeverity.WARNING,
                "Suggestion quality below expectations",
                "; ".join(warnings),
                data={"warnings": warnings, "snapshot_id": snapshot.id},
            )
        return snapshot

    def get_evolution_metrics(self, tenant: str, days: int = 7) -> list[EvolutionMetricsSnapshot]:
        return self.store.list_metrics_snapshots(tenant, since=self.clock() - timedelta(days=days))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def get_evolution_events(self, tenant: str, limit: int = 50) -> list[EvolutionEvent]:
        return self.events.recent(tenant, limit)

    def acknowledge_event(self, event_id: str, actor: str) -> EvolutionEvent:
        event = self.events.acknowledge(event_id, actor)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def start(self, tenant: str) -> None:
        """Register the periodic cycles for *tenant* on the scheduler."""
        if tenant in self._handles:
            return
        intervals = self.config.scheduler
        self._handles[tenant] = [
            self.scheduler.every(
                intervals.analysis_interval,
                lambda: self._guarded(tenant, "analysis", self.run_analysis_cycle),
                name=f"analysis-{tenant}",
            ),
            self.scheduler.every(
                intervals.canary_interval,
                lambda: self._guarded(tenant, "canary", self.run_canary_cycle),
                name=f"canary-{tenant}",
            ),
            self.scheduler.every(
                intervals.evolution_interval,
                lambda: self._guarded(tenant, "evolution", self.run_evolution_cycle),
                name=f"evolution-{tenant}",
            ),
        ]
        logger.info("Started evolution timers for %s", tenant)

    def stop(self, tenant: str | None = None) -> None:
        """Cancel the timers for *tenant*, or for every tenant when omitted."""
        tenants = [tenant] if tenant is not None else list(self._handles)
        for name in tenants:
            for handle in self._handles.pop(name, []):
                handle.cancel()
            logger.debug("Stopped evolution timers for %s", name)

    def is_running(self, tenant: str) -> bool:
        return tenant in self._handles

    def _guarded(self, tenant: str, cycle: str, run: Callable[[str], object]) -> None:
        try:
            run(tenant)
        except EvolutionError as exc:
            self._error(tenant, f"Scheduled {cycle} cycle failed", exc)


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
