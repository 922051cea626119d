"""Canary lifecycle: deploy, monitor, compare, promote or roll back.

A canary moves ``pending -> testing`` on deployment and then to
``promoted`` or ``rolled_back``. A canary that passes its criteria but may
not be promoted automatically stays ``testing`` with
``metadata["requires_manual_review"]`` set until someone approves it.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Protocol

from codevolve.canary.collector import MetricsCollector
from codevolve.canary.decision import compute_comparison, should_promote_canary
from codevolve.canary.models import (
    CanaryDeployment,
    CanaryMetrics,
    CanaryModel,
    CanarySpec,
    CanaryStatus,
    DeploymentStatus,
    ModelComparison,
    ModelConfiguration,
    PromotionCriteria,
    PromotionDecision,
    Recommendation,
    RollbackPlan,
)
from codevolve.core.config import CanaryConfig
from codevolve.core.errors import BaselineNotFound, CanaryNotFound, EvolutionError, InvalidTransition
from codevolve.core.models import format_datetime, utcnow
from codevolve.storage.store import EvolutionStore

logger = logging.getLogger(__name__)

ROLLBACK_STEPS = ["Stop canary traffic", "Restore baseline routing", "Notify owners"]

# Failures of one canary that are recorded before moving on to the next.
PER_CANARY_ERRORS = (EvolutionError, sqlite3.Error, OSError, ValueError, KeyError, RuntimeError)


class CanaryBackend(Protocol):
    """Whatever actually routes traffic to a canary."""

    def route(self, model: CanaryModel, deployment: CanaryDeployment) -> None: ...

    def promote(self, model: CanaryModel) -> None: ...

    def withdraw(self, model: CanaryModel) -> None: ...


class LoggingBackend:
    """Backend that only records routing decisions in the log."""

    def route(self, model: CanaryModel, deployment: CanaryDeployment) -> None:
        logger.info(
            "Routing %.1f%% of traffic to canary %s (%s v%s)",
            deployment.canary_traffic, model.id, model.name, model.version,
        )

    def promote(self, model: CanaryModel) -> None:
        logger.info("Canary %s now serves all traffic", model.id)

    def withdraw(self, model: CanaryModel) -> None:
        logger.info("Canary %s withdrawn; baseline restored", model.id)


@dataclass
class MonitorReport:
    checked: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class EvaluationReport:
    promoted: list[str] = field(default_factory=list)
    rolled_back: list[str] = field(default_factory=list)
    flagged: list[str] = field(default_factory=list)
    waiting: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class CanaryController:
    """Deploys canaries and decides their fate from live metrics."""

    def __init__(
        self,
        store: EvolutionStore,
        collector: MetricsCollector,
        *,
        config: CanaryConfig | None = None,
        backend: CanaryBackend | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.collector = collector
        self.config = config or CanaryConfig()
        self.backend = backend or LoggingBackend()
        self.clock = clock

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    def register_baseline(
        self,
        name: str,
        version: str,
        configuration: ModelConfiguration,
        metrics: CanaryMetrics | None = None,
    ) -> CanaryModel:
        """Record the production model canaries are compared against."""
        now = self.clock()
        model = CanaryModel(
            name=name,
            version=version,
            configuration=configuration,
            traffic_percentage=100,
            comparison_baseline="",
            metrics=metrics or CanaryMetrics(),
            status=CanaryStatus.PROMOTED,
            promoted_at=now,
            metadata={"baseline": True},
            created_at=now,
            updated_at=now,
        )
        self.store.save_canary(model)
        logger.info("Registered baseline %s (%s v%s)", model.id, name, version)
        return model

    def deploy_canary_model(self, spec: CanarySpec) -> CanaryModel:
        if self.store.get_canary(spec.comparison_baseline) is None:
            raise BaselineNotFound(spec.comparison_baseline)

        now = self.clock()
        traffic = spec.traffic_percentage if spec.traffic_percentage is not None else self.config.traffic_percentage
        model = CanaryModel(
            name=spec.name,
            version=spec.version,
            configuration=spec.configuration,
            traffic_percentage=traffic,
            comparison_baseline=spec.comparison_baseline,
            promotion_criteria=spec.promotion_criteria,
            metrics=spec.metrics,
            status=CanaryStatus.PENDING,
            metadata=dict(spec.metadata),
            created_at=now,
            updated_at=now,
        )
        self.store.save_canary(model)

        deployment = CanaryDeployment(
            canary_id=model.id,
            canary_traffic=traffic,
            rollback_plan=RollbackPlan(
                triggers=list(self.config.rollback_triggers),
                automated=True,
                steps=list(ROLLBACK_STEPS),
            ),
            alert_thresholds=self._alert_thresholds(spec.promotion_criteria),
            critical_only=self.config.critical_only,
            excluded_roles=list(self.config.excluded_roles),
            started_at=now,
        )
        self.store.save_deployment(deployment)

        try:
            self.backend.route(model, deployment)
        except Exception as exc:
            logger.error("Deployment of canary %s failed: %s", model.id, exc)
            deployment.status = DeploymentStatus.FAILED
            deployment.completed_at = self.clock()
            self.store.save_deployment(deployment)
            self._mark_rolled_back(model, f"Deployment failed: {exc}")
            raise

        deployment.status = DeploymentStatus.ACTIVE
        deployment.completed_at = self.clock()
        self.store.save_deployment(deployment)

        model.status = CanaryStatus.TESTING
        model.testing_started_at = self.clock()
        model.updated_at = model.testing_started_at
        self.store.save_canary(model)
        logger.info("Canary %s deployed at %.1f%% traffic", model.id, traffic)
        return model

    @staticmethod
    def _alert_thresholds(criteria: PromotionCriteria) -> dict[str, float]:
        return {
            "error_rate": criteria.max_error_rate,
            "accuracy": criteria.min_accuracy,
            "latency_p99": 2000.0,
        }

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def collect_metrics(self, model: CanaryModel) -> CanaryMetrics:
        return self.collector.collect(model)

    def update_canary_metrics(self, canary_id: str, metrics: CanaryMetrics) -> CanaryModel:
        """Replace the canary's metrics wholesale."""
        now = self.clock()

        def apply(model: CanaryModel) -> None:
            model.metrics = metrics
            model.updated_at = now

        model = self.store.update_canary(canary_id, apply)
        if model is None:
            raise CanaryNotFound(canary_id)
        return model

    def monitor_canaries(self) -> MonitorReport:
        """Refresh metrics for every live canary.

        The live set is read from the store on each call. A failure for one
        canary is recorded and the rest are still refreshed.
        """
        report = MonitorReport()
        for model in self.get_active_canaries():
            report.checked.append(model.id)
            try:
                metrics = self.collect_metrics(model)
                self.update_canary_metrics(model.id, metrics)
            except PER_CANARY_ERRORS as exc:
                logger.warning("Metrics collection failed for canary %s: %s", model.id, exc)
                report.errors.append(f"{model.id}: {exc}")
                continue
            report.updated.append(model.id)
        return report

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def get_canary(self, canary_id: str) -> CanaryModel:
        model = self.store.get_canary(canary_id)
        if model is None:
            raise CanaryNotFound(canary_id)
        return model

    def should_promote_canary(self, model: CanaryModel, now: datetime | None = None) -> PromotionDecision:
        baseline = self.store.get_canary(model.comparison_baseline)
        return should_promote_canary(model, baseline, now or self.clock())

    def compare_with_baseline(self, model: CanaryModel) -> ModelComparison:
        baseline = self.store.get_canary(model.comparison_baseline)
        if baseline is None:
            raise BaselineNotFound(model.comparison_baseline)
        return compute_comparison(model, baseline, self.clock())

    def evaluate_promotions(self) -> EvaluationReport:
        """Decide every ``testing`` canary's fate.

        Promotion happens automatically only when the criteria allow it and
        the baseline comparison recommends it; otherwise the canary is
        flagged for manual review once.
        """
        report = EvaluationReport()
        for model in self.store.list_canaries(statuses=(CanaryStatus.TESTING,)):
            try:
                decision = self.should_promote_canary(model)
                if decision.comparison is not None:
                    self.store.save_comparison(decision.comparison)

                if decision.rollback:
                    self.rollback_canary(model.id, decision.reason)
                    report.rolled_back.append(model.id)
                elif decision.promote:
                    criteria = model.promotion_criteria
                    comparison = decision.comparison
                    auto = criteria.auto_promote and not criteria.requires_manual_approval
                    if auto and comparison is not None and comparison.recommendation == Recommendation.PROMOTE:
                        self.promote_canary(model.id, comparison)
                        report.promoted.append(model.id)
                    elif not model.requires_manual_review:
                        self.flag_for_manual_review(model.id, comparison)
                        report.flagged.append(model.id)
                    else:
                        report.waiting.append(model.id)
                else:
                    logger.debug("Canary %s not ready: %s", model.id, decision.reason)
                    report.waiting.append(model.id)
            except PER_CANARY_ERRORS as exc:
                logger.warning("Promotion evaluation failed for canary %s: %s", model.id, exc)
                report.errors.append(f"{model.id}: {exc}")
        return report

    def promote_canary(self, canary_id: str, comparison: ModelComparison | None = None) -> CanaryModel:
        model = self.get_canary(canary_id)
        if not model.status.is_live:
            raise InvalidTransition(f"Canary {canary_id}", model.status.value, CanaryStatus.PROMOTED.value)
        now = self.clock()
        model.status = CanaryStatus.PROMOTED
        model.promoted_at = now
        model.updated_at = now
        model.metadata.pop("requires_manual_review", None)
        self.store.save_canary(model)
        if comparison is not None:
            self.store.save_comparison(comparison)
        self.backend.promote(model)
        logger.info("Canary %s promoted", canary_id)
        return model

    def approve_canary(self, canary_id: str, actor: str) -> CanaryModel:
        """Promote a canary that was held for manual review."""
        model = self.get_canary(canary_id)
        comparison = self.compare_with_baseline(model)
        self.store.save_comparison(comparison)
        model = self.promote_canary(canary_id)
        model.metadata["approved_by"] = actor
        self.store.save_canary(model)
        return model

    def rollback_canary(self, canary_id: str, reason: str) -> CanaryModel:
        model = self.get_canary(canary_id)
        if model.status in (CanaryStatus.PROMOTED, CanaryStatus.ROLLED_BACK):
            raise InvalidTransition(f"Canary {canary_id}", model.status.value, CanaryStatus.ROLLED_BACK.value)
        self._mark_rolled_back(model, reason)
        self.backend.withdraw(model)
        return model

    def _mark_rolled_back(self, model: CanaryModel, reason: str) -> None:
        now = self.clock()
        model.status = CanaryStatus.ROLLED_BACK
        model.updated_at = now
        model.metadata["rollback_reason"] = reason
        model.metadata["rollback_at"] = format_datetime(now)
        self.store.save_canary(model)
        logger.warning("Canary %s rolled back: %s", model.id, reason)

    def flag_for_manual_review(self, canary_id: str, comparison: ModelComparison | None) -> CanaryModel:
        """Hold a canary for a human decision. Its status does not change."""
        now = self.clock()

        def apply(model: CanaryModel) -> None:
            model.metadata["requires_manual_review"] = True
            model.metadata["comparison_results"] = comparison.to_dict() if comparison else None
            model.metadata["flagged_at"] = format_datetime(now)
            model.updated_at = now

        model = self.store.update_canary(canary_id, apply)
        if model is None:
            raise CanaryNotFound(canary_id)
        logger.info("Canary %s flagged for manual review", canary_id)
        return model

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_canaries(self) -> list[CanaryModel]:
        return self.store.list_canaries(statuses=(CanaryStatus.TESTING, CanaryStatus.ACTIVE))

    def get_canary_history(self) -> list[CanaryModel]:
        return self.store.list_canaries()

    def get_model_comparisons(self, canary_id: str | None = None) -> list[ModelComparison]:
        return self.store.list_comparisons(canary_id)
