"""Tests for the pure promotion gate and baseline comparison."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from codevolve.canary.decision import compute_comparison, pct_change, should_promote_canary
from codevolve.canary.models import (
    CanaryMetrics,
    CanaryModel,
    CanaryStatus,
    ModelConfiguration,
    PromotionCriteria,
    Recommendation,
    RequiredImprovements,
)
from codevolve.core.errors import BaselineNotFound

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

BASELINE_METRICS = {
    "response_time": {"average": 200},
    "accuracy": 0.85,
    "error_rate": 0.04,
    "throughput": 100,
    "token_usage": {"cost": 0.02},
    "user_satisfaction": {"rating": 4.0},
    "quality_metrics": {"coherence": 0.8, "relevance": 0.8, "factuality": 0.8, "safety": 0.8},
    "request_count": 5000,
}

IMPROVED_METRICS = {
    "response_time": {"average": 150},
    "accuracy": 0.9,
    "error_rate": 0.02,
    "throughput": 120,
    "token_usage": {"cost": 0.015},
    "user_satisfaction": {"rating": 4.5},
    "quality_metrics": {"coherence": 0.9, "relevance": 0.9, "factuality": 0.9, "safety": 0.9},
    "request_count": 1200,
}


def _make_model(
    hours: float = 30,
    metrics: dict | None = None,
    criteria: PromotionCriteria | None = None,
    **overrides,
) -> CanaryModel:
    merged = {**IMPROVED_METRICS, **(overrides or {})}
    return CanaryModel(
        name="summarizer",
        version="2.1",
        configuration=ModelConfiguration(provider="openai", model_id="gpt-4o-mini"),
        traffic_percentage=10,
        comparison_baseline="canary-baseline",
        promotion_criteria=criteria or PromotionCriteria(),
        metrics=CanaryMetrics.from_dict(metrics if metrics is not None else merged),
        status=CanaryStatus.TESTING,
        testing_started_at=NOW - timedelta(hours=hours),
        id="canary-candidate",
    )


@pytest.fixture
def baseline() -> CanaryModel:
    return CanaryModel(
        name="summarizer",
        version="2.0",
        configuration=ModelConfiguration(provider="openai", model_id="gpt-4o"),
        traffic_percentage=100,
        comparison_baseline="",
        metrics=CanaryMetrics.from_dict(BASELINE_METRICS),
        status=CanaryStatus.PROMOTED,
        id="canary-baseline",
    )


class TestShouldPromote:
    def test_short_test_duration_holds_without_rollback(self, baseline):
        """Duration is checked first, even when the error rate is bad."""
        model = _make_model(hours=12, error_rate=0.08)

        decision = should_promote_canary(model, baseline, NOW)

        assert not decision.promote
        assert not decision.rollback
        assert "Test duration" in decision.reason
        assert "24" in decision.reason

    def test_error_rate_over_threshold_rolls_back(self, baseline):
        model = _make_model(hours=30, error_rate=0.08)

        decision = should_promote_canary(model, baseline, NOW)

        assert decision.rollback
        assert not decision.promote
        assert decision.reason == "Error rate 8.00% > threshold 5.00%"

    def test_low_accuracy_rolls_back(self, baseline):
        decision = should_promote_canary(_make_model(accuracy=0.7), baseline, NOW)
        assert decision.rollback
        assert decision.reason.startswith("Accuracy 70.00%")

    def test_low_satisfaction_rolls_back(self, baseline):
        criteria = PromotionCriteria(min_user_satisfaction=4.8)
        decision = should_promote_canary(_make_model(criteria=criteria), baseline, NOW)
        assert decision.rollback
        assert "User satisfaction" in decision.reason

    def test_low_request_count_waits(self, baseline):
        criteria = PromotionCriteria(min_request_count=5000)
        decision = should_promote_canary(_make_model(criteria=criteria), baseline, NOW)
        assert not decision.promote and not decision.rollback
        assert decision.reason == "Request count 1200 < required 5000"

    def test_all_criteria_met(self, baseline):
        decision = should_promote_canary(_make_model(), baseline, NOW)
        assert decision.promote
        assert not decision.rollback
        assert decision.comparison.recommendation == Recommendation.PROMOTE

    def test_latency_and_required_improvements_hold_promotion(self, baseline):
        """Latency and improvement shortfalls are listed together."""
        criteria = PromotionCriteria(
            max_latency_increase=10,
            required_improvements=RequiredImprovements(accuracy=10),
        )
        model = _make_model(criteria=criteria, response_time={"average": 240})

        decision = should_promote_canary(model, baseline, NOW)

        assert not decision.promote and not decision.rollback
        assert "Latency increase 20.00% > allowed 10%" in decision.reason
        assert "Accuracy improvement" in decision.reason

    def test_missing_baseline_raises_after_gates(self):
        """A baseline is only needed once the threshold checks pass."""
        assert not should_promote_canary(_make_model(hours=1), None, NOW).promote
        with pytest.raises(BaselineNotFound):
            should_promote_canary(_make_model(), None, NOW)

    def test_same_inputs_same_decision(self, baseline):
        """The gate has no side effects on its inputs."""
        model = _make_model()
        before = model.to_dict()

        first = should_promote_canary(model, baseline, NOW)
        second = should_promote_canary(model, baseline, NOW)

        assert (first.promote, first.rollback, first.reason) == (second.promote, second.rollback, second.reason)
        assert first.comparison.confidence == second.comparison.confidence
        assert model.to_dict() == before


class TestComparison:
    def test_broad_improvement_recommends_promotion(self, baseline):
        comparison = compute_comparison(_make_model(), baseline, NOW)

        assert comparison.recommendation == Recommendation.PROMOTE
        assert comparison.confidence > 0.8
        assert comparison.results.performance_delta["response_time"] == pytest.approx(25.0)
        assert comparison.results.performance_delta["error_rate"] == pytest.approx(-50.0)
        assert comparison.reasoning[0] == "10 of 10 signals improved, 0 regressed"

    def test_error_rate_spike_recommends_rollback(self, baseline):
        comparison = compute_comparison(_make_model(error_rate=0.08), baseline, NOW)
        assert comparison.recommendation == Recommendation.ROLLBACK
        assert "error rate" in comparison.reasoning[-1]

    def test_identical_metrics_need_review(self, baseline):
        comparison = compute_comparison(_make_model(metrics=BASELINE_METRICS), baseline, NOW)
        assert comparison.recommendation == Recommendation.MANUAL_REVIEW
        assert comparison.confidence == pytest.approx(0.3)

    def test_pct_change_with_zero_base(self):
        assert pct_change(0, 0) == 0.0
        assert pct_change(5, 0) == 100.0
        assert pct_change(5, 4) == pytest.approx(25.0)
