"""Pure promotion logic: comparisons against a baseline and the promotion gate.

Nothing here touches the store or the clock; callers pass ``now`` in. The
same inputs always give the same decision.
"""

from __future__ import annotations

from datetime import datetime

from codevolve.canary.models import (
    CanaryMetrics,
    CanaryModel,
    ComparisonResults,
    ModelComparison,
    PromotionDecision,
    Recommendation,
)
from codevolve.core.errors import BaselineNotFound
from codevolve.core.models import clamp

PROMOTE_CONFIDENCE = 0.8
# Deltas within this band (percent) count as neither better nor worse.
NOISE_BAND = 1.0
MAGNITUDE_CAP = 20.0
ERROR_RATE_ROLLBACK = 50.0
RESPONSE_TIME_ROLLBACK = -30.0


def pct_change(current: float, base: float) -> float:
    """Percentage change of *current* relative to *base*."""
    if base == 0:
        if current == 0:
            return 0.0
        return 100.0 if current > 0 else -100.0
    return (current - base) / abs(base) * 100


def elapsed_hours(model: CanaryModel, now: datetime) -> float:
    if model.testing_started_at is None:
        return 0.0
    return max(0.0, (now - model.testing_started_at).total_seconds() / 3600)


def compute_deltas(canary: CanaryMetrics, baseline: CanaryMetrics) -> ComparisonResults:
    base_rt = baseline.response_time.average
    response_time = (base_rt - canary.response_time.average) / base_rt * 100 if base_rt else 0.0

    canary_eff = canary.throughput / canary.token_usage.cost if canary.token_usage.cost else 0.0
    base_eff = baseline.throughput / baseline.token_usage.cost if baseline.token_usage.cost else 0.0

    cq, bq = canary.quality_metrics, baseline.quality_metrics
    return ComparisonResults(
        performance_delta={
            "response_time": response_time,
            "accuracy": pct_change(canary.accuracy, baseline.accuracy),
            "error_rate": pct_change(canary.error_rate, baseline.error_rate),
            "throughput": pct_change(canary.throughput, baseline.throughput),
        },
        quality_delta={
            "coherence": pct_change(cq.coherence, bq.coherence),
            "relevance": pct_change(cq.relevance, bq.relevance),
            "factuality": pct_change(cq.factuality, bq.factuality),
            "safety": pct_change(cq.safety, bq.safety),
        },
        cost_delta={
            "per_request": pct_change(canary.token_usage.cost, baseline.token_usage.cost),
            "efficiency": pct_change(canary_eff, base_eff),
        },
        user_experience_delta={
            "satisfaction": pct_change(canary.user_satisfaction.rating, baseline.user_satisfaction.rating),
            "complaints": pct_change(canary.user_satisfaction.complaints, baseline.user_satisfaction.complaints),
        },
    )


def improvement_signals(results: ComparisonResults) -> dict[str, float]:
    """Deltas oriented so that positive always means the canary is better."""
    perf = results.performance_delta
    return {
        "response_time": perf["response_time"],
        "accuracy": perf["accuracy"],
        "error_rate": -perf["error_rate"],
        "throughput": perf["throughput"],
        **{f"quality.{k}": v for k, v in results.quality_delta.items()},
        "cost": -results.cost_delta["per_request"],
        "satisfaction": results.user_experience_delta["satisfaction"],
    }


def compute_comparison(canary: CanaryModel, baseline: CanaryModel, now: datetime) -> ModelComparison:
    """Compare *canary* with *baseline* and recommend promote, rollback or review.

    Confidence grows with how many signals improved and by how much, and
    shrinks with every regression.
    """
    results = compute_deltas(canary.metrics, baseline.metrics)
    signals = improvement_signals(results)
    n = len(signals)
    improved = {k: v for k, v in signals.items() if v > NOISE_BAND}
    regressed = {k: v for k, v in signals.items() if v < -NOISE_BAND}
    magnitude = sum(min(v, MAGNITUDE_CAP) for v in improved.values()) / (MAGNITUDE_CAP * n)
    confidence = round(clamp(0.3 + 0.5 * len(improved) / n + 0.2 * magnitude - 0.5 * len(regressed) / n), 4)

    reasoning = [f"{len(improved)} of {n} signals improved, {len(regressed)} regressed"]
    perf = results.performance_delta
    if perf["error_rate"] > ERROR_RATE_ROLLBACK:
        recommendation = Recommendation.ROLLBACK
        reasoning.append(f"Unacceptable error rate increase ({perf['error_rate']:.2f}%)")
    elif perf["response_time"] < RESPONSE_TIME_ROLLBACK:
        recommendation = Recommendation.ROLLBACK
        reasoning.append(f"Significant response time degradation ({perf['response_time']:.2f}%)")
    elif len(regressed) > len(improved) and len(regressed) * 2 >= n:
        recommendation = Recommendation.ROLLBACK
        reasoning.append("Broad regression against baseline: " + ", ".join(sorted(regressed)))
    elif len(improved) > len(regressed) and len(improved) * 2 >= n and confidence > PROMOTE_CONFIDENCE:
        recommendation = Recommendation.PROMOTE
        reasoning.append(f"Broad improvement over baseline with confidence {confidence:.2f}")
    else:
        recommendation = Recommendation.MANUAL_REVIEW
        reasoning.append("Mixed or marginal results; needs a human decision")

    return ModelComparison(
        canary_id=canary.id,
        baseline_id=baseline.id,
        results=results,
        recommendation=recommendation,
        confidence=confidence,
        reasoning=reasoning,
        period_start=canary.testing_started_at,
        period_end=now,
        created_at=now,
    )


def should_promote_canary(model: CanaryModel, baseline: CanaryModel | None, now: datetime) -> PromotionDecision:
    """Gate a canary against its promotion criteria.

    Checks run in a fixed order and the first failure wins: test duration,
    error rate, accuracy, user satisfaction. Error rate, accuracy and
    satisfaction failures ask for a rollback. Request volume, latency and
    required improvements are checked after that and only hold promotion
    back.
    """
    criteria = model.promotion_criteria
    metrics = model.metrics

    hours = elapsed_hours(model, now)
    if hours < criteria.min_test_duration:
        return PromotionDecision(
            promote=False,
            rollback=False,
            reason=f"Test duration {hours:.1f}h < required {criteria.min_test_duration:g}h",
        )

    if metrics.error_rate > criteria.max_error_rate:
        return PromotionDecision(
            promote=False,
            rollback=True,
            reason=(
                f"Error rate {metrics.error_rate * 100:.2f}% > threshold {criteria.max_error_rate * 100:.2f}%"
            ),
        )

    if metrics.accuracy < criteria.min_accuracy:
        return PromotionDecision(
            promote=False,
            rollback=True,
            reason=f"Accuracy {metrics.accuracy * 100:.2f}% < threshold {criteria.min_accuracy * 100:.2f}%",
        )

    rating = metrics.user_satisfaction.rating
    if rating < criteria.min_user_satisfaction:
        return PromotionDecision(
            promote=False,
            rollback=True,
            reason=f"User satisfaction {rating:.2f} < threshold {criteria.min_user_satisfaction:g}",
        )

    if metrics.request_count < criteria.min_request_count:
        return PromotionDecision(
            promote=False,
            rollback=False,
            reason=f"Request count {metrics.request_count} < required {criteria.min_request_count}",
        )

    if baseline is None:
        raise BaselineNotFound(model.comparison_baseline)
    comparison = compute_comparison(model, baseline, now)
    perf = comparison.results.performance_delta

    reasons: list[str] = []
    if criteria.max_latency_increase is not None and -perf["response_time"] > criteria.max_latency_increase:
        reasons.append(
            f"Latency increase {-perf['response_time']:.2f}% > allowed {criteria.max_latency_increase:g}%"
        )

    required = criteria.required_improvements
    if required.response_time is not None and perf["response_time"] < required.response_time:
        reasons.append(
            f"Response time improvement {perf['response_time']:.2f}% < required {required.response_time:g}%"
        )
    if required.accuracy is not None and perf["accuracy"] < required.accuracy:
        reasons.append(f"Accuracy improvement {perf['accuracy']:.2f}% < required {required.accuracy:g}%")
    if required.error_rate is not None and -perf["error_rate"] < required.error_rate:
        reasons.append(
            f"Error rate reduction {-perf['error_rate']:.2f}% < required {required.error_rate:g}%"
        )
    if required.cost is not None and -comparison.results.cost_delta["per_request"] < required.cost:
        reasons.append(
            f"Cost reduction {-comparison.results.cost_delta['per_request']:.2f}% < required {required.cost:g}%"
        )

    if reasons:
        return PromotionDecision(promote=False, rollback=False, reason="; ".join(reasons), comparison=comparison)
    return PromotionDecision(promote=True, rollback=False, reason="All promotion criteria met", comparison=comparison)
