"""Canary deployment data models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from codevolve.core.errors import ValidationError
from codevolve.core.models import format_datetime, new_id, parse_datetime, parse_enum, utcnow


class CanaryStatus(enum.Enum):
    PENDING = "pending"
    TESTING = "testing"
    ACTIVE = "active"
    PROMOTED = "promoted"
    ROLLED_BACK = "rolled_back"

    @property
    def is_live(self) -> bool:
        return self in (CanaryStatus.TESTING, CanaryStatus.ACTIVE)


class Recommendation(enum.Enum):
    PROMOTE = "promote"
    ROLLBACK = "rollback"
    MANUAL_REVIEW = "manual_review"


class DeploymentStatus(enum.Enum):
    DEPLOYING = "deploying"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


def _floats(data: dict[str, Any] | None, keys: tuple[str, ...]) -> dict[str, float]:
    data = data or {}
    try:
        return {k: float(data.get(k, 0.0) or 0.0) for k in keys}
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid metric value: {exc}") from None


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResponseTime:
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    average: float = 0.0


@dataclass(frozen=True)
class TokenUsage:
    input: float = 0.0
    output: float = 0.0
    cost: float = 0.0


@dataclass(frozen=True)
class UserSatisfaction:
    rating: float = 0.0
    feedback: float = 0.0
    complaints: float = 0.0


@dataclass(frozen=True)
class QualityMetrics:
    coherence: float = 0.0
    relevance: float = 0.0
    factuality: float = 0.0
    safety: float = 0.0


@dataclass(frozen=True)
class ResourceUsage:
    cpu: float = 0.0
    memory: float = 0.0
    gpu: float = 0.0


@dataclass(frozen=True)
class CanaryMetrics:
    """Live metrics for a model. Replaced as a whole on every refresh."""

    response_time: ResponseTime = field(default_factory=ResponseTime)
    accuracy: float = 0.0
    error_rate: float = 0.0
    throughput: float = 0.0
    latency: float = 0.0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    user_satisfaction: UserSatisfaction = field(default_factory=UserSatisfaction)
    quality_metrics: QualityMetrics = field(default_factory=QualityMetrics)
    resource_usage: ResourceUsage = field(default_factory=ResourceUsage)
    request_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        rt, tu, us, qm, ru = (
            self.response_time, self.token_usage, self.user_satisfaction,
            self.quality_metrics, self.resource_usage,
        )
        return {
            "response_time": {"p50": rt.p50, "p95": rt.p95, "p99": rt.p99, "average": rt.average},
            "accuracy": self.accuracy,
            "error_rate": self.error_rate,
            "throughput": self.throughput,
            "latency": self.latency,
            "token_usage": {"input": tu.input, "output": tu.output, "cost": tu.cost},
            "user_satisfaction": {"rating": us.rating, "feedback": us.feedback, "complaints": us.complaints},
            "quality_metrics": {
                "coherence": qm.coherence,
                "relevance": qm.relevance,
                "factuality": qm.factuality,
                "safety": qm.safety,
            },
            "resource_usage": {"cpu": ru.cpu, "memory": ru.memory, "gpu": ru.gpu},
            "request_count": self.request_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CanaryMetrics:
        data = data or {}
        scalars = _floats(data, ("accuracy", "error_rate", "throughput", "latency"))
        return cls(
            response_time=ResponseTime(**_floats(data.get("response_time"), ("p50", "p95", "p99", "average"))),
            token_usage=TokenUsage(**_floats(data.get("token_usage"), ("input", "output", "cost"))),
            user_satisfaction=UserSatisfaction(
                **_floats(data.get("user_satisfaction"), ("rating", "feedback", "complaints"))
            ),
            quality_metrics=QualityMetrics(
                **_floats(data.get("quality_metrics"), ("coherence", "relevance", "factuality", "safety"))
            ),
            resource_usage=ResourceUsage(**_floats(data.get("resource_usage"), ("cpu", "memory", "gpu"))),
            request_count=int(data.get("request_count", 0) or 0),
            **scalars,
        )


# ---------------------------------------------------------------------------
# Configuration and criteria
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelEndpoints:
    inference: str = ""
    health: str = ""
    metrics: str = ""


@dataclass(frozen=True)
class ModelConfiguration:
    """What is being deployed: a provider model plus its parameters."""

    provider: str
    model_id: str
    parameters: dict[str, Any] = field(default_factory=dict)
    endpoints: ModelEndpoints = field(default_factory=ModelEndpoints)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model_id": self.model_id,
            "parameters": dict(self.parameters),
            "endpoints": {
                "inference": self.endpoints.inference,
                "health": self.endpoints.health,
                "metrics": self.endpoints.metrics,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelConfiguration:
        if not data.get("provider") or not data.get("model_id"):
            raise ValidationError("Model configuration requires 'provider' and 'model_id'")
        endpoints = data.get("endpoints") or {}
        return cls(
            provider=str(data["provider"]),
            model_id=str(data["model_id"]),
            parameters=dict(data.get("parameters") or {}),
            endpoints=ModelEndpoints(
                inference=endpoints.get("inference", ""),
                health=endpoints.get("health", ""),
                metrics=endpoints.get("metrics", ""),
            ),
        )


@dataclass(frozen=True)
class RequiredImprovements:
    """Percentage improvements over the baseline a canary must show."""

    response_time: float | None = None
    accuracy: float | None = None
    error_rate: float | None = None
    cost: float | None = None

    def to_dict(self) -> dict[str, float | None]:
        return {
            "response_time": self.response_time,
            "accuracy": self.accuracy,
            "error_rate": self.error_rate,
            "cost": self.cost,
        }


@dataclass(frozen=True)
class PromotionCriteria:
    """Thresholds a canary must clear. Fixed for the lifetime of the canary."""

    min_test_duration: float = 24.0
    min_request_count: int = 0
    max_error_rate: float = 0.05
    min_accuracy: float = 0.8
    max_latency_increase: float | None = None
    min_user_satisfaction: float = 0.0
    required_improvements: RequiredImprovements = field(default_factory=RequiredImprovements)
    auto_promote: bool = False
    requires_manual_approval: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_test_duration": self.min_test_duration,
            "min_request_count": self.min_request_count,
            "max_error_rate": self.max_error_rate,
            "min_accuracy": self.min_accuracy,
            "max_latency_increase": self.max_latency_increase,
            "min_user_satisfaction": self.min_user_satisfaction,
            "required_improvements": self.required_improvements.to_dict(),
            "auto_promote": self.auto_promote,
            "requires_manual_approval": self.requires_manual_approval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PromotionCriteria:
        data = data or {}
        improvements = data.get("required_improvements") or {}
        criteria = cls(
            min_test_duration=float(data.get("min_test_duration", 24.0)),
            min_request_count=int(data.get("min_request_count", 0)),
            max_error_rate=float(data.get("max_error_rate", 0.05)),
            min_accuracy=float(data.get("min_accuracy", 0.8)),
            max_latency_increase=(
                float(data["max_latency_increase"]) if data.get("max_latency_increase") is not None else None
            ),
            min_user_satisfaction=float(data.get("min_user_satisfaction", 0.0)),
            required_improvements=RequiredImprovements(**{
                k: (float(improvements[k]) if improvements.get(k) is not None else None)
                for k in ("response_time", "accuracy", "error_rate", "cost")
            }),
            auto_promote=bool(data.get("auto_promote", False)),
            requires_manual_approval=bool(data.get("requires_manual_approval", True)),
        )
        if criteria.min_test_duration < 0:
            raise ValidationError("min_test_duration cannot be negative")
        if not 0.0 <= criteria.max_error_rate <= 1.0:
            raise ValidationError("max_error_rate must be within [0, 1]")
        return criteria


# ---------------------------------------------------------------------------
# Models, deployments and comparisons
# ---------------------------------------------------------------------------


@dataclass
class CanaryModel:
    """An alternative configuration evaluated against a baseline."""

    name: str
    version: str
    configuration: ModelConfiguration
    traffic_percentage: float
    comparison_baseline: str
    promotion_criteria: PromotionCriteria = field(default_factory=PromotionCriteria)
    metrics: CanaryMetrics = field(default_factory=CanaryMetrics)
    status: CanaryStatus = CanaryStatus.PENDING
    testing_started_at: datetime | None = None
    promoted_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id("canary")
        if not 0 <= float(self.traffic_percentage) <= 100:
            raise ValidationError(
                f"traffic_percentage must be within [0, 100], got {self.traffic_percentage}"
            )

    @property
    def requires_manual_review(self) -> bool:
        return bool(self.metadata.get("requires_manual_review"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "configuration": self.configuration.to_dict(),
            "traffic_percentage": self.traffic_percentage,
            "comparison_baseline": self.comparison_baseline,
            "promotion_criteria": self.promotion_criteria.to_dict(),
            "metrics": self.metrics.to_dict(),
            "status": self.status.value,
            "testing_started_at": format_datetime(self.testing_started_at),
            "promoted_at": format_datetime(self.promoted_at),
            "metadata": dict(self.metadata),
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CanaryModel:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            version=str(data.get("version", "")),
            configuration=ModelConfiguration.from_dict(data.get("configuration") or {}),
            traffic_percentage=float(data.get("traffic_percentage", 0)),
            comparison_baseline=str(data.get("comparison_baseline", "")),
            promotion_criteria=PromotionCriteria.from_dict(data.get("promotion_criteria")),
            metrics=CanaryMetrics.from_dict(data.get("metrics")),
            status=parse_enum(CanaryStatus, data.get("status"), "canary status"),
            testing_started_at=parse_datetime(data.get("testing_started_at")),
            promoted_at=parse_datetime(data.get("promoted_at")),
            metadata=dict(data.get("metadata") or {}),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=parse_datetime(data.get("updated_at")) or utcnow(),
        )


@dataclass
class RollbackPlan:
    triggers: list[str] = field(default_factory=list)
    automated: bool = True
    steps: list[str] = field(default_factory=list)


@dataclass
class CanaryDeployment:
    """How traffic is split between a canary and its baseline."""

    canary_id: str
    canary_traffic: float
    rollback_plan: RollbackPlan
    alert_thresholds: dict[str, float] = field(default_factory=dict)
    strategy: str = "canary"
    critical_only: bool = False
    excluded_roles: list[str] = field(default_factory=list)
    status: DeploymentStatus = DeploymentStatus.DEPLOYING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id("deploy")

    @property
    def baseline_traffic(self) -> float:
        return 100 - self.canary_traffic

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "canary_id": self.canary_id,
            "strategy": self.strategy,
            "traffic_split": {"canary": self.canary_traffic, "baseline": self.baseline_traffic},
            "rollback_plan": {
                "triggers": list(self.rollback_plan.triggers),
                "automated": self.rollback_plan.automated,
                "steps": list(self.rollback_plan.steps),
            },
            "alert_thresholds": dict(self.alert_thresholds),
            "critical_only": self.critical_only,
            "excluded_roles": list(self.excluded_roles),
            "status": self.status.value,
            "started_at": format_datetime(self.started_at),
            "completed_at": format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CanaryDeployment:
        plan = data.get("rollback_plan") or {}
        return cls(
            id=str(data["id"]),
            canary_id=str(data.get("canary_id", "")),
            strategy=str(data.get("strategy", "canary")),
            canary_traffic=float((data.get("traffic_split") or {}).get("canary", 0)),
            rollback_plan=RollbackPlan(
                triggers=list(plan.get("triggers", [])),
                automated=bool(plan.get("automated", True)),
                steps=list(plan.get("steps", [])),
            ),
            alert_thresholds={k: float(v) for k, v in (data.get("alert_thresholds") or {}).items()},
            critical_only=bool(data.get("critical_only", False)),
            excluded_roles=list(data.get("excluded_roles", [])),
            status=parse_enum(DeploymentStatus, data.get("status"), "deployment status"),
            started_at=parse_datetime(data.get("started_at")) or utcnow(),
            completed_at=parse_datetime(data.get("completed_at")),
        )


@dataclass(frozen=True)
class ComparisonResults:
    """Percentage deltas of canary versus baseline, grouped by concern."""

    performance_delta: dict[str, float]
    quality_delta: dict[str, float]
    cost_delta: dict[str, float]
    user_experience_delta: dict[str, float]

    def to_dict(self) -> dict[str, dict[str, float]]:
        return {
            "performance_delta": dict(self.performance_delta),
            "quality_delta": dict(self.quality_delta),
            "cost_delta": dict(self.cost_delta),
            "user_experience_delta": dict(self.user_experience_delta),
        }


@dataclass
class ModelComparison:
    canary_id: str
    baseline_id: str
    results: ComparisonResults
    recommendation: Recommendation
    confidence: float
    reasoning: list[str] = field(default_factory=list)
    period_start: datetime | None = None
    period_end: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id("cmp")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "canary_id": self.canary_id,
            "baseline_id": self.baseline_id,
            "results": self.results.to_dict(),
            "recommendation": self.recommendation.value,
            "confidence": self.confidence,
            "reasoning": list(self.reasoning),
            "period_start": format_datetime(self.period_start),
            "period_end": format_datetime(self.period_end),
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelComparison:
        results = data.get("results") or {}
        return cls(
            id=str(data["id"]),
            canary_id=str(data.get("canary_id", "")),
            baseline_id=str(data.get("baseline_id", "")),
            results=ComparisonResults(
                performance_delta={k: float(v) for k, v in (results.get("performance_delta") or {}).items()},
                quality_delta={k: float(v) for k, v in (results.get("quality_delta") or {}).items()},
                cost_delta={k: float(v) for k, v in (results.get("cost_delta") or {}).items()},
                user_experience_delta={
                    k: float(v) for k, v in (results.get("user_experience_delta") or {}).items()
                },
            ),
            recommendation=parse_enum(Recommendation, data.get("recommendation"), "recommendation"),
            confidence=float(data.get("confidence", 0.0)),
            reasoning=list(data.get("reasoning", [])),
            period_start=parse_datetime(data.get("period_start")),
            period_end=parse_datetime(data.get("period_end")),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
        )


@dataclass
class PromotionDecision:
    """Result of evaluating a canary against its promotion criteria."""

    promote: bool
    rollback: bool
    reason: str
    comparison: ModelComparison | None = None


@dataclass
class CanarySpec:
    """Caller-supplied description of a canary to deploy."""

    name: str
    version: str
    configuration: ModelConfiguration
    comparison_baseline: str
    promotion_criteria: PromotionCriteria = field(default_factory=PromotionCriteria)
    traffic_percentage: float | None = None
    metrics: CanaryMetrics = field(default_factory=CanaryMetrics)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CanarySpec:
        for key in ("name", "version", "comparison_baseline"):
            if not data.get(key):
                raise ValidationError(f"Canary spec requires '{key}'")
        traffic = data.get("traffic_percentage")
        if traffic is not None and not 0.0 < float(traffic) <= 100.0:
            raise ValidationError("traffic_percentage must be within (0, 100]")
        return cls(
            name=str(data["name"]),
            version=str(data["version"]),
            configuration=ModelConfiguration.from_dict(data.get("configuration") or {}),
            comparison_baseline=str(data["comparison_baseline"]),
            promotion_criteria=PromotionCriteria.from_dict(data.get("promotion_criteria")),
            traffic_percentage=float(traffic) if traffic is not None else None,
            metrics=CanaryMetrics.from_dict(data.get("metrics")),
            metadata=dict(data.get("metadata") or {}),
        )
