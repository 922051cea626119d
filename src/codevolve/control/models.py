"""Tenant settings, audit events and metrics snapshots."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from codevolve.core.errors import ValidationError
from codevolve.core.models import (
    SYSTEM_ACTOR,
    AnalysisType,
    format_datetime,
    new_id,
    parse_datetime,
    parse_enum,
    utcnow,
)


class EventType(enum.Enum):
    EVOLUTION_ENABLED = "evolution_enabled"
    EVOLUTION_DISABLED = "evolution_disabled"
    SETTINGS_UPDATED = "settings_updated"
    ANALYSIS_COMPLETED = "analysis_completed"
    REFACTOR_APPLIED = "refactor_applied"
    REFACTOR_ROLLED_BACK = "refactor_rolled_back"
    CANARY_DEPLOYED = "canary_deployed"
    CANARY_PROMOTED = "canary_promoted"
    CANARY_ROLLED_BACK = "canary_rolled_back"
    SAFEGUARD_BLOCKED = "safeguard_blocked"
    METRICS_WARNING = "metrics_warning"
    EMERGENCY_STOP = "emergency_stop"
    ERROR = "error"


class EventSeverity(enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class CodeAnalysisFeature:
    enabled: bool = True
    analysis_types: list[AnalysisType] = field(default_factory=lambda: list(AnalysisType))


@dataclass
class AutoRefactorFeature:
    enabled: bool = False
    confidence_threshold: float = 0.9


@dataclass
class CanaryTestingFeature:
    enabled: bool = False


@dataclass
class Features:
    code_analysis: CodeAnalysisFeature = field(default_factory=CodeAnalysisFeature)
    auto_refactor: AutoRefactorFeature = field(default_factory=AutoRefactorFeature)
    canary_testing: CanaryTestingFeature = field(default_factory=CanaryTestingFeature)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code_analysis": {
                "enabled": self.code_analysis.enabled,
                "analysis_types": [t.value for t in self.code_analysis.analysis_types],
            },
            "auto_refactor": {
                "enabled": self.auto_refactor.enabled,
                "confidence_threshold": self.auto_refactor.confidence_threshold,
            },
            "canary_testing": {"enabled": self.canary_testing.enabled},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Features:
        data = data or {}
        analysis = data.get("code_analysis") or {}
        refactor = data.get("auto_refactor") or {}
        canary = data.get("canary_testing") or {}
        threshold = float(refactor.get("confidence_threshold", 0.9))
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("auto_refactor.confidence_threshold must be within [0, 1]")
        return cls(
            code_analysis=CodeAnalysisFeature(
                enabled=bool(analysis.get("enabled", True)),
                analysis_types=[
                    parse_enum(AnalysisType, t, "analysis type")
                    for t in analysis.get("analysis_types", [t.value for t in AnalysisType])
                ],
            ),
            auto_refactor=AutoRefactorFeature(
                enabled=bool(refactor.get("enabled", False)),
                confidence_threshold=threshold,
            ),
            canary_testing=CanaryTestingFeature(enabled=bool(canary.get("enabled", False))),
        )


@dataclass
class Safeguards:
    max_daily_changes: int = 5
    emergency_stop: bool = False
    test_coverage_threshold: float = 80.0
    rollback_window_hours: float = 24.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_daily_changes": self.max_daily_changes,
            "emergency_stop": self.emergency_stop,
            "test_coverage_threshold": self.test_coverage_threshold,
            "rollback_window_hours": self.rollback_window_hours,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Safeguards:
        data = data or {}
        safeguards = cls(
            max_daily_changes=int(data.get("max_daily_changes", 5)),
            emergency_stop=bool(data.get("emergency_stop", False)),
            test_coverage_threshold=float(data.get("test_coverage_threshold", 80.0)),
            rollback_window_hours=float(data.get("rollback_window_hours", 24.0)),
        )
        if safeguards.max_daily_changes < 0:
            raise ValidationError("max_daily_changes cannot be negative")
        if not 0.0 <= safeguards.test_coverage_threshold <= 100.0:
            raise ValidationError("test_coverage_threshold must be within [0, 100]")
        return safeguards


@dataclass
class EvolutionSettings:
    """Per-tenant switchboard. Only the orchestrator mutates it."""

    tenant: str
    enabled: bool = False
    features: Features = field(default_factory=Features)
    safeguards: Safeguards = field(default_factory=Safeguards)
    metadata: dict[str, Any] = field(default_factory=dict)
    last_modified_by: str = SYSTEM_ACTOR
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant": self.tenant,
            "enabled": self.enabled,
            "features": self.features.to_dict(),
            "safeguards": self.safeguards.to_dict(),
            "metadata": dict(self.metadata),
            "last_modified_by": self.last_modified_by,
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvolutionSettings:
        return cls(
            tenant=str(data["tenant"]),
            enabled=bool(data.get("enabled", False)),
            features=Features.from_dict(data.get("features")),
            safeguards=Safeguards.from_dict(data.get("safeguards")),
            metadata=dict(data.get("metadata") or {}),
            last_modified_by=str(data.get("last_modified_by", SYSTEM_ACTOR)),
            updated_at=parse_datetime(data.get("updated_at")) or utcnow(),
        )


@dataclass
class EvolutionEvent:
    """Append-only audit record."""

    tenant: str
    type: EventType
    severity: EventSeverity
    title: str
    description: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    triggered_by: str = SYSTEM_ACTOR
    created_at: datetime = field(default_factory=utcnow)
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id("evt")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant": self.tenant,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "data": dict(self.data),
            "triggered_by": self.triggered_by,
            "created_at": format_datetime(self.created_at),
            "acknowledged_at": format_datetime(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvolutionEvent:
        return cls(
            id=str(data["id"]),
            tenant=str(data.get("tenant", "")),
            type=parse_enum(EventType, data.get("type"), "event type"),
            severity=parse_enum(EventSeverity, data.get("severity"), "event severity"),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            data=dict(data.get("data") or {}),
            triggered_by=str(data.get("triggered_by", SYSTEM_ACTOR)),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            acknowledged_at=parse_datetime(data.get("acknowledged_at")),
            acknowledged_by=data.get("acknowledged_by"),
        )


@dataclass
class EvolutionMetricsSnapshot:
    """Periodic roll-up of analysis, refactor and canary activity."""

    tenant: str
    period_start: datetime
    period_end: datetime
    analysis: dict[str, float] = field(default_factory=dict)
    refactoring: dict[str, float] = field(default_factory=dict)
    canary: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id("metrics")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant": self.tenant,
            "period_start": format_datetime(self.period_start),
            "period_end": format_datetime(self.period_end),
            "analysis": dict(self.analysis),
            "refactoring": dict(self.refactoring),
            "canary": dict(self.canary),
            "warnings": list(self.warnings),
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvolutionMetricsSnapshot:
        return cls(
            id=str(data["id"]),
            tenant=str(data.get("tenant", "")),
            period_start=parse_datetime(data.get("period_start")) or utcnow(),
            period_end=parse_datetime(data.get("period_end")) or utcnow(),
            analysis=dict(data.get("analysis") or {}),
            refactoring=dict(data.get("refactoring") or {}),
            canary=dict(data.get("canary") or {}),
            warnings=list(data.get("warnings", [])),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
        )
