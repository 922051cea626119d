"""Refactor execution data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from codevolve.core.errors import ValidationError
from codevolve.core.models import (
    SYSTEM_ACTOR,
    ExecutionStatus,
    FeedbackAction,
    FileChange,
    format_datetime,
    new_id,
    parse_datetime,
    parse_enum,
    utcnow,
)


@dataclass
class TestResults:
    """Outcome of running a suggestion's tests."""

    __test__ = False  # not a pytest class

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    coverage: float = 0.0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "coverage": self.coverage,
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestResults:
        return cls(
            passed=int(data.get("passed", 0)),
            failed=int(data.get("failed", 0)),
            skipped=int(data.get("skipped", 0)),
            coverage=float(data.get("coverage", 0.0)),
            errors=list(data.get("errors", [])),
        )


@dataclass
class RefactorExecution:
    """One concrete attempt to apply a suggestion's changes."""

    suggestion_id: str
    executed_by: str
    changes: list[FileChange] = field(default_factory=list)
    rollback_plan: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    test_results: TestResults = field(default_factory=TestResults)
    backup_path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id("exec")

    @property
    def is_automatic(self) -> bool:
        return self.executed_by == SYSTEM_ACTOR

    @property
    def duration_hours(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() / 3600

    def touched_paths(self) -> list[str]:
        paths: set[str] = set()
        for change in self.changes:
            paths.update(p for p in change.touched_paths() if p)
        return sorted(paths)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "suggestion_id": self.suggestion_id,
            "executed_by": self.executed_by,
            "changes": [c.to_dict() for c in self.changes],
            "rollback_plan": self.rollback_plan,
            "status": self.status.value,
            "test_results": self.test_results.to_dict(),
            "backup_path": self.backup_path,
            "metadata": dict(self.metadata),
            "started_at": format_datetime(self.started_at),
            "completed_at": format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefactorExecution:
        return cls(
            id=str(data["id"]),
            suggestion_id=str(data.get("suggestion_id", "")),
            executed_by=str(data.get("executed_by", SYSTEM_ACTOR)),
            changes=[FileChange.from_dict(c) for c in data.get("changes", [])],
            rollback_plan=str(data.get("rollback_plan", "")),
            status=parse_enum(ExecutionStatus, data.get("status"), "execution status"),
            test_results=TestResults.from_dict(data.get("test_results") or {}),
            backup_path=data.get("backup_path"),
            metadata=dict(data.get("metadata") or {}),
            started_at=parse_datetime(data.get("started_at")) or utcnow(),
            completed_at=parse_datetime(data.get("completed_at")),
        )


@dataclass
class RefactorFeedback:
    """A reviewer's verdict on a suggestion."""

    suggestion_id: str
    user_id: str
    action: FeedbackAction
    rating: int
    comments: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id("fb")
        self.action = parse_enum(FeedbackAction, self.action, "feedback action")
        if not 1 <= int(self.rating) <= 5:
            raise ValidationError(f"Feedback rating must be between 1 and 5, got {self.rating}")
        self.rating = int(self.rating)

    @property
    def is_automatic(self) -> bool:
        return bool(self.metadata.get("automatic"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "suggestion_id": self.suggestion_id,
            "user_id": self.user_id,
            "action": self.action.value,
            "rating": self.rating,
            "comments": self.comments,
            "metadata": dict(self.metadata),
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefactorFeedback:
        return cls(
            id=str(data["id"]),
            suggestion_id=str(data.get("suggestion_id", "")),
            user_id=str(data.get("user_id", "")),
            action=data.get("action"),  # type: ignore[arg-type]
            rating=data.get("rating", 0),
            comments=data.get("comments"),
            metadata=dict(data.get("metadata") or {}),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
        )


@dataclass
class RefactorMetrics:
    """Aggregate view over suggestions created within a time range."""

    total_suggestions: int = 0
    pending_suggestions: int = 0
    approved_suggestions: int = 0
    rejected_suggestions: int = 0
    automatic_applied: int = 0
    manual_applied: int = 0
    total_executions: int = 0
    rolled_back_executions: int = 0
    failed_executions: int = 0
    average_rating: float = 0.0
    rating_count: int = 0
    success_rate: float = 0.0
    time_to_implementation: float = 0.0

    @property
    def approval_rate(self) -> float:
        if not self.total_suggestions:
            return 0.0
        return self.approved_suggestions / self.total_suggestions

    @property
    def rejection_rate(self) -> float:
        if not self.total_suggestions:
            return 0.0
        return self.rejected_suggestions / self.total_suggestions

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_suggestions": self.total_suggestions,
            "pending_suggestions": self.pending_suggestions,
            "approved_suggestions": self.approved_suggestions,
            "rejected_suggestions": self.rejected_suggestions,
            "automatic_applied": self.automatic_applied,
            "manual_applied": self.manual_applied,
            "total_executions": self.total_executions,
            "rolled_back_executions": self.rolled_back_executions,
            "failed_executions": self.failed_executions,
            "average_rating": self.average_rating,
            "rating_count": self.rating_count,
            "success_rate": self.success_rate,
            "time_to_implementation": self.time_to_implementation,
            "approval_rate": self.approval_rate,
            "rejection_rate": self.rejection_rate,
        }
