"""Shared data models for analysis and refactoring.

Every record converts to and from plain dicts. ``from_dict`` is the
validation boundary: records read back from the store pass through it, so
call sites can trust enum values, score ranges and per-operation fields.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

from codevolve.core.errors import ValidationError

E = TypeVar("E", bound=enum.Enum)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def parse_enum(enum_cls: type[E], value: Any, field_name: str) -> E:
    """Coerce *value* into *enum_cls* or raise :class:`ValidationError`."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}' (expected one of: {allowed})") from None


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError:
            raise ValidationError(f"Invalid timestamp '{value}'") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def check_unit(value: Any, field_name: str) -> float:
    """Validate a score in [0, 1]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number, got {value!r}") from None
    if not 0.0 <= number <= 1.0:
        raise ValidationError(f"{field_name} must be within [0, 1], got {number}")
    return number


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class FindingType(enum.Enum):
    PERFORMANCE_ISSUE = "performance_issue"
    SECURITY_VULNERABILITY = "security_vulnerability"
    STYLE_VIOLATION = "style_violation"
    CODE_SMELL = "code_smell"


class Impact(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _IMPACT_RANK[self]

    @classmethod
    def worst(cls, impacts: list[Impact]) -> Impact:
        return max(impacts, key=lambda i: i.rank, default=cls.LOW)


_IMPACT_RANK = {Impact.LOW: 0, Impact.MEDIUM: 1, Impact.HIGH: 2, Impact.CRITICAL: 3}


class Effort(enum.Enum):
    TRIVIAL = "trivial"
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class AnalysisType(enum.Enum):
    PERFORMANCE = "performance"
    SECURITY = "security"
    STYLE = "style"
    COMPLEXITY = "complexity"


class SuggestionType(enum.Enum):
    OPTIMIZE_QUERY = "optimize_query"
    OPTIMIZE_LOOP = "optimize_loop"
    REDUCE_IMPORT_COST = "reduce_import_cost"
    SECURITY_FIX = "security_fix"
    STYLE_IMPROVEMENT = "style_improvement"
    REDUCE_COMPLEXITY = "reduce_complexity"


class Priority(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def from_impact(cls, impact: Impact) -> Priority:
        return cls(impact.value)


_PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2, Priority.CRITICAL: 3}


class AutomationLevel(enum.Enum):
    MANUAL = "manual"
    ASSISTED = "assisted"
    AUTOMATIC = "automatic"


class SuggestionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChangeOperation(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RENAME = "rename"


class ExecutionStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.ROLLED_BACK)


class FeedbackAction(enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


SYSTEM_ACTOR = "system"


# ---------------------------------------------------------------------------
# Findings and analysis results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FindingContext:
    before_code: str = ""
    surrounding_code: str = ""
    after_code: str | None = None


@dataclass(frozen=True)
class Finding:
    """A single detected issue. Immutable once the analyzer emits it."""

    id: str
    type: FindingType
    file: str
    line: int
    description: str
    impact: Impact
    effort: Effort
    tags: frozenset[str] = frozenset()
    context: FindingContext = field(default_factory=FindingContext)
    fixable: bool = True
    certainty: float = 0.8

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "file": self.file,
            "line": self.line,
            "description": self.description,
            "impact": self.impact.value,
            "effort": self.effort.value,
            "tags": sorted(self.tags),
            "context": {
                "before_code": self.context.before_code,
                "surrounding_code": self.context.surrounding_code,
                "after_code": self.context.after_code,
            },
            "fixable": self.fixable,
            "certainty": self.certainty,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Finding:
        ctx = data.get("context") or {}
        return cls(
            id=str(data["id"]),
            type=parse_enum(FindingType, data.get("type"), "finding type"),
            file=str(data.get("file", "")),
            line=int(data.get("line", 0)),
            description=str(data.get("description", "")),
            impact=parse_enum(Impact, data.get("impact"), "impact"),
            effort=parse_enum(Effort, data.get("effort"), "effort"),
            tags=frozenset(data.get("tags", [])),
            context=FindingContext(
                before_code=ctx.get("before_code", ""),
                surrounding_code=ctx.get("surrounding_code", ""),
                after_code=ctx.get("after_code"),
            ),
            fixable=bool(data.get("fixable", True)),
            certainty=check_unit(data.get("certainty", 0.8), "certainty"),
        )


@dataclass
class AnalysisResult:
    """Findings, derived suggestions and metrics for one analysis pass."""

    analysis_type: AnalysisType
    findings: list[Finding] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    metrics: dict[str, float] = field(default_factory=dict)
    confidence: float = 1.0
    severity: Impact = Impact.LOW
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    analyzed_at: datetime = field(default_factory=utcnow)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id(self.analysis_type.value[:4])

    @property
    def test_coverage(self) -> float | None:
        return self.metrics.get("test_coverage")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "analysis_type": self.analysis_type.value,
            "findings": [f.to_dict() for f in self.findings],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "metrics": dict(self.metrics),
            "confidence": self.confidence,
            "severity": self.severity.value,
            "errors": list(self.errors),
            "metadata": dict(self.metadata),
            "analyzed_at": format_datetime(self.analyzed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisResult:
        return cls(
            id=str(data["id"]),
            analysis_type=parse_enum(AnalysisType, data.get("analysis_type"), "analysis type"),
            findings=[Finding.from_dict(f) for f in data.get("findings", [])],
            suggestions=[Suggestion.from_dict(s) for s in data.get("suggestions", [])],
            metrics={k: float(v) for k, v in (data.get("metrics") or {}).items()},
            confidence=check_unit(data.get("confidence", 1.0), "confidence"),
            severity=parse_enum(Impact, data.get("severity", "low"), "severity"),
            errors=list(data.get("errors", [])),
            metadata=dict(data.get("metadata") or {}),
            analyzed_at=parse_datetime(data.get("analyzed_at")) or utcnow(),
        )


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


@dataclass
class FileChange:
    """One step of a suggestion's implementation, applied in list order.

    The fields that must be present depend on ``operation``: ``create`` and
    ``update`` carry ``new_content``; ``rename`` carries ``old_path`` and
    ``new_path``; ``delete`` needs only ``file``.
    """

    file: str
    operation: ChangeOperation
    old_content: str | None = None
    new_content: str | None = None
    old_path: str | None = None
    new_path: str | None = None

    def __post_init__(self) -> None:
        self.operation = parse_enum(ChangeOperation, self.operation, "change operation")
        if self.operation in (ChangeOperation.CREATE, ChangeOperation.UPDATE) and self.new_content is None:
            raise ValidationError(f"{self.operation.value} of {self.file} requires new_content")
        if self.operation == ChangeOperation.RENAME and not (self.old_path and self.new_path):
            raise ValidationError(f"rename of {self.file} requires old_path and new_path")

    def touched_paths(self) -> list[str]:
        """Every path this change reads or writes."""
        if self.operation == ChangeOperation.RENAME:
            return [self.old_path or self.file, self.new_path or ""]
        return [self.file]

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "operation": self.operation.value,
            "old_content": self.old_content,
            "new_content": self.new_content,
            "old_path": self.old_path,
            "new_path": self.new_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileChange:
        return cls(
            file=str(data.get("file", "")),
            operation=data.get("operation"),  # type: ignore[arg-type]
            old_content=data.get("old_content"),
            new_content=data.get("new_content"),
            old_path=data.get("old_path"),
            new_path=data.get("new_path"),
        )


@dataclass
class Implementation:
    changes: list[FileChange] = field(default_factory=list)
    tests: list[str] = field(default_factory=list)
    rollback_plan: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "changes": [c.to_dict() for c in self.changes],
            "tests": list(self.tests),
            "rollback_plan": self.rollback_plan,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Implementation:
        return cls(
            changes=[FileChange.from_dict(c) for c in data.get("changes", [])],
            tests=list(data.get("tests", [])),
            rollback_plan=str(data.get("rollback_plan", "")),
        )


@dataclass
class EstimatedImpact:
    """Heuristic benefit scores in [0, 1]; not measured outcomes."""

    performance: float = 0.0
    security: float = 0.0
    maintainability: float = 0.0
    readability: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "performance": self.performance,
            "security": self.security,
            "maintainability": self.maintainability,
            "readability": self.readability,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EstimatedImpact:
        return cls(**{
            key: check_unit(data.get(key, 0.0), f"estimated impact '{key}'")
            for key in ("performance", "security", "maintainability", "readability")
        })


@dataclass
class Suggestion:
    """A proposed, reviewable code change derived from one or more findings."""

    type: SuggestionType
    priority: Priority
    title: str
    description: str
    files: list[str]
    estimated_impact: EstimatedImpact
    automation_level: AutomationLevel
    implementation: Implementation
    confidence: float
    reasoning: str = ""
    status: SuggestionStatus = SuggestionStatus.PENDING
    analysis_id: str = ""
    finding_ids: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_id("sug")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority.value,
            "title": self.title,
            "description": self.description,
            "files": list(self.files),
            "estimated_impact": self.estimated_impact.to_dict(),
            "automation_level": self.automation_level.value,
            "implementation": self.implementation.to_dict(),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "status": self.status.value,
            "analysis_id": self.analysis_id,
            "finding_ids": list(self.finding_ids),
            "metadata": dict(self.metadata),
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Suggestion:
        return cls(
            id=str(data["id"]),
            type=parse_enum(SuggestionType, data.get("type"), "suggestion type"),
            priority=parse_enum(Priority, data.get("priority"), "priority"),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            files=list(data.get("files", [])),
            estimated_impact=EstimatedImpact.from_dict(data.get("estimated_impact") or {}),
            automation_level=parse_enum(AutomationLevel, data.get("automation_level"), "automation level"),
            implementation=Implementation.from_dict(data.get("implementation") or {}),
            confidence=check_unit(data.get("confidence", 0.0), "confidence"),
            reasoning=str(data.get("reasoning", "")),
            status=parse_enum(SuggestionStatus, data.get("status", "pending"), "suggestion status"),
            analysis_id=str(data.get("analysis_id", "")),
            finding_ids=list(data.get("finding_ids", [])),
            metadata=dict(data.get("metadata") or {}),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
        )
