"""Exception hierarchy for codevolve."""

from __future__ import annotations


class EvolutionError(Exception):
    """Base class for every error raised by codevolve."""


class ValidationError(EvolutionError):
    """A record read from the store or supplied by a caller is malformed."""


class AnalysisError(EvolutionError):
    """The analyzer could not enumerate the files it was asked to scan."""


class NotFoundError(EvolutionError):
    """A referenced record does not exist."""


class SuggestionNotFound(NotFoundError):
    def __init__(self, suggestion_id: str):
        super().__init__(f"Suggestion {suggestion_id} not found")
        self.suggestion_id = suggestion_id


class ExecutionNotFound(NotFoundError):
    def __init__(self, execution_id: str):
        super().__init__(f"Execution {execution_id} not found")
        self.execution_id = execution_id


class CanaryNotFound(NotFoundError):
    def __init__(self, canary_id: str):
        super().__init__(f"Canary model {canary_id} not found")
        self.canary_id = canary_id


class BaselineNotFound(NotFoundError):
    def __init__(self, baseline_id: str):
        super().__init__(f"Baseline model {baseline_id} not found")
        self.baseline_id = baseline_id


class PolicyViolation(EvolutionError):
    """The requested action is not allowed in the record's current state."""


class NotApproved(PolicyViolation):
    def __init__(self, suggestion_id: str, status: str):
        super().__init__(
            f"Suggestion {suggestion_id} is not approved for execution (status: {status})"
        )
        self.suggestion_id = suggestion_id
        self.status = status


class NotAutomatic(PolicyViolation):
    def __init__(self, suggestion_id: str, automation_level: str):
        super().__init__(
            f"Suggestion {suggestion_id} is not marked for automatic application "
            f"(automation level: {automation_level})"
        )
        self.suggestion_id = suggestion_id
        self.automation_level = automation_level


class InvalidTransition(PolicyViolation):
    def __init__(self, record: str, current: str, target: str):
        super().__init__(f"{record} cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class SafeguardBlocked(PolicyViolation):
    """Raised by callers that need a hard failure instead of a silent no-op."""

    def __init__(self, tenant: str, reasons: list[str]):
        super().__init__(f"Safeguards blocked automatic action for {tenant}: {'; '.join(reasons)}")
        self.tenant = tenant
        self.reasons = reasons


class ExecutionError(EvolutionError):
    """Applying a suggestion or running its tests failed outright."""

    def __init__(self, execution_id: str, message: str):
        super().__init__(f"Execution {execution_id} failed: {message}")
        self.execution_id = execution_id
