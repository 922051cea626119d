"""Thread-safe SQLite store for every evolution record.

Usage::

    store = EvolutionStore.for_project(Path.cwd())
    store.save_suggestion(suggestion)
    pending = store.list_pending_suggestions(limit=20)

Records are returned as validated dataclasses: every read goes through the
record's ``from_dict``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from codevolve.canary.models import CanaryDeployment, CanaryModel, CanaryStatus, ModelComparison
from codevolve.control.models import EvolutionEvent, EvolutionMetricsSnapshot, EvolutionSettings
from codevolve.core.config import get_state_dir
from codevolve.core.models import AnalysisResult, AnalysisType, ExecutionStatus, Suggestion, SuggestionStatus
from codevolve.refactor.models import RefactorExecution, RefactorFeedback
from codevolve.storage.db import get_connection, init_db

logger = logging.getLogger(__name__)

DB_FILENAME = "evolution.db"


def _ts(value: datetime | None) -> str | None:
    """Normalise to UTC so string ordering matches time ordering."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _dump(record: Any) -> str:
    return json.dumps(record.to_dict(), sort_keys=True)


def _placeholders(values: list[Any]) -> str:
    return ", ".join("?" for _ in values)


class EvolutionStore:
    """Persistence for analysis results, suggestions, executions, feedback,
    canaries, settings, events and metrics snapshots."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._lock = threading.RLock()
        init_db(db_path)

    @classmethod
    def for_project(cls, project_path: Path | None = None) -> EvolutionStore:
        return cls(get_state_dir(project_path) / DB_FILENAME)

    @property
    def path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = get_connection(self._db_path)
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def _fetch(self, query: str, params: list[Any] | tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [json.loads(row["payload"]) for row in rows]

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        rows = self._fetch(query, params)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Analysis results
    # ------------------------------------------------------------------

    def save_analysis_result(self, result: AnalysisResult) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO analysis_results (id, analysis_type, severity, analyzed_at, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    result.id,
                    result.analysis_type.value,
                    result.severity.value,
                    _ts(result.analyzed_at),
                    _dump(result),
                ),
            )

    def list_analysis_results(
        self,
        *,
        limit: int | None = None,
        analysis_type: AnalysisType | None = None,
    ) -> list[AnalysisResult]:
        """Return analysis results, newest first."""
        query = "SELECT payload FROM analysis_results"
        params: list[Any] = []
        if analysis_type is not None:
            query += " WHERE analysis_type = ?"
            params.append(analysis_type.value)
        query += " ORDER BY analyzed_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [AnalysisResult.from_dict(d) for d in self._fetch(query, params)]

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def save_suggestion(self, suggestion: Suggestion) -> None:
        with self._connect() as conn:
            row = conn.execute("SELECT seq FROM suggestions WHERE id = ?", (suggestion.id,)).fetchone()
            if row is not None:
                seq = row["seq"]
            else:
                seq = conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 AS next FROM suggestions").fetchone()["next"]
            conn.execute(
                "INSERT OR REPLACE INTO suggestions "
                "(id, analysis_id, status, priority_rank, confidence, automation_level, created_at, seq, payload) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    suggestion.id,
                    suggestion.analysis_id,
                    suggestion.status.value,
                    suggestion.priority.rank,
                    suggestion.confidence,
                    suggestion.automation_level.value,
                    _ts(suggestion.created_at),
                    seq,
                    _dump(suggestion),
                ),
            )

    def get_suggestion(self, suggestion_id: str) -> Suggestion | None:
        data = self._fetch_one("SELECT payload FROM suggestions WHERE id = ?", (suggestion_id,))
        return Suggestion.from_dict(data) if data else None

    def transition_suggestion(
        self,
        suggestion_id: str,
        target: SuggestionStatus,
        *,
        allowed_from: tuple[SuggestionStatus, ...],
    ) -> bool:
        """Move a suggestion to *target* if its current status allows it.

        Returns ``False`` (and changes nothing) when the suggestion is
        missing or in a status outside *allowed_from*.
        """
        with self._connect() as conn:
            row = conn.execute("SELECT status, payload FROM suggestions WHERE id = ?", (suggestion_id,)).fetchone()
            if row is None or row["status"] not in {s.value for s in allowed_from}:
                return False
            payload = json.loads(row["payload"])
            payload["status"] = target.value
            conn.execute(
                "UPDATE suggestions SET status = ?, payload = ? WHERE id = ?",
                (target.value, json.dumps(payload, sort_keys=True), suggestion_id),
            )
        return True

    def list_suggestions(
        self,
        *,
        status: SuggestionStatus | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[Suggestion]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if created_from is not None:
            clauses.append("created_at >= ?")
            params.append(_ts(created_from))
        if created_to is not None:
            clauses.append("created_at <= ?")
            params.append(_ts(created_to))
        query = "SELECT payload FROM suggestions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, seq DESC"
        return [Suggestion.from_dict(d) for d in self._fetch(query, params)]

    def list_pending_suggestions(self, limit: int = 20) -> list[Suggestion]:
        """Pending suggestions by priority, then confidence, then recency."""
        query = (
            "SELECT payload FROM suggestions WHERE status = ? "
            "ORDER BY priority_rank DESC, confidence DESC, created_at DESC, seq DESC LIMIT ?"
        )
        return [Suggestion.from_dict(d) for d in self._fetch(query, [SuggestionStatus.PENDING.value, limit])]

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def save_execution(self, execution: RefactorExecution) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO executions "
                "(id, suggestion_id, status, executed_by, started_at, completed_at, payload) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    execution.id,
                    execution.suggestion_id,
                    execution.status.value,
                    execution.executed_by,
                    _ts(execution.started_at),
                    _ts(execution.completed_at),
                    _dump(execution),
                ),
            )

    def get_execution(self, execution_id: str) -> RefactorExecution | None:
        data = self._fetch_one("SELECT payload FROM executions WHERE id = ?", (execution_id,))
        return RefactorExecution.from_dict(data) if data else None

    def list_executions(
        self,
        *,
        suggestion_ids: list[str] | None = None,
        status: ExecutionStatus | None = None,
    ) -> list[RefactorExecution]:
        """Return executions, most recently started first."""
        clauses: list[str] = []
        params: list[Any] = []
        if suggestion_ids is not None:
            if not suggestion_ids:
                return []
            clauses.append(f"suggestion_id IN ({_placeholders(suggestion_ids)})")
            params.extend(suggestion_ids)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        query = "SELECT payload FROM executions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY started_at DESC, rowid DESC"
        return [RefactorExecution.from_dict(d) for d in self._fetch(query, params)]

    def count_executions(
        self,
        *,
        since: datetime | None = None,
        statuses: tuple[ExecutionStatus, ...] | None = None,
    ) -> int:
        clauses: list[str] = []
        params: list[Any] = []
        if since is not None:
            clauses.append("started_at >= ?")
            params.append(_ts(since))
        if statuses:
            values = [s.value for s in statuses]
            clauses.append(f"status IN ({_placeholders(values)})")
            params.extend(values)
        query = "SELECT COUNT(*) AS cnt FROM executions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return row["cnt"] if row else 0

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def save_feedback(self, feedback: RefactorFeedback) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO feedback (id, suggestion_id, user_id, action, rating, created_at, payload) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    feedback.id,
                    feedback.suggestion_id,
                    feedback.user_id,
                    feedback.action.value,
                    feedback.rating,
                    _ts(feedback.created_at),
                    _dump(feedback),
                ),
            )

    def list_feedback(self, *, suggestion_ids: list[str] | None = None) -> list[RefactorFeedback]:
        """Return feedback, newest first."""
        query = "SELECT payload FROM feedback"
        params: list[Any] = []
        if suggestion_ids is not None:
            if not suggestion_ids:
                return []
            query += f" WHERE suggestion_id IN ({_placeholders(suggestion_ids)})"
            params.extend(suggestion_ids)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [RefactorFeedback.from_dict(d) for d in self._fetch(query, params)]

    # ------------------------------------------------------------------
    # Canaries
    # ------------------------------------------------------------------

    def save_canary(self, model: CanaryModel) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO canary_models (id, status, created_at, payload) VALUES (?, ?, ?, ?)",
                (model.id, model.status.value, _ts(model.created_at), _dump(model)),
            )

    def get_canary(self, canary_id: str) -> CanaryModel | None:
        data = self._fetch_one("SELECT payload FROM canary_models WHERE id = ?", (canary_id,))
        return CanaryModel.from_dict(data) if data else None

    def update_canary(self, canary_id: str, mutate: Callable[[CanaryModel], None]) -> CanaryModel | None:
        """Read-modify-write a canary under the store lock."""
        with self._lock:
            model = self.get_canary(canary_id)
            if model is None:
                return None
            mutate(model)
            self.save_canary(model)
            return model

    def list_canaries(self, *, statuses: tuple[CanaryStatus, ...] | None = None) -> list[CanaryModel]:
        """Return canaries, newest first."""
        query = "SELECT payload FROM canary_models"
        params: list[Any] = []
        if statuses:
            values = [s.value for s in statuses]
            query += f" WHERE status IN ({_placeholders(values)})"
            params.extend(values)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [CanaryModel.from_dict(d) for d in self._fetch(query, params)]

    def canary_status_counts(self, since: datetime | None = None) -> dict[str, int]:
        query = "SELECT status, COUNT(*) AS cnt FROM canary_models WHERE created_at >= ? GROUP BY status"
        with self._connect() as conn:
            rows = conn.execute(query, (_ts(since) or "",)).fetchall()
        return {row["status"]: row["cnt"] for row in rows}

    def save_deployment(self, deployment: CanaryDeployment) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO canary_deployments (id, canary_id, started_at, payload) VALUES (?, ?, ?, ?)",
                (deployment.id, deployment.canary_id, _ts(deployment.started_at), _dump(deployment)),
            )

    def list_deployments(self, canary_id: str) -> list[CanaryDeployment]:
        query = "SELECT payload FROM canary_deployments WHERE canary_id = ? ORDER BY started_at DESC"
        return [CanaryDeployment.from_dict(d) for d in self._fetch(query, (canary_id,))]

    def save_comparison(self, comparison: ModelComparison) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO model_comparisons (id, canary_id, created_at, payload) VALUES (?, ?, ?, ?)",
                (comparison.id, comparison.canary_id, _ts(comparison.created_at), _dump(comparison)),
            )

    def list_comparisons(self, canary_id: str | None = None) -> list[ModelComparison]:
        """Return comparisons, newest first."""
        query = "SELECT payload FROM model_comparisons"
        params: list[Any] = []
        if canary_id is not None:
            query += " WHERE canary_id = ?"
            params.append(canary_id)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [ModelComparison.from_dict(d) for d in self._fetch(query, params)]

    # ------------------------------------------------------------------
    # Settings, events and metrics
    # ------------------------------------------------------------------

    def get_settings(self, tenant: str) -> EvolutionSettings | None:
        data = self._fetch_one("SELECT payload FROM evolution_settings WHERE tenant = ?", (tenant,))
        return EvolutionSettings.from_dict(data) if data else None

    def save_settings(self, settings: EvolutionSettings) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO evolution_settings (tenant, updated_at, payload) VALUES (?, ?, ?)",
                (settings.tenant, _ts(settings.updated_at), _dump(settings)),
            )

    def save_event(self, event: EvolutionEvent) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO evolution_events (id, tenant, severity, created_at, payload) "
                "VALUES (?, ?, ?, ?, ?)",
                (event.id, event.tenant, event.severity.value, _ts(event.created_at), _dump(event)),
            )

    def get_event(self, event_id: str) -> EvolutionEvent | None:
        data = self._fetch_one("SELECT payload FROM evolution_events WHERE id = ?", (event_id,))
        return EvolutionEvent.from_dict(data) if data else None

    def list_events(self, tenant: str, *, limit: int = 50) -> list[EvolutionEvent]:
        """Return events for *tenant*, newest first."""
        query = (
            "SELECT payload FROM evolution_events WHERE tenant = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?"
        )
        return [EvolutionEvent.from_dict(d) for d in self._fetch(query, (tenant, limit))]

    def save_metrics_snapshot(self, snapshot: EvolutionMetricsSnapshot) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO evolution_metrics (id, tenant, created_at, payload) VALUES (?, ?, ?, ?)",
                (snapshot.id, snapshot.tenant, _ts(snapshot.created_at), _dump(snapshot)),
            )

    def list_metrics_snapshots(self, tenant: str, *, since: datetime | None = None) -> list[EvolutionMetricsSnapshot]:
        query = "SELECT payload FROM evolution_metrics WHERE tenant = ? AND created_at >= ? ORDER BY created_at DESC"
        rows = self._fetch(query, (tenant, _ts(since) or ""))
        return [EvolutionMetricsSnapshot.from_dict(d) for d in rows]
