"""Sources of live canary metrics."""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

import requests

from codevolve.canary.models import CanaryMetrics, CanaryModel
from codevolve.core.errors import CanaryNotFound, ValidationError
from codevolve.storage.store import EvolutionStore

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")


def snake_keys(data: Any) -> Any:
    """Recursively convert camelCase dict keys (``errorRate``) to snake_case."""
    if isinstance(data, dict):
        return {_CAMEL_RE.sub(r"_\1", str(k)).lower(): snake_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [snake_keys(v) for v in data]
    return data


class MetricsCollector(Protocol):
    def collect(self, model: CanaryModel) -> CanaryMetrics: ...


class HttpMetricsCollector:
    """Polls the model's ``endpoints.metrics`` URL for a metrics document."""

    def __init__(self, timeout: float = 10.0, session: requests.Session | None = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def collect(self, model: CanaryModel) -> CanaryMetrics:
        url = model.configuration.endpoints.metrics
        if not url:
            raise ValidationError(f"Canary {model.id} has no metrics endpoint configured")
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        payload = snake_keys(response.json())
        logger.debug("Collected metrics for %s from %s", model.id, url)
        return CanaryMetrics.from_dict(payload.get("metrics", payload))


class StoredMetricsCollector:
    """Reads metrics that an external agent pushed into the store."""

    def __init__(self, store: EvolutionStore):
        self.store = store

    def collect(self, model: CanaryModel) -> CanaryMetrics:
        current = self.store.get_canary(model.id)
        if current is None:
            raise CanaryNotFound(model.id)
        return current.metrics
