"""Shared fixtures: a temp project, the store, and in-process fakes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from codevolve.analyzer.engine import Analyzer
from codevolve.canary.controller import CanaryController
from codevolve.canary.models import CanaryMetrics, CanaryModel
from codevolve.control.orchestrator import EvolutionOrchestrator
from codevolve.core.config import EvolveConfig
from codevolve.refactor.executor import RefactorExecutor
from codevolve.refactor.models import TestResults
from codevolve.storage.files import FileStorage
from codevolve.storage.store import EvolutionStore

START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@dataclass
class ScheduledTask:
    delay: float
    callback: Callable[[], object]
    name: str
    repeating: bool
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Records timers; nothing runs until ``run_pending`` is called."""

    def __init__(self) -> None:
        self.tasks: list[ScheduledTask] = []

    def call_later(self, delay: float, callback: Callable[[], object], name: str = "") -> ScheduledTask:
        task = ScheduledTask(delay, callback, name, repeating=False)
        self.tasks.append(task)
        return task

    def every(self, interval: float, callback: Callable[[], object], name: str = "") -> ScheduledTask:
        task = ScheduledTask(interval, callback, name, repeating=True)
        self.tasks.append(task)
        return task

    @property
    def active(self) -> list[ScheduledTask]:
        return [t for t in self.tasks if not t.cancelled]

    def run_pending(self) -> None:
        for task in list(self.active):
            if not task.repeating:
                task.cancelled = True
            task.callback()


class FakeTestRunner:
    """Returns canned results; ``on_run`` lets a test act mid-execution."""

    __test__ = False

    def __init__(self) -> None:
        self.results = TestResults(passed=3)
        self.error: Exception | None = None
        self.on_run: Callable[[], None] | None = None
        self.calls: list[list[str]] = []

    def run(self, tests: list[str]) -> TestResults:
        self.calls.append(list(tests))
        if self.on_run is not None:
            self.on_run()
        if self.error is not None:
            raise self.error
        return TestResults.from_dict(self.results.to_dict())


class FakeCollector:
    def __init__(self) -> None:
        self.metrics: dict[str, CanaryMetrics] = {}
        self.failures: dict[str, Exception] = {}

    def collect(self, model: CanaryModel) -> CanaryMetrics:
        if model.id in self.failures:
            raise self.failures[model.id]
        return self.metrics.get(model.id, model.metrics)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A minimal project directory."""
    (tmp_path / "app").mkdir()
    return tmp_path


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def runner() -> FakeTestRunner:
    return FakeTestRunner()


@pytest.fixture
def collector() -> FakeCollector:
    return FakeCollector()


@pytest.fixture
def config() -> EvolveConfig:
    return EvolveConfig()


@pytest.fixture
def store(project: Path) -> EvolutionStore:
    return EvolutionStore.for_project(project)


@pytest.fixture
def executor(
    store: EvolutionStore, project: Path, runner: FakeTestRunner, scheduler: ManualScheduler,
    clock: FixedClock, config: EvolveConfig,
) -> RefactorExecutor:
    return RefactorExecutor(store, FileStorage(project), runner, scheduler, config=config.refactor, clock=clock)


@pytest.fixture
def analyzer(project: Path, store: EvolutionStore, config: EvolveConfig, clock: FixedClock) -> Analyzer:
    return Analyzer(project, store, config, clock=clock)


@pytest.fixture
def canary(store: EvolutionStore, collector: FakeCollector, clock: FixedClock, config: EvolveConfig) -> CanaryController:
    return CanaryController(store, collector, config=config.canary, clock=clock)


@pytest.fixture
def orchestrator(
    store: EvolutionStore, analyzer: Analyzer, executor: RefactorExecutor, canary: CanaryController,
    scheduler: ManualScheduler, config: EvolveConfig, clock: FixedClock,
) -> EvolutionOrchestrator:
    return EvolutionOrchestrator(store, analyzer, executor, canary, scheduler, config=config, clock=clock)
