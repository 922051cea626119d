"""Wires the evolution components together for one project directory."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import click

from codevolve.analyzer.engine import Analyzer
from codevolve.canary.collector import HttpMetricsCollector, MetricsCollector, StoredMetricsCollector
from codevolve.canary.controller import CanaryController
from codevolve.control.events import EventLog
from codevolve.control.orchestrator import EvolutionOrchestrator
from codevolve.core.config import CanaryConfig, EvolveConfig, ensure_gitignore, get_state_dir, load_config
from codevolve.core.errors import ValidationError
from codevolve.core.scheduler import ThreadScheduler
from codevolve.refactor.executor import RefactorExecutor
from codevolve.refactor.testing import PytestRunner
from codevolve.storage.files import FileStorage
from codevolve.storage.store import EvolutionStore

DEFAULT_TENANT = "default"


@dataclass
class Runtime:
    project_path: Path
    config: EvolveConfig
    store: EvolutionStore
    analyzer: Analyzer
    executor: RefactorExecutor
    canary: CanaryController
    orchestrator: EvolutionOrchestrator
    scheduler: ThreadScheduler


def build_collector(config: CanaryConfig, store: EvolutionStore) -> MetricsCollector:
    if config.collector == "http":
        return HttpMetricsCollector(timeout=config.metrics_timeout)
    if config.collector == "stored":
        return StoredMetricsCollector(store)
    raise ValidationError(f"Unknown canary collector {config.collector!r}; expected 'http' or 'stored'")


def build_runtime(project_path: Path) -> Runtime:
    project_path = project_path.resolve()
    get_state_dir(project_path)
    ensure_gitignore(project_path)

    config = load_config(project_path)
    store = EvolutionStore.for_project(project_path)
    scheduler = ThreadScheduler()
    analyzer = Analyzer(project_path, store, config)
    executor = RefactorExecutor(
        store,
        FileStorage(project_path),
        PytestRunner(project_path, config.refactor.test_command, config.refactor.test_timeout),
        scheduler,
        config=config.refactor,
    )
    canary = CanaryController(
        store,
        build_collector(config.canary, store),
        config=config.canary,
    )
    orchestrator = EvolutionOrchestrator(
        store, analyzer, executor, canary, scheduler, config=config, events=EventLog(store)
    )
    return Runtime(project_path, config, store, analyzer, executor, canary, orchestrator, scheduler)


@dataclass
class CliState:
    """Per-invocation options shared by every subcommand."""

    project_path: Path = field(default_factory=Path.cwd)
    tenant: str = DEFAULT_TENANT
    actor: str = "cli"
    runtime: Runtime | None = None

    def get_runtime(self) -> Runtime:
        if self.runtime is None:
            self.runtime = build_runtime(self.project_path)
        return self.runtime


pass_state = click.make_pass_decorator(CliState, ensure=True)
