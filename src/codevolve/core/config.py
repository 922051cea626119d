"""Configuration management for codevolve (codevolve.toml parsing + defaults)."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

STATE_DIRNAME = ".codevolve"
CONFIG_FILENAME = "codevolve.toml"


@dataclass
class AnalysisConfig:
    include: list[str] = field(default_factory=lambda: ["**/*.py"])
    max_complexity: int = 10
    max_nesting: int = 4
    max_function_length: int = 50
    heavy_modules: list[str] = field(
        default_factory=lambda: [
            "pandas",
            "numpy",
            "scipy",
            "matplotlib",
            "tensorflow",
            "torch",
            "sklearn",
        ]
    )
    coverage_file: str = "coverage.json"


@dataclass
class RefactorConfig:
    debounce_seconds: float = 5.0
    test_timeout: float = 600.0
    test_command: list[str] = field(default_factory=lambda: ["python", "-m", "pytest", "-q"])
    auto_apply_confidence: float = 0.9


@dataclass
class CanaryConfig:
    """Deployment defaults for canaries.

    Environment variables are read once, in :meth:`from_env`; nothing in the
    decision path reads the environment afterwards.
    """

    traffic_percentage: float = 5.0
    critical_only: bool = False
    excluded_roles: list[str] = field(default_factory=list)
    metrics_timeout: float = 10.0
    # "http" polls each model's metrics endpoint; "stored" reads metrics pushed into the store.
    collector: str = "http"
    rollback_triggers: list[str] = field(
        default_factory=lambda: [
            "error_rate > 5%",
            "latency > 2x baseline",
            "user_complaints > 10",
        ]
    )

    @classmethod
    def from_env(cls, base: CanaryConfig | None = None, environ: dict[str, str] | None = None) -> CanaryConfig:
        env = os.environ if environ is None else environ
        config = base or cls()
        if env.get("CANARY_PERCENT"):
            config.traffic_percentage = float(env["CANARY_PERCENT"])
        if "CANARY_CRITICAL_ONLY" in env:
            config.critical_only = env["CANARY_CRITICAL_ONLY"].lower() == "true"
        if env.get("CANARY_EXCLUDE_ROLES"):
            config.excluded_roles = [r.strip() for r in env["CANARY_EXCLUDE_ROLES"].split(",") if r.strip()]
        return config


@dataclass
class SchedulerConfig:
    analysis_interval: float = 30 * 60
    canary_interval: float = 60
    evolution_interval: float = 30 * 60
    metrics_window_hours: float = 24


@dataclass
class SafeguardDefaults:
    max_daily_changes: int = 5
    test_coverage_threshold: float = 80.0


@dataclass
class EvolveConfig:
    """Complete codevolve configuration."""

    exclude: list[str] = field(
        default_factory=lambda: [
            "venv/",
            ".venv/",
            "migrations/",
            "__pycache__/",
            ".codevolve/",
            "node_modules/",
            ".git/",
            "build/",
            "dist/",
        ]
    )
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    refactor: RefactorConfig = field(default_factory=RefactorConfig)
    canary: CanaryConfig = field(default_factory=CanaryConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    safeguards: SafeguardDefaults = field(default_factory=SafeguardDefaults)


def _merge(target: object, data: dict, attrs: tuple[str, ...]) -> None:
    for attr in attrs:
        if attr in data:
            setattr(target, attr, data[attr])


def load_config(project_path: Path | None = None, environ: dict[str, str] | None = None) -> EvolveConfig:
    """Load configuration from codevolve.toml if present, otherwise return defaults."""
    config = EvolveConfig()

    if project_path is None:
        project_path = Path.cwd()

    config_file = project_path / CONFIG_FILENAME
    if config_file.exists():
        with open(config_file, "rb") as f:
            data = tomllib.load(f)

        if "general" in data and "exclude" in data["general"]:
            config.exclude = data["general"]["exclude"]

        _merge(config.analysis, data.get("analysis", {}), (
            "include", "max_complexity", "max_nesting", "max_function_length",
            "heavy_modules", "coverage_file",
        ))
        _merge(config.refactor, data.get("refactor", {}), (
            "debounce_seconds", "test_timeout", "test_command", "auto_apply_confidence",
        ))
        _merge(config.canary, data.get("canary", {}), (
            "traffic_percentage", "critical_only", "excluded_roles", "metrics_timeout",
            "rollback_triggers", "collector",
        ))
        _merge(config.scheduler, data.get("scheduler", {}), (
            "analysis_interval", "canary_interval", "evolution_interval", "metrics_window_hours",
        ))
        _merge(config.safeguards, data.get("safeguards", {}), (
            "max_daily_changes", "test_coverage_threshold",
        ))

    config.canary = CanaryConfig.from_env(config.canary, environ)
    return config


def get_state_dir(project_path: Path | None = None) -> Path:
    """Get or create the .codevolve directory."""
    if project_path is None:
        project_path = Path.cwd()
    state_dir = project_path / STATE_DIRNAME
    state_dir.mkdir(exist_ok=True)
    return state_dir


def ensure_gitignore(project_path: Path | None = None) -> None:
    """Add .codevolve/ to .gitignore if not already present."""
    if project_path is None:
        project_path = Path.cwd()
    gitignore = project_path / ".gitignore"
    entry = f"{STATE_DIRNAME}/"

    if gitignore.exists():
        content = gitignore.read_text()
        if entry in content:
            return
        if not content.endswith("\n"):
            content += "\n"
        content += f"{entry}\n"
        gitignore.write_text(content)
    else:
        gitignore.write_text(f"{entry}\n")
