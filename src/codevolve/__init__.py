"""codevolve: an autonomous code-evolution control loop."""

from codevolve._version import __version__
from codevolve.analyzer.engine import Analyzer
from codevolve.canary.controller import CanaryController
from codevolve.control.orchestrator import EvolutionOrchestrator
from codevolve.refactor.executor import RefactorExecutor

__all__ = [
    "__version__",
    "Analyzer",
    "CanaryController",
    "EvolutionOrchestrator",
    "RefactorExecutor",
]
