"""Analyzer checks grouped by analysis pass."""

from __future__ import annotations

from codevolve.analyzer.checks.base import BaseCheck
from codevolve.analyzer.checks.complexity import CPLX001BranchingComplexity, CPLX002FunctionLength
from codevolve.analyzer.checks.performance import (
    PERF001IndexLoop,
    PERF002DataAccessInLoop,
    PERF003BlockingCallInAsync,
    PERF004HeavyImport,
)
from codevolve.analyzer.checks.security import (
    SEC001SQLInjection,
    SEC002HardcodedSecret,
    SEC003DynamicCodeExecution,
)
from codevolve.analyzer.checks.style import STYLE001MixedNaming
from codevolve.core.config import AnalysisConfig
from codevolve.core.models import AnalysisType


def build_checks(analysis_type: AnalysisType, config: AnalysisConfig | None = None) -> list[BaseCheck]:
    """Instantiate the checks for one pass, applying config thresholds."""
    config = config or AnalysisConfig()
    if analysis_type == AnalysisType.PERFORMANCE:
        return [
            PERF001IndexLoop(),
            PERF002DataAccessInLoop(),
            PERF003BlockingCallInAsync(),
            PERF004HeavyImport(heavy_modules=config.heavy_modules),
        ]
    if analysis_type == AnalysisType.SECURITY:
        return [SEC001SQLInjection(), SEC002HardcodedSecret(), SEC003DynamicCodeExecution()]
    if analysis_type == AnalysisType.STYLE:
        return [STYLE001MixedNaming()]
    return [
        CPLX001BranchingComplexity(max_complexity=config.max_complexity, max_nesting=config.max_nesting),
        CPLX002FunctionLength(max_length=config.max_function_length),
    ]


__all__ = ["BaseCheck", "build_checks"]
