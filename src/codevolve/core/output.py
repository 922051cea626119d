"""Rich terminal formatting for codevolve output."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from codevolve.canary.models import CanaryModel, CanaryStatus, ModelComparison, Recommendation
from codevolve.control.models import EventSeverity, EvolutionEvent, EvolutionMetricsSnapshot, EvolutionSettings
from codevolve.core.models import AnalysisResult, ExecutionStatus, Impact, Priority, Suggestion
from codevolve.refactor.models import RefactorExecution

console = Console()
error_console = Console(stderr=True)


IMPACT_COLORS = {
    Impact.CRITICAL: "red",
    Impact.HIGH: "magenta",
    Impact.MEDIUM: "yellow",
    Impact.LOW: "blue",
}

PRIORITY_COLORS = {
    Priority.CRITICAL: "red",
    Priority.HIGH: "magenta",
    Priority.MEDIUM: "yellow",
    Priority.LOW: "blue",
}

EXECUTION_COLORS = {
    ExecutionStatus.PENDING: "dim",
    ExecutionStatus.IN_PROGRESS: "cyan",
    ExecutionStatus.COMPLETED: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.ROLLED_BACK: "yellow",
}

CANARY_COLORS = {
    CanaryStatus.PENDING: "dim",
    CanaryStatus.ACTIVE: "cyan",
    CanaryStatus.TESTING: "cyan",
    CanaryStatus.PROMOTED: "green",
    CanaryStatus.ROLLED_BACK: "yellow",
}

SEVERITY_COLORS = {
    EventSeverity.INFO: "blue",
    EventSeverity.WARNING: "yellow",
    EventSeverity.ERROR: "red",
    EventSeverity.CRITICAL: "bold red",
}

RECOMMENDATION_COLORS = {
    Recommendation.PROMOTE: "green",
    Recommendation.ROLLBACK: "red",
    Recommendation.MANUAL_REVIEW: "yellow",
}


def confidence_bar(value: float, width: int = 12) -> str:
    """Create a text-based bar for a [0, 1] confidence."""
    filled = round(value * width)
    color = "green" if value >= 0.8 else "yellow" if value >= 0.5 else "red"
    return f"[{color}]{'█' * filled}{'░' * (width - filled)}[/{color}] {value:.2f}"


def format_suggestion(suggestion: Suggestion) -> str:
    """One-line summary of a suggestion."""
    color = PRIORITY_COLORS[suggestion.priority]
    auto = " [dim](auto)[/dim]" if suggestion.automation_level.value == "automatic" else ""
    return (
        f"  [{color}]{suggestion.priority.value:<8}[/{color}] {suggestion.id}  {suggestion.title}{auto}\n"
        f"           {', '.join(suggestion.files)}  [dim]{suggestion.status.value} | "
        f"confidence {suggestion.confidence:.2f}[/dim]"
    )


def print_analysis_results(results: list[AnalysisResult]) -> None:
    """Print a report card for one analysis run."""
    worst = Impact.worst([r.severity for r in results]) if results else Impact.LOW
    color = IMPACT_COLORS[worst]

    lines = [""]
    for result in results:
        rcolor = IMPACT_COLORS[result.severity]
        lines.append(
            f"  {result.analysis_type.value.capitalize():<13} "
            f"[{rcolor}]{len(result.findings):>3} finding(s)[/{rcolor}]  "
            f"{len(result.suggestions)} suggestion(s)  confidence {result.confidence:.2f}"
        )
        for error in result.errors:
            lines.append(f"    [red]! {error}[/red]")
    lines.append("")

    if results:
        metrics = results[0].metrics
        summary = (
            f"  {int(metrics.get('lines_of_code', 0)):,} lines | "
            f"{int(metrics.get('files_analyzed', 0))} files | "
            f"avg complexity {metrics.get('average_complexity', 0.0):.1f}"
        )
        coverage = results[0].test_coverage
        if coverage is not None:
            summary += f" | coverage {coverage:.1f}%"
        lines.append(summary)
        lines.append("")
    lines.append("  Review: [bold]codevolve suggestions list[/bold]")
    lines.append("")

    console.print(Panel(
        "\n".join(lines),
        title="[bold]codevolve Analysis[/bold]",
        border_style=color,
        padding=(0, 1),
    ))


def print_suggestions(suggestions: list[Suggestion]) -> None:
    if not suggestions:
        console.print("\n  No suggestions.\n")
        return
    console.print()
    for suggestion in suggestions:
        console.print(format_suggestion(suggestion))
    console.print()


def print_suggestion_detail(suggestion: Suggestion) -> None:
    """Print a suggestion with its diff-style changes."""
    color = PRIORITY_COLORS[suggestion.priority]
    lines = [
        f"  Type:        {suggestion.type.value}",
        f"  Priority:    [{color}]{suggestion.priority.value}[/{color}]",
        f"  Status:      {suggestion.status.value}",
        f"  Automation:  {suggestion.automation_level.value}",
        f"  Confidence:  {confidence_bar(suggestion.confidence)}",
        "",
        f"  {suggestion.description}",
    ]
    if suggestion.reasoning:
        lines.append(f"  [dim]{suggestion.reasoning}[/dim]")
    lines.append("")

    for change in suggestion.implementation.changes:
        lines.append(f"  [bold]{change.operation.value}[/bold] {change.file}")
        if change.old_content is not None and change.new_content is not None:
            old = change.old_content.splitlines()
            new = change.new_content.splitlines()
            for i, (before, after) in enumerate(zip(old, new), start=1):
                if before != after:
                    lines.append(f"  [dim]{i:>4}[/dim] [red]- {before}[/red]")
                    lines.append(f"  [dim]{i:>4}[/dim] [green]+ {after}[/green]")
            for extra in new[len(old):]:
                lines.append(f"       [green]+ {extra}[/green]")

    if suggestion.implementation.tests:
        lines.append("")
        lines.append(f"  Tests: {', '.join(suggestion.implementation.tests)}")

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]{suggestion.title}  {suggestion.id}[/bold]",
        border_style=color,
        padding=(0, 1),
    ))


def print_execution(execution: RefactorExecution) -> None:
    color = EXECUTION_COLORS[execution.status]
    results = execution.test_results
    console.print(
        f"  [{color}]{execution.status.value:<12}[/{color}] {execution.id}  "
        f"suggestion {execution.suggestion_id}  by {execution.executed_by}"
    )
    console.print(
        f"               [dim]{results.passed} passed, {results.failed} failed, "
        f"{results.skipped} skipped | {execution.started_at:%Y-%m-%d %H:%M}[/dim]"
    )
    reason = execution.metadata.get("rollback_reason") or execution.metadata.get("error")
    if reason:
        console.print(f"               [{color}]-> {reason}[/{color}]")


def print_canaries(models: list[CanaryModel]) -> None:
    if not models:
        console.print("\n  No canaries.\n")
        return
    console.print()
    for model in models:
        color = CANARY_COLORS[model.status]
        flag = " [yellow](needs review)[/yellow]" if model.requires_manual_review else ""
        baseline = " [dim](baseline)[/dim]" if model.metadata.get("baseline") else ""
        console.print(
            f"  [{color}]{model.status.value:<12}[/{color}] {model.id}  "
            f"{model.name} v{model.version}  {model.traffic_percentage:g}%{baseline}{flag}"
        )
        metrics = model.metrics
        console.print(
            f"               [dim]{metrics.request_count} requests | error rate "
            f"{metrics.error_rate * 100:.2f}% | accuracy {metrics.accuracy * 100:.2f}%[/dim]"
        )
    console.print()


def print_comparison(comparison: ModelComparison) -> None:
    color = RECOMMENDATION_COLORS[comparison.recommendation]
    lines = [
        "",
        f"  Recommendation:  [{color} bold]{comparison.recommendation.value}[/{color} bold]",
        f"  Confidence:      {confidence_bar(comparison.confidence)}",
        "",
    ]
    results = comparison.results
    for label, deltas in (
        ("Performance", results.performance_delta),
        ("Quality", results.quality_delta),
        ("Cost", results.cost_delta),
        ("Experience", results.user_experience_delta),
    ):
        cells = "  ".join(f"{k} {v:+.1f}%" for k, v in deltas.items())
        lines.append(f"  {label:<12} {cells}")
    lines.append("")
    for reason in comparison.reasoning:
        lines.append(f"  - {reason}")
    lines.append("")

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]{comparison.canary_id} vs {comparison.baseline_id}[/bold]",
        border_style=color,
        padding=(0, 1),
    ))


def print_settings(settings: EvolutionSettings, running_coverage: float | None = None) -> None:
    state = "[green]enabled[/green]" if settings.enabled else "[red]disabled[/red]"
    features = settings.features
    safeguards = settings.safeguards

    def on(flag: bool) -> str:
        return "[green]on[/green]" if flag else "[dim]off[/dim]"

    lines = [
        "",
        f"  Evolution:        {state}",
        f"  Code analysis:    {on(features.code_analysis.enabled)}  "
        f"[dim]{', '.join(t.value for t in features.code_analysis.analysis_types)}[/dim]",
        f"  Auto refactor:    {on(features.auto_refactor.enabled)}  "
        f"[dim]confidence >= {features.auto_refactor.confidence_threshold:.2f}[/dim]",
        f"  Canary testing:   {on(features.canary_testing.enabled)}",
        "",
        f"  Max daily changes:   {safeguards.max_daily_changes}",
        f"  Coverage threshold:  {safeguards.test_coverage_threshold:g}%",
    ]
    if running_coverage is not None:
        lines.append(f"  Current coverage:    {running_coverage:.1f}%")
    if safeguards.emergency_stop:
        reason = settings.metadata.get("emergency_stop_reason", "")
        lines.append("")
        lines.append(f"  [bold red]EMERGENCY STOP[/bold red]  {reason}")
    lines.append("")

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]codevolve  {settings.tenant}[/bold]",
        border_style="red" if safeguards.emergency_stop else "green" if settings.enabled else "dim",
        padding=(0, 1),
    ))


def print_events(events: list[EvolutionEvent]) -> None:
    if not events:
        console.print("\n  No events recorded.\n")
        return
    console.print()
    for event in events:
        color = SEVERITY_COLORS[event.severity]
        ack = " [dim](ack)[/dim]" if event.acknowledged_at else ""
        console.print(
            f"  [dim]{event.created_at:%Y-%m-%d %H:%M}[/dim]  [{color}]{event.severity.value:<8}[/{color}] "
            f"{event.title}{ack}  [dim]{event.id}[/dim]"
        )
        if event.description:
            console.print(f"                    {event.description}")
    console.print()


def print_metrics(snapshot: EvolutionMetricsSnapshot) -> None:
    refactoring = snapshot.refactoring
    canary = snapshot.canary
    lines = [
        "",
        f"  Analysis runs:     {int(snapshot.analysis.get('runs', 0))}  "
        f"({int(snapshot.analysis.get('findings', 0))} findings)",
        f"  Suggestions:       {int(refactoring.get('total_suggestions', 0))}  "
        f"approval {refactoring.get('approval_rate', 0.0):.0%} | "
        f"rejection {refactoring.get('rejection_rate', 0.0):.0%}",
        f"  Applied:           {int(refactoring.get('automatic_applied', 0))} automatic, "
        f"{int(refactoring.get('manual_applied', 0))} manual, "
        f"{int(refactoring.get('rolled_back_executions', 0))} rolled back",
        f"  Average rating:    {refactoring.get('average_rating', 0.0):.2f}",
        f"  Canaries:          {int(canary.get('deployed', 0))} deployed, "
        f"{int(canary.get('promoted', 0))} promoted, {int(canary.get('rolled_back', 0))} rolled back",
        "",
    ]
    for warning in snapshot.warnings:
        lines.append(f"  [yellow]! {warning}[/yellow]")
    if snapshot.warnings:
        lines.append("")

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]Metrics  {snapshot.period_start:%Y-%m-%d %H:%M} -> {snapshot.period_end:%H:%M}[/bold]",
        border_style="yellow" if snapshot.warnings else "green",
        padding=(0, 1),
    ))


def get_progress() -> Progress:
    """Create a progress instance for analysis runs."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    )
