"""codevolve analyze command."""

from __future__ import annotations

import json

import click

from codevolve.cli.runtime import CliState, pass_state
from codevolve.core.models import AnalysisType
from codevolve.core.output import console, get_progress, print_analysis_results


@click.command()
@click.option(
    "--type", "analysis_types", multiple=True,
    type=click.Choice([t.value for t in AnalysisType]),
    help="Run only these passes (repeatable)",
)
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@pass_state
def analyze(state: CliState, analysis_types: tuple[str, ...], as_json: bool):
    """Analyze the project and queue suggestions for review."""
    runtime = state.get_runtime()
    types = [AnalysisType(t) for t in analysis_types] or None

    with get_progress() as progress:
        task = progress.add_task(f"Analyzing {runtime.project_path.name}...", total=None)
        results = runtime.analyzer.perform_full_codebase_analysis(types)
        report = runtime.executor.process_new_suggestions(results, auto_apply=False)
        progress.update(task, completed=True)

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return

    print_analysis_results(results)
    if report.errors:
        for error in report.errors:
            console.print(f"  [red]! {error}[/red]")
        console.print()
