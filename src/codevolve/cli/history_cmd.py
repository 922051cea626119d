"""codevolve history command."""

from __future__ import annotations

import json

import click

from codevolve.cli.runtime import CliState, pass_state
from codevolve.core.output import console, print_execution


@click.command()
@click.argument("suggestion_id", required=False)
@click.option("--json", "as_json", is_flag=True, help="Export as JSON")
@click.option("--limit", type=int, default=20, show_default=True)
@pass_state
def history(state: CliState, suggestion_id: str | None, as_json: bool, limit: int):
    """Show refactor executions, newest first.

    Pass a SUGGESTION_ID to see only the attempts for that suggestion.
    """
    runtime = state.get_runtime()
    executions = runtime.executor.get_execution_history(suggestion_id)[:limit]

    if as_json:
        click.echo(json.dumps([e.to_dict() for e in executions], indent=2))
        return

    if not executions:
        console.print("\n  No executions yet. Run `codevolve suggestions execute <ID>` to apply one.\n")
        return

    console.print("\n  [bold]Execution History[/bold]\n")
    for execution in executions:
        print_execution(execution)
    console.print()
