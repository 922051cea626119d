"""codevolve suggestions commands."""

from __future__ import annotations

import json

import click
from rich.prompt import Confirm

from codevolve.cli.runtime import CliState, pass_state
from codevolve.core.models import FeedbackAction, SuggestionStatus
from codevolve.core.output import console, print_execution, print_suggestion_detail, print_suggestions
from codevolve.refactor.models import RefactorFeedback


@click.group()
def suggestions():
    """Review, approve and apply refactor suggestions."""


@suggestions.command("list")
@click.option(
    "--status", type=click.Choice([s.value for s in SuggestionStatus]), default=None,
    help="Only show suggestions in this state (default: pending, highest priority first)",
)
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
@pass_state
def list_suggestions(state: CliState, status: str | None, limit: int, as_json: bool):
    """List suggestions."""
    runtime = state.get_runtime()
    if status is None:
        items = runtime.executor.get_pending_suggestions(limit)
    else:
        items = runtime.store.list_suggestions(status=SuggestionStatus(status))[:limit]

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in items], indent=2))
        return
    print_suggestions(items)


@suggestions.command()
@click.argument("suggestion_id")
@pass_state
def show(state: CliState, suggestion_id: str):
    """Show a suggestion and the changes it would make."""
    runtime = state.get_runtime()
    print_suggestion_detail(runtime.executor.get_suggestion(suggestion_id))
    feedback = runtime.executor.get_suggestion_feedback(suggestion_id)
    if feedback:
        console.print("\n  [bold]Feedback[/bold]")
        for item in feedback:
            console.print(f"  {item.action.value:<9} {item.rating}/5  {item.user_id}  {item.comments or ''}")
        console.print()


def _feedback(state: CliState, suggestion_id: str, action: FeedbackAction, rating: int, comment: str | None):
    runtime = state.get_runtime()
    feedback = RefactorFeedback(
        suggestion_id=suggestion_id,
        user_id=state.actor,
        action=action,
        rating=rating,
        comments=comment,
    )
    runtime.executor.submit_feedback(feedback)
    return runtime.executor.get_suggestion(suggestion_id)


@suggestions.command()
@click.argument("suggestion_id")
@click.option("--rating", type=click.IntRange(1, 5), default=4, show_default=True)
@click.option("--comment", "-m", default=None)
@pass_state
def approve(state: CliState, suggestion_id: str, rating: int, comment: str | None):
    """Approve a suggestion for execution."""
    suggestion = _feedback(state, suggestion_id, FeedbackAction.APPROVED, rating, comment)
    console.print(f"\n  [green]Approved[/green] {suggestion.id}  ({suggestion.status.value})")
    console.print(f"  Apply now: [bold]codevolve suggestions execute {suggestion.id}[/bold]\n")


@suggestions.command()
@click.argument("suggestion_id")
@click.option("--rating", type=click.IntRange(1, 5), default=2, show_default=True)
@click.option("--comment", "-m", default=None)
@pass_state
def reject(state: CliState, suggestion_id: str, rating: int, comment: str | None):
    """Reject a suggestion."""
    suggestion = _feedback(state, suggestion_id, FeedbackAction.REJECTED, rating, comment)
    console.print(f"\n  [yellow]Rejected[/yellow] {suggestion.id}\n")


@suggestions.command()
@click.argument("suggestion_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_state
def execute(state: CliState, suggestion_id: str, yes: bool):
    """Apply an approved suggestion and run its tests."""
    runtime = state.get_runtime()
    suggestion = runtime.executor.get_suggestion(suggestion_id)
    if not yes:
        print_suggestion_detail(suggestion)
        if not Confirm.ask("  Apply this suggestion?", default=False):
            console.print("  [dim]Skipped.[/dim]")
            return
    execution = runtime.executor.execute_approved_suggestion(suggestion_id, state.actor)
    console.print()
    print_execution(execution)
    console.print()


@suggestions.command()
@click.argument("suggestion_id")
@pass_state
def apply(state: CliState, suggestion_id: str):
    """Auto-apply an automatic suggestion, subject to safeguards."""
    runtime = state.get_runtime()
    execution = runtime.orchestrator.apply_suggestion(state.tenant, suggestion_id, strict=True)
    console.print()
    print_execution(execution)
    console.print()
