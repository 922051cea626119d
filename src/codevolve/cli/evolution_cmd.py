"""codevolve evolution commands."""

from __future__ import annotations

import json
import time

import click
from rich.prompt import Confirm

from codevolve.cli.runtime import CliState, pass_state
from codevolve.core.output import console, print_events, print_metrics, print_settings

CYCLES = ("analysis", "refactor", "canary", "evolution")


@click.group()
def evolution():
    """Control the evolution loop and its safeguards."""


@evolution.command()
@click.option("--json", "as_json", is_flag=True, help="Print settings as JSON")
@pass_state
def status(state: CliState, as_json: bool):
    """Show settings and whether safeguards currently allow changes."""
    runtime = state.get_runtime()
    settings = runtime.orchestrator.get_evolution_settings(state.tenant)
    if as_json:
        click.echo(json.dumps(settings.to_dict(), indent=2))
        return

    print_settings(settings, runtime.analyzer.read_test_coverage())
    reasons = runtime.orchestrator.safeguard_violations(state.tenant, settings)
    if reasons:
        console.print("  [yellow]Automatic changes blocked:[/yellow]")
        for reason in reasons:
            console.print(f"    - {reason}")
    else:
        console.print("  [green]Safeguards clear.[/green]")
    console.print()


@evolution.command()
@click.option("--auto-refactor/--no-auto-refactor", default=None, help="Toggle automatic refactoring")
@click.option("--canary/--no-canary", "canary_testing", default=None, help="Toggle canary evaluation")
@click.option("--max-daily-changes", type=click.IntRange(min=0), default=None)
@click.option("--coverage-threshold", type=click.FloatRange(0, 100), default=None)
@click.option("--clear-stop", is_flag=True, help="Clear a previous emergency stop")
@pass_state
def enable(
    state: CliState,
    auto_refactor: bool | None,
    canary_testing: bool | None,
    max_daily_changes: int | None,
    coverage_threshold: float | None,
    clear_stop: bool,
):
    """Enable evolution for the tenant."""
    orchestrator = state.get_runtime().orchestrator
    updates: dict = {}
    if auto_refactor is not None:
        updates.setdefault("features", {})["auto_refactor"] = {"enabled": auto_refactor}
    if canary_testing is not None:
        updates.setdefault("features", {})["canary_testing"] = {"enabled": canary_testing}
    if max_daily_changes is not None:
        updates.setdefault("safeguards", {})["max_daily_changes"] = max_daily_changes
    if coverage_threshold is not None:
        updates.setdefault("safeguards", {})["test_coverage_threshold"] = coverage_threshold
    if clear_stop:
        updates.setdefault("safeguards", {})["emergency_stop"] = False
    if updates:
        orchestrator.update_evolution_settings(state.tenant, updates, state.actor)

    settings = orchestrator.toggle_evolution(state.tenant, True, state.actor)
    console.print(f"\n  [green]Evolution enabled[/green] for {state.tenant}.")
    if settings.safeguards.emergency_stop:
        console.print("  [yellow]Emergency stop is still active. Use --clear-stop to lift it.[/yellow]")
    console.print()


@evolution.command()
@pass_state
def disable(state: CliState):
    """Disable evolution for the tenant."""
    state.get_runtime().orchestrator.toggle_evolution(state.tenant, False, state.actor)
    console.print(f"\n  Evolution disabled for {state.tenant}.\n")


@evolution.command()
@click.option("--reason", "-r", required=True, help="Recorded on the emergency stop event")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@pass_state
def stop(state: CliState, reason: str, yes: bool):
    """Emergency stop: disable evolution and roll back work in flight."""
    if not yes and not Confirm.ask("  Roll back every in-progress change and halt evolution?", default=False):
        console.print("  [dim]Cancelled.[/dim]")
        return
    rolled_back = state.get_runtime().orchestrator.emergency_stop(state.tenant, state.actor, reason)
    console.print(f"\n  [bold red]Emergency stop activated.[/bold red] {len(rolled_back)} execution(s) rolled back.")
    for execution in rolled_back:
        console.print(f"    - {execution.id} (suggestion {execution.suggestion_id})")
    console.print()


@evolution.command()
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--ack", "ack_id", default=None, help="Acknowledge the event with this ID")
@pass_state
def events(state: CliState, limit: int, ack_id: str | None):
    """Show recent evolution events."""
    orchestrator = state.get_runtime().orchestrator
    if ack_id:
        event = orchestrator.acknowledge_event(ack_id, state.actor)
        console.print(f"\n  Acknowledged {event.id}: {event.title}\n")
        return
    print_events(orchestrator.get_evolution_events(state.tenant, limit))


@evolution.command()
@click.option("--days", type=int, default=7, show_default=True)
@click.option("--refresh", is_flag=True, help="Compute a new snapshot first")
@pass_state
def metrics(state: CliState, days: int, refresh: bool):
    """Show evolution metrics snapshots."""
    orchestrator = state.get_runtime().orchestrator
    if refresh:
        orchestrator.update_evolution_metrics(state.tenant)
    snapshots = orchestrator.get_evolution_metrics(state.tenant, days)
    if not snapshots:
        console.print("\n  No metrics yet. Run `codevolve evolution metrics --refresh`.\n")
        return
    print_metrics(snapshots[0])


@evolution.command()
@click.option("--cycle", type=click.Choice(CYCLES), default=None, help="Run only this cycle")
@click.option("--watch", is_flag=True, help="Keep running the cycles on their schedule")
@pass_state
def run(state: CliState, cycle: str | None, watch: bool):
    """Run evolution cycles now, or keep them running with --watch."""
    runtime = state.get_runtime()
    orchestrator = runtime.orchestrator

    if watch:
        orchestrator.start(state.tenant)
        console.print(f"\n  Evolution loop running for {state.tenant}. Press Ctrl+C to stop.\n")
        try:
            while orchestrator.is_running(state.tenant):
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            orchestrator.stop()
            runtime.scheduler.cancel_all()
        return

    # The evolution cycle already includes the refactor cycle.
    for name in [cycle] if cycle else ("analysis", "canary", "evolution"):
        result = getattr(orchestrator, f"run_{name}_cycle")(state.tenant)
        outcome = "skipped" if result is None or result == [] else "done"
        console.print(f"  {name:<10} {outcome}")
