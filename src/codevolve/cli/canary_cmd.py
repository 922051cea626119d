"""codevolve canary commands."""

from __future__ import annotations

import json
import tomllib
from pathlib import Path

import click

from codevolve.canary.models import CanarySpec, ModelConfiguration
from codevolve.cli.runtime import CliState, pass_state
from codevolve.core.output import console, print_canaries, print_comparison


def _load_document(path: Path) -> dict:
    if path.suffix == ".toml":
        with open(path, "rb") as f:
            return tomllib.load(f)
    return json.loads(path.read_text())


@click.group()
def canary():
    """Deploy, monitor and promote canary models."""


@canary.command()
@click.option("--name", required=True)
@click.option("--version", "model_version", required=True)
@click.option("--provider", required=True)
@click.option("--model-id", required=True)
@click.option("--metrics-url", default="", help="Endpoint serving live metrics as JSON")
@pass_state
def baseline(state: CliState, name: str, model_version: str, provider: str, model_id: str, metrics_url: str):
    """Register the production model canaries are compared against."""
    runtime = state.get_runtime()
    configuration = ModelConfiguration.from_dict({
        "provider": provider,
        "model_id": model_id,
        "endpoints": {"metrics": metrics_url},
    })
    model = runtime.canary.register_baseline(name, model_version, configuration)
    console.print(f"\n  [green]Baseline registered[/green] {model.id}  {name} v{model_version}\n")


@canary.command()
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--traffic", type=float, default=None, help="Override the traffic percentage")
@pass_state
def deploy(state: CliState, spec_file: Path, traffic: float | None):
    """Deploy a canary described by SPEC_FILE (JSON or TOML)."""
    runtime = state.get_runtime()
    data = _load_document(spec_file)
    if traffic is not None:
        data["traffic_percentage"] = traffic
    model = runtime.orchestrator.deploy_canary(state.tenant, CanarySpec.from_dict(data), state.actor)
    console.print(
        f"\n  [green]Canary deployed[/green] {model.id}  {model.name} v{model.version} "
        f"at {model.traffic_percentage:g}% traffic\n"
    )


@canary.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include promoted and rolled back canaries")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
@pass_state
def list_canaries(state: CliState, show_all: bool, as_json: bool):
    """List live canaries."""
    runtime = state.get_runtime()
    models = runtime.canary.get_canary_history() if show_all else runtime.canary.get_active_canaries()
    if as_json:
        click.echo(json.dumps([m.to_dict() for m in models], indent=2))
        return
    print_canaries(models)


@canary.command()
@click.option("--evaluate", is_flag=True, help="Also promote or roll back canaries that are ready")
@pass_state
def monitor(state: CliState, evaluate: bool):
    """Refresh metrics for every live canary."""
    runtime = state.get_runtime()
    report = runtime.canary.monitor_canaries()
    console.print(f"\n  Checked {len(report.checked)} canary(ies), updated {len(report.updated)}.")
    for error in report.errors:
        console.print(f"  [red]! {error}[/red]")

    if evaluate:
        evaluation = runtime.canary.evaluate_promotions()
        for label, ids, color in (
            ("Promoted", evaluation.promoted, "green"),
            ("Rolled back", evaluation.rolled_back, "yellow"),
            ("Needs review", evaluation.flagged, "yellow"),
        ):
            for canary_id in ids:
                console.print(f"  [{color}]{label}[/{color}] {canary_id}")
        for error in evaluation.errors:
            console.print(f"  [red]! {error}[/red]")
    console.print()


@canary.command()
@click.argument("canary_id")
@pass_state
def compare(state: CliState, canary_id: str):
    """Compare a canary with its baseline."""
    runtime = state.get_runtime()
    model = runtime.canary.get_canary(canary_id)
    print_comparison(runtime.canary.compare_with_baseline(model))
    decision = runtime.canary.should_promote_canary(model)
    color = "green" if decision.promote else "red" if decision.rollback else "yellow"
    console.print(f"  Promotion gate: [{color}]{decision.reason}[/{color}]\n")


@canary.command()
@click.argument("canary_id")
@pass_state
def promote(state: CliState, canary_id: str):
    """Promote a canary after manual review."""
    runtime = state.get_runtime()
    model = runtime.canary.approve_canary(canary_id, state.actor)
    console.print(f"\n  [green]Promoted[/green] {model.id}  {model.name} v{model.version}\n")


@canary.command()
@click.argument("canary_id")
@click.option("--reason", "-r", default="Manual rollback", show_default=True)
@pass_state
def rollback(state: CliState, canary_id: str, reason: str):
    """Withdraw a canary and restore baseline routing."""
    runtime = state.get_runtime()
    model = runtime.canary.rollback_canary(canary_id, reason)
    console.print(f"\n  [yellow]Rolled back[/yellow] {model.id}: {reason}\n")
