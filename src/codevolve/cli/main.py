"""Click CLI entry point for codevolve."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import click

from codevolve._version import __version__
from codevolve.cli.runtime import DEFAULT_TENANT, CliState
from codevolve.core.errors import EvolutionError
from codevolve.core.output import error_console


class EvolveGroup(click.Group):
    """Turns library errors into a red message and exit status 1."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except EvolutionError as exc:
            error_console.print(f"\n  [red]Error: {exc}[/red]\n")
            ctx.exit(1)


@click.group(cls=EvolveGroup)
@click.version_option(version=__version__, prog_name="codevolve")
@click.option(
    "--project", "-p", "project", default=".", type=click.Path(file_okay=False, path_type=Path),
    help="Project directory (default: current dir)",
)
@click.option("--tenant", default=DEFAULT_TENANT, show_default=True, help="Tenant whose settings to use")
@click.option("--actor", default=None, help="Name recorded on approvals and settings changes")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, project: Path, tenant: str, actor: str | None, verbose: bool):
    """codevolve - autonomous code evolution.

    Analyze your code, review and apply suggested refactors, and promote
    canary models, all behind configurable safeguards.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    state = ctx.ensure_object(CliState)
    state.project_path = project.resolve()
    state.tenant = tenant
    state.actor = actor or os.environ.get("USER", "cli")


# Import and register subcommands
from codevolve.cli.analyze_cmd import analyze  # noqa: E402
from codevolve.cli.suggestions_cmd import suggestions  # noqa: E402
from codevolve.cli.history_cmd import history  # noqa: E402
from codevolve.cli.canary_cmd import canary  # noqa: E402
from codevolve.cli.evolution_cmd import evolution  # noqa: E402

cli.add_command(analyze)
cli.add_command(suggestions)
cli.add_command(history)
cli.add_command(canary)
cli.add_command(evolution)


if __name__ == "__main__":
    cli()
