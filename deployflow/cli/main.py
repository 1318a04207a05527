"""Main CLI entry point for deployflow."""

import typer

from deployflow import __version__
from deployflow.cli.commands import run_cmd, runs_cmd, validate_cmd
from deployflow.cli.utils import console
from deployflow.kernel.logging import configure_logging

app = typer.Typer(
    name="deployflow",
    help="deployflow - Deployment pipeline orchestrator",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

app.command("validate", help="Validate a pipeline definition")(validate_cmd.validate)
app.command("run", help="Run a pipeline")(run_cmd.run)
app.add_typer(runs_cmd.app, name="runs", help="Inspect recorded pipeline runs")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold blue]deployflow[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Only log errors"),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Enable debug logging"),
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level: debug|info|warning|error|critical"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """deployflow - run source, build, approval and deploy stages in order.

    Global flags are parsed here and stored on `ctx.obj` for subcommands.
    """
    if ctx.obj is None:
        ctx.obj = {}

    effective_level = log_level.upper() if log_level else None
    if effective_level == "WARN":
        effective_level = "WARNING"
    if quiet:
        effective_level = "ERROR"
    elif verbose:
        effective_level = "DEBUG"
    if effective_level is not None and effective_level not in _LOG_LEVELS:
        raise typer.BadParameter(f"unknown log level '{log_level}'", param_hint="--log-level")

    ctx.obj.update({
        "output_format": "json" if json_out else "pretty",
        "log_level": effective_level,
    })

    if effective_level:
        configure_logging(level=effective_level)  # type: ignore[arg-type]


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
