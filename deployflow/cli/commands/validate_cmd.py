"""Pipeline validation command for deployflow CLI."""

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from deployflow.cli.utils import console, print_json, wants_json
from deployflow.compiler import load
from deployflow.kernel.domain import (
    ApprovalConfig,
    BuildConfig,
    DeployConfig,
    PipelineDefinition,
    SourceConfig,
    StageSpec,
)
from deployflow.kernel.exceptions import ConfigError

app = typer.Typer()


def describe_stage(definition: PipelineDefinition, stage: StageSpec) -> str:
    """One-line summary of what a stage does."""
    config = stage.action_config
    match config:
        case SourceConfig():
            return f"{config.repository}@{config.revision}"
        case BuildConfig():
            produces = f" -> {config.artifact.reference}" if config.artifact else ""
            source = definition.build_source(stage)
            return f"{len(config.commands)} command(s) from '{source}'{produces}"
        case ApprovalConfig():
            approvers = ", ".join(config.approvers) or "anyone"
            return f"gates '{definition.approval_gate(stage)}' (approvers: {approvers})"
        case DeployConfig():
            artifact = definition.deploy_artifact(stage)
            image = f"'{artifact}'" if artifact else "manifest"
            return f"{image} to {config.environment} via {config.manifest}"
    return ""


@app.command()
def validate(
    ctx: typer.Context,
    pipeline_file: Annotated[
        Path,
        typer.Argument(
            help="Path to YAML pipeline file to validate",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
) -> None:
    """Validate a pipeline definition without running it."""
    try:
        definition = load(pipeline_file)
    except ConfigError as e:
        console.print(f"[red]✗ {pipeline_file}: {escape(e.field)}: {escape(e.reason)}[/red]")
        raise typer.Exit(1) from e

    if wants_json(ctx):
        print_json(definition.model_dump(mode="json", by_alias=True))
        return

    table = Table(
        title=f"Pipeline: {definition.name}", show_header=True, header_style="bold magenta"
    )
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Kind")
    table.add_column("Timeout", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Details")
    for index, stage in enumerate(definition.stages):
        table.add_row(
            str(index),
            stage.name,
            str(stage.kind),
            f"{stage.timeout:g}s" if stage.timeout else "-",
            str(stage.retry_policy.max_retries),
            describe_stage(definition, stage),
        )
    console.print(table)
    console.print(f"[green]✓ {pipeline_file} is valid[/green]")
