"""Runs commands for deployflow CLI - inspect recorded run history."""

import asyncio
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from deployflow.cli.utils import (
    ConfigOption,
    console,
    format_timestamp,
    load_cli_config,
    open_history,
    print_json,
    stage_results_table,
    styled_status,
    wants_json,
)
from deployflow.kernel.domain import RunStatus
from deployflow.kernel.domain.pipeline_run import (
    approval_request_to_storage,
    pipeline_run_to_storage,
    stage_result_to_storage,
)

app = typer.Typer()


@app.command("list")
def list_runs(
    ctx: typer.Context,
    status: Annotated[
        RunStatus | None,
        typer.Option("--status", "-s", help="Only show runs in this status"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum runs shown")] = 20,
    config_path: ConfigOption = None,
) -> None:
    """List recorded runs, newest first."""
    config = load_cli_config(ctx, config_path)
    history = open_history(config)
    runs = asyncio.run(history.alist_runs(status=status, limit=limit))

    if wants_json(ctx):
        print_json([pipeline_run_to_storage(r) for r in runs])
        return
    if not runs:
        console.print("[yellow]No runs recorded[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Run ID", style="cyan", no_wrap=True)
    table.add_column("Pipeline")
    table.add_column("Status")
    table.add_column("Stage", justify="right")
    table.add_column("Created")
    table.add_column("Finished")
    for run in runs:
        table.add_row(
            run.run_id,
            run.definition_ref,
            styled_status(run.status),
            str(run.current_stage_index),
            format_timestamp(run.created_at),
            format_timestamp(run.finished_at),
        )
    console.print(table)


@app.command("show")
def show_run(
    ctx: typer.Context,
    run_id: Annotated[str, typer.Argument(help="Run ID to show")],
    config_path: ConfigOption = None,
) -> None:
    """Show a run with its stage results and approvals."""
    config = load_cli_config(ctx, config_path)
    history = open_history(config)
    run = asyncio.run(history.aget_run(run_id))
    if run is None:
        console.print(f"[red]Run {escape(run_id)} not found[/red]")
        raise typer.Exit(1)
    results = asyncio.run(history.aget_stage_results(run_id))
    approvals = asyncio.run(history.aget_approvals(run_id))

    if wants_json(ctx):
        print_json({
            "run": pipeline_run_to_storage(run),
            "stages": [stage_result_to_storage(r) for r in results],
            "approvals": [approval_request_to_storage(a) for a in approvals],
        })
        return

    console.print(f"[bold]Run {run.run_id}[/bold] of '{escape(run.definition_ref)}'")
    console.print(f"  Status:   {styled_status(run.status)}")
    console.print(f"  Created:  {format_timestamp(run.created_at)}")
    console.print(f"  Finished: {format_timestamp(run.finished_at)}")
    if run.error:
        console.print(f"  Error:    [red]{escape(run.error)}[/red]")
    console.print(stage_results_table(results))

    for approval in approvals:
        decided = (
            f"{approval.decision} by {approval.decided_by or 'unknown'}"
            if approval.decided_at
            else str(approval.decision)
        )
        console.print(
            f"Approval [cyan]{escape(approval.stage_name)}[/cyan] "
            f"(gates '{escape(str(approval.gates))}'): {escape(decided)}"
        )
