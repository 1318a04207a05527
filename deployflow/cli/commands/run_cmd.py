"""Run command for deployflow CLI.

Starts a pipeline run in-process and drives it to completion. When the run
stops at an approval stage the operator is prompted, unless ``--approve`` or
``--reject`` decided up front.
"""

import asyncio
from contextlib import suppress
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.markup import escape
from rich.prompt import Confirm

from deployflow.cli.utils import (
    ConfigOption,
    build_engine,
    build_notifier,
    console,
    load_cli_config,
    stage_results_table,
    styled_status,
)
from deployflow.compiler import load
from deployflow.kernel.config import DeployFlowConfig
from deployflow.kernel.domain import (
    ApprovalDecision,
    ApprovalRequest,
    PipelineDefinition,
    PipelineRun,
    RunStatus,
    StageResult,
)
from deployflow.kernel.exceptions import ConfigError, InvalidTransitionError

app = typer.Typer()


def ask_approval(request: ApprovalRequest) -> ApprovalDecision:
    """Prompt on the terminal for an approval decision."""
    approvers = ", ".join(request.approvers) or "anyone"
    approved = Confirm.ask(
        f"[yellow]Approve '{escape(request.stage_name)}' "
        f"(gates '{escape(str(request.gates))}', approvers: {escape(approvers)})?[/yellow]"
    )
    return ApprovalDecision.APPROVED if approved else ApprovalDecision.REJECTED


async def execute_pipeline(
    definition: PipelineDefinition,
    config: DeployFlowConfig,
    *,
    decision: ApprovalDecision | None = None,
    decided_by: str | None = None,
    dry_run: bool = False,
    metadata: dict[str, Any] | None = None,
) -> tuple[PipelineRun, list[StageResult]]:
    """Run ``definition`` to a terminal status and return its final state.

    A ``decision`` of None prompts at every approval stage.
    """
    notifier = build_notifier(config)
    engine = build_engine(config, dry_run=dry_run, notifier=notifier)
    try:
        run_id = await engine.start(definition, metadata=metadata)
        console.print(f"Started run [bold]{run_id}[/bold] of '{escape(definition.name)}'")
        try:
            run = await engine.wait(run_id)
            while run.status == RunStatus.WAITING_APPROVAL:
                request = await engine.get_approval(run_id)
                assert request is not None
                choice = decision
                if choice is None:
                    choice = await asyncio.to_thread(ask_approval, request)
                try:
                    await engine.resolve_approval(
                        run_id, request.stage_name, choice, decided_by=decided_by
                    )
                except InvalidTransitionError as e:
                    # Expired while the prompt was open.
                    console.print(f"[yellow]{escape(str(e))}[/yellow]")
                run = await engine.wait(run_id)
        except asyncio.CancelledError:
            with suppress(InvalidTransitionError):
                await engine.cancel(run_id)
            raise
        return run, await engine.get_stage_results(run_id)
    finally:
        await engine.aclose()
        close = getattr(notifier, "aclose", None)
        if close is not None:
            await close()


@app.command()
def run(
    ctx: typer.Context,
    pipeline_file: Annotated[
        Path,
        typer.Argument(
            help="Path to YAML pipeline file to run",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    approve: Annotated[
        bool | None,
        typer.Option(
            "--approve/--reject",
            help="Decide every approval stage up front instead of prompting",
        ),
    ] = None,
    approver: Annotated[
        str | None,
        typer.Option(
            "--approver",
            envvar="DEPLOYFLOW_APPROVER",
            help="Name recorded as the approval decider",
        ),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Walk the pipeline without touching repositories, registries or clusters",
        ),
    ] = False,
    config_path: ConfigOption = None,
) -> None:
    """Run a pipeline and wait for it to finish."""
    config = load_cli_config(ctx, config_path)
    try:
        definition = load(
            pipeline_file,
            defaults={
                "retry": config.engine.default_retry.model_dump(),
                "timeout": config.engine.default_stage_timeout,
            },
        )
    except ConfigError as e:
        console.print(f"[red]✗ {pipeline_file}: {escape(e.field)}: {escape(e.reason)}[/red]")
        raise typer.Exit(1) from e

    decision = None
    if approve is not None:
        decision = ApprovalDecision.APPROVED if approve else ApprovalDecision.REJECTED
    metadata = {"pipeline_file": str(pipeline_file), "dry_run": dry_run, "trigger": "cli"}

    try:
        final, results = asyncio.run(
            execute_pipeline(
                definition,
                config,
                decision=decision,
                decided_by=approver,
                dry_run=dry_run,
                metadata=metadata,
            )
        )
    except KeyboardInterrupt:
        console.print("[magenta]Run cancelled[/magenta]")
        raise typer.Exit(130) from None

    console.print(stage_results_table(results, title=f"Run {final.run_id}"))
    console.print(f"Run {final.run_id}: {styled_status(final.status)}")
    if final.error:
        console.print(f"[red]{escape(final.error)}[/red]")
    if final.status != RunStatus.SUCCEEDED:
        raise typer.Exit(1)
