"""CLI helper utilities for deployflow commands."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from deployflow.compiler.config_loader import load_config
from deployflow.drivers.cluster import KubectlCluster
from deployflow.drivers.notifier import LoggingNotifier, WebhookNotifier
from deployflow.drivers.registry import LocalArtifactRegistry
from deployflow.drivers.source_control import GitSourceControl
from deployflow.drivers.storage import JsonFileCollectionStorage
from deployflow.kernel.domain import StageKind
from deployflow.kernel.exceptions import ConfigError
from deployflow.kernel.logging import configure_logging
from deployflow.kernel.orchestration import ExecutionEngine
from deployflow.stdlib.adapters import BuildAdapter, DeployAdapter, SourceAdapter
from deployflow.stdlib.adapters.mock import DryRunAdapter
from deployflow.stdlib.lib import RunHistory
from deployflow.stdlib.observers import LoggingObserver

if TYPE_CHECKING:
    from deployflow.kernel.config import DeployFlowConfig
    from deployflow.kernel.domain import StageResult
    from deployflow.kernel.ports import ActionAdapter, Notifier

console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to a 'kind: Config' YAML or a TOML file (default: auto-discover)",
        dir_okay=False,
    ),
]

STATUS_STYLES = {
    "pending": "dim",
    "running": "cyan",
    "waiting_approval": "yellow",
    "succeeded": "green",
    "failed": "red",
    "cancelled": "magenta",
    "skipped": "dim",
}


def styled_status(status: str) -> str:
    """Wrap a run or stage status in rich markup."""
    style = STATUS_STYLES.get(str(status), "white")
    return f"[{style}]{status}[/{style}]"


def format_timestamp(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def format_duration(start: float | None, end: float | None) -> str:
    if start is None or end is None:
        return "-"
    return f"{end - start:.2f}s"


def wants_json(ctx: typer.Context) -> bool:
    """Whether the global ``--json`` flag was given."""
    return bool(ctx.obj) and ctx.obj.get("output_format") == "json"


def print_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, default=str, indent=2))


def load_cli_config(ctx: typer.Context, path: Path | None) -> DeployFlowConfig:
    """Load configuration and apply its logging section.

    A ``--log-level`` given on the command line wins over the file.
    """
    try:
        config = load_config(path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e

    log = config.logging
    level_override = (ctx.obj or {}).get("log_level")
    configure_logging(
        level=(level_override or log.level).upper(),  # type: ignore[arg-type]
        format=log.format,
        output_file=log.output_file,
        use_color=log.use_color,
        include_timestamp=log.include_timestamp,
        backtrace=log.backtrace,
        diagnose=log.diagnose,
        force_reconfigure=True,
    )
    return config


def open_history(config: DeployFlowConfig) -> RunHistory:
    """Run history backed by the configured store."""
    if config.history.backend == "memory":
        return RunHistory()
    return RunHistory(JsonFileCollectionStorage(config.history.path))


def build_notifier(config: DeployFlowConfig) -> Notifier:
    notifications = config.notifications
    if notifications.webhook_url:
        return WebhookNotifier(
            notifications.webhook_url,
            timeout=notifications.timeout,
            headers=notifications.headers,
        )
    return LoggingNotifier()


def build_engine(
    config: DeployFlowConfig,
    *,
    dry_run: bool = False,
    notifier: Notifier | None = None,
) -> ExecutionEngine:
    """Wire an engine to the drivers named by ``config``.

    With ``dry_run`` every action kind is served by :class:`DryRunAdapter`,
    so no repository, registry or cluster is touched.
    """
    adapters: dict[StageKind, ActionAdapter]
    if dry_run:
        dry = DryRunAdapter()
        adapters = {StageKind.SOURCE: dry, StageKind.BUILD: dry, StageKind.DEPLOY: dry}
    else:
        engine_config = config.engine
        adapters = {
            StageKind.SOURCE: SourceAdapter(GitSourceControl(), engine_config.workspace_dir),
            StageKind.BUILD: BuildAdapter(
                LocalArtifactRegistry(engine_config.registry_dir, engine_config.registry_host)
            ),
            StageKind.DEPLOY: DeployAdapter(KubectlCluster(engine_config.kube_contexts)),
        }
    return ExecutionEngine(
        adapters,
        history=open_history(config),
        notifier=notifier,
        observers=[LoggingObserver()],
        default_stage_timeout=config.engine.default_stage_timeout,
    )


def stage_results_table(results: list[StageResult], title: str | None = None) -> Table:
    """Rich table of a run's stage results."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Output / Error")
    for result in results:
        if result.error:
            detail = f"[red]{escape(result.error)}[/red]"
        elif result.output_ref is not None:
            detail = escape(result.output_ref.location)
        else:
            detail = ""
        table.add_row(
            str(result.index),
            result.stage_name,
            result.kind,
            styled_status(result.status),
            str(result.attempts),
            format_duration(result.started_at, result.finished_at),
            detail,
        )
    return table
