"""Configuration data models for deployflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from deployflow.kernel.retry import RetryPolicy


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, rich)
    output_file : str | None, default=None
        Optional file path to write JSON logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    backtrace : bool, default=True
        Extended tracebacks
    diagnose : bool, default=False
        Show variable values in tracebacks

    Examples
    --------
    YAML configuration::

        kind: Config
        spec:
          logging:
            level: DEBUG
            format: rich

    Environment variable overrides::

        export DEPLOYFLOW_LOG_LEVEL=DEBUG
        export DEPLOYFLOW_LOG_FORMAT=json
        export DEPLOYFLOW_LOG_FILE=/var/log/deployflow.jsonl
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    backtrace: bool = True
    diagnose: bool = False


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Execution engine defaults.

    Attributes
    ----------
    default_stage_timeout : float | None
        Per-attempt timeout for stages that declare none.
    default_retry : RetryPolicy
        Retry policy for stages that declare none.
    workspace_dir : str
        Where source snapshots are checked out.
    registry_dir : str
        Root of the local artifact registry.
    registry_host : str
        Host prefix of artifact references (``<host>/<name>:<tag>``).
    kube_contexts : dict[str, str]
        Environment name to kubectl context. Unmapped environments use
        their own name as the context.
    """

    default_stage_timeout: float | None = None
    default_retry: RetryPolicy = field(default_factory=RetryPolicy)
    workspace_dir: str = ".deployflow/workspace"
    registry_dir: str = ".deployflow/registry"
    registry_host: str = "registry.local"
    kube_contexts: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class HistoryConfig:
    """Where run history is kept."""

    backend: Literal["memory", "file"] = "file"
    path: str = ".deployflow/history"


@dataclass(frozen=True, slots=True)
class NotificationConfig:
    """Outbound notifications. No webhook means notifications are only logged."""

    webhook_url: str | None = None
    timeout: float = 10.0
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DeployFlowConfig:
    """Top-level deployflow configuration."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)


__all__ = [
    "DeployFlowConfig",
    "EngineConfig",
    "HistoryConfig",
    "LoggingConfig",
    "NotificationConfig",
]
