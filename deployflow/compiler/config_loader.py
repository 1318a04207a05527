"""Configuration loader for deployflow.

Supports two config sources:

1. **kind: Config YAML** — loaded via explicit path or the
   ``DEPLOYFLOW_CONFIG_PATH`` env var.
2. **pyproject.toml [tool.deployflow]** — auto-discovery fallback.

Defaults are returned when neither is found.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Literal, cast

import yaml
from pydantic import ValidationError

from deployflow.compiler.definition_loader import substitute_env_vars
from deployflow.kernel.config.models import (
    DeployFlowConfig,
    EngineConfig,
    HistoryConfig,
    LoggingConfig,
    NotificationConfig,
)
from deployflow.kernel.exceptions import ConfigError
from deployflow.kernel.logging import get_logger
from deployflow.kernel.retry import RetryPolicy

logger = get_logger(__name__)

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_LOG_FORMATS = frozenset({"console", "json", "structured", "rich"})


def _parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = sorted(_TRUTHY_VALUES | _FALSY_VALUES)
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(name, "expected a mapping")
    return section


def find_config_file(path: str | Path | None = None) -> Path | None:
    """Locate a configuration file.

    Discovery order:
    1. Explicit path argument
    2. ``DEPLOYFLOW_CONFIG_PATH`` env var
    3. ``pyproject.toml`` in CWD or a parent directory with ``[tool.deployflow]``

    Raises
    ------
    FileNotFoundError
        If an explicit path does not exist
    """
    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        return config_path

    if env_path := os.getenv("DEPLOYFLOW_CONFIG_PATH"):
        config_path = Path(env_path)
        if config_path.exists():
            logger.debug("Using config from DEPLOYFLOW_CONFIG_PATH: {}", config_path)
            return config_path
        logger.warning("DEPLOYFLOW_CONFIG_PATH set but file not found: {}", config_path)

    current = Path.cwd()
    for directory in (current, *current.parents):
        pyproject = directory / "pyproject.toml"
        if not pyproject.exists():
            continue
        with pyproject.open("rb") as f:
            data = tomllib.load(f)
        if "deployflow" in data.get("tool", {}):
            return pyproject
    return None


def _read_config_data(config_path: Path) -> dict[str, Any]:
    """Return the raw deployflow section of a YAML or TOML config file."""
    if config_path.suffix in (".yaml", ".yml"):
        try:
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError("document", f"unparseable YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError("document", f"expected a mapping, got {type(data).__name__}")
        if data.get("kind") != "Config":
            raise ConfigError(
                "kind",
                f"YAML config must use 'kind: Config', got 'kind: {data.get('kind')}' "
                f"in {config_path.name}",
            )
        spec = data.get("spec") or {}
        if not isinstance(spec, dict):
            raise ConfigError("spec", "expected a mapping")
        return spec

    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError("document", f"unparseable TOML: {e}") from e
    if "deployflow" in data.get("tool", {}):
        return data["tool"]["deployflow"]
    if config_path.name == "pyproject.toml":
        logger.warning("No [tool.deployflow] section found in pyproject.toml, using defaults")
        return {}
    return data


def parse_config(data: dict[str, Any]) -> DeployFlowConfig:
    """Build a :class:`DeployFlowConfig` from a raw, env-substituted mapping."""
    engine_data = _section(data, "engine")
    history_data = _section(data, "history")
    notify_data = _section(data, "notifications")

    try:
        default_retry = RetryPolicy.model_validate(engine_data.get("default_retry") or {})
    except ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first["loc"])
        raise ConfigError(f"engine.default_retry.{loc}", first["msg"]) from e

    backend = history_data.get("backend", "file")
    if backend not in ("memory", "file"):
        raise ConfigError("history.backend", f"expected 'memory' or 'file', got '{backend}'")

    timeout = engine_data.get("default_stage_timeout")
    if timeout is not None and (not isinstance(timeout, int | float) or timeout <= 0):
        raise ConfigError("engine.default_stage_timeout", "expected a positive number")

    return DeployFlowConfig(
        logging=_parse_logging_config(_section(data, "logging")),
        engine=EngineConfig(
            default_stage_timeout=timeout,
            default_retry=default_retry,
            workspace_dir=str(engine_data.get("workspace_dir", ".deployflow/workspace")),
            registry_dir=str(engine_data.get("registry_dir", ".deployflow/registry")),
            registry_host=str(engine_data.get("registry_host", "registry.local")),
            kube_contexts={
                str(k): str(v) for k, v in (engine_data.get("kube_contexts") or {}).items()
            },
        ),
        history=HistoryConfig(
            backend=backend,
            path=str(history_data.get("path", ".deployflow/history")),
        ),
        notifications=NotificationConfig(
            webhook_url=notify_data.get("webhook_url") or None,
            timeout=float(notify_data.get("timeout", 10.0)),
            headers={str(k): str(v) for k, v in (notify_data.get("headers") or {}).items()},
        ),
    )


def _parse_logging_config(logging_data: dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration with environment variable overrides.

    Environment variables take precedence over config file values:
    - DEPLOYFLOW_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - DEPLOYFLOW_LOG_FORMAT: Output format (console, json, structured, rich)
    - DEPLOYFLOW_LOG_FILE: Optional file path for log output
    - DEPLOYFLOW_LOG_COLOR: Use color output (true/false)
    - DEPLOYFLOW_LOG_TIMESTAMP: Include timestamp (true/false)
    """
    level = str(logging_data.get("level", "INFO")).upper()
    format_type = str(logging_data.get("format", "structured")).lower()
    output_file = logging_data.get("output_file")
    use_color = logging_data.get("use_color", True)
    include_timestamp = logging_data.get("include_timestamp", True)
    backtrace = logging_data.get("backtrace", True)
    diagnose = logging_data.get("diagnose", False)

    if env_level := os.getenv("DEPLOYFLOW_LOG_LEVEL"):
        level = env_level.upper()
        logger.debug("Overriding log level from env: {}", level)

    if env_format := os.getenv("DEPLOYFLOW_LOG_FORMAT"):
        format_type = env_format.lower()
        logger.debug("Overriding log format from env: {}", format_type)

    if env_file := os.getenv("DEPLOYFLOW_LOG_FILE"):
        output_file = env_file

    if env_color := os.getenv("DEPLOYFLOW_LOG_COLOR"):
        try:
            use_color = _parse_bool_env(env_color)
        except ValueError as e:
            logger.warning("Invalid DEPLOYFLOW_LOG_COLOR value: {}", e)

    if env_timestamp := os.getenv("DEPLOYFLOW_LOG_TIMESTAMP"):
        try:
            include_timestamp = _parse_bool_env(env_timestamp)
        except ValueError as e:
            logger.warning("Invalid DEPLOYFLOW_LOG_TIMESTAMP value: {}", e)

    if level not in _LOG_LEVELS:
        raise ConfigError("logging.level", f"unknown log level '{level}'")
    if format_type not in _LOG_FORMATS:
        raise ConfigError("logging.format", f"unknown log format '{format_type}'")

    return LoggingConfig(
        level=cast("Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']", level),
        format=cast("Literal['console', 'json', 'structured', 'rich']", format_type),
        output_file=output_file,
        use_color=bool(use_color),
        include_timestamp=bool(include_timestamp),
        backtrace=bool(backtrace),
        diagnose=bool(diagnose),
    )


def load_config(path: str | Path | None = None) -> DeployFlowConfig:
    """Load configuration from file or return defaults.

    Parameters
    ----------
    path : str | Path | None
        Path to a ``kind: Config`` YAML or TOML file, or None to search

    Returns
    -------
    DeployFlowConfig
        Loaded configuration, or defaults (with env overrides) if no file is found

    Raises
    ------
    FileNotFoundError
        If an explicit ``path`` does not exist
    ConfigError
        If the file is malformed
    """
    config_path = find_config_file(path)
    if config_path is None:
        logger.debug("No configuration file found, using defaults")
        return parse_config({})
    logger.info("Loading configuration from {path}", path=config_path)
    return parse_config(substitute_env_vars(_read_config_data(config_path)))


__all__ = ["find_config_file", "load_config", "parse_config"]
