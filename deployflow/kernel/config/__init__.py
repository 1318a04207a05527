"""Configuration models. Loading lives in :mod:`deployflow.compiler.config_loader`."""

from deployflow.kernel.config.models import (
    DeployFlowConfig,
    EngineConfig,
    HistoryConfig,
    LoggingConfig,
    NotificationConfig,
)

__all__ = [
    "DeployFlowConfig",
    "EngineConfig",
    "HistoryConfig",
    "LoggingConfig",
    "NotificationConfig",
]
