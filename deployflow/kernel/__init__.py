"""deployflow kernel: domain types, ports, errors and shared services.

The execution engine lives in :mod:`deployflow.kernel.orchestration` and is
not re-exported here, since it depends on the compiler's validation while
the compiler depends on these types.
"""

from deployflow.kernel.config import DeployFlowConfig
from deployflow.kernel.domain import (
    ApprovalDecision,
    ApprovalRequest,
    ArtifactRef,
    PipelineDefinition,
    PipelineRun,
    RunStatus,
    StageKind,
    StageResult,
    StageSpec,
    StageStatus,
)
from deployflow.kernel.exceptions import (
    ActionError,
    ConfigError,
    DeployFlowError,
    InvalidTransitionError,
    RunNotFoundError,
)
from deployflow.kernel.logging import configure_logging, get_logger
from deployflow.kernel.ports import (
    ActionAdapter,
    ActionContext,
    ArtifactRegistry,
    Cluster,
    Notifier,
    Observer,
    SourceControl,
    SupportsCollectionStorage,
)
from deployflow.kernel.retry import RetryPolicy

__all__ = [
    "ActionAdapter",
    "ActionContext",
    "ActionError",
    "ApprovalDecision",
    "ApprovalRequest",
    "ArtifactRef",
    "ArtifactRegistry",
    "Cluster",
    "ConfigError",
    "DeployFlowConfig",
    "DeployFlowError",
    "InvalidTransitionError",
    "Notifier",
    "Observer",
    "PipelineDefinition",
    "PipelineRun",
    "RetryPolicy",
    "RunNotFoundError",
    "RunStatus",
    "SourceControl",
    "StageKind",
    "StageResult",
    "StageSpec",
    "StageStatus",
    "SupportsCollectionStorage",
    "configure_logging",
    "get_logger",
]
