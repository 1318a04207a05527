"""deployflow - deployment pipeline orchestrator.

Runs an ordered pipeline of source, build, approval and deploy stages,
with retries, timeouts, human approval gates and a queryable run history.

Examples
--------
Example usage::

    from deployflow import ExecutionEngine, load

    definition = load("pipeline.yaml")
    run_id = await engine.start(definition)
    run = await engine.wait(run_id)
"""

from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING, Any

try:
    __version__ = version("deployflow")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for source checkouts

from deployflow.compiler import load, load_config, validate
from deployflow.kernel import (
    ActionError,
    ApprovalDecision,
    ArtifactRef,
    ConfigError,
    DeployFlowConfig,
    DeployFlowError,
    PipelineDefinition,
    PipelineRun,
    RetryPolicy,
    RunStatus,
    StageKind,
    StageResult,
    StageStatus,
)
from deployflow.kernel.orchestration import ExecutionEngine
from deployflow.stdlib.adapters import BuildAdapter, DeployAdapter, SourceAdapter
from deployflow.stdlib.lib import RunHistory

if TYPE_CHECKING:
    from deployflow.stdlib.adapters.mock import (
        DryRunAdapter,
        MockArtifactRegistry,
        MockCluster,
        MockSourceControl,
    )

_MOCKS = frozenset({"DryRunAdapter", "MockArtifactRegistry", "MockCluster", "MockSourceControl"})


def __getattr__(name: str) -> Any:
    """Lazy import for mock collaborators.

    Raises
    ------
    AttributeError
        If the requested attribute does not exist
    """
    if name in _MOCKS:
        from deployflow.stdlib.adapters import mock

        return getattr(mock, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "ActionError",
    "ApprovalDecision",
    "ArtifactRef",
    "BuildAdapter",
    "ConfigError",
    "DeployAdapter",
    "DeployFlowConfig",
    "DeployFlowError",
    "DryRunAdapter",
    "ExecutionEngine",
    "MockArtifactRegistry",
    "MockCluster",
    "MockSourceControl",
    "PipelineDefinition",
    "PipelineRun",
    "RetryPolicy",
    "RunHistory",
    "RunStatus",
    "SourceAdapter",
    "StageKind",
    "StageResult",
    "StageStatus",
    "load",
    "load_config",
    "validate",
    "__version__",
]
