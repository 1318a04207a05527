"""Kernel domain types: pipeline definitions and run records."""

from deployflow.kernel.domain.pipeline_definition import (
    ACTION_CONFIG_MODELS,
    ActionConfig,
    ApprovalConfig,
    ArtifactSpec,
    BuildConfig,
    DeployConfig,
    PipelineDefinition,
    SourceConfig,
    StageKind,
    StageSpec,
)
from deployflow.kernel.domain.pipeline_run import (
    ApprovalDecision,
    ApprovalRequest,
    ArtifactRef,
    PipelineRun,
    RunStatus,
    StageResult,
    StageStatus,
)

__all__ = [
    "ACTION_CONFIG_MODELS",
    "ActionConfig",
    "ApprovalConfig",
    "ApprovalDecision",
    "ApprovalRequest",
    "ArtifactRef",
    "ArtifactSpec",
    "BuildConfig",
    "DeployConfig",
    "PipelineDefinition",
    "PipelineRun",
    "RunStatus",
    "SourceConfig",
    "StageKind",
    "StageResult",
    "StageSpec",
    "StageStatus",
]
