"""In-memory collaborators for tests and dry runs."""

from .dry_run import DryRunAdapter
from .mock_cluster import MockCluster, RecordedApply
from .mock_registry import MockArtifactRegistry
from .mock_source_control import MockSourceControl

__all__ = [
    "DryRunAdapter",
    "MockArtifactRegistry",
    "MockCluster",
    "MockSourceControl",
    "RecordedApply",
]
