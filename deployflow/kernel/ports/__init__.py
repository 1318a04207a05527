"""Ports: protocols the engine and adapters depend on."""

from deployflow.kernel.ports.action import ActionAdapter, ActionContext
from deployflow.kernel.ports.cluster import ApplyResult, Cluster
from deployflow.kernel.ports.data_store import SupportsCollectionStorage
from deployflow.kernel.ports.notifier import Notifier, Observer
from deployflow.kernel.ports.registry import ArtifactRegistry, PushedArtifact
from deployflow.kernel.ports.source_control import Snapshot, SourceControl

__all__ = [
    "ActionAdapter",
    "ActionContext",
    "ApplyResult",
    "ArtifactRegistry",
    "Cluster",
    "Notifier",
    "Observer",
    "PushedArtifact",
    "Snapshot",
    "SourceControl",
    "SupportsCollectionStorage",
]
