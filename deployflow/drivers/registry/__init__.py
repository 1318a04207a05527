"""ArtifactRegistry drivers."""

from deployflow.drivers.registry.local import LocalArtifactRegistry

__all__ = ["LocalArtifactRegistry"]
