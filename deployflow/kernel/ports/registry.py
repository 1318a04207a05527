"""ArtifactRegistry port — push/pull of named, tagged artifacts."""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable


@dataclass(slots=True, frozen=True)
class PushedArtifact:
    """Where a pushed artifact lives and what it hashes to.

    ``location`` is the reference deploy manifests use (``host/name:tag``);
    ``path`` is the stored copy on disk, for registries that keep one.
    """

    name: str
    tag: str
    location: str
    digest: str
    path: str | None = None


@runtime_checkable
class ArtifactRegistry(Protocol):
    """Port for the artifact/container registry.

    Pushing identical content to an existing tag must be a no-op.
    """

    @abstractmethod
    async def apush(self, name: str, tag: str, source: Path) -> PushedArtifact:
        """Upload ``source`` (file or directory) as ``name:tag``."""
        ...

    @abstractmethod
    async def apull(self, name: str, tag: str, destination: Path) -> Path:
        """Download ``name:tag`` into ``destination`` and return the local path.

        Raises
        ------
        ResourceNotFoundError
            If the artifact does not exist.
        """
        ...

    @abstractmethod
    async def aexists(self, name: str, tag: str) -> bool:
        """Check whether ``name:tag`` has been pushed."""
        ...


__all__ = ["ArtifactRegistry", "PushedArtifact"]
