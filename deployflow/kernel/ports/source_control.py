"""SourceControl port — fetch a revision snapshot of a repository.

Drivers
-------
- ``GitSourceControl`` — shells out to the ``git`` CLI.
- ``MockSourceControl`` — in-memory trees for tests and dry runs.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable


@dataclass(slots=True, frozen=True)
class Snapshot:
    """A checked-out revision on local disk."""

    repository: str
    revision: str
    commit: str
    path: Path


@runtime_checkable
class SourceControl(Protocol):
    """Port for revision-control fetches."""

    @abstractmethod
    async def afetch(self, repository: str, revision: str, destination: Path) -> Snapshot:
        """Materialise ``revision`` of ``repository`` into ``destination``.

        Re-fetching into the same destination replaces its contents.

        Raises
        ------
        ResourceNotFoundError
            If the repository or revision does not exist.
        CollaboratorError
            On any other failure.
        """
        ...


__all__ = ["Snapshot", "SourceControl"]
