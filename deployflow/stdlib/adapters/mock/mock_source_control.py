"""Mock SourceControl implementation for testing purposes."""

from __future__ import annotations

import hashlib
import shutil
from typing import TYPE_CHECKING

from deployflow.kernel.exceptions import ResourceNotFoundError
from deployflow.kernel.ports.source_control import Snapshot

if TYPE_CHECKING:
    from pathlib import Path


class MockSourceControl:
    """In-memory repositories materialised on fetch.

    Parameters
    ----------
    trees : dict[str, dict[str, dict[str, str]]] | None
        ``repository → revision → {relative path: file content}``.

    Examples
    --------
    Example usage::

        scm = MockSourceControl({"acme/web": {"main": {"k8s/app.yaml": "kind: Deployment"}}})
        snapshot = await scm.afetch("acme/web", "main", tmp_path / "web")
        assert (snapshot.path / "k8s/app.yaml").exists()
    """

    def __init__(self, trees: dict[str, dict[str, dict[str, str]]] | None = None) -> None:
        self.trees = trees or {}
        self.fetches: list[tuple[str, str]] = []

    def add(self, repository: str, revision: str, files: dict[str, str]) -> None:
        self.trees.setdefault(repository, {})[revision] = dict(files)

    async def afetch(self, repository: str, revision: str, destination: Path) -> Snapshot:
        self.fetches.append((repository, revision))
        revisions = self.trees.get(repository)
        if revisions is None:
            raise ResourceNotFoundError("repository", repository, sorted(self.trees))
        files = revisions.get(revision)
        if files is None:
            available = sorted(revisions)
            raise ResourceNotFoundError("revision", f"{repository}@{revision}", available)

        if destination.exists():
            shutil.rmtree(destination)
        destination.mkdir(parents=True)
        digest = hashlib.sha1(usedforsecurity=False)
        for relative, content in sorted(files.items()):
            path = destination / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            digest.update(f"{relative}\0{content}\0".encode())
        return Snapshot(
            repository=repository, revision=revision, commit=digest.hexdigest(), path=destination
        )
