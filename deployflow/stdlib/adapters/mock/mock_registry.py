"""Mock ArtifactRegistry implementation for testing purposes."""

from __future__ import annotations

import hashlib
from pathlib import Path

from deployflow.kernel.exceptions import ResourceNotFoundError
from deployflow.kernel.ports.registry import PushedArtifact


def _read_tree(source: Path) -> dict[str, bytes]:
    if source.is_file():
        return {source.name: source.read_bytes()}
    return {
        str(path.relative_to(source)): path.read_bytes()
        for path in sorted(source.rglob("*"))
        if path.is_file()
    }


class MockArtifactRegistry:
    """Registry that keeps pushed content in memory.

    ``pushes`` counts every ``apush`` call, including no-op re-pushes of
    identical content.
    """

    def __init__(self, host: str = "registry.local") -> None:
        self.host = host
        self.artifacts: dict[tuple[str, str], dict[str, bytes]] = {}
        self.pushes: list[tuple[str, str]] = []

    @staticmethod
    def _digest(files: dict[str, bytes]) -> str:
        digest = hashlib.sha256()
        for name, content in sorted(files.items()):
            digest.update(name.encode() + b"\0" + content)
        return "sha256:" + digest.hexdigest()

    async def apush(self, name: str, tag: str, source: Path) -> PushedArtifact:
        self.pushes.append((name, tag))
        files = _read_tree(source)
        self.artifacts[(name, tag)] = files
        return PushedArtifact(
            name=name, tag=tag, location=f"{self.host}/{name}:{tag}", digest=self._digest(files)
        )

    async def apull(self, name: str, tag: str, destination: Path) -> Path:
        files = self.artifacts.get((name, tag))
        if files is None:
            raise ResourceNotFoundError("artifact", f"{name}:{tag}")
        for relative, content in files.items():
            path = destination / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        return destination

    async def aexists(self, name: str, tag: str) -> bool:
        return (name, tag) in self.artifacts
