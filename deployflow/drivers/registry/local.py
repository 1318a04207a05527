"""Filesystem artifact registry.

Artifacts are stored as ``<root>/<name>/<tag>/`` directory trees with a
``manifest.json`` recording the sha256 digest of the content. Pushing
identical content to an existing tag leaves the stored copy untouched.

Pushed artifacts are addressed as ``<host>/<name>:<tag>``, the form image
placeholders in deploy manifests expect; the stored copy's directory is
reported separately as ``PushedArtifact.path``. Tree copies and hashing
run in worker threads and the manifest is read and written with
``aiofiles``, so a push never blocks other runs.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import shutil
from pathlib import Path

import aiofiles
import aiofiles.os

from deployflow.kernel.exceptions import CollaboratorError, ResourceNotFoundError
from deployflow.kernel.logging import get_logger
from deployflow.kernel.ports.registry import PushedArtifact

logger = get_logger(__name__)

_MANIFEST = "manifest.json"
_CONTENT = "content"


def tree_digest(source: Path) -> str:
    """sha256 over the relative paths and bytes of every file under ``source``."""
    digest = hashlib.sha256()
    files = [source] if source.is_file() else sorted(p for p in source.rglob("*") if p.is_file())
    for path in files:
        relative = path.name if path == source else path.relative_to(source).as_posix()
        digest.update(relative.encode() + b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return "sha256:" + digest.hexdigest()


def _store(source: Path, tag_dir: Path) -> None:
    if tag_dir.exists():
        shutil.rmtree(tag_dir)
    content = tag_dir / _CONTENT
    if source.is_file():
        content.mkdir(parents=True)
        shutil.copy2(source, content / source.name)
    else:
        shutil.copytree(source, content)


class LocalArtifactRegistry:
    """Registry on the local filesystem.

    Parameters
    ----------
    root : str | Path
        Directory holding all artifacts.
    host : str
        Registry host used in artifact references.
    """

    def __init__(
        self, root: str | Path = ".deployflow/registry", host: str = "registry.local"
    ) -> None:
        self.root = Path(root)
        self.host = host

    def _tag_dir(self, name: str, tag: str) -> Path:
        for part in (name, tag):
            if not part or "/" in part or part in (".", ".."):
                reason = f"invalid artifact reference '{name}:{tag}'"
                raise CollaboratorError("LocalArtifactRegistry", reason)
        return self.root / name / tag

    def _pushed(self, name: str, tag: str, digest: str) -> PushedArtifact:
        return PushedArtifact(
            name=name,
            tag=tag,
            location=f"{self.host}/{name}:{tag}",
            digest=digest,
            path=str((self._tag_dir(name, tag) / _CONTENT).absolute()),
        )

    async def _stored_digest(self, tag_dir: Path) -> str | None:
        try:
            async with aiofiles.open(tag_dir / _MANIFEST, encoding="utf-8") as f:
                return json.loads(await f.read())["digest"]
        except (OSError, ValueError, KeyError):
            return None

    async def apush(self, name: str, tag: str, source: Path) -> PushedArtifact:
        if not await aiofiles.os.path.exists(source):
            raise CollaboratorError("LocalArtifactRegistry", f"nothing to push at {source}")
        tag_dir = self._tag_dir(name, tag)
        digest = await asyncio.to_thread(tree_digest, source)

        if await self._stored_digest(tag_dir) == digest:
            logger.debug("{name}:{tag} already holds {digest}", name=name, tag=tag, digest=digest)
            return self._pushed(name, tag, digest)

        manifest = {"name": name, "tag": tag, "digest": digest}
        try:
            await asyncio.to_thread(_store, source, tag_dir)
            async with aiofiles.open(tag_dir / _MANIFEST, "w", encoding="utf-8") as f:
                await f.write(json.dumps(manifest, indent=2))
        except OSError as e:
            reason = f"push of {name}:{tag} failed: {e}"
            raise CollaboratorError("LocalArtifactRegistry", reason) from e
        return self._pushed(name, tag, digest)

    async def apull(self, name: str, tag: str, destination: Path) -> Path:
        tag_dir = self._tag_dir(name, tag)
        if await self._stored_digest(tag_dir) is None:
            name_dir = self.root / name
            available = (
                sorted(await aiofiles.os.listdir(name_dir))
                if await aiofiles.os.path.isdir(name_dir)
                else []
            )
            raise ResourceNotFoundError("artifact", f"{name}:{tag}", available)
        await asyncio.to_thread(
            shutil.copytree, tag_dir / _CONTENT, destination, dirs_exist_ok=True
        )
        return destination

    async def aexists(self, name: str, tag: str) -> bool:
        return await self._stored_digest(self._tag_dir(name, tag)) is not None
