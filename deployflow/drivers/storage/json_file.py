"""File-backed implementation of SupportsCollectionStorage.

Each collection is a directory under ``base_path`` and each document a
pretty-printed JSON file named after its key. Writes go through a
temporary file and ``os.replace`` so a crash never leaves a torn
document behind. All file access goes through ``aiofiles`` so concurrent
runs never block the event loop on disk I/O.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from deployflow.kernel.exceptions import CollaboratorError
from deployflow.kernel.logging import get_logger

logger = get_logger(__name__)


class JsonFileCollectionStorage:
    """Persistent collection storage backed by JSON files.

    Parameters
    ----------
    base_path : str | Path
        Root directory for all collections.
    create_dirs : bool, default=True
        Create ``base_path`` if it does not exist.

    Examples
    --------
    Example usage::

        storage = JsonFileCollectionStorage(".deployflow/history")
        await storage.asave("runs", run_id, {"status": "running"})
    """

    def __init__(self, base_path: str | Path = ".deployflow/history", create_dirs: bool = True):
        self.base_path = Path(base_path)
        if create_dirs:
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.debug("Initialized JSON history storage at '{path}'", path=self.base_path)

    def _file_path(self, collection: str, key: str) -> Path:
        # Keep keys filesystem-safe
        safe_key = key.replace("/", "_").replace(":", "_")
        return self.base_path / collection / f"{safe_key}.json"

    async def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
            data = json.loads(content)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise CollaboratorError("JsonFileCollectionStorage", f"cannot read {path}: {e}") from e
        return data if isinstance(data, dict) else None

    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Write ``data`` to ``<base>/<collection>/<key>.json``."""
        path = self._file_path(collection, key)
        tmp = path.with_suffix(".json.tmp")
        content = json.dumps(data, indent=2, default=str)
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
                await f.write(content)
            await aiofiles.os.replace(tmp, path)
        except OSError as e:
            raise CollaboratorError("JsonFileCollectionStorage", f"cannot write {path}: {e}") from e

    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """Load a document by key.  Returns ``None`` if not found."""
        return await self._read(self._file_path(collection, key))

    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Scan every document in ``collection`` and apply equality filters."""
        directory = self.base_path / collection
        if not await aiofiles.os.path.isdir(directory):
            return []
        names = sorted(n for n in await aiofiles.os.listdir(directory) if n.endswith(".json"))
        docs: list[dict[str, Any]] = []
        for name in names:
            doc = await self._read(directory / name)
            if doc is None:
                continue
            if filters and not all(doc.get(k) == v for k, v in filters.items()):
                continue
            docs.append(doc)
        return docs

    async def adelete(self, collection: str, key: str) -> bool:
        """Delete a document.  Returns ``True`` if it existed."""
        try:
            await aiofiles.os.remove(self._file_path(collection, key))
        except FileNotFoundError:
            return False
        return True
