"""In-memory implementation of SupportsCollectionStorage.

Default history backend when no file path is configured.

Usage::

    from deployflow.stdlib.adapters.memory.collection_memory import InMemoryCollectionStorage

    storage = InMemoryCollectionStorage()
    await storage.asave("runs", "run-1", {"status": "running"})
    doc = await storage.aload("runs", "run-1")
"""

from __future__ import annotations

import copy
from typing import Any


class InMemoryCollectionStorage:
    """In-memory ``SupportsCollectionStorage``.

    Data is stored in nested dicts: ``collection → key → data``. Documents
    are deep-copied on the way in and out so callers cannot mutate history
    behind the store's back.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}

    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Save a document to a collection (upsert semantics)."""
        self._data.setdefault(collection, {})[key] = copy.deepcopy(data)

    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """Load a document by key.  Returns ``None`` if not found."""
        doc = self._data.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Query documents with optional equality filters."""
        docs = self._data.get(collection, {}).values()
        if filters:
            docs = [d for d in docs if all(d.get(k) == v for k, v in filters.items())]
        return [copy.deepcopy(d) for d in docs]

    async def adelete(self, collection: str, key: str) -> bool:
        """Delete a document.  Returns ``True`` if it existed."""
        return self._data.get(collection, {}).pop(key, None) is not None
