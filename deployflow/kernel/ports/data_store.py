"""Collection storage port used by the run history.

Adapters implement :class:`SupportsCollectionStorage`; callers may check
it at runtime with ``isinstance(store, SupportsCollectionStorage)``.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SupportsCollectionStorage(Protocol):
    """Collection-scoped document storage.

    Each record is a JSON-safe ``dict[str, Any]`` identified by a string
    key within a named collection.

    Example::

        class SQLCollectionStorage:
            async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
                ...
    """

    @abstractmethod
    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Save a document to a collection (upsert semantics).

        Args
        ----
            collection: The collection name (e.g. ``"runs"``).
            key: Unique identifier within the collection.
            data: The document to store.
        """
        ...

    @abstractmethod
    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """Load a document by key.  Returns ``None`` if not found."""
        ...

    @abstractmethod
    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Return documents whose fields equal every value in ``filters``."""
        ...

    @abstractmethod
    async def adelete(self, collection: str, key: str) -> bool:
        """Delete a document.  Returns ``True`` if it existed."""
        ...


__all__ = ["SupportsCollectionStorage"]
