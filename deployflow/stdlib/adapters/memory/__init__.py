"""In-memory storage adapters."""

from deployflow.stdlib.adapters.memory.collection_memory import InMemoryCollectionStorage

__all__ = ["InMemoryCollectionStorage"]
