"""Persistent collection storage drivers."""

from deployflow.drivers.storage.json_file import JsonFileCollectionStorage

__all__ = ["JsonFileCollectionStorage"]
