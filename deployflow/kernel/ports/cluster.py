"""Cluster port — apply declarative workload manifests."""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(slots=True, frozen=True)
class ApplyResult:
    """Outcome of an apply. No state beyond accept/reject is reported."""

    accepted: bool
    message: str = ""


@runtime_checkable
class Cluster(Protocol):
    """Port for the container orchestrator.

    Applying the same manifests twice must leave the target unchanged.
    """

    @abstractmethod
    async def aapply(self, manifests: list[dict[str, Any]], environment: str) -> ApplyResult:
        """Apply ``manifests`` to ``environment``."""
        ...


__all__ = ["ApplyResult", "Cluster"]
