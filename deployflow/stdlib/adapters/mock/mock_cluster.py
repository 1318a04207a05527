"""Mock Cluster implementation for testing purposes."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from deployflow.kernel.ports.cluster import ApplyResult


@dataclass
class RecordedApply:
    """A recorded apply call for test assertions."""

    environment: str
    manifests: list[dict[str, Any]]


class MockCluster:
    """Cluster that keeps applied resources in memory.

    Parameters
    ----------
    reject : dict[str, str] | None
        ``environment → reason`` for environments that refuse every apply.

    Examples
    --------
    Example usage::

        cluster = MockCluster(reject={"production": "quota exceeded"})
        result = await cluster.aapply([{"kind": "Deployment"}], "staging")
        assert result.accepted
    """

    def __init__(self, reject: dict[str, str] | None = None) -> None:
        self.reject = dict(reject or {})
        self.applies: list[RecordedApply] = []
        # environment → "kind/name" → manifest
        self.resources: dict[str, dict[str, dict[str, Any]]] = {}

    async def aapply(self, manifests: list[dict[str, Any]], environment: str) -> ApplyResult:
        self.applies.append(RecordedApply(environment, copy.deepcopy(manifests)))
        if environment in self.reject:
            return ApplyResult(accepted=False, message=self.reject[environment])

        state = self.resources.setdefault(environment, {})
        changed = 0
        for manifest in manifests:
            key = f"{manifest.get('kind')}/{(manifest.get('metadata') or {}).get('name')}"
            if state.get(key) != manifest:
                state[key] = copy.deepcopy(manifest)
                changed += 1
        unchanged = len(manifests) - changed
        return ApplyResult(accepted=True, message=f"{changed} configured, {unchanged} unchanged")
