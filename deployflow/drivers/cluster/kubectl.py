"""Cluster driver backed by ``kubectl apply``.

Manifests are streamed to ``kubectl --context <context> apply -f -`` on
stdin. ``kubectl apply`` is declarative, so re-applying the same manifests
is a no-op on the cluster.
"""

from __future__ import annotations

from typing import Any

import yaml

from deployflow.drivers._process import run_process
from deployflow.kernel.logging import get_logger
from deployflow.kernel.ports.cluster import ApplyResult

logger = get_logger(__name__)


class KubectlCluster:
    """Apply manifests with kubectl.

    Parameters
    ----------
    contexts : dict[str, str] | None
        ``environment → kubeconfig context``. Environments not listed use
        their own name as the context.
    kubectl : str
        Path or name of the kubectl executable.
    extra_args : list[str] | None
        Appended to every ``apply`` (e.g. ``["--server-side"]``).
    """

    def __init__(
        self,
        contexts: dict[str, str] | None = None,
        kubectl: str = "kubectl",
        extra_args: list[str] | None = None,
    ) -> None:
        self._contexts = dict(contexts or {})
        self._kubectl = kubectl
        self._extra_args = list(extra_args or [])

    async def aapply(self, manifests: list[dict[str, Any]], environment: str) -> ApplyResult:
        context = self._contexts.get(environment, environment)
        document = yaml.safe_dump_all(manifests, sort_keys=False)
        result = await run_process(
            self._kubectl,
            "--context",
            context,
            "apply",
            "-f",
            "-",
            *self._extra_args,
            collaborator="kubectl",
            stdin=document,
        )
        if not result.ok:
            logger.warning(
                "kubectl rejected manifests for {environment}: {stderr}",
                environment=environment,
                stderr=result.stderr.strip(),
            )
            return ApplyResult(accepted=False, message=result.stderr.strip())
        return ApplyResult(accepted=True, message=result.stdout.strip())
