"""RunHistory lib — append-only record of runs, stage results and approvals.

Written only by the :class:`~deployflow.kernel.orchestration.engine.ExecutionEngine`;
read by the control surface for status reporting. Every record is keyed by
run id so concurrent runs never share a key.

Collections
-----------
- ``runs`` — one document per run, keyed by ``run_id``
- ``stage_results`` — one per stage per run, keyed by ``<run_id>:<index>``
- ``approvals`` — one per approval stage per run, keyed by ``<run_id>:<stage>``

Usage::

    history = RunHistory(JsonFileCollectionStorage(".deployflow/history"))
    runs = await history.alist_runs(status="failed", limit=10)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deployflow.kernel.domain.pipeline_run import (
    StageStatus,
    approval_request_from_storage,
    approval_request_to_storage,
    pipeline_run_from_storage,
    pipeline_run_to_storage,
    stage_result_from_storage,
    stage_result_to_storage,
)
from deployflow.kernel.exceptions import InvalidTransitionError
from deployflow.stdlib.adapters.memory.collection_memory import InMemoryCollectionStorage

if TYPE_CHECKING:
    from deployflow.kernel.domain.pipeline_run import (
        ApprovalRequest,
        PipelineRun,
        RunStatus,
        StageResult,
    )
    from deployflow.kernel.ports.data_store import SupportsCollectionStorage

_RUNS = "runs"
_STAGE_RESULTS = "stage_results"
_APPROVALS = "approvals"


def _stage_key(run_id: str, index: int) -> str:
    """Build a storage key that sorts in stage order."""
    return f"{run_id}:{index:04d}"


class RunHistory:
    """Run history with a pluggable collection backend.

    Exposed queries
    ---------------
    - ``aget_run(run_id)`` — a single run
    - ``alist_runs(status?, limit?)`` — runs newest first
    - ``aget_stage_results(run_id)`` — stage results in stage order
    - ``aget_approvals(run_id)`` — approval requests in request order
    """

    def __init__(self, storage: SupportsCollectionStorage | None = None) -> None:
        """Initialise the history.

        Args
        ----
            storage: Persistent backend.  When ``None`` (default), records
                live only in memory for the lifetime of the process.
        """
        self._storage = storage if storage is not None else InMemoryCollectionStorage()

    # ------------------------------------------------------------------
    # Mutation API (engine only)
    # ------------------------------------------------------------------

    async def record_run(self, run: PipelineRun) -> None:
        """Upsert the current state of a run."""
        await self._storage.asave(_RUNS, run.run_id, pipeline_run_to_storage(run))

    async def record_stage(self, result: StageResult) -> None:
        """Upsert a stage result.

        Raises
        ------
        InvalidTransitionError
            If the stored result is already terminal and differs from
            ``result``.
        """
        key = _stage_key(result.run_id, result.index)
        data = stage_result_to_storage(result)
        existing = await self._storage.aload(_STAGE_RESULTS, key)
        if existing is not None and StageStatus(existing["status"]).is_terminal:
            if existing == data:
                return
            msg = (
                f"Stage '{result.stage_name}' of run '{result.run_id}' is already "
                f"{existing['status']}"
            )
            raise InvalidTransitionError(msg)
        await self._storage.asave(_STAGE_RESULTS, key, data)

    async def record_approval(self, request: ApprovalRequest) -> None:
        """Upsert an approval request."""
        key = f"{request.run_id}:{request.stage_name}"
        await self._storage.asave(_APPROVALS, key, approval_request_to_storage(request))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def aget_run(self, run_id: str) -> PipelineRun | None:
        """Get a run by ID, or ``None`` if unknown."""
        data = await self._storage.aload(_RUNS, run_id)
        return pipeline_run_from_storage(data) if data is not None else None

    async def alist_runs(
        self, status: RunStatus | str | None = None, limit: int = 50
    ) -> list[PipelineRun]:
        """List runs, optionally filtered by status.

        Args
        ----
            status: Only return runs in this status.
            limit: Maximum number of results (default 50).

        Returns
        -------
            Runs, newest first.
        """
        filters = {"status": str(status)} if status else None
        docs = await self._storage.aquery(_RUNS, filters)
        docs.sort(key=lambda d: d.get("created_at") or 0, reverse=True)
        return [pipeline_run_from_storage(d) for d in docs[:limit]]

    async def aget_stage_results(self, run_id: str) -> list[StageResult]:
        """All stage results recorded for a run, in stage order."""
        docs = await self._storage.aquery(_STAGE_RESULTS, {"run_id": run_id})
        docs.sort(key=lambda d: d["index"])
        return [stage_result_from_storage(d) for d in docs]

    async def aget_approvals(self, run_id: str) -> list[ApprovalRequest]:
        docs = await self._storage.aquery(_APPROVALS, {"run_id": run_id})
        docs.sort(key=lambda d: d.get("requested_at") or 0)
        return [approval_request_from_storage(d) for d in docs]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(storage={type(self._storage).__name__})"
