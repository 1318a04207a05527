"""Domain models for pipeline run tracking.

Used by the execution engine and :class:`~deployflow.stdlib.lib.run_history.RunHistory`
to track the state of runs, their per-stage results and approval requests.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from deployflow.kernel.exceptions import InvalidTransitionError


class RunStatus(StrEnum):
    """Lifecycle status of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_RUN_STATUSES


class StageStatus(StrEnum):
    """Lifecycle status of a single stage within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STAGE_STATUSES


class ApprovalDecision(StrEnum):
    """Decision recorded on an approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


_TERMINAL_RUN_STATUSES = frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED})
_TERMINAL_STAGE_STATUSES = frozenset(
    {StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.SKIPPED}
)

RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.CANCELLED}),
    RunStatus.RUNNING: frozenset(
        {
            RunStatus.WAITING_APPROVAL,
            RunStatus.SUCCEEDED,
            RunStatus.FAILED,
            RunStatus.CANCELLED,
        }
    ),
    RunStatus.WAITING_APPROVAL: frozenset(
        {RunStatus.RUNNING, RunStatus.FAILED, RunStatus.CANCELLED}
    ),
}

STAGE_TRANSITIONS: dict[StageStatus, frozenset[StageStatus]] = {
    StageStatus.PENDING: frozenset({StageStatus.RUNNING, StageStatus.SKIPPED}),
    StageStatus.RUNNING: frozenset(
        {StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.SKIPPED}
    ),
}


@dataclass(slots=True, frozen=True)
class ArtifactRef:
    """Addressable output of a stage (snapshot, pushed artifact, deployment)."""

    kind: str
    name: str
    location: str
    revision: str | None = None
    digest: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "location": self.location,
            "revision": self.revision,
            "digest": self.digest,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArtifactRef:
        return cls(
            kind=data["kind"],
            name=data["name"],
            location=data["location"],
            revision=data.get("revision"),
            digest=data.get("digest"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(slots=True)
class PipelineRun:
    """Record of a single pipeline execution."""

    run_id: str
    definition_ref: str
    status: RunStatus = RunStatus.PENDING
    current_stage_index: int = 0
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    finished_at: float | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def transition(self, to_status: RunStatus) -> None:
        """Move to ``to_status``, enforcing the run state machine."""
        allowed = RUN_TRANSITIONS.get(self.status, frozenset())
        if to_status not in allowed:
            msg = f"Run '{self.run_id}' cannot move from {self.status} to {to_status}"
            raise InvalidTransitionError(msg)
        self.status = to_status
        if to_status == RunStatus.RUNNING and self.started_at is None:
            self.started_at = time.time()
        if to_status.is_terminal:
            self.finished_at = time.time()


@dataclass(slots=True)
class StageResult:
    """Outcome of one stage within one run. Frozen once terminal."""

    run_id: str
    stage_name: str
    index: int
    kind: str
    status: StageStatus = StageStatus.PENDING
    started_at: float | None = None
    finished_at: float | None = None
    output_ref: ArtifactRef | None = None
    error: str | None = None
    attempts: int = 0

    def transition(
        self,
        to_status: StageStatus,
        *,
        output_ref: ArtifactRef | None = None,
        error: str | None = None,
    ) -> None:
        """Move to ``to_status``; terminal results cannot change again."""
        allowed = STAGE_TRANSITIONS.get(self.status, frozenset())
        if to_status not in allowed:
            msg = (
                f"Stage '{self.stage_name}' of run '{self.run_id}' "
                f"cannot move from {self.status} to {to_status}"
            )
            raise InvalidTransitionError(msg)
        self.status = to_status
        if to_status == StageStatus.RUNNING:
            self.started_at = time.time()
        if to_status.is_terminal:
            self.finished_at = time.time()
            self.output_ref = output_ref
            self.error = error


@dataclass(slots=True)
class ApprovalRequest:
    """Pending or decided human approval for an approval stage."""

    run_id: str
    stage_name: str
    gates: str | None = None
    approvers: tuple[str, ...] = ()
    requested_at: float = field(default_factory=time.time)
    decision: ApprovalDecision = ApprovalDecision.PENDING
    decided_by: str | None = None
    decided_at: float | None = None
    closed: bool = False

    def decide(self, decision: ApprovalDecision, decided_by: str | None) -> None:
        if self.closed:
            msg = f"Approval '{self.stage_name}' of run '{self.run_id}' is closed"
            raise InvalidTransitionError(msg)
        if decision == ApprovalDecision.PENDING:
            msg = "An approval decision must be 'approved' or 'rejected'"
            raise InvalidTransitionError(msg)
        self.decision = decision
        self.decided_by = decided_by
        self.decided_at = time.time()
        self.closed = True


# ----------------------------------------------------------------------
# Storage serialisation
# ----------------------------------------------------------------------


def pipeline_run_to_storage(run: PipelineRun) -> dict[str, Any]:
    """Serialise a PipelineRun to a plain JSON-safe dict."""
    return {
        "run_id": run.run_id,
        "definition_ref": run.definition_ref,
        "status": str(run.status),
        "current_stage_index": run.current_stage_index,
        "created_at": run.created_at,
        "started_at": run.started_at,
        "finished_at": run.finished_at,
        "error": run.error,
        "metadata": dict(run.metadata),
    }


def pipeline_run_from_storage(data: dict[str, Any]) -> PipelineRun:
    return PipelineRun(
        run_id=data["run_id"],
        definition_ref=data["definition_ref"],
        status=RunStatus(data["status"]),
        current_stage_index=data.get("current_stage_index", 0),
        created_at=data.get("created_at", 0.0),
        started_at=data.get("started_at"),
        finished_at=data.get("finished_at"),
        error=data.get("error"),
        metadata=dict(data.get("metadata") or {}),
    )


def stage_result_to_storage(result: StageResult) -> dict[str, Any]:
    """Serialise a StageResult to a plain JSON-safe dict."""
    return {
        "run_id": result.run_id,
        "stage_name": result.stage_name,
        "index": result.index,
        "kind": result.kind,
        "status": str(result.status),
        "started_at": result.started_at,
        "finished_at": result.finished_at,
        "output_ref": result.output_ref.to_dict() if result.output_ref else None,
        "error": result.error,
        "attempts": result.attempts,
    }


def stage_result_from_storage(data: dict[str, Any]) -> StageResult:
    output = data.get("output_ref")
    return StageResult(
        run_id=data["run_id"],
        stage_name=data["stage_name"],
        index=data["index"],
        kind=data["kind"],
        status=StageStatus(data["status"]),
        started_at=data.get("started_at"),
        finished_at=data.get("finished_at"),
        output_ref=ArtifactRef.from_dict(output) if output else None,
        error=data.get("error"),
        attempts=data.get("attempts", 0),
    )


def approval_request_to_storage(request: ApprovalRequest) -> dict[str, Any]:
    return {
        "run_id": request.run_id,
        "stage_name": request.stage_name,
        "gates": request.gates,
        "approvers": list(request.approvers),
        "requested_at": request.requested_at,
        "decision": str(request.decision),
        "decided_by": request.decided_by,
        "decided_at": request.decided_at,
        "closed": request.closed,
    }


def approval_request_from_storage(data: dict[str, Any]) -> ApprovalRequest:
    return ApprovalRequest(
        run_id=data["run_id"],
        stage_name=data["stage_name"],
        gates=data.get("gates"),
        approvers=tuple(data.get("approvers") or ()),
        requested_at=data.get("requested_at", 0.0),
        decision=ApprovalDecision(data.get("decision", "pending")),
        decided_by=data.get("decided_by"),
        decided_at=data.get("decided_at"),
        closed=data.get("closed", False),
    )
