"""Simple event data classes emitted by the execution engine."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    run_id: str
    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event."""
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe payload, used by notifiers."""
        payload: dict[str, Any] = {"event": self.__class__.__name__}
        for f in fields(self):
            value = getattr(self, f.name)
            payload[f.name] = list(value) if isinstance(value, tuple) else value
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


# Run events
@dataclass(slots=True)
class RunStarted(Event):
    """A run has started executing stages."""

    pipeline_name: str
    stage_names: tuple[str, ...] = ()

    def log_message(self) -> str:
        stages = len(self.stage_names)
        return f"Run '{self.run_id}' of '{self.pipeline_name}' started ({stages} stages)"


@dataclass(slots=True)
class RunSucceeded(Event):
    """Every stage of the run succeeded."""

    pipeline_name: str
    duration_ms: float

    def log_message(self) -> str:
        return f"Run '{self.run_id}' succeeded in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class RunFailed(Event):
    """The run halted on a failed stage."""

    pipeline_name: str
    stage_name: str
    error: str

    def log_message(self) -> str:
        return f"Run '{self.run_id}' failed at '{self.stage_name}': {self.error}"


@dataclass(slots=True)
class RunCancelled(Event):
    """An operator cancelled the run."""

    pipeline_name: str
    stage_name: str | None = None

    def log_message(self) -> str:
        where = f" during '{self.stage_name}'" if self.stage_name else ""
        return f"Run '{self.run_id}' cancelled{where}"


# Stage events
@dataclass(slots=True)
class StageStarted(Event):
    """A stage was marked running."""

    stage_name: str
    index: int
    kind: str

    def log_message(self) -> str:
        return f"Stage '{self.stage_name}' ({self.kind}) started"


@dataclass(slots=True)
class StageRetrying(Event):
    """A stage attempt failed and will be retried."""

    stage_name: str
    attempt: int
    max_attempts: int
    error: str
    delay: float

    def log_message(self) -> str:
        return (
            f"Stage '{self.stage_name}' attempt {self.attempt}/{self.max_attempts} failed: "
            f"{self.error}; retrying in {self.delay:.2f}s"
        )


@dataclass(slots=True)
class StageSucceeded(Event):
    """A stage completed successfully."""

    stage_name: str
    output: dict[str, Any] | None
    duration_ms: float

    def log_message(self) -> str:
        return f"Stage '{self.stage_name}' succeeded in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class StageFailed(Event):
    """A stage failed terminally."""

    stage_name: str
    error: str
    attempts: int

    def log_message(self) -> str:
        return f"Stage '{self.stage_name}' failed after {self.attempts} attempt(s): {self.error}"


@dataclass(slots=True)
class StageSkipped(Event):
    """An in-flight stage was skipped because the run was cancelled."""

    stage_name: str
    reason: str | None = None

    def log_message(self) -> str:
        return f"Stage '{self.stage_name}' skipped: {self.reason or 'unknown'}"


# Approval events
@dataclass(slots=True)
class ApprovalRequested(Event):
    """The run is waiting for a human decision."""

    stage_name: str
    gates: str | None
    approvers: tuple[str, ...] = ()

    def log_message(self) -> str:
        return f"Approval '{self.stage_name}' requested before '{self.gates}'"


@dataclass(slots=True)
class ApprovalResolved(Event):
    """A decision was recorded for a pending approval."""

    stage_name: str
    decision: str
    decided_by: str | None = None

    def log_message(self) -> str:
        who = f" by {self.decided_by}" if self.decided_by else ""
        return f"Approval '{self.stage_name}' {self.decision}{who}"


TERMINAL_RUN_EVENTS: tuple[type[Event], ...] = (RunSucceeded, RunFailed, RunCancelled)
NOTIFY_EVENTS: tuple[type[Event], ...] = (ApprovalRequested, *TERMINAL_RUN_EVENTS)
