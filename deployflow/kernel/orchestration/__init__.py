"""Run orchestration: the execution engine and the events it emits."""

from deployflow.kernel.orchestration.engine import ExecutionEngine
from deployflow.kernel.orchestration.events import (
    NOTIFY_EVENTS,
    TERMINAL_RUN_EVENTS,
    ApprovalRequested,
    ApprovalResolved,
    Event,
    RunCancelled,
    RunFailed,
    RunStarted,
    RunSucceeded,
    StageFailed,
    StageRetrying,
    StageSkipped,
    StageStarted,
    StageSucceeded,
)

__all__ = [
    "NOTIFY_EVENTS",
    "TERMINAL_RUN_EVENTS",
    "ApprovalRequested",
    "ApprovalResolved",
    "Event",
    "ExecutionEngine",
    "RunCancelled",
    "RunFailed",
    "RunStarted",
    "RunSucceeded",
    "StageFailed",
    "StageRetrying",
    "StageSkipped",
    "StageStarted",
    "StageSucceeded",
]
