"""Action adapter port — the uniform contract for stage work.

Every non-approval stage kind is backed by an adapter implementing
:class:`ActionAdapter`. The engine hands each call an
:class:`ActionContext` carrying the outputs of earlier stages and the
run's abort signal.

Adapters must be idempotent under retry: invoking ``aexecute`` again with
the same config must not produce side effects distinguishable from a
single successful call.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from deployflow.kernel.exceptions import ActionAbortedError

if TYPE_CHECKING:
    from deployflow.kernel.domain.pipeline_definition import ActionConfig
    from deployflow.kernel.domain.pipeline_run import ArtifactRef


@dataclass(slots=True)
class ActionContext:
    """Per-invocation context passed to an adapter.

    Attributes
    ----------
    run_id : str
        Run the stage belongs to.
    stage_name : str
        Stage being executed.
    inputs : dict[str, ArtifactRef]
        Outputs of the stages this stage consumes, keyed by role
        (``"source"``, ``"artifact"``).
    abort : asyncio.Event
        Set by the engine when the run is cancelled.
    attempt : int
        1-indexed attempt number.
    """

    run_id: str
    stage_name: str
    inputs: dict[str, ArtifactRef] = field(default_factory=dict)
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    attempt: int = 1

    @property
    def aborted(self) -> bool:
        return self.abort.is_set()

    def raise_if_aborted(self) -> None:
        """Raise :class:`ActionAbortedError` once the run has been cancelled."""
        if self.abort.is_set():
            raise ActionAbortedError(f"Stage '{self.stage_name}' aborted")


@runtime_checkable
class ActionAdapter(Protocol):
    """Port for executing one stage's external operation."""

    @abstractmethod
    async def aexecute(
        self,
        config: ActionConfig,
        timeout: float | None,
        context: ActionContext,
    ) -> ArtifactRef:
        """Perform the stage's work.

        Args
        ----
            config: The stage's validated action config.
            timeout: Seconds allowed for this attempt (the engine enforces it too).
            context: Run/stage identity, upstream outputs and abort signal.

        Returns
        -------
            Reference to the produced output.

        Raises
        ------
        ActionError
            On any failure of the external operation.
        """
        ...


__all__ = ["ActionAdapter", "ActionContext"]
