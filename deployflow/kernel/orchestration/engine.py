"""Execution engine — runs pipeline instances.

Each run executes on its own :class:`asyncio.Task`. Stages within a run are
strictly sequential: a stage starts only after its predecessor reached a
terminal status. Adapter failures are retried per the stage's
:class:`~deployflow.kernel.retry.RetryPolicy`; approval stages suspend the
run until :meth:`ExecutionEngine.resolve_approval` is called.

Example::

    engine = ExecutionEngine(
        adapters={
            StageKind.SOURCE: SourceAdapter(git, workspace),
            StageKind.BUILD: BuildAdapter(registry),
            StageKind.DEPLOY: DeployAdapter(cluster),
        },
        history=RunHistory(),
    )
    run_id = await engine.start(definition)
    run = await engine.wait(run_id)          # suspended on approval
    await engine.resolve_approval(run_id, "approve", "approved", "alice")
    run = await engine.wait(run_id)          # succeeded
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
import uuid
from functools import partial
from typing import TYPE_CHECKING, Any

from deployflow.compiler.definition_loader import validate
from deployflow.kernel.domain.pipeline_definition import ApprovalConfig, StageKind
from deployflow.kernel.domain.pipeline_run import (
    ApprovalDecision,
    ApprovalRequest,
    ArtifactRef,
    PipelineRun,
    RunStatus,
    StageResult,
    StageStatus,
)
from deployflow.kernel.exceptions import (
    ActionAbortedError,
    ActionError,
    ActionTimeoutError,
    ApprovalRejectedError,
    ApprovalTimeoutError,
    CollaboratorError,
    ConfigError,
    InvalidTransitionError,
    RunCancelledError,
    RunNotFoundError,
    describe_error,
)
from deployflow.kernel.logging import get_logger, reset_correlation_id, set_correlation_id
from deployflow.kernel.orchestration.events import (
    NOTIFY_EVENTS,
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
from deployflow.kernel.ports.action import ActionContext
from deployflow.kernel.retry import execute_with_retry
from deployflow.stdlib.lib.run_history import RunHistory

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from deployflow.kernel.domain.pipeline_definition import PipelineDefinition, StageSpec
    from deployflow.kernel.ports.action import ActionAdapter
    from deployflow.kernel.ports.notifier import Notifier, Observer

logger = get_logger(__name__)

# Sentinel delivered through the decision future when a run is cancelled
_CANCELLED = None


class _RunHandle:
    """Internal bookkeeping for one run."""

    __slots__ = (
        "abort",
        "approval",
        "cancelled",
        "current",
        "decision",
        "definition",
        "outputs",
        "run",
        "settled",
        "task",
    )

    def __init__(self, run: PipelineRun, definition: PipelineDefinition) -> None:
        self.run = run
        self.definition = definition
        self.task: asyncio.Task[None] | None = None
        self.abort = asyncio.Event()
        # Set while the run is suspended on approval or terminal
        self.settled = asyncio.Event()
        self.decision: asyncio.Future[ApprovalDecision | None] | None = None
        self.approval: ApprovalRequest | None = None
        self.current: StageResult | None = None
        self.outputs: dict[str, ArtifactRef] = {}
        self.cancelled = False


class ExecutionEngine:
    """Runs pipeline definitions against registered action adapters.

    Parameters
    ----------
    adapters : Mapping[StageKind | str, ActionAdapter]
        Adapter per non-approval stage kind.
    history : RunHistory, optional
        Where every transition is persisted. Defaults to an in-memory history.
    notifier : Notifier, optional
        Told when a run waits for approval and when it reaches a terminal status.
    observers : Iterable[Observer]
        Read-only event observers. Failures are logged and ignored.
    default_stage_timeout : float, optional
        Per-attempt timeout for stages that declare none. Never applied to
        approval stages.
    observer_timeout : float
        Seconds each observer or notifier call may take.
    """

    def __init__(
        self,
        adapters: Mapping[StageKind | str, ActionAdapter],
        *,
        history: RunHistory | None = None,
        notifier: Notifier | None = None,
        observers: Iterable[Observer] = (),
        default_stage_timeout: float | None = None,
        observer_timeout: float = 5.0,
    ) -> None:
        self._adapters = {StageKind(kind): adapter for kind, adapter in adapters.items()}
        self._history = history if history is not None else RunHistory()
        self._notifier = notifier
        self._observers = list(observers)
        self._default_stage_timeout = default_stage_timeout
        self._observer_timeout = observer_timeout
        self._handles: dict[str, _RunHandle] = {}

    @property
    def history(self) -> RunHistory:
        return self._history

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def start(
        self, definition: PipelineDefinition, *, metadata: dict[str, Any] | None = None
    ) -> str:
        """Validate ``definition`` and schedule a new run.

        Returns
        -------
            The new run's id.

        Raises
        ------
        ConfigError
            If the definition is invalid or a stage kind has no adapter.
        """
        validate(definition)
        for index, stage in enumerate(definition.stages):
            if stage.kind != StageKind.APPROVAL and stage.kind not in self._adapters:
                raise ConfigError(
                    f"stages[{index}].kind", f"no adapter registered for '{stage.kind}'"
                )

        run = PipelineRun(
            run_id=uuid.uuid4().hex,
            definition_ref=definition.name,
            metadata=dict(metadata or {}),
        )
        await self._history.record_run(run)
        run.transition(RunStatus.RUNNING)
        await self._history.record_run(run)

        handle = _RunHandle(run, definition)
        self._handles[run.run_id] = handle
        handle.task = asyncio.create_task(
            self._execute(handle), name=f"deployflow-run-{run.run_id}"
        )
        logger.info(
            "Started run {run_id} of '{pipeline}'", run_id=run.run_id, pipeline=definition.name
        )
        return run.run_id

    async def resolve_approval(
        self,
        run_id: str,
        stage_name: str,
        decision: ApprovalDecision | str,
        decided_by: str | None = None,
    ) -> None:
        """Record a decision for the approval the run is waiting on.

        Raises
        ------
        RunNotFoundError
            If ``run_id`` is unknown.
        InvalidTransitionError
            If the run is not waiting on ``stage_name`` or the decision is
            not ``approved``/``rejected``.
        """
        handle = await self._live_handle(run_id, f"not waiting for approval at '{stage_name}'")
        request = handle.approval
        if (
            handle.run.status != RunStatus.WAITING_APPROVAL
            or request is None
            or request.stage_name != stage_name
            or handle.decision is None
        ):
            msg = f"Run '{run_id}' is not waiting for approval at '{stage_name}'"
            raise InvalidTransitionError(msg)
        try:
            decision = ApprovalDecision(decision)
        except ValueError as e:
            raise InvalidTransitionError(f"Unknown approval decision '{decision}'") from e

        request.decide(decision, decided_by)
        handle.settled.clear()
        if not handle.decision.done():
            handle.decision.set_result(decision)

        await self._history.record_approval(request)
        await self._emit(
            ApprovalResolved(
                run_id=run_id,
                stage_name=stage_name,
                decision=str(decision),
                decided_by=decided_by,
            )
        )

    async def cancel(self, run_id: str) -> None:
        """Cancel a running or suspended run.

        The in-flight stage is marked skipped and any pending approval is
        closed. Adapters observe the abort signal cooperatively; a result
        they return after cancellation is discarded.

        Raises
        ------
        RunNotFoundError
            If ``run_id`` is unknown.
        InvalidTransitionError
            If the run is not running or waiting for approval.
        """
        handle = await self._live_handle(run_id, "finished and cannot be cancelled")
        run = handle.run
        if run.status not in (RunStatus.RUNNING, RunStatus.WAITING_APPROVAL):
            msg = f"Run '{run_id}' is {run.status} and cannot be cancelled"
            raise InvalidTransitionError(msg)

        handle.cancelled = True
        handle.abort.set()
        error = describe_error(RunCancelledError(run_id))
        run.error = error
        run.transition(RunStatus.CANCELLED)

        skipped = handle.current
        if skipped is not None and not skipped.status.is_terminal:
            skipped.transition(StageStatus.SKIPPED, error=error)
        else:
            skipped = None
        request = handle.approval
        if request is not None and not request.closed:
            request.closed = True
        if handle.decision is not None and not handle.decision.done():
            handle.decision.set_result(_CANCELLED)

        if skipped is not None:
            await self._history.record_stage(skipped)
        if request is not None:
            await self._history.record_approval(request)
        await self._history.record_run(run)
        handle.settled.set()

        if skipped is not None:
            await self._emit(
                StageSkipped(run_id=run_id, stage_name=skipped.stage_name, reason=error)
            )
        await self._emit(
            RunCancelled(
                run_id=run_id,
                pipeline_name=handle.definition.name,
                stage_name=skipped.stage_name if skipped else None,
            )
        )

    async def wait(self, run_id: str, timeout: float | None = None) -> PipelineRun:
        """Wait until the run is terminal or suspended on an approval.

        Raises
        ------
        RunNotFoundError
            If ``run_id`` is unknown.
        TimeoutError
            If ``timeout`` elapses first.
        """
        handle = self._handles.get(run_id)
        if handle is None:
            return await self.get_run(run_id)
        async with asyncio.timeout(timeout):
            await handle.settled.wait()
        return dataclasses.replace(handle.run)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_run(self, run_id: str) -> PipelineRun:
        """Snapshot of a run's current state."""
        handle = self._handles.get(run_id)
        if handle is not None:
            return dataclasses.replace(handle.run)
        run = await self._history.aget_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def get_stage_results(self, run_id: str) -> list[StageResult]:
        """Stage results recorded so far, in stage order."""
        await self.get_run(run_id)
        return await self._history.aget_stage_results(run_id)

    async def get_approval(self, run_id: str) -> ApprovalRequest | None:
        """Most recent approval request of a run, if any."""
        handle = self._handles.get(run_id)
        if handle is not None and handle.approval is not None:
            return dataclasses.replace(handle.approval)
        await self.get_run(run_id)
        approvals = await self._history.aget_approvals(run_id)
        return approvals[-1] if approvals else None

    async def list_runs(
        self, status: RunStatus | str | None = None, limit: int = 50
    ) -> list[PipelineRun]:
        """Runs known to the history, newest first."""
        return await self._history.alist_runs(status=status, limit=limit)

    async def aclose(self) -> None:
        """Cancel outstanding run tasks and wait for them to unwind.

        Interrupted runs are recorded as cancelled, with their in-flight
        stage skipped, so the history never shows them as still running.
        """
        handles = [
            h for h in self._handles.values() if h.task is not None and not h.task.done()
        ]
        for handle in handles:
            handle.task.cancel()  # type: ignore[union-attr]
        if not handles:
            return
        await asyncio.gather(*(h.task for h in handles), return_exceptions=True)
        for handle in handles:
            # A task cancelled before its first step never recorded the interruption
            if not handle.run.status.is_terminal:
                await self.cancel(handle.run.run_id)
            self._handles.pop(handle.run.run_id, None)
        logger.info("Engine closed with {count} run(s) interrupted", count=len(handles))

    async def _live_handle(self, run_id: str, reason: str) -> _RunHandle:
        """Handle of an unfinished run; finished runs are only in the history."""
        handle = self._handles.get(run_id)
        if handle is None:
            run = await self.get_run(run_id)
            raise InvalidTransitionError(f"Run '{run_id}' is {run.status}: {reason}")
        return handle

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def _execute(self, handle: _RunHandle) -> None:
        run = handle.run
        definition = handle.definition
        token = set_correlation_id(run.run_id)
        stage_name = definition.stages[0].name
        try:
            await self._emit(
                RunStarted(
                    run_id=run.run_id,
                    pipeline_name=definition.name,
                    stage_names=tuple(definition.stage_names),
                )
            )
            for index, stage in enumerate(definition.stages):
                if handle.cancelled:
                    return
                stage_name = stage.name
                run.current_stage_index = index
                await self._history.record_run(run)
                if not await self._run_stage(handle, index, stage):
                    return
            if handle.cancelled:
                return
            run.transition(RunStatus.SUCCEEDED)
            await self._history.record_run(run)
            duration_ms = ((run.finished_at or 0) - (run.started_at or 0)) * 1000
            await self._emit(
                RunSucceeded(
                    run_id=run.run_id, pipeline_name=definition.name, duration_ms=duration_ms
                )
            )
        except asyncio.CancelledError:
            if not handle.cancelled and not run.status.is_terminal:
                logger.warning("Run {run_id} interrupted by engine shutdown", run_id=run.run_id)
                await self.cancel(run.run_id)
            raise
        except Exception as e:
            if handle.cancelled:
                logger.debug(
                    "Run {run_id} unwound after cancellation: {error}", run_id=run.run_id, error=e
                )
                return
            logger.exception("Run {run_id} crashed in the engine", run_id=run.run_id)
            current = handle.current
            if current is not None and not current.status.is_terminal:
                await self._fail_stage(handle, current, describe_error(e))
            else:
                await self._fail_run(handle, stage_name, describe_error(e))
        finally:
            handle.settled.set()
            if run.status.is_terminal:
                # Finished runs are answered from the history
                self._handles.pop(run.run_id, None)
            reset_correlation_id(token)

    async def _run_stage(self, handle: _RunHandle, index: int, stage: StageSpec) -> bool:
        """Execute one stage. Returns ``True`` when the run may proceed."""
        run = handle.run
        result = StageResult(
            run_id=run.run_id, stage_name=stage.name, index=index, kind=str(stage.kind)
        )
        handle.current = result
        result.transition(StageStatus.RUNNING)
        await self._history.record_stage(result)
        await self._emit(
            StageStarted(
                run_id=run.run_id, stage_name=stage.name, index=index, kind=str(stage.kind)
            )
        )

        if stage.kind == StageKind.APPROVAL:
            return await self._await_approval(handle, stage, result)

        try:
            output = await self._invoke_with_retry(handle, stage, result)
        except Exception as e:
            if handle.cancelled:
                logger.debug(
                    "Discarding failure of '{stage}' after cancellation: {error}",
                    stage=stage.name,
                    error=e,
                )
                return False
            await self._fail_stage(handle, result, describe_error(e))
            return False

        if handle.cancelled:
            logger.debug("Discarding late result of cancelled stage '{stage}'", stage=stage.name)
            return False
        result.transition(StageStatus.SUCCEEDED, output_ref=output)
        handle.outputs[stage.name] = output
        await self._history.record_stage(result)
        await self._emit(
            StageSucceeded(
                run_id=run.run_id,
                stage_name=stage.name,
                output=output.to_dict(),
                duration_ms=_duration_ms(result),
            )
        )
        return True

    async def _invoke_with_retry(
        self, handle: _RunHandle, stage: StageSpec, result: StageResult
    ) -> ArtifactRef:
        adapter = self._adapters[stage.kind]
        timeout = stage.timeout if stage.timeout is not None else self._default_stage_timeout
        inputs = self._inputs_for(handle, stage)

        async def invoke() -> ArtifactRef:
            if handle.abort.is_set():
                raise ActionAbortedError(f"Stage '{stage.name}' aborted before attempt")
            result.attempts += 1
            context = ActionContext(
                run_id=handle.run.run_id,
                stage_name=stage.name,
                inputs=dict(inputs),
                abort=handle.abort,
                attempt=result.attempts,
            )
            deadline = asyncio.timeout(timeout)
            try:
                async with deadline:
                    output = await adapter.aexecute(stage.action_config, timeout, context)
            except TimeoutError as e:
                if deadline.expired() and timeout is not None:
                    raise ActionTimeoutError(stage.name, timeout) from e
                raise
            if not isinstance(output, ArtifactRef):
                raise CollaboratorError(
                    type(adapter).__name__,
                    f"returned {type(output).__name__}, expected ArtifactRef",
                )
            return output

        async def attempt() -> ArtifactRef:
            try:
                return await invoke()
            except ActionError as e:
                if handle.abort.is_set():
                    # A cancelled run is never retried
                    raise RunCancelledError(handle.run.run_id) from e
                raise

        async def on_retry(
            attempt_no: int, max_attempts: int, error: Exception, delay: float
        ) -> None:
            await self._emit(
                StageRetrying(
                    run_id=handle.run.run_id,
                    stage_name=stage.name,
                    attempt=attempt_no,
                    max_attempts=max_attempts,
                    error=describe_error(error),
                    delay=delay,
                )
            )

        return await execute_with_retry(
            attempt,
            stage.retry_policy,
            on_retry=on_retry,
            sleep=partial(self._backoff, handle),
        )

    @staticmethod
    async def _backoff(handle: _RunHandle, delay: float) -> None:
        """Sleep ``delay`` seconds unless the run is cancelled first."""
        try:
            async with asyncio.timeout(delay):
                await handle.abort.wait()
        except TimeoutError:
            return
        raise ActionAbortedError("Run cancelled during retry backoff")

    @staticmethod
    def _inputs_for(handle: _RunHandle, stage: StageSpec) -> dict[str, ArtifactRef]:
        definition = handle.definition
        if stage.kind == StageKind.BUILD:
            roles = {"source": definition.build_source(stage)}
        elif stage.kind == StageKind.DEPLOY:
            roles = {
                "artifact": definition.deploy_artifact(stage),
                "source": definition.deploy_source(stage),
            }
        else:
            roles = {}
        inputs: dict[str, ArtifactRef] = {}
        for role, name in roles.items():
            if name is None:
                continue
            if name not in handle.outputs:
                # Sequencing guarantees this; a miss means a prerequisite did not succeed
                raise InvalidTransitionError(
                    f"Stage '{stage.name}' requires output of '{name}', which has not succeeded"
                )
            inputs[role] = handle.outputs[name]
        return inputs

    async def _await_approval(
        self, handle: _RunHandle, stage: StageSpec, result: StageResult
    ) -> bool:
        if handle.cancelled:
            return False
        run = handle.run
        config = stage.action_config
        assert isinstance(config, ApprovalConfig)
        request = ApprovalRequest(
            run_id=run.run_id,
            stage_name=stage.name,
            gates=handle.definition.approval_gate(stage),
            approvers=config.approvers,
        )
        handle.approval = request
        handle.decision = asyncio.get_running_loop().create_future()
        run.transition(RunStatus.WAITING_APPROVAL)

        await self._history.record_approval(request)
        await self._history.record_run(run)
        await self._emit(
            ApprovalRequested(
                run_id=run.run_id,
                stage_name=stage.name,
                gates=request.gates,
                approvers=request.approvers,
            )
        )
        if handle.cancelled:
            return False
        handle.settled.set()
        logger.info(
            "Run {run_id} waiting for approval at '{stage}'", run_id=run.run_id, stage=stage.name
        )

        decision: ApprovalDecision | None
        try:
            async with asyncio.timeout(stage.timeout):
                decision = await handle.decision
        except TimeoutError:
            if not handle.decision.done():
                handle.settled.clear()
                return await self._expire_approval(handle, stage, result, request)
            decision = handle.decision.result()

        if handle.cancelled or decision is _CANCELLED:
            return False
        # Waiters block again until the next suspension or the end of the run
        handle.settled.clear()
        if decision == ApprovalDecision.REJECTED:
            error = describe_error(ApprovalRejectedError(stage.name, request.decided_by))
            await self._fail_stage(handle, result, error)
            return False

        run.transition(RunStatus.RUNNING)
        await self._history.record_run(run)
        result.transition(StageStatus.SUCCEEDED)
        await self._history.record_stage(result)
        await self._emit(
            StageSucceeded(
                run_id=run.run_id,
                stage_name=stage.name,
                output=None,
                duration_ms=_duration_ms(result),
            )
        )
        return True

    async def _expire_approval(
        self,
        handle: _RunHandle,
        stage: StageSpec,
        result: StageResult,
        request: ApprovalRequest,
    ) -> bool:
        assert handle.decision is not None
        handle.decision.cancel()
        request.closed = True
        await self._history.record_approval(request)
        timeout = stage.timeout or 0.0
        error = describe_error(ApprovalTimeoutError(stage.name, timeout))
        await self._fail_stage(handle, result, error)
        return False

    async def _fail_stage(self, handle: _RunHandle, result: StageResult, error: str) -> None:
        result.transition(StageStatus.FAILED, error=error)
        await self._history.record_stage(result)
        await self._emit(
            StageFailed(
                run_id=result.run_id,
                stage_name=result.stage_name,
                error=error,
                attempts=result.attempts,
            )
        )
        await self._fail_run(handle, result.stage_name, error)

    async def _fail_run(self, handle: _RunHandle, stage_name: str, error: str) -> None:
        run = handle.run
        if handle.cancelled or run.status.is_terminal:
            return
        run.error = error
        run.transition(RunStatus.FAILED)
        await self._history.record_run(run)
        await self._emit(
            RunFailed(
                run_id=run.run_id,
                pipeline_name=handle.definition.name,
                stage_name=stage_name,
                error=error,
            )
        )

    # ------------------------------------------------------------------
    # Event fan-out
    # ------------------------------------------------------------------

    async def _emit(self, event: Event) -> None:
        """Deliver ``event`` to observers and, when relevant, the notifier.

        Delivery failures and timeouts are logged and never reach the run.
        """
        targets: list[tuple[str, Any]] = [
            (type(observer).__name__, observer.handle) for observer in self._observers
        ]
        if self._notifier is not None and isinstance(event, NOTIFY_EVENTS):
            targets.append((type(self._notifier).__name__, self._notifier.anotify))
        if not targets:
            return
        await asyncio.gather(*(self._deliver(name, fn, event) for name, fn in targets))

    async def _deliver(self, name: str, fn: Any, event: Event) -> None:
        try:
            async with asyncio.timeout(self._observer_timeout):
                await fn(event)
        except TimeoutError:
            logger.warning(
                "{target} timed out handling {event} after {timeout}s",
                target=name,
                event=type(event).__name__,
                timeout=self._observer_timeout,
            )
        except Exception as e:
            logger.warning(
                "{target} failed handling {event}: {error}",
                target=name,
                event=type(event).__name__,
                error=e,
            )


def _duration_ms(result: StageResult) -> float:
    if result.started_at is None:
        return 0.0
    return ((result.finished_at or time.time()) - result.started_at) * 1000


__all__ = ["ExecutionEngine"]
