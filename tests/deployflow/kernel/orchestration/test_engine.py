"""Tests for the ExecutionEngine."""

import asyncio

import pytest

from deployflow.compiler.definition_loader import load
from deployflow.drivers.registry import LocalArtifactRegistry
from deployflow.kernel.domain import (
    ApprovalDecision,
    ArtifactRef,
    RunStatus,
    StageKind,
    StageStatus,
)
from deployflow.kernel.exceptions import (
    ActionAbortedError,
    ActionError,
    ConfigError,
    InvalidTransitionError,
    RunNotFoundError,
)
from deployflow.kernel.orchestration import (
    ApprovalRequested,
    ApprovalResolved,
    ExecutionEngine,
    RunCancelled,
    RunFailed,
    RunStarted,
    RunSucceeded,
    StageRetrying,
    StageSkipped,
    StageStarted,
    StageSucceeded,
)
from deployflow.stdlib.adapters import BuildAdapter, DeployAdapter, SourceAdapter
from deployflow.stdlib.adapters.mock import MockArtifactRegistry, MockCluster, MockSourceControl
from deployflow.stdlib.lib.run_history import RunHistory

SOURCE = {"name": "fetch", "kind": "source", "config": {"repository": "acme/web"}}
BUILD = {
    "name": "build",
    "kind": "build",
    "config": {"commands": ["make"], "artifact": {"name": "web", "tag": "1.0"}},
}
APPROVAL = {"name": "approve", "kind": "approval", "config": {"approvers": ["alice"]}}
DEPLOY = {
    "name": "deploy",
    "kind": "deploy",
    "config": {"manifest": "k8s/app.yaml", "environment": "production"},
}


def pipeline(*stages: dict, name: str = "web"):
    return load({"name": name, "stages": list(stages)})


# ----------------------------------------------------------------------
# Test doubles
# ----------------------------------------------------------------------


class RecordingAdapter:
    """Succeeds immediately and records every call in a shared log."""

    def __init__(self, log: list | None = None) -> None:
        self.log = log if log is not None else []
        self.calls: list[tuple[str, dict, int]] = []

    async def aexecute(self, config, timeout, context):
        self.log.append(context.stage_name)
        self.calls.append((context.stage_name, dict(context.inputs), context.attempt))
        return ArtifactRef(
            kind="test", name=context.stage_name, location=f"mem://{context.stage_name}"
        )


class FlakyAdapter(RecordingAdapter):
    """Raises ``error`` for the first ``failures`` attempts."""

    def __init__(self, failures: int, error: Exception | None = None, log=None) -> None:
        super().__init__(log)
        self.failures = failures
        self.error = error or ActionError("transient failure")

    async def aexecute(self, config, timeout, context):
        if context.attempt <= self.failures:
            self.calls.append((context.stage_name, dict(context.inputs), context.attempt))
            raise self.error
        return await super().aexecute(config, timeout, context)


class BlockingAdapter(RecordingAdapter):
    """Blocks until the run is aborted."""

    def __init__(self, log=None) -> None:
        super().__init__(log)
        self.entered = asyncio.Event()
        self.exited = asyncio.Event()

    async def aexecute(self, config, timeout, context):
        self.calls.append((context.stage_name, dict(context.inputs), context.attempt))
        self.entered.set()
        try:
            await context.abort.wait()
        finally:
            self.exited.set()
        raise ActionAbortedError("stopped")


class SlowAdapter(RecordingAdapter):
    async def aexecute(self, config, timeout, context):
        self.calls.append((context.stage_name, dict(context.inputs), context.attempt))
        await asyncio.sleep(10)


class BadReturnAdapter:
    def __init__(self) -> None:
        self.calls = 0

    async def aexecute(self, config, timeout, context):
        self.calls += 1
        return "not an artifact"


class RecordingObserver:
    def __init__(self) -> None:
        self.events = []
        self.retrying = asyncio.Event()

    async def handle(self, event):
        self.events.append(event)
        if isinstance(event, StageRetrying):
            self.retrying.set()

    def types(self):
        return [type(e) for e in self.events]


class FailingObserver:
    async def handle(self, event):
        raise RuntimeError("observer exploded")

    async def anotify(self, event):
        raise RuntimeError("notifier exploded")


class HangingObserver:
    async def handle(self, event):
        await asyncio.sleep(10)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    async def anotify(self, event):
        self.events.append(event)


def make_engine(source=None, build=None, deploy=None, **kwargs) -> ExecutionEngine:
    log: list[str] = []
    adapters = {
        StageKind.SOURCE: source or RecordingAdapter(log),
        StageKind.BUILD: build or RecordingAdapter(log),
        StageKind.DEPLOY: deploy or RecordingAdapter(log),
    }
    return ExecutionEngine(adapters, **kwargs)


async def run_to_end(engine: ExecutionEngine, definition, **kwargs):
    async with asyncio.timeout(5):
        run_id = await engine.start(definition, **kwargs)
        return await engine.wait(run_id)


# ----------------------------------------------------------------------
# Happy paths
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stages_run_in_order_with_upstream_outputs():
    log: list[str] = []
    source, build, deploy = RecordingAdapter(log), RecordingAdapter(log), RecordingAdapter(log)
    engine = make_engine(source, build, deploy)

    run = await run_to_end(engine, pipeline(SOURCE, BUILD, DEPLOY))

    assert run.status == RunStatus.SUCCEEDED
    assert run.error is None
    assert log == ["fetch", "build", "deploy"]
    assert build.calls[0][1]["source"].location == "mem://fetch"
    deploy_inputs = deploy.calls[0][1]
    assert deploy_inputs["artifact"].location == "mem://build"
    assert deploy_inputs["source"].location == "mem://fetch"

    results = await engine.get_stage_results(run.run_id)
    assert [r.status for r in results] == [StageStatus.SUCCEEDED] * 3
    assert [r.attempts for r in results] == [1, 1, 1]
    assert results[2].output_ref == ArtifactRef(
        kind="test", name="deploy", location="mem://deploy"
    )


@pytest.mark.asyncio
async def test_each_stage_starts_after_its_predecessor_finished():
    build = FlakyAdapter(failures=1)
    engine = make_engine(build=build)
    flaky_build = {**BUILD, "retry": {"max_retries": 1, "delay": 0.01}}

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, flaky_build, APPROVAL, DEPLOY))
        await engine.wait(run_id)
        await asyncio.sleep(0.01)
        await engine.resolve_approval(run_id, "approve", "approved", "alice")
        run = await engine.wait(run_id)

    assert run.status == RunStatus.SUCCEEDED
    results = await engine.get_stage_results(run_id)
    assert [r.index for r in results] == [0, 1, 2, 3]
    for previous, current in zip(results, results[1:], strict=False):
        assert previous.finished_at is not None
        assert current.started_at is not None
        assert current.started_at >= previous.finished_at
        assert current.finished_at >= current.started_at
    assert run.started_at <= results[0].started_at
    assert results[-1].finished_at <= run.finished_at


@pytest.mark.asyncio
async def test_approval_suspends_until_approved():
    observer = RecordingObserver()
    notifier = RecordingNotifier()
    deploy = RecordingAdapter()
    engine = make_engine(deploy=deploy, observers=[observer], notifier=notifier)

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, BUILD, APPROVAL, DEPLOY))
        run = await engine.wait(run_id)
        assert run.status == RunStatus.WAITING_APPROVAL
        assert run.current_stage_index == 2
        assert deploy.calls == []

        approval = await engine.get_approval(run_id)
        assert approval is not None
        assert approval.stage_name == "approve"
        assert approval.gates == "deploy"
        assert approval.approvers == ("alice",)

        await engine.resolve_approval(run_id, "approve", ApprovalDecision.APPROVED, "alice")
        run = await engine.wait(run_id)

    assert run.status == RunStatus.SUCCEEDED
    assert len(deploy.calls) == 1
    approval = await engine.get_approval(run_id)
    assert approval.decision == ApprovalDecision.APPROVED
    assert approval.decided_by == "alice"
    assert approval.closed

    results = await engine.get_stage_results(run_id)
    assert results[2].status == StageStatus.SUCCEEDED
    assert results[2].output_ref is None

    assert [type(e) for e in notifier.events] == [ApprovalRequested, RunSucceeded]
    types = observer.types()
    assert types[0] is RunStarted
    assert types[-1] is RunSucceeded
    assert ApprovalResolved in types
    assert types.count(StageStarted) == 4
    assert types.count(StageSucceeded) == 4


@pytest.mark.asyncio
async def test_rejected_approval_fails_run_without_deploying():
    notifier = RecordingNotifier()
    deploy = RecordingAdapter()
    engine = make_engine(deploy=deploy, notifier=notifier)

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, BUILD, APPROVAL, DEPLOY))
        await engine.wait(run_id)
        await engine.resolve_approval(run_id, "approve", "rejected", "bob")
        run = await engine.wait(run_id)

    assert run.status == RunStatus.FAILED
    assert run.error == "ApprovalRejectedError: Approval 'approve' rejected by bob"
    assert deploy.calls == []
    results = await engine.get_stage_results(run_id)
    assert [r.status for r in results] == [
        StageStatus.SUCCEEDED,
        StageStatus.SUCCEEDED,
        StageStatus.FAILED,
    ]
    assert isinstance(notifier.events[-1], RunFailed)


@pytest.mark.asyncio
async def test_metadata_is_kept_on_run():
    engine = make_engine()
    run = await run_to_end(engine, pipeline(SOURCE), metadata={"trigger": "test"})
    assert run.metadata == {"trigger": "test"}
    assert run.definition_ref == "web"


# ----------------------------------------------------------------------
# Retries and failures
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_retries_until_success():
    observer = RecordingObserver()
    build = FlakyAdapter(failures=2)
    engine = make_engine(build=build, observers=[observer])
    flaky_build = {**BUILD, "retry": {"max_retries": 2, "delay": 0}}

    run = await run_to_end(engine, pipeline(SOURCE, flaky_build))

    assert run.status == RunStatus.SUCCEEDED
    results = await engine.get_stage_results(run.run_id)
    assert results[1].attempts == 3
    retrying = [e for e in observer.events if isinstance(e, StageRetrying)]
    assert [(e.attempt, e.max_attempts) for e in retrying] == [(1, 3), (2, 3)]
    assert retrying[0].error == "ActionError: transient failure"


@pytest.mark.asyncio
async def test_exhausted_retries_fail_run_and_skip_later_stages():
    build = FlakyAdapter(failures=10)
    deploy = RecordingAdapter()
    engine = make_engine(build=build, deploy=deploy)
    failing_build = {**BUILD, "retry": {"max_retries": 1, "delay": 0}}

    run = await run_to_end(engine, pipeline(SOURCE, failing_build, DEPLOY))

    assert run.status == RunStatus.FAILED
    assert run.error == "ActionError: transient failure"
    assert run.current_stage_index == 1
    assert deploy.calls == []
    results = await engine.get_stage_results(run.run_id)
    assert len(results) == 2
    assert results[1].status == StageStatus.FAILED
    assert results[1].attempts == 2
    assert results[1].error == "ActionError: transient failure"


@pytest.mark.asyncio
async def test_unexpected_errors_are_not_retried():
    build = FlakyAdapter(failures=10, error=RuntimeError("boom"))
    engine = make_engine(build=build)
    build_stage = {**BUILD, "retry": {"max_retries": 3, "delay": 0}}

    run = await run_to_end(engine, pipeline(SOURCE, build_stage))

    assert run.status == RunStatus.FAILED
    assert run.error == "RuntimeError: boom"
    assert len(build.calls) == 1


@pytest.mark.asyncio
async def test_non_artifact_output_fails_stage():
    build = BadReturnAdapter()
    engine = make_engine(build=build)
    build_stage = {**BUILD, "retry": {"max_retries": 2, "delay": 0}}

    run = await run_to_end(engine, pipeline(SOURCE, build_stage))

    assert run.status == RunStatus.FAILED
    assert run.error.startswith("CollaboratorError: BadReturnAdapter failed")
    assert build.calls == 1


@pytest.mark.asyncio
async def test_stage_timeout_is_retried_then_fails():
    build = SlowAdapter()
    engine = make_engine(build=build)
    slow_build = {**BUILD, "timeout": 0.05, "retry": {"max_retries": 1, "delay": 0}}

    run = await run_to_end(engine, pipeline(SOURCE, slow_build))

    assert run.status == RunStatus.FAILED
    assert run.error == "ActionTimeoutError: Stage 'build' timed out after 0.05s"
    assert len(build.calls) == 2


@pytest.mark.asyncio
async def test_default_stage_timeout_applies():
    build = SlowAdapter()
    engine = make_engine(build=build, default_stage_timeout=0.05)

    run = await run_to_end(engine, pipeline(SOURCE, BUILD))

    assert run.status == RunStatus.FAILED
    assert run.error.startswith("ActionTimeoutError")


@pytest.mark.asyncio
async def test_approval_times_out():
    notifier = RecordingNotifier()
    engine = make_engine(notifier=notifier)
    approval = {**APPROVAL, "timeout": 0.05}

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, approval, BUILD))
        run = await engine.wait(run_id)
        assert run.status == RunStatus.WAITING_APPROVAL
        await asyncio.sleep(0.1)
        run = await engine.wait(run_id)

    assert run.status == RunStatus.FAILED
    assert run.error == "ApprovalTimeoutError: Approval 'approve' received no decision within 0.05s"
    request = await engine.get_approval(run_id)
    assert request.closed
    assert request.decision == ApprovalDecision.PENDING
    with pytest.raises(InvalidTransitionError):
        await engine.resolve_approval(run_id, "approve", "approved", "alice")
    assert [type(e) for e in notifier.events] == [ApprovalRequested, RunFailed]


# ----------------------------------------------------------------------
# Cancellation
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_while_waiting_for_approval():
    observer = RecordingObserver()
    deploy = RecordingAdapter()
    engine = make_engine(deploy=deploy, observers=[observer])

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, BUILD, APPROVAL, DEPLOY))
        await engine.wait(run_id)
        await engine.cancel(run_id)
        run = await engine.wait(run_id)

    assert run.status == RunStatus.CANCELLED
    assert run.error == f"RunCancelledError: Run '{run_id}' cancelled by operator"
    results = await engine.get_stage_results(run_id)
    assert results[2].status == StageStatus.SKIPPED
    request = await engine.get_approval(run_id)
    assert request.closed
    with pytest.raises(InvalidTransitionError):
        await engine.resolve_approval(run_id, "approve", "approved", "alice")
    await engine.aclose()

    assert deploy.calls == []
    types = observer.types()
    assert StageSkipped in types
    assert types[-1] is RunCancelled
    cancelled = observer.events[-1]
    assert cancelled.stage_name == "approve"


@pytest.mark.asyncio
async def test_cancel_running_stage():
    build = BlockingAdapter()
    deploy = RecordingAdapter()
    engine = make_engine(build=build, deploy=deploy)

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, BUILD, DEPLOY))
        await build.entered.wait()
        await engine.cancel(run_id)
        run = await engine.wait(run_id)
        await engine.aclose()

    assert run.status == RunStatus.CANCELLED
    results = await engine.get_stage_results(run_id)
    assert results[1].status == StageStatus.SKIPPED
    assert results[1].error.startswith("RunCancelledError")
    assert deploy.calls == []
    assert (await engine.get_run(run_id)).status == RunStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_during_retry_backoff():
    observer = RecordingObserver()
    build = FlakyAdapter(failures=10)
    engine = make_engine(build=build, observers=[observer])
    slow_retry = {**BUILD, "retry": {"max_retries": 3, "delay": 30}}

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, slow_retry))
        await observer.retrying.wait()
        await engine.cancel(run_id)
        run = await engine.wait(run_id)
        # Let the run task unwind out of the backoff
        for _ in range(5):
            await asyncio.sleep(0)

    assert run.status == RunStatus.CANCELLED
    assert len(build.calls) == 1
    results = await engine.get_stage_results(run_id)
    assert results[1].status == StageStatus.SKIPPED
    await engine.aclose()


@pytest.mark.asyncio
async def test_failure_after_cancel_is_not_retried():
    observer = RecordingObserver()
    build = BlockingAdapter()
    engine = make_engine(build=build, observers=[observer])
    retrying_build = {**BUILD, "retry": {"max_retries": 3, "delay": 0}}

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, retrying_build))
        await build.entered.wait()
        await engine.cancel(run_id)
        await build.exited.wait()
        await asyncio.sleep(0.05)

    assert len(build.calls) == 1
    types = observer.types()
    assert StageRetrying not in types
    assert types[-1] is RunCancelled
    results = await engine.get_stage_results(run_id)
    assert results[1].status == StageStatus.SKIPPED
    assert results[1].attempts == 1


@pytest.mark.asyncio
async def test_aclose_records_interrupted_run_as_cancelled():
    history = RunHistory()
    observer = RecordingObserver()
    build = BlockingAdapter()
    engine = make_engine(build=build, history=history, observers=[observer])

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, BUILD, DEPLOY))
        await build.entered.wait()
        await engine.aclose()

    run = await history.aget_run(run_id)
    assert run.status == RunStatus.CANCELLED
    assert run.finished_at is not None
    results = await history.aget_stage_results(run_id)
    assert [r.status for r in results] == [StageStatus.SUCCEEDED, StageStatus.SKIPPED]
    assert results[1].error.startswith("RunCancelledError")
    assert observer.types()[-1] is RunCancelled
    assert await history.alist_runs(status=RunStatus.RUNNING) == []


@pytest.mark.asyncio
async def test_aclose_before_run_task_starts():
    history = RunHistory()
    engine = make_engine(history=history)

    run_id = await engine.start(pipeline(SOURCE, BUILD))
    await engine.aclose()

    assert (await history.aget_run(run_id)).status == RunStatus.CANCELLED
    assert await history.aget_stage_results(run_id) == []
    with pytest.raises(InvalidTransitionError):
        await engine.cancel(run_id)


@pytest.mark.asyncio
async def test_cancel_terminal_run_is_rejected():
    engine = make_engine()
    run = await run_to_end(engine, pipeline(SOURCE))
    with pytest.raises(InvalidTransitionError):
        await engine.cancel(run.run_id)


# ----------------------------------------------------------------------
# Control-surface errors
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_adapter_is_a_config_error():
    engine = ExecutionEngine({StageKind.SOURCE: RecordingAdapter()})
    with pytest.raises(ConfigError) as exc_info:
        await engine.start(pipeline(SOURCE, BUILD))
    assert exc_info.value.field == "stages[1].kind"
    assert await engine.list_runs() == []


@pytest.mark.asyncio
async def test_unknown_run_ids():
    engine = make_engine()
    with pytest.raises(RunNotFoundError):
        await engine.get_run("nope")
    with pytest.raises(RunNotFoundError):
        await engine.wait("nope")
    with pytest.raises(RunNotFoundError):
        await engine.cancel("nope")
    with pytest.raises(RunNotFoundError):
        await engine.resolve_approval("nope", "approve", "approved")
    with pytest.raises(RunNotFoundError):
        await engine.get_stage_results("nope")


@pytest.mark.asyncio
async def test_resolve_approval_rejects_bad_calls():
    engine = make_engine()

    async with asyncio.timeout(5):
        run_id = await engine.start(pipeline(SOURCE, APPROVAL, BUILD))
        await engine.wait(run_id)

        with pytest.raises(InvalidTransitionError):
            await engine.resolve_approval(run_id, "fetch", "approved")
        with pytest.raises(InvalidTransitionError):
            await engine.resolve_approval(run_id, "approve", "maybe")

        await engine.resolve_approval(run_id, "approve", "approved", "alice")
        run = await engine.wait(run_id)

    assert run.status == RunStatus.SUCCEEDED
    with pytest.raises(InvalidTransitionError):
        await engine.resolve_approval(run_id, "approve", "approved")


# ----------------------------------------------------------------------
# Isolation
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_observer_failures_do_not_affect_runs():
    engine = make_engine(
        observers=[FailingObserver(), HangingObserver()],
        notifier=FailingObserver(),
        observer_timeout=0.01,
    )
    run = await run_to_end(engine, pipeline(SOURCE, BUILD))
    assert run.status == RunStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_concurrent_runs_are_independent():
    engine = make_engine()
    definition = pipeline(SOURCE, BUILD, DEPLOY)

    async with asyncio.timeout(5):
        run_ids = await asyncio.gather(*(engine.start(definition) for _ in range(3)))
        runs = await asyncio.gather(*(engine.wait(run_id) for run_id in run_ids))

    assert len(set(run_ids)) == 3
    assert all(run.status == RunStatus.SUCCEEDED for run in runs)
    for run_id in run_ids:
        results = await engine.get_stage_results(run_id)
        assert [r.run_id for r in results] == [run_id] * 3
    assert len(await engine.list_runs(status=RunStatus.SUCCEEDED)) == 3


@pytest.mark.asyncio
async def test_finished_runs_are_released_from_memory():
    engine = make_engine()

    async with asyncio.timeout(5):
        done = await run_to_end(engine, pipeline(SOURCE, BUILD))
        waiting_id = await engine.start(pipeline(SOURCE, APPROVAL, BUILD))
        await engine.wait(waiting_id)

    assert list(engine._handles) == [waiting_id]
    assert (await engine.get_run(done.run_id)).status == RunStatus.SUCCEEDED
    assert len(await engine.get_stage_results(done.run_id)) == 2
    assert await engine.wait(done.run_id) == await engine.get_run(done.run_id)
    with pytest.raises(InvalidTransitionError, match="succeeded"):
        await engine.cancel(done.run_id)

    await engine.resolve_approval(waiting_id, "approve", "approved", "alice")
    async with asyncio.timeout(5):
        await engine.wait(waiting_id)
    assert engine._handles == {}


@pytest.mark.asyncio
async def test_history_outlives_engine():
    history = RunHistory()
    engine = make_engine(history=history)
    run = await run_to_end(engine, pipeline(SOURCE, BUILD))

    fresh = make_engine(history=history)
    stored = await fresh.get_run(run.run_id)
    assert stored.status == RunStatus.SUCCEEDED
    assert stored.started_at is not None
    assert stored.finished_at is not None
    assert len(await fresh.get_stage_results(run.run_id)) == 2
    assert await fresh.wait(run.run_id) == stored


# ----------------------------------------------------------------------
# With the standard adapters
# ----------------------------------------------------------------------


MANIFEST = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
spec:
  template:
    spec:
      containers:
        - name: web
          image: "{{ image }}"
"""


@pytest.mark.asyncio
async def test_full_pipeline_with_standard_adapters(tmp_path):
    scm = MockSourceControl(
        {"acme/web": {"main": {"k8s/app.yaml": MANIFEST, "Makefile": "all:\n"}}}
    )
    registry = MockArtifactRegistry()
    cluster = MockCluster()
    engine = ExecutionEngine(
        {
            "source": SourceAdapter(scm, tmp_path / "workspace"),
            "build": BuildAdapter(registry),
            "deploy": DeployAdapter(cluster),
        }
    )
    build = {
        "name": "build",
        "kind": "build",
        "config": {
            "commands": ["mkdir -p dist", "echo built > dist/app.txt"],
            "artifact": {"name": "web", "tag": "1.0", "path": "dist"},
        },
    }

    async with asyncio.timeout(10):
        run_id = await engine.start(pipeline(SOURCE, build, APPROVAL, DEPLOY))
        await engine.wait(run_id)
        await engine.resolve_approval(run_id, "approve", "approved", "alice")
        run = await engine.wait(run_id)

    assert run.status == RunStatus.SUCCEEDED, run.error
    assert scm.fetches == [("acme/web", "main")]
    assert registry.artifacts[("web", "1.0")] == {"app.txt": b"built\n"}
    [applied] = cluster.applies
    assert applied.environment == "production"
    container = applied.manifests[0]["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "registry.local/web:1.0"

    results = await engine.get_stage_results(run_id)
    assert results[1].output_ref.location == "registry.local/web:1.0"
    assert results[3].output_ref.kind == "deployment"


@pytest.mark.asyncio
async def test_deploy_receives_registry_reference_from_local_registry(tmp_path):
    scm = MockSourceControl({"acme/web": {"main": {"k8s/app.yaml": MANIFEST}}})
    cluster = MockCluster()
    engine = ExecutionEngine(
        {
            "source": SourceAdapter(scm, tmp_path / "workspace"),
            "build": BuildAdapter(
                LocalArtifactRegistry(tmp_path / "registry", host="registry.example.com")
            ),
            "deploy": DeployAdapter(cluster),
        }
    )
    build = {
        "name": "build",
        "kind": "build",
        "config": {
            "commands": ["mkdir -p dist", "echo built > dist/app.txt"],
            "artifact": {"name": "web", "tag": "1.0", "path": "dist"},
        },
    }

    run = await run_to_end(engine, pipeline(SOURCE, build, DEPLOY))

    assert run.status == RunStatus.SUCCEEDED, run.error
    [applied] = cluster.applies
    container = applied.manifests[0]["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "registry.example.com/web:1.0"

    built = (await engine.get_stage_results(run.run_id))[1].output_ref
    assert built.location == "registry.example.com/web:1.0"
    stored = tmp_path / "registry" / "web" / "1.0" / "content"
    assert built.metadata["path"] == str(stored.absolute())
    assert (stored / "app.txt").read_text() == "built\n"
