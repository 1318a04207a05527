"""Build stage adapter.

Runs the declared command sequence in the source snapshot, one shell
subprocess per command, and pushes the declared artifact to the registry.

Each command sees the caller's environment extended with the stage's
``env`` mapping and:

- ``DEPLOYFLOW_RUN_ID``
- ``DEPLOYFLOW_STAGE``
- ``DEPLOYFLOW_SOURCE_DIR``
- ``DEPLOYFLOW_REVISION`` (commit of the snapshot, when known)
- ``DEPLOYFLOW_ARTIFACT`` (``name:tag``, when an artifact is declared)
"""

from __future__ import annotations

import asyncio
import os
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any

from deployflow.kernel.domain.pipeline_definition import BuildConfig
from deployflow.kernel.domain.pipeline_run import ArtifactRef
from deployflow.kernel.exceptions import (
    ActionAbortedError,
    ActionError,
    BuildFailedError,
    CollaboratorError,
)
from deployflow.kernel.logging import get_logger

if TYPE_CHECKING:
    from deployflow.kernel.domain.pipeline_definition import ActionConfig
    from deployflow.kernel.ports.action import ActionContext
    from deployflow.kernel.ports.registry import ArtifactRegistry

logger = get_logger(__name__)

# Tail of command output kept on BuildFailedError
MAX_OUTPUT_CHARS = 4000


async def run_command(
    command: str, cwd: Path, env: dict[str, str], abort: asyncio.Event
) -> tuple[int, str]:
    """Run ``command`` through the shell, returning ``(exit_code, output)``.

    stderr is merged into stdout. The process is killed if ``abort`` is set
    or the calling task is cancelled (e.g. by a stage timeout).

    Raises
    ------
    ActionAbortedError
        If ``abort`` was set before the command finished.
    """
    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    communicate = asyncio.ensure_future(proc.communicate())
    aborted = asyncio.ensure_future(abort.wait())
    try:
        await asyncio.wait({communicate, aborted}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        aborted.cancel()
        if not communicate.done():
            with suppress(ProcessLookupError):
                proc.kill()
            communicate.cancel()
            await proc.wait()

    if not communicate.done() or communicate.cancelled():
        raise ActionAbortedError(f"Command '{command}' aborted")
    stdout, _ = communicate.result()
    output = (stdout or b"").decode("utf-8", errors="replace")
    return proc.returncode or 0, output


class BuildAdapter:
    """Executes build commands and publishes the artifact.

    Parameters
    ----------
    registry : ArtifactRegistry, optional
        Required when a build stage declares an ``artifact``.
    base_env : dict[str, str], optional
        Environment for commands. Defaults to ``os.environ``.
    """

    def __init__(
        self,
        registry: ArtifactRegistry | None = None,
        base_env: dict[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._base_env = base_env

    def _environment(
        self, config: BuildConfig, context: ActionContext, source: ArtifactRef
    ) -> dict[str, str]:
        env = dict(os.environ if self._base_env is None else self._base_env)
        env.update(config.env)
        env["DEPLOYFLOW_RUN_ID"] = context.run_id
        env["DEPLOYFLOW_STAGE"] = context.stage_name
        env["DEPLOYFLOW_SOURCE_DIR"] = source.location
        if source.revision:
            env["DEPLOYFLOW_REVISION"] = source.revision
        if config.artifact is not None:
            env["DEPLOYFLOW_ARTIFACT"] = config.artifact.reference
        return env

    async def aexecute(
        self, config: ActionConfig, timeout: float | None, context: ActionContext
    ) -> ArtifactRef:
        assert isinstance(config, BuildConfig)
        source = context.inputs.get("source")
        if source is None:
            raise ActionError(f"Build stage '{context.stage_name}' has no source snapshot")
        cwd = Path(source.location)
        env = self._environment(config, context, source)

        for command in config.commands:
            context.raise_if_aborted()
            logger.info("[{stage}] $ {command}", stage=context.stage_name, command=command)
            exit_code, output = await run_command(command, cwd, env, context.abort)
            if output:
                logger.debug(
                    "[{stage}] {output}", stage=context.stage_name, output=output.rstrip()
                )
            if exit_code != 0:
                raise BuildFailedError(command, exit_code, output[-MAX_OUTPUT_CHARS:])

        context.raise_if_aborted()
        if config.artifact is None:
            return ArtifactRef(
                kind="artifact",
                name=context.stage_name,
                location=str(cwd),
                revision=source.revision,
                metadata={"commands": len(config.commands)},
            )

        if self._registry is None:
            msg = f"Build stage '{context.stage_name}' declares an artifact but no registry is set"
            raise ActionError(msg)
        artifact_path = cwd / (config.artifact.path or ".")
        if not artifact_path.exists():
            raise ActionError(f"Artifact path '{config.artifact.path}' does not exist in {cwd}")
        try:
            pushed = await self._registry.apush(
                config.artifact.name, config.artifact.tag, artifact_path
            )
        except CollaboratorError as e:
            raise ActionError(str(e)) from e

        logger.info(
            "Pushed {reference} ({digest})",
            reference=config.artifact.reference,
            digest=pushed.digest[:19],
        )
        metadata: dict[str, Any] = {
            "commands": len(config.commands),
            "source_revision": source.revision,
        }
        if pushed.path is not None:
            metadata["path"] = pushed.path
        return ArtifactRef(
            kind="artifact",
            name=config.artifact.name,
            location=pushed.location,
            revision=config.artifact.tag,
            digest=pushed.digest,
            metadata=metadata,
        )
