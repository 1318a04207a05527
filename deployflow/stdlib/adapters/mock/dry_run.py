"""Dry-run action adapter.

Stands in for every stage kind when a pipeline is run with ``--dry-run``:
nothing is fetched, executed, pushed or applied. Each call logs what the
real adapter would have done and returns a placeholder output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deployflow.kernel.domain.pipeline_definition import BuildConfig, DeployConfig, SourceConfig
from deployflow.kernel.domain.pipeline_run import ArtifactRef
from deployflow.kernel.logging import get_logger

if TYPE_CHECKING:
    from deployflow.kernel.domain.pipeline_definition import ActionConfig
    from deployflow.kernel.ports.action import ActionContext

logger = get_logger(__name__)


class DryRunAdapter:
    """Records invocations instead of performing them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ActionConfig]] = []

    async def aexecute(
        self, config: ActionConfig, timeout: float | None, context: ActionContext
    ) -> ArtifactRef:
        self.calls.append((context.stage_name, config))
        context.raise_if_aborted()

        if isinstance(config, SourceConfig):
            logger.info(
                "[dry-run] would fetch {repository}@{revision}",
                repository=config.repository,
                revision=config.revision,
            )
            return ArtifactRef(
                kind="snapshot",
                name=config.repository,
                location=f"dry-run://{config.repository}",
                revision=config.revision,
            )

        if isinstance(config, BuildConfig):
            for command in config.commands:
                logger.info("[dry-run] would run: {command}", command=command)
            name = config.artifact.name if config.artifact else context.stage_name
            tag = config.artifact.tag if config.artifact else None
            if config.artifact:
                logger.info("[dry-run] would push {reference}", reference=config.artifact.reference)
            return ArtifactRef(
                kind="artifact",
                name=name,
                location=f"dry-run://{name}:{tag or 'none'}",
                revision=tag,
            )

        assert isinstance(config, DeployConfig)
        image = context.inputs.get("artifact")
        logger.info(
            "[dry-run] would apply {manifest} to {environment} with image {image}",
            manifest=config.manifest,
            environment=config.environment,
            image=image.location if image else "-",
        )
        return ArtifactRef(
            kind="deployment",
            name=config.environment,
            location=f"dry-run://{config.environment}/{config.manifest}",
        )
