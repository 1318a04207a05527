"""Source stage adapter: fetch a revision snapshot via the SourceControl port."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import TYPE_CHECKING

from deployflow.kernel.domain.pipeline_definition import SourceConfig
from deployflow.kernel.domain.pipeline_run import ArtifactRef
from deployflow.kernel.exceptions import (
    ActionError,
    CollaboratorError,
    NotFoundError,
    ResourceNotFoundError,
)
from deployflow.kernel.logging import get_logger

if TYPE_CHECKING:
    from deployflow.kernel.domain.pipeline_definition import ActionConfig
    from deployflow.kernel.ports.action import ActionContext
    from deployflow.kernel.ports.source_control import SourceControl

logger = get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def snapshot_dir(workspace: Path, repository: str, revision: str) -> Path:
    """Deterministic checkout directory for ``repository@revision``.

    Retries of the same stage reuse the same directory.
    """
    digest = hashlib.sha256(f"{repository}@{revision}".encode()).hexdigest()[:12]
    stem = _UNSAFE.sub("-", repository.rstrip("/").rsplit("/", 1)[-1].removesuffix(".git"))
    return workspace / f"{stem or 'repo'}-{digest}"


class SourceAdapter:
    """Fetches the configured revision into the workspace.

    Parameters
    ----------
    source_control : SourceControl
        Revision-control driver.
    workspace_dir : str | Path
        Parent directory for checkouts.
    """

    def __init__(self, source_control: SourceControl, workspace_dir: str | Path) -> None:
        self._source_control = source_control
        self._workspace = Path(workspace_dir)

    async def aexecute(
        self, config: ActionConfig, timeout: float | None, context: ActionContext
    ) -> ArtifactRef:
        assert isinstance(config, SourceConfig)
        context.raise_if_aborted()
        destination = snapshot_dir(self._workspace, config.repository, config.revision)
        logger.debug(
            "Fetching {repository}@{revision} into {destination}",
            repository=config.repository,
            revision=config.revision,
            destination=destination,
        )
        try:
            snapshot = await self._source_control.afetch(
                config.repository, config.revision, destination
            )
        except ResourceNotFoundError as e:
            raise NotFoundError(config.repository, config.revision) from e
        except CollaboratorError as e:
            raise ActionError(str(e)) from e

        return ArtifactRef(
            kind="snapshot",
            name=config.repository,
            location=str(snapshot.path),
            revision=snapshot.commit,
            metadata={"requested_revision": config.revision},
        )
