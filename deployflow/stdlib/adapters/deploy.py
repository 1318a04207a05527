"""Deploy stage adapter.

Reads the manifest from the source snapshot, substitutes the built
artifact's location for the image placeholder and applies the resulting
documents through the Cluster port.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from deployflow.kernel.domain.pipeline_definition import DeployConfig
from deployflow.kernel.domain.pipeline_run import ArtifactRef
from deployflow.kernel.exceptions import ActionError, CollaboratorError, DeployRejectedError
from deployflow.kernel.logging import get_logger

if TYPE_CHECKING:
    from deployflow.kernel.domain.pipeline_definition import ActionConfig
    from deployflow.kernel.ports.action import ActionContext
    from deployflow.kernel.ports.cluster import Cluster

logger = get_logger(__name__)


def render_manifest(text: str, placeholder: str, image: str | None) -> list[dict[str, Any]]:
    """Substitute ``image`` for ``placeholder`` and parse every YAML document.

    Empty documents are dropped.

    Raises
    ------
    ActionError
        If the result is not a non-empty sequence of mappings.
    """
    if image is not None:
        text = text.replace(placeholder, image)
    try:
        documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as e:
        raise ActionError(f"Manifest is not valid YAML: {e}") from e
    if not documents:
        raise ActionError("Manifest contains no documents")
    for position, doc in enumerate(documents):
        if not isinstance(doc, dict):
            raise ActionError(f"Manifest document {position} is not a mapping")
    return documents


def _describe(doc: dict[str, Any]) -> str:
    name = (doc.get("metadata") or {}).get("name", "?")
    return f"{doc.get('kind', '?')}/{name}"


class DeployAdapter:
    """Applies a manifest to the configured environment.

    Parameters
    ----------
    cluster : Cluster
        Orchestrator driver.
    """

    def __init__(self, cluster: Cluster) -> None:
        self._cluster = cluster

    async def aexecute(
        self, config: ActionConfig, timeout: float | None, context: ActionContext
    ) -> ArtifactRef:
        assert isinstance(config, DeployConfig)
        source = context.inputs.get("source")
        if source is None:
            raise ActionError(f"Deploy stage '{context.stage_name}' has no source snapshot")
        artifact = context.inputs.get("artifact")

        root = Path(source.location).resolve()
        manifest_path = (root / config.manifest).resolve()
        if not manifest_path.is_relative_to(root):
            raise ActionError(f"Manifest '{config.manifest}' escapes the source snapshot")
        try:
            text = manifest_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ActionError(f"Cannot read manifest '{config.manifest}': {e.strerror or e}") from e

        image = artifact.location if artifact is not None else None
        documents = render_manifest(text, config.image_placeholder, image)
        context.raise_if_aborted()

        try:
            result = await self._cluster.aapply(documents, config.environment)
        except CollaboratorError as e:
            raise ActionError(str(e)) from e
        if not result.accepted:
            raise DeployRejectedError(config.environment, result.message or "rejected")

        resources = [_describe(doc) for doc in documents]
        logger.info(
            "Applied {count} resource(s) to {environment}: {resources}",
            count=len(resources),
            environment=config.environment,
            resources=", ".join(resources),
        )
        rendered = yaml.safe_dump_all(documents, sort_keys=True)
        return ArtifactRef(
            kind="deployment",
            name=config.environment,
            location=f"{config.environment}/{config.manifest}",
            revision=artifact.revision if artifact is not None else source.revision,
            digest="sha256:" + hashlib.sha256(rendered.encode()).hexdigest(),
            metadata={"resources": resources, "image": image, "message": result.message},
        )
