"""Domain model for pipeline definitions.

A :class:`PipelineDefinition` is an ordered, immutable list of
:class:`StageSpec`. Each stage's ``action_config`` is validated against the
config model registered for its :class:`StageKind`.

Example::

    definition = PipelineDefinition(
        name="web",
        stages=(
            StageSpec(name="fetch", kind="source", action_config={"repository": "repo"}),
            StageSpec(name="build", kind="build", action_config={"commands": ["make"]}),
        ),
    )
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, model_validator

from deployflow.kernel.retry import RetryPolicy


class StageKind(StrEnum):
    """Kind of work a stage performs."""

    SOURCE = "source"
    BUILD = "build"
    APPROVAL = "approval"
    DEPLOY = "deploy"


class ActionConfig(BaseModel):
    """Base class for per-kind action configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class SourceConfig(ActionConfig):
    """Fetch a revision of a repository."""

    repository: str = Field(min_length=1)
    revision: str = Field("main", min_length=1)


class ArtifactSpec(BaseModel):
    """Named, tagged output of a build stage."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    tag: str = Field("latest", min_length=1)
    path: str | None = None

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"


class BuildConfig(ActionConfig):
    """Run a command sequence against a source snapshot."""

    commands: tuple[str, ...] = Field(min_length=1)
    source: str | None = None
    artifact: ArtifactSpec | None = None
    env: dict[str, str] = Field(default_factory=dict)


class ApprovalConfig(ActionConfig):
    """Human approval gate in front of a downstream stage."""

    gates: str | None = None
    approvers: tuple[str, ...] = ()


class DeployConfig(ActionConfig):
    """Apply a manifest from the source snapshot to an environment."""

    manifest: str = Field(min_length=1)
    environment: str = Field(min_length=1)
    artifact: str | None = None
    source: str | None = None
    image_placeholder: str = "{{ image }}"


ACTION_CONFIG_MODELS: dict[StageKind, type[ActionConfig]] = {
    StageKind.SOURCE: SourceConfig,
    StageKind.BUILD: BuildConfig,
    StageKind.APPROVAL: ApprovalConfig,
    StageKind.DEPLOY: DeployConfig,
}


class StageSpec(BaseModel):
    """One unit of pipeline work. Immutable."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1)
    kind: StageKind
    action_config: SerializeAsAny[ActionConfig] = Field(alias="config")
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy, alias="retry")
    timeout: float | None = Field(None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _parse_action_config(cls, data: Any) -> Any:
        """Validate the raw config mapping against the model for ``kind``."""
        if not isinstance(data, dict):
            return data
        key = "config" if "config" in data else "action_config"
        raw = data.get(key, {})
        if isinstance(raw, ActionConfig):
            return data
        try:
            kind = StageKind(data.get("kind"))
        except ValueError:
            return data  # field validation reports the bad kind
        data = dict(data)
        data.pop("action_config", None)
        data["config"] = ACTION_CONFIG_MODELS[kind].model_validate(raw or {})
        return data


class PipelineDefinition(BaseModel):
    """Ordered sequence of stages. At least one stage; names are unique."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    stages: tuple[StageSpec, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_stage_names(self) -> PipelineDefinition:
        seen: set[str] = set()
        for stage in self.stages:
            if stage.name in seen:
                raise ValueError(f"duplicate stage name '{stage.name}'")
            seen.add(stage.name)
        return self

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    def index_of(self, name: str) -> int:
        """Position of a stage, raising KeyError for unknown names."""
        for i, stage in enumerate(self.stages):
            if stage.name == name:
                return i
        raise KeyError(name)

    def stage(self, name: str) -> StageSpec:
        return self.stages[self.index_of(name)]

    def _nearest_before(self, index: int, kind: StageKind) -> str | None:
        for stage in reversed(self.stages[:index]):
            if stage.kind == kind:
                return stage.name
        return None

    # ------------------------------------------------------------------
    # Reference resolution (explicit reference or nearest preceding stage)
    # ------------------------------------------------------------------

    def build_source(self, stage: StageSpec) -> str | None:
        """Source stage whose snapshot a build stage consumes."""
        config = stage.action_config
        assert isinstance(config, BuildConfig)
        return config.source or self._nearest_before(self.index_of(stage.name), StageKind.SOURCE)

    def deploy_artifact(self, stage: StageSpec) -> str | None:
        """Build stage whose artifact a deploy stage applies."""
        config = stage.action_config
        assert isinstance(config, DeployConfig)
        return config.artifact or self._nearest_before(self.index_of(stage.name), StageKind.BUILD)

    def deploy_source(self, stage: StageSpec) -> str | None:
        """Source stage holding the deploy manifest."""
        config = stage.action_config
        assert isinstance(config, DeployConfig)
        if config.source:
            return config.source
        build_name = self.deploy_artifact(stage)
        if build_name is not None and build_name in self.stage_names:
            build = self.stage(build_name)
            if build.kind == StageKind.BUILD:
                return self.build_source(build)
        return self._nearest_before(self.index_of(stage.name), StageKind.SOURCE)

    def approval_gate(self, stage: StageSpec) -> str | None:
        """Downstream stage an approval stage gates (default: the next stage)."""
        config = stage.action_config
        assert isinstance(config, ApprovalConfig)
        if config.gates:
            return config.gates
        index = self.index_of(stage.name)
        if index + 1 < len(self.stages):
            return self.stages[index + 1].name
        return None

    def prerequisites(self, stage: StageSpec) -> list[str]:
        """Stages whose outputs this stage consumes."""
        if stage.kind == StageKind.BUILD:
            refs = [self.build_source(stage)]
        elif stage.kind == StageKind.DEPLOY:
            refs = [self.deploy_artifact(stage), self.deploy_source(stage)]
        else:
            refs = []
        return [r for r in dict.fromkeys(refs) if r is not None]
