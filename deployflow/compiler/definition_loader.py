"""Pipeline definition loader.

Turns a declarative pipeline manifest into a validated
:class:`~deployflow.kernel.domain.pipeline_definition.PipelineDefinition`.
Two document shapes are accepted:

``kind: Pipeline`` manifest::

    apiVersion: deployflow/v1
    kind: Pipeline
    metadata:
      name: web
    spec:
      defaults:
        timeout: 600
        retry: {max_retries: 2, delay: 5}
      stages:
        - name: fetch
          kind: source
          config: {repository: "https://github.com/acme/web.git", revision: main}
        - name: build
          kind: build
          config:
            commands: ["make image"]
            artifact: {name: web, tag: "${GIT_SHA:-latest}", path: dist}
        - name: approve
          kind: approval
          timeout: 3600
        - name: deploy
          kind: deploy
          config: {manifest: k8s/deployment.yaml, environment: production}

or a bare mapping with ``name`` and ``stages`` at the top level.

Every failure is reported as :class:`ConfigError` naming the offending field.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from deployflow.kernel.domain.pipeline_definition import (
    ACTION_CONFIG_MODELS,
    BuildConfig,
    PipelineDefinition,
    StageKind,
    StageSpec,
)
from deployflow.kernel.exceptions import ConfigError
from deployflow.kernel.logging import get_logger

logger = get_logger(__name__)

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

_STAGE_KEYS = frozenset({"name", "kind", "config", "retry", "timeout"})


def substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ``${VAR}`` references in string values.

    ``${VAR:-default}`` falls back to ``default`` when ``VAR`` is unset.
    Unset variables without a default keep their placeholder.

    Examples
    --------
    >>> os.environ["DF_DOC_TAG"] = "1.2.0"
    >>> substitute_env_vars({"tag": "${DF_DOC_TAG}", "env": "${DF_DOC_UNSET:-dev}"})
    {'tag': '1.2.0', 'env': 'dev'}
    """
    if isinstance(data, str):

        def replacer(match: re.Match[str]) -> str:
            var_name, default = match.group(1), match.group(2)
            value = os.environ.get(var_name)
            if value is not None:
                return value
            if default is not None:
                return default
            logger.debug(
                "Environment variable ${{{var_name}}} not found, keeping placeholder",
                var_name=var_name,
            )
            return match.group(0)

        return ENV_VAR_PATTERN.sub(replacer, data)

    if isinstance(data, dict):
        return {key: substitute_env_vars(value) for key, value in data.items()}

    if isinstance(data, list):
        return [substitute_env_vars(item) for item in data]

    return data


def _from_validation_error(exc: ValidationError, prefix: str) -> ConfigError:
    """Convert the first pydantic error into a ConfigError with a dotted field."""
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first["loc"])
    field = f"{prefix}.{loc}" if prefix and loc else (prefix or loc or "document")
    return ConfigError(field, first["msg"])


def _read_source(source: str | Path | Mapping[str, Any]) -> Any:
    if isinstance(source, Mapping):
        return dict(source)

    if isinstance(source, Path) or (
        "\n" not in source and source.strip().endswith((".yaml", ".yml"))
    ):
        path = Path(source)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError("document", f"cannot read {path}: {e.strerror or e}") from e
        logger.debug("Loading pipeline definition from {path}", path=path)
    else:
        text = source

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" (line {mark.line + 1}, column {mark.column + 1})" if mark else ""
        raise ConfigError("document", f"unparseable YAML{where}: {e}") from e


def _unpack(data: dict[str, Any]) -> tuple[Any, Any, Any, str]:
    """Return ``(name, stages, defaults, stages_field)`` for either document shape."""
    if "kind" not in data:
        return data.get("name"), data.get("stages"), data.get("defaults") or {}, "stages"

    if data["kind"] != "Pipeline":
        raise ConfigError("kind", f"expected 'Pipeline', got '{data['kind']}'")
    metadata = data.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise ConfigError("metadata.name", "field required")
    spec = data.get("spec")
    if not isinstance(spec, dict):
        raise ConfigError("spec", "expected a mapping")
    return metadata["name"], spec.get("stages"), spec.get("defaults") or {}, "spec.stages"


def _parse_stage(
    raw: Any, field: str, defaults: dict[str, Any], seen: dict[str, str]
) -> StageSpec:
    if not isinstance(raw, dict):
        raise ConfigError(field, "expected a mapping")
    unknown = sorted(set(raw) - _STAGE_KEYS)
    if unknown:
        raise ConfigError(f"{field}.{unknown[0]}", "unknown field")

    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise ConfigError(f"{field}.name", "field required")
    if name in seen:
        raise ConfigError(f"{field}.name", f"duplicate stage name '{name}' (first at {seen[name]})")
    seen[name] = field

    try:
        kind = StageKind(raw.get("kind"))
    except ValueError:
        allowed = ", ".join(k.value for k in StageKind)
        raise ConfigError(
            f"{field}.kind", f"unknown stage kind '{raw.get('kind')}' (expected one of {allowed})"
        ) from None

    raw_config = raw.get("config") or {}
    if not isinstance(raw_config, dict):
        raise ConfigError(f"{field}.config", "expected a mapping")
    try:
        action_config = ACTION_CONFIG_MODELS[kind].model_validate(raw_config)
    except ValidationError as e:
        raise _from_validation_error(e, f"{field}.config") from e

    fields: dict[str, Any] = {"name": name, "kind": kind, "config": action_config}
    retry = raw.get("retry", defaults.get("retry"))
    if retry is not None:
        fields["retry"] = retry
    timeout = raw.get("timeout")
    if timeout is None and kind != StageKind.APPROVAL:
        timeout = defaults.get("timeout")
    if timeout is not None:
        fields["timeout"] = timeout

    try:
        return StageSpec.model_validate(fields)
    except ValidationError as e:
        raise _from_validation_error(e, field) from e


def load(
    source: str | Path | Mapping[str, Any], *, defaults: Mapping[str, Any] | None = None
) -> PipelineDefinition:
    """Load and validate a pipeline definition.

    Args
    ----
        source: Path to a YAML file, a YAML document string, or an
            already-parsed mapping.
        defaults: Fallback ``timeout``/``retry`` for stages that omit them.
            The document's own ``defaults`` take precedence.

    Returns
    -------
        The validated definition.

    Raises
    ------
    ConfigError
        If the document cannot be parsed or fails validation.
    """
    data = _read_source(source)
    if not isinstance(data, dict):
        raise ConfigError("document", f"expected a mapping, got {type(data).__name__}")
    data = substitute_env_vars(data)

    name, raw_stages, doc_defaults, stages_field = _unpack(data)
    if not isinstance(name, str) or not name:
        raise ConfigError("name" if stages_field == "stages" else "metadata.name", "field required")
    if not isinstance(doc_defaults, dict):
        raise ConfigError(stages_field.replace("stages", "defaults"), "expected a mapping")
    merged_defaults = {
        key: value for key, value in (defaults or {}).items() if value is not None
    } | doc_defaults
    if not isinstance(raw_stages, list) or not raw_stages:
        raise ConfigError(stages_field, "at least one stage is required")

    seen: dict[str, str] = {}
    stages = [
        _parse_stage(raw, f"{stages_field}[{i}]", merged_defaults, seen)
        for i, raw in enumerate(raw_stages)
    ]
    try:
        definition = PipelineDefinition(name=name, stages=tuple(stages))
    except ValidationError as e:
        raise _from_validation_error(e, "") from e

    validate(definition)
    logger.debug(
        "Loaded pipeline '{name}' with {count} stages", name=definition.name, count=len(stages)
    )
    return definition


# ----------------------------------------------------------------------
# Cross-stage validation
# ----------------------------------------------------------------------


def _check_reference(
    definition: PipelineDefinition,
    field: str,
    ref: str | None,
    index: int,
    expected: StageKind,
    missing: str,
) -> None:
    if ref is None:
        raise ConfigError(field, missing)
    if ref not in definition.stage_names:
        raise ConfigError(field, f"unknown stage '{ref}'")
    ref_index = definition.index_of(ref)
    if ref_index >= index:
        raise ConfigError(field, f"stage '{ref}' must precede this stage")
    if definition.stages[ref_index].kind != expected:
        raise ConfigError(field, f"stage '{ref}' is not a {expected} stage")


def validate(definition: PipelineDefinition) -> None:
    """Check cross-stage references of a definition.

    Raises
    ------
    ConfigError
        - a build stage's source is not an earlier source stage
        - a deploy stage's artifact is not produced by an earlier build stage,
          or its manifest source is not an earlier source stage
        - an approval stage does not gate a later stage
        - two build stages declare the same artifact name
    """
    artifact_owners: dict[str, str] = {}

    for index, stage in enumerate(definition.stages):
        field = f"stages[{index}].config"
        config = stage.action_config

        if stage.kind == StageKind.BUILD:
            assert isinstance(config, BuildConfig)
            _check_reference(
                definition,
                f"{field}.source",
                definition.build_source(stage),
                index,
                StageKind.SOURCE,
                "no source stage precedes this build stage",
            )
            if config.artifact is not None:
                owner = artifact_owners.get(config.artifact.name)
                if owner is not None:
                    raise ConfigError(
                        f"{field}.artifact.name",
                        f"artifact '{config.artifact.name}' is already produced by stage '{owner}'",
                    )
                artifact_owners[config.artifact.name] = stage.name

        elif stage.kind == StageKind.DEPLOY:
            artifact = definition.deploy_artifact(stage)
            _check_reference(
                definition,
                f"{field}.artifact",
                artifact,
                index,
                StageKind.BUILD,
                "no build stage precedes this deploy stage",
            )
            build_config = definition.stage(artifact).action_config  # type: ignore[arg-type]
            assert isinstance(build_config, BuildConfig)
            if build_config.artifact is None:
                raise ConfigError(
                    f"{field}.artifact", f"build stage '{artifact}' does not declare an artifact"
                )
            _check_reference(
                definition,
                f"{field}.source",
                definition.deploy_source(stage),
                index,
                StageKind.SOURCE,
                "no source stage holds the deploy manifest",
            )

        elif stage.kind == StageKind.APPROVAL:
            gate = definition.approval_gate(stage)
            if gate is None:
                raise ConfigError(f"{field}.gates", "an approval stage cannot be the last stage")
            if gate not in definition.stage_names:
                raise ConfigError(f"{field}.gates", f"unknown stage '{gate}'")
            if gate == stage.name:
                raise ConfigError(f"{field}.gates", "an approval stage cannot gate itself")
            if definition.index_of(gate) < index:
                raise ConfigError(f"{field}.gates", f"stage '{gate}' must follow this stage")


__all__ = ["ENV_VAR_PATTERN", "load", "substitute_env_vars", "validate"]
