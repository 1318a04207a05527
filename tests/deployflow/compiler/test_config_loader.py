"""Tests for deployflow.compiler.config_loader."""

from pathlib import Path

import pytest

from deployflow.compiler.config_loader import find_config_file, load_config, parse_config
from deployflow.kernel.config import DeployFlowConfig
from deployflow.kernel.exceptions import ConfigError
from deployflow.kernel.retry import RetryPolicy

YAML_CONFIG = """\
kind: Config
spec:
  logging:
    level: debug
    format: json
  engine:
    default_stage_timeout: 300
    default_retry: {max_retries: 2, delay: 0.5}
    workspace_dir: /srv/deployflow/workspace
    registry_dir: /srv/deployflow/registry
    registry_host: registry.example.com:5000
    kube_contexts:
      production: prod-eu-1
  history:
    backend: file
    path: ${DF_TEST_HISTORY:-/srv/deployflow/history}
  notifications:
    webhook_url: https://hooks.example.com/deploys
    timeout: 3
    headers: {Authorization: "Bearer abc"}
"""


@pytest.fixture
def isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run discovery from a directory without any pyproject.toml above it."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


class TestLoadConfig:
    def test_defaults_without_config_file(self, isolated_cwd: Path) -> None:
        config = load_config()
        assert config == DeployFlowConfig()
        assert config.history.backend == "file"
        assert config.engine.default_retry == RetryPolicy()

    def test_yaml_config(self, tmp_path: Path) -> None:
        path = tmp_path / "deployflow.yaml"
        path.write_text(YAML_CONFIG)

        config = load_config(path)

        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.engine.default_stage_timeout == 300
        assert config.engine.default_retry == RetryPolicy(max_retries=2, delay=0.5)
        assert config.engine.workspace_dir == "/srv/deployflow/workspace"
        assert config.engine.registry_dir == "/srv/deployflow/registry"
        assert config.engine.registry_host == "registry.example.com:5000"
        assert config.engine.kube_contexts == {"production": "prod-eu-1"}
        assert config.history.path == "/srv/deployflow/history"
        assert config.notifications.webhook_url == "https://hooks.example.com/deploys"
        assert config.notifications.timeout == 3.0
        assert config.notifications.headers == {"Authorization": "Bearer abc"}

    def test_env_substitution_in_config(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DF_TEST_HISTORY", "/data/history")
        path = tmp_path / "deployflow.yaml"
        path.write_text(YAML_CONFIG)
        assert load_config(path).history.path == "/data/history"

    def test_pyproject_discovery(self, isolated_cwd: Path) -> None:
        (isolated_cwd / "pyproject.toml").write_text(
            '[project]\nname = "app"\n\n'
            "[tool.deployflow.engine]\nworkspace_dir = \"ws\"\n\n"
            '[tool.deployflow.history]\nbackend = "memory"\n'
        )
        nested = isolated_cwd / "src" / "app"
        nested.mkdir(parents=True)

        assert find_config_file() == isolated_cwd / "pyproject.toml"
        config = load_config()
        assert config.engine.workspace_dir == "ws"
        assert config.history.backend == "memory"

    def test_pyproject_without_section_is_skipped(self, isolated_cwd: Path) -> None:
        (isolated_cwd / "pyproject.toml").write_text('[project]\nname = "app"\n')
        assert find_config_file() is None

    def test_env_config_path(
        self, tmp_path: Path, isolated_cwd: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "deployflow.yaml"
        path.write_text("kind: Config\nspec:\n  history: {backend: memory}\n")
        monkeypatch.setenv("DEPLOYFLOW_CONFIG_PATH", str(path))
        assert load_config().history.backend == "memory"

    def test_missing_explicit_path(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_yaml_must_be_kind_config(self, tmp_path: Path) -> None:
        path = tmp_path / "deployflow.yaml"
        path.write_text("kind: Pipeline\nspec: {}\n")
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.field == "kind"

    def test_unparseable_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "deployflow.yaml"
        path.write_text("kind: [Config\n")
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.field == "document"


class TestParseConfig:
    def test_invalid_backend(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"history": {"backend": "postgres"}})
        assert exc_info.value.field == "history.backend"

    def test_invalid_default_retry(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"engine": {"default_retry": {"max_retries": -1}}})
        assert exc_info.value.field == "engine.default_retry.max_retries"

    def test_invalid_default_timeout(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"engine": {"default_stage_timeout": 0}})
        assert exc_info.value.field == "engine.default_stage_timeout"

    def test_section_must_be_mapping(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"engine": ["nope"]})
        assert exc_info.value.field == "engine"

    def test_unknown_log_level(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_config({"logging": {"level": "loud"}})
        assert exc_info.value.field == "logging.level"

    def test_env_overrides_logging(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEPLOYFLOW_LOG_LEVEL", "error")
        monkeypatch.setenv("DEPLOYFLOW_LOG_FORMAT", "CONSOLE")
        monkeypatch.setenv("DEPLOYFLOW_LOG_COLOR", "off")
        monkeypatch.setenv("DEPLOYFLOW_LOG_TIMESTAMP", "not-a-bool")

        logging = parse_config({"logging": {"level": "DEBUG", "format": "json"}}).logging

        assert logging.level == "ERROR"
        assert logging.format == "console"
        assert logging.use_color is False
        assert logging.include_timestamp is True

    def test_empty_webhook_means_none(self) -> None:
        config = parse_config({"notifications": {"webhook_url": ""}})
        assert config.notifications.webhook_url is None
