"""Tests for the deploy stage adapter."""

from pathlib import Path

import pytest

from deployflow.kernel.domain import ArtifactRef, DeployConfig
from deployflow.kernel.exceptions import ActionError, DeployRejectedError
from deployflow.kernel.ports.action import ActionContext
from deployflow.stdlib.adapters import DeployAdapter
from deployflow.stdlib.adapters.deploy import render_manifest
from deployflow.stdlib.adapters.mock import MockCluster

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
---
apiVersion: v1
kind: Service
metadata:
  name: web
"""

IMAGE = "registry.local/web:1.0"


@pytest.fixture
def snapshot(tmp_path: Path) -> Path:
    root = tmp_path / "snapshot"
    (root / "k8s").mkdir(parents=True)
    (root / "k8s" / "app.yaml").write_text(MANIFEST)
    return root


def context_for(snapshot: Path, with_artifact: bool = True) -> ActionContext:
    inputs = {
        "source": ArtifactRef(
            kind="snapshot", name="acme/web", location=str(snapshot), revision="abc"
        )
    }
    if with_artifact:
        inputs["artifact"] = ArtifactRef(
            kind="artifact", name="web", location=IMAGE, revision="1.0"
        )
    return ActionContext(run_id="r1", stage_name="deploy", inputs=inputs)


def deploy_config(**fields) -> DeployConfig:
    return DeployConfig(**{"manifest": "k8s/app.yaml", "environment": "production", **fields})


class TestRenderManifest:
    def test_substitutes_image_in_every_document(self):
        docs = render_manifest(MANIFEST, "{{ image }}", IMAGE)
        assert [d["kind"] for d in docs] == ["Deployment", "Service"]
        assert docs[0]["spec"]["template"]["spec"]["containers"][0]["image"] == IMAGE

    def test_custom_placeholder(self):
        docs = render_manifest("kind: Pod\nimage: __IMAGE__\n", "__IMAGE__", IMAGE)
        assert docs == [{"kind": "Pod", "image": IMAGE}]

    def test_empty_documents_dropped(self):
        assert render_manifest("---\nkind: A\n---\n---\n", "x", None) == [{"kind": "A"}]

    @pytest.mark.parametrize(
        "text,match",
        [
            ("", "no documents"),
            ("- a\n- b\n", "not a mapping"),
            ("kind: [A\n", "not valid YAML"),
        ],
    )
    def test_invalid_manifests(self, text, match):
        with pytest.raises(ActionError, match=match):
            render_manifest(text, "x", None)


class TestDeployAdapter:
    @pytest.mark.asyncio
    async def test_applies_rendered_manifest(self, snapshot: Path):
        cluster = MockCluster()
        ref = await DeployAdapter(cluster).aexecute(deploy_config(), None, context_for(snapshot))

        [apply] = cluster.applies
        assert apply.environment == "production"
        assert apply.manifests[0]["spec"]["template"]["spec"]["containers"][0]["image"] == IMAGE
        assert ref.kind == "deployment"
        assert ref.name == "production"
        assert ref.location == "production/k8s/app.yaml"
        assert ref.revision == "1.0"
        assert ref.metadata["resources"] == ["Deployment/web", "Service/web"]
        assert ref.metadata["message"] == "2 configured, 0 unchanged"

    @pytest.mark.asyncio
    async def test_reapply_is_idempotent(self, snapshot: Path):
        cluster = MockCluster()
        adapter = DeployAdapter(cluster)
        first = await adapter.aexecute(deploy_config(), None, context_for(snapshot))
        second = await adapter.aexecute(deploy_config(), None, context_for(snapshot))

        assert first.digest == second.digest
        assert second.metadata["message"] == "0 configured, 2 unchanged"
        assert len(cluster.resources["production"]) == 2

    @pytest.mark.asyncio
    async def test_rejected_apply(self, snapshot: Path):
        cluster = MockCluster(reject={"production": "quota exceeded"})
        with pytest.raises(DeployRejectedError) as exc_info:
            await DeployAdapter(cluster).aexecute(deploy_config(), None, context_for(snapshot))
        assert exc_info.value.environment == "production"
        assert exc_info.value.reason == "quota exceeded"

    @pytest.mark.asyncio
    async def test_manifest_must_stay_inside_snapshot(self, snapshot: Path):
        config = deploy_config(manifest="../../etc/passwd")
        with pytest.raises(ActionError, match="escapes the source snapshot"):
            await DeployAdapter(MockCluster()).aexecute(config, None, context_for(snapshot))

    @pytest.mark.asyncio
    async def test_missing_manifest(self, snapshot: Path):
        config = deploy_config(manifest="k8s/missing.yaml")
        with pytest.raises(ActionError, match="Cannot read manifest"):
            await DeployAdapter(MockCluster()).aexecute(config, None, context_for(snapshot))

    @pytest.mark.asyncio
    async def test_without_artifact_keeps_placeholder(self, snapshot: Path):
        cluster = MockCluster()
        ref = await DeployAdapter(cluster).aexecute(
            deploy_config(), None, context_for(snapshot, with_artifact=False)
        )
        container = cluster.applies[0].manifests[0]["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "{{ image }}"
        assert ref.revision == "abc"
