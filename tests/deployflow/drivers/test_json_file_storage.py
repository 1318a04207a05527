"""Tests for JsonFileCollectionStorage."""

import json
from pathlib import Path

import pytest

from deployflow.drivers.storage import JsonFileCollectionStorage
from deployflow.kernel.domain import PipelineRun, RunStatus
from deployflow.kernel.exceptions import CollaboratorError
from deployflow.stdlib.lib.run_history import RunHistory


@pytest.mark.asyncio
async def test_documents_are_json_files(tmp_path: Path):
    storage = JsonFileCollectionStorage(tmp_path / "history")
    await storage.asave("stage_results", "run-1:0002", {"status": "running"})

    path = tmp_path / "history" / "stage_results" / "run-1_0002.json"
    assert json.loads(path.read_text()) == {"status": "running"}
    assert not path.with_suffix(".json.tmp").exists()
    assert await storage.aload("stage_results", "run-1:0002") == {"status": "running"}


@pytest.mark.asyncio
async def test_query_and_delete(tmp_path: Path):
    storage = JsonFileCollectionStorage(tmp_path)
    await storage.asave("runs", "a", {"status": "failed"})
    await storage.asave("runs", "b", {"status": "succeeded"})

    assert [d["status"] for d in await storage.aquery("runs")] == ["failed", "succeeded"]
    assert await storage.aquery("runs", {"status": "failed"}) == [{"status": "failed"}]
    assert await storage.aquery("approvals") == []
    assert await storage.adelete("runs", "a") is True
    assert await storage.adelete("runs", "a") is False
    assert await storage.aload("runs", "a") is None


@pytest.mark.asyncio
async def test_corrupt_document(tmp_path: Path):
    storage = JsonFileCollectionStorage(tmp_path)
    (tmp_path / "runs").mkdir()
    (tmp_path / "runs" / "bad.json").write_text("{not json")
    with pytest.raises(CollaboratorError, match="cannot read"):
        await storage.aload("runs", "bad")


@pytest.mark.asyncio
async def test_history_survives_reopening(tmp_path: Path):
    run = PipelineRun(run_id="r1", definition_ref="web")
    run.transition(RunStatus.RUNNING)
    await RunHistory(JsonFileCollectionStorage(tmp_path)).record_run(run)

    reopened = RunHistory(JsonFileCollectionStorage(tmp_path))
    assert await reopened.aget_run("r1") == run


@pytest.mark.asyncio
async def test_file_access_stays_off_the_event_loop(tmp_path: Path, monkeypatch):
    storage = JsonFileCollectionStorage(tmp_path)

    def blocking_call(*args, **kwargs):
        raise AssertionError("synchronous file access inside a coroutine")

    for name in ("read_text", "write_text", "replace", "glob", "unlink", "mkdir", "is_dir"):
        monkeypatch.setattr(Path, name, blocking_call)

    await storage.asave("runs", "r1", {"status": "running"})
    await storage.asave("runs", "r2", {"status": "failed"})
    assert await storage.aload("runs", "r1") == {"status": "running"}
    assert await storage.aquery("runs", {"status": "failed"}) == [{"status": "failed"}]
    assert await storage.adelete("runs", "r1") is True
    assert await storage.aload("runs", "r1") is None
