"""Tests for checkpoint persistence."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agentruntime.infra.db.checkpoints import CheckpointRepo
from agentruntime.infra.store import CheckpointStore, JsonFileStore
from agentruntime.models.checklist import TaskChecklist
from agentruntime.models.checkpoint import RunCheckpoint


def _checkpoint(session_id="s1"):
    return RunCheckpoint(
        session_id=session_id,
        goal="build",
        checklist=TaskChecklist.from_plan(["a"], "build"),
        context_log=["GOAL: build"],
    )


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        store = JsonFileStore(tmp_path / "checkpoints")
        checkpoint = _checkpoint()
        await store.save(checkpoint)
        assert await store.load("s1") == checkpoint

    @pytest.mark.asyncio
    async def test_missing_session(self, tmp_path):
        assert await JsonFileStore(tmp_path).load("nope") is None

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.path_for("s1").write_text("{broken")
        assert await store.load("s1") is None

    @pytest.mark.asyncio
    async def test_list_recent_skips_unreadable(self, tmp_path):
        store = JsonFileStore(tmp_path)
        await store.save(_checkpoint("s1"))
        await store.save(_checkpoint("s2"))
        store.path_for("bad").write_text("{broken")

        recent = await store.list_recent()

        assert sorted(cp.session_id for cp in recent) == ["s1", "s2"]
        assert len(await store.list_recent(limit=1)) <= 1

    @pytest.mark.asyncio
    async def test_list_recent_without_directory(self, tmp_path):
        assert await JsonFileStore(tmp_path / "missing").list_recent() == []

    def test_unsafe_session_id_is_sanitized(self, tmp_path):
        path = JsonFileStore(tmp_path).path_for("../../etc/passwd")
        assert path.parent == tmp_path

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(JsonFileStore(tmp_path), CheckpointStore)


class TestCheckpointRepo:
    @pytest.fixture
    def collection(self):
        return AsyncMock()

    @pytest.fixture
    def repo(self, collection):
        db = MagicMock()
        db.__getitem__.return_value = collection
        return CheckpointRepo(db)

    @pytest.mark.asyncio
    async def test_save_upserts_by_session(self, repo, collection):
        await repo.save(_checkpoint())
        args, kwargs = collection.replace_one.call_args
        assert args[0] == {"session_id": "s1"}
        assert "_id" not in args[1]
        assert kwargs["upsert"] is True

    @pytest.mark.asyncio
    async def test_load(self, repo, collection):
        collection.find_one.return_value = {**_checkpoint().to_doc(), "_id": "oid1"}
        loaded = await repo.load("s1")
        assert loaded.goal == "build"
        assert loaded.id == "oid1"

    @pytest.mark.asyncio
    async def test_load_missing(self, repo, collection):
        collection.find_one.return_value = None
        assert await repo.load("s1") is None

    @pytest.mark.asyncio
    async def test_delete(self, repo, collection):
        collection.delete_one.return_value = MagicMock(deleted_count=1)
        assert await repo.delete("s1")
