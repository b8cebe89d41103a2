"""Tests for the cross-session file lock coordinator."""

import asyncio

import pytest

from agentruntime.infra.file_lock import (
    FileLockCoordinator,
    LockStatus,
    analyze_merge,
)
from agentruntime.infra.file_ops import FileOperation, WriteMode


@pytest.fixture
def coordinator():
    return FileLockCoordinator(default_timeout=1.0)


def _write(path, content="x"):
    return FileOperation.write(str(path), content)


class TestAcquire:
    @pytest.mark.asyncio
    async def test_free_file_is_acquired(self, coordinator, tmp_path):
        result = await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        assert result.status == LockStatus.ACQUIRED
        assert coordinator.lock_holder(str(tmp_path / "a")) == "s1"

    @pytest.mark.asyncio
    async def test_reentrant_for_same_session(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        result = await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        assert result.status == LockStatus.ACQUIRED

    @pytest.mark.asyncio
    async def test_zero_timeout_returns_queue_position(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        result = await coordinator.acquire_lock(_write(tmp_path / "a"), "s2", timeout=0)
        assert result.status == LockStatus.QUEUED
        assert result.position == 1
        assert coordinator.queue_position("s2", str(tmp_path / "a")) == 1
        assert coordinator.waiting_file("s2") == str(tmp_path / "a")

    @pytest.mark.asyncio
    async def test_requeue_keeps_position(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s2", timeout=0)
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s3", timeout=0)
        again = await coordinator.acquire_lock(_write(tmp_path / "a"), "s2", timeout=0)
        assert again.position == 1

    @pytest.mark.asyncio
    async def test_timeout(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        result = await coordinator.acquire_lock(_write(tmp_path / "a"), "s2", timeout=0.05)
        assert result.status == LockStatus.TIMEOUT
        assert coordinator.queue_position("s2", str(tmp_path / "a")) is None

    @pytest.mark.asyncio
    async def test_waiter_gets_lock_on_release(self, coordinator, tmp_path):
        path = tmp_path / "a"
        await coordinator.acquire_lock(_write(path), "s1")
        waiter = asyncio.create_task(coordinator.acquire_lock(_write(path), "s2", timeout=2))
        await asyncio.sleep(0.01)
        assert await coordinator.release_lock(str(path), "s1")
        result = await waiter
        assert result.status == LockStatus.ACQUIRED
        assert coordinator.lock_holder(str(path)) == "s2"

    @pytest.mark.asyncio
    async def test_release_by_non_holder_is_refused(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        assert not await coordinator.release_lock(str(tmp_path / "a"), "s2")
        assert coordinator.lock_holder(str(tmp_path / "a")) == "s1"

    @pytest.mark.asyncio
    async def test_path_normalization(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        assert coordinator.lock_holder(str(tmp_path / "sub" / ".." / "a")) == "s1"


class TestMerge:
    @pytest.mark.asyncio
    async def test_disjoint_inserts_merge(self, coordinator, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("1\n2\n3\n4\n5\n6")
        await coordinator.acquire_lock(FileOperation.insert_lines(str(path), 1, "top"), "s1")
        result = await coordinator.acquire_lock(
            FileOperation.insert_lines(str(path), 5, "bottom"), "s2",
        )
        assert result.status == LockStatus.MERGED
        assert result.result.success
        assert "bottom" in path.read_text()

    @pytest.mark.asyncio
    async def test_merging_disabled(self, tmp_path):
        coordinator = FileLockCoordinator(enable_merging=False)
        path = tmp_path / "a.txt"
        path.write_text("1\n2\n3\n4\n5\n6")
        await coordinator.acquire_lock(FileOperation.insert_lines(str(path), 1, "top"), "s1")
        result = await coordinator.acquire_lock(
            FileOperation.insert_lines(str(path), 5, "bottom"), "s2", timeout=0,
        )
        assert result.status == LockStatus.QUEUED

    def test_overwrite_never_merges(self, tmp_path):
        analysis = analyze_merge(_write(tmp_path / "a"), _write(tmp_path / "a"))
        assert not analysis.can_merge

    def test_appends_merge(self, tmp_path):
        a = FileOperation.write(str(tmp_path / "a"), "1", WriteMode.APPEND)
        b = FileOperation.write(str(tmp_path / "a"), "2", WriteMode.APPEND)
        assert analyze_merge(a, b).can_merge

    def test_adjacent_inserts_do_not_merge(self, tmp_path):
        a = FileOperation.insert_lines(str(tmp_path / "a"), 3, "x")
        b = FileOperation.insert_lines(str(tmp_path / "a"), 4, "y")
        assert not analyze_merge(a, b).can_merge

    def test_insert_after_existing_shifts_line(self, tmp_path):
        a = FileOperation.insert_lines(str(tmp_path / "a"), 2, "x")
        b = FileOperation.insert_lines(str(tmp_path / "a"), 8, "y")
        assert analyze_merge(a, b).adjusted.line_number == 9

    def test_disjoint_deletes_shift(self, tmp_path):
        a = FileOperation.delete_lines(str(tmp_path / "a"), 1, 2)
        b = FileOperation.delete_lines(str(tmp_path / "a"), 5, 6)
        adjusted = analyze_merge(a, b).adjusted
        assert (adjusted.start_line, adjusted.end_line) == (3, 4)

    def test_overlapping_edits(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("alpha beta gamma")
        a = FileOperation.edit(str(path), "alpha beta", "A")
        b = FileOperation.edit(str(path), "beta gamma", "B")
        assert not analyze_merge(a, b).can_merge

    def test_disjoint_edits(self, tmp_path):
        path = tmp_path / "a.py"
        path.write_text("alpha beta gamma")
        a = FileOperation.edit(str(path), "alpha", "A")
        b = FileOperation.edit(str(path), "gamma", "G")
        assert analyze_merge(a, b).can_merge


class TestReleaseAll:
    @pytest.mark.asyncio
    async def test_releases_held_and_queued(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        await coordinator.acquire_lock(_write(tmp_path / "b"), "s2")
        await coordinator.acquire_lock(_write(tmp_path / "b"), "s1", timeout=0)

        released = await coordinator.release_all_locks("s1")

        assert released == [str(tmp_path / "a")]
        assert coordinator.lock_holder(str(tmp_path / "a")) is None
        assert coordinator.queue_position("s1", str(tmp_path / "b")) is None
        assert coordinator.held_paths("s2") == [str(tmp_path / "b")]

    @pytest.mark.asyncio
    async def test_hands_over_to_next_waiter(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s2", timeout=0)
        await coordinator.release_all_locks("s1")
        assert coordinator.lock_holder(str(tmp_path / "a")) == "s2"

    @pytest.mark.asyncio
    async def test_lock_info(self, coordinator, tmp_path):
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s1")
        await coordinator.acquire_lock(_write(tmp_path / "a"), "s2", timeout=0)
        info = coordinator.lock_info(str(tmp_path / "a"))
        assert info.holder == "s1"
        assert info.queue_length == 1
        assert info.held_seconds >= 0
