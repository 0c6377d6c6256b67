"""Unit tests for TaskRegistry."""

import asyncio

import pytest

from moodlog.services.background import TaskRegistry


class TestTaskRegistry:
    """Test background task tracking and draining."""

    @pytest.mark.asyncio
    async def test_tracks_completion(self):
        registry = TaskRegistry()

        async def work():
            return "done"

        task = registry.spawn(work(), name="work")
        assert registry.active_count == 1

        assert await task == "done"
        await asyncio.sleep(0)

        assert registry.active_count == 0
        assert registry.completed_count == 1

    @pytest.mark.asyncio
    async def test_counts_failures(self):
        registry = TaskRegistry()

        async def boom():
            raise RuntimeError("boom")

        task = registry.spawn(boom())
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)

        assert registry.failed_count == 1
        assert registry.active_count == 0

    @pytest.mark.asyncio
    async def test_drain_waits_for_running_tasks(self):
        registry = TaskRegistry()
        finished = []

        async def work():
            await asyncio.sleep(0.01)
            finished.append(True)

        registry.spawn(work())
        registry.spawn(work())

        counts = await registry.drain(timeout=5)

        assert counts == {"finished": 2, "cancelled": 0}
        assert finished == [True, True]

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self):
        registry = TaskRegistry()

        async def hang():
            await asyncio.sleep(3600)

        task = registry.spawn(hang())

        counts = await registry.drain(timeout=0.01)

        assert counts == {"finished": 0, "cancelled": 1}
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_drain_with_nothing_running(self):
        assert await TaskRegistry().drain(timeout=1) == {"finished": 0, "cancelled": 0}
