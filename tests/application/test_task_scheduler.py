"""Tests for the background task scheduler."""

import asyncio

import pytest
from anywhere.application.orchestration.task_scheduler import (
    ScheduledTask,
    TaskScheduler,
)


class _LoopTask:
    def __init__(self, name="loop"):
        self.name = name
        self.ticks = 0
        self.stop_calls = 0

    async def start(self, stop_event):
        while not stop_event.is_set():
            self.ticks += 1
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=0.01)
            except asyncio.TimeoutError:
                pass

    def stop(self):
        self.stop_calls += 1


class _StubbornTask(_LoopTask):
    async def start(self, stop_event):
        await asyncio.sleep(60)


class _CrashingTask(_LoopTask):
    async def start(self, stop_event):
        raise RuntimeError("boom")


class TestTaskScheduler:
    def test_protocol(self):
        assert isinstance(_LoopTask(), ScheduledTask)

    def test_register_and_replace(self):
        scheduler = TaskScheduler()
        first, second = _LoopTask("sync"), _LoopTask("sync")
        scheduler.register(first)
        scheduler.register(second)
        assert scheduler.task_names == ["sync"]
        assert scheduler.get_task("sync") is second
        assert scheduler.get_task("other") is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        scheduler = TaskScheduler()
        task = _LoopTask()
        scheduler.register(task)
        scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.05)
        await scheduler.stop()
        assert task.ticks >= 1
        assert task.stop_calls == 1
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        scheduler = TaskScheduler()
        task = _LoopTask()
        scheduler.register(task)
        scheduler.start()
        await scheduler.stop()
        await scheduler.stop()
        assert task.stop_calls == 1

    @pytest.mark.asyncio
    async def test_double_start_rejected(self):
        scheduler = TaskScheduler()
        scheduler.register(_LoopTask())
        scheduler.start()
        with pytest.raises(RuntimeError):
            scheduler.start()
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_timeout_cancels_stragglers(self):
        scheduler = TaskScheduler()
        task = _StubbornTask()
        scheduler.register(task)
        scheduler.start()
        await asyncio.sleep(0)
        await asyncio.wait_for(scheduler.stop(timeout=0.05), timeout=2)
        assert task.stop_calls == 1

    @pytest.mark.asyncio
    async def test_crashing_task_does_not_break_others(self):
        scheduler = TaskScheduler()
        healthy = _LoopTask("healthy")
        scheduler.register(_CrashingTask("crashing"))
        scheduler.register(healthy)
        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()
        assert healthy.ticks >= 1
