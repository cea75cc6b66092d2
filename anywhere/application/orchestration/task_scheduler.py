"""
Task Scheduler

Architectural Intent:
- Generic runner for long-lived background tasks (the cloud reconciler today)
- Every task receives one shared asyncio.Event as its cancellable lifecycle signal
- Stop raises the signal, waits for every task, then calls each stop hook once

Design Decisions:
- Registration is by name; a duplicate name replaces the earlier task
- Tasks that return early are never restarted
- An optional stop timeout cancels tasks that ignore the signal, bounding
  shutdown latency
"""

import asyncio
import logging
from typing import Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ScheduledTask(Protocol):
    @property
    def name(self) -> str: ...

    async def start(self, stop_event: asyncio.Event) -> None: ...

    def stop(self) -> None: ...


class TaskScheduler:
    def __init__(self) -> None:
        self._tasks: dict[str, ScheduledTask] = {}
        self._running: dict[str, asyncio.Task] = {}
        self._stop_event: Optional[asyncio.Event] = None
        self._stopped = False

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    @property
    def is_running(self) -> bool:
        return bool(self._running) and not self._stopped

    def register(self, task: ScheduledTask) -> None:
        if task.name in self._tasks:
            logger.warning("Replacing scheduled task %s", task.name)
        self._tasks[task.name] = task
        logger.info("Registered task %s", task.name)

    def get_task(self, name: str) -> Optional[ScheduledTask]:
        return self._tasks.get(name)

    def start(self) -> None:
        """Launch every registered task on the running event loop."""
        if self._running:
            raise RuntimeError("scheduler already started")
        self._stop_event = asyncio.Event()
        self._stopped = False
        for name, task in self._tasks.items():
            self._running[name] = asyncio.create_task(
                self._run(task), name=f"scheduler:{name}"
            )
        logger.info("Scheduler started with %d tasks", len(self._running))

    async def _run(self, task: ScheduledTask) -> None:
        assert self._stop_event is not None
        logger.info("Task %s started", task.name)
        try:
            await task.start(self._stop_event)
        except asyncio.CancelledError:
            logger.warning("Task %s cancelled", task.name)
            raise
        except Exception:
            logger.exception("Task %s exited with an error", task.name)
        else:
            logger.info("Task %s finished", task.name)

    async def stop(self, timeout: Optional[float] = None) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()

        running = list(self._running.values())
        if running:
            done, pending = await asyncio.wait(running, timeout=timeout)
            for straggler in pending:
                logger.warning("Cancelling task %s after %ss", straggler.get_name(), timeout)
                straggler.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task in self._tasks.values():
            task.stop()
        self._running.clear()
        logger.info("Scheduler stopped")
