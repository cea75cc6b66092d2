"""
Application Orchestration Package

Architectural Intent:
- Contains background task orchestration components
- A single scheduler owns the lifecycle of every long-running task
"""

from anywhere.application.orchestration.task_scheduler import (
    ScheduledTask,
    TaskScheduler,
)

__all__ = ["ScheduledTask", "TaskScheduler"]
