"""Sync policy: the single decision used by event handlers and sweeps alike.

- SYNC    task has a schedule (scheduled_at, due_at or due_day) and is not done
- DELETE  task has no schedule, or is done while delete_completed_tasks is on
- IGNORE  task is done and delete_completed_tasks is off; its event stays as is
"""

from __future__ import annotations

from ..config import CalendarSettings
from ..models import SyncDecision, Task

__all__ = ["classify", "has_schedule"]


def has_schedule(task: Task) -> bool:
    return task.scheduled_at is not None or task.due_at is not None or task.due_day is not None


def classify(task: Task, settings: CalendarSettings) -> SyncDecision:
    if not has_schedule(task):
        return SyncDecision.DELETE
    if not task.is_done:
        return SyncDecision.SYNC
    if settings.delete_completed_tasks:
        return SyncDecision.DELETE
    return SyncDecision.IGNORE
