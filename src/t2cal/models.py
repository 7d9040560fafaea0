"""Domain models: task snapshots, sync decisions and encoded remote events."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from .utils.timeutil import parse_day, parse_duration_ms, parse_instant

__all__ = ["RemoteEvent", "SyncDecision", "Task"]


class SyncDecision(enum.Enum):
    SYNC = "sync"
    DELETE = "delete"
    IGNORE = "ignore"


@dataclass(frozen=True)
class Task:
    """Read-only snapshot of a task owned by the host inventory."""

    id: str
    title: str = ""
    notes: str | None = None
    is_done: bool = False
    scheduled_at: datetime | None = None
    due_at: datetime | None = None
    due_day: date | None = None
    estimated_duration: timedelta | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Task:
        """Build a Task from the host export format.

        Keys: id, title, notes, isDone, plannedAt, dueWithTime, dueDay, timeEstimate.
        Timestamps are epoch milliseconds or ISO 8601; timeEstimate is milliseconds.
        """
        task_id = data.get("id")
        if task_id is None or str(task_id) == "":
            raise ValueError("Task payload missing 'id'.")
        return cls(
            id=str(task_id),
            title=str(data.get("title") or ""),
            notes=(str(data["notes"]) if data.get("notes") else None),
            is_done=bool(data.get("isDone", False)),
            scheduled_at=parse_instant(data.get("plannedAt")),
            due_at=parse_instant(data.get("dueWithTime")),
            due_day=parse_day(data.get("dueDay")),
            estimated_duration=parse_duration_ms(data.get("timeEstimate")),
        )


@dataclass(frozen=True)
class RemoteEvent:
    resource_id: str
    summary: str
    stamped_at: datetime
    document: str
    start: datetime | None = None
    end: datetime | None = None
    all_day: date | None = None
    description: str | None = None

    @property
    def is_all_day(self) -> bool:
        return self.all_day is not None
