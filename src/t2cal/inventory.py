"""Task inventory collaborators.

The reconciler only needs two reads: the whole collection and a lookup by id.
`JsonTaskInventory` serves both from a JSON export of the task list, re-read on
every call so each decision sees the latest snapshot.

Accepted file shapes:
  [{"id": "t1", "title": "...", "plannedAt": 1767430800000, ...}, ...]
  {"tasks": [...]}
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from .models import Task

__all__ = ["InMemoryInventory", "JsonTaskInventory", "TaskInventory"]

log = logging.getLogger(__name__)


class TaskInventory(Protocol):
    def list(self) -> list[Task]: ...

    def find_by_id(self, task_id: str) -> Task | None: ...


class InMemoryInventory:
    """Inventory over a fixed set of tasks; the host may swap tasks via `replace`."""

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: dict[str, Task] = {t.id: t for t in tasks}

    def list(self) -> list[Task]:
        return list(self._tasks.values())

    def find_by_id(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def replace(self, task: Task) -> None:
        self._tasks[task.id] = task

    def discard(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)


class JsonTaskInventory:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read_items(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            raise FileNotFoundError(f"Task export not found: {self.path}")
        with self.path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, dict):
            data = data.get("tasks", [])
        if not isinstance(data, list):
            raise ValueError(f"Task export must be a list or an object with 'tasks' in {self.path}")
        return [item for item in data if isinstance(item, dict)]

    def list(self) -> list[Task]:
        tasks: list[Task] = []
        for item in self._read_items():
            try:
                tasks.append(Task.from_mapping(item))
            except ValueError as exc:
                log.warning("task-parse-failed id=%s err=%s", item.get("id"), exc)
        return tasks

    def find_by_id(self, task_id: str) -> Task | None:
        for task in self.list():
            if task.id == task_id:
                return task
        return None
