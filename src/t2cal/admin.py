"""Operational helpers over the reconciler and mapping store.

These are for inspection and repair, not part of the sync path; every helper goes
through the same Reconciler / MappingStore APIs the sync uses.
"""

from __future__ import annotations

import logging
from typing import Any

from .errors import TaskNotFound
from .mapping.events import resource_id_for
from .sync.policy import classify
from .sync.reconciler import ItemOutcome, Reconciler

__all__ = ["AdminTools"]

log = logging.getLogger(__name__)


class AdminTools:
    def __init__(self, reconciler: Reconciler) -> None:
        self.reconciler = reconciler
        self.store = reconciler.store

    def show_config(self) -> dict[str, Any]:
        return self.store.config.redacted()

    def show_mapping(self) -> dict[str, str]:
        return dict(self.store.all())

    def task_details(self, task_id: str) -> dict[str, Any]:
        task = self.reconciler.inventory.find_by_id(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return {
            "id": task.id,
            "title": task.title,
            "is_done": task.is_done,
            "scheduled_at": task.scheduled_at.isoformat() if task.scheduled_at else None,
            "due_at": task.due_at.isoformat() if task.due_at else None,
            "due_day": task.due_day.isoformat() if task.due_day else None,
            "estimated_duration_sec": (
                int(task.estimated_duration.total_seconds()) if task.estimated_duration else None
            ),
            "decision": classify(task, self.store.config).value,
            "resource_id": self.store.get(task.id) or resource_id_for(task.id),
            "mapped": task.id in self.store,
        }

    def sync_task(self, task_id: str) -> ItemOutcome:
        task = self.reconciler.inventory.find_by_id(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return self.reconciler.reconcile_task(task)

    def delete_event(self, task_id: str) -> bool:
        """Delete a task's mapped event; returns False when unmapped or sync is disabled."""
        if self.store.get(task_id) is None:
            log.info("admin-delete-unmapped task=%s", task_id)
            return False
        if not self.store.config.enabled:
            log.info("admin-delete-disabled task=%s", task_id)
            return False
        self.reconciler.remove(task_id)
        return True

    def find_orphaned_mappings(self) -> list[str]:
        existing = {t.id for t in self.reconciler.inventory.list()}
        return [task_id for task_id, _ in self.store.all() if task_id not in existing]

    def cleanup_orphaned_mappings(self) -> list[str]:
        """Drop mapping entries whose task no longer exists in the inventory.

        No remote call is made; the events of those tasks are left on the server.
        """
        removed: list[str] = []
        for task_id in self.find_orphaned_mappings():
            if self.store.remove(task_id):
                removed.append(task_id)
        log.info("admin-orphans-removed count=%d", len(removed))
        return removed

    def force_remove_mapping(self, task_id: str) -> bool:
        return self.store.remove(task_id)

    def reset_mapping(self) -> None:
        self.store.clear_mapping()

    def reset_all(self) -> None:
        self.store.reset()
        self.reconciler.close()
