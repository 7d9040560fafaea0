"""Reconciliation engine (local tasks → CalDAV calendar).

Two entry protocols share one decision function (`policy.classify`):

Single item (host task events: update / delete / complete)
- Re-fetch the task from the inventory; event payloads are only trusted for the id.
- SYNC: encode, PUT, then record task_id → resource_id in the mapping.
- DELETE: DELETE mapping.get(id) or the derived resource id, then drop the mapping entry.
- IGNORE: no remote call.
- Calendar disabled: no remote call, no mapping change and no notification.
- Remote failures become one ERROR notification; the mapping is left untouched so a
  later sweep can retry.

Full sweep
- Load all tasks once.
- Orphan pass: mapped tasks that still exist but no longer classify as SYNC are
  deleted remotely and unmapped.
- Sync pass: every SYNC task is pushed sequentially with a fixed spacing between
  requests; one item's failure never stops the others.
- One summary notification at the end.

All paths are idempotent (stable resource ids, whole-resource PUT, DELETE 404 = ok),
so re-running a sweep after a partial failure converges.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..caldav.client import RemoteStore
from ..config import CalendarSettings
from ..errors import PersistenceFailure, RemoteError, TaskNotFound
from ..inventory import TaskInventory
from ..mapping.events import resource_id_for, task_to_event
from ..models import SyncDecision, Task
from ..notify import LogNotifier, Notifier, Severity
from ..state import MappingStore
from .policy import classify

__all__ = [
    "MIN_REQUEST_SPACING_SEC",
    "EventKind",
    "ItemOutcome",
    "Reconciler",
    "SweepSummary",
    "TaskEvent",
]

log = logging.getLogger(__name__)

MIN_REQUEST_SPACING_SEC = 0.3

ClientFactory = Callable[[CalendarSettings], RemoteStore]


class EventKind(enum.Enum):
    UPDATE = "update"
    DELETE = "delete"
    COMPLETE = "complete"


@dataclass(frozen=True)
class TaskEvent:
    kind: EventKind
    task_id: str

    @classmethod
    def from_payload(cls, kind: EventKind | str, payload: Any) -> TaskEvent:
        """Normalize a host payload: a bare id, {"taskId": ...}, {"id": ...} or a Task."""
        event_kind = kind if isinstance(kind, EventKind) else EventKind(str(kind).lower())
        task_id: object = None
        if isinstance(payload, str):
            task_id = payload
        elif isinstance(payload, Task):
            task_id = payload.id
        elif isinstance(payload, Mapping):
            task_id = payload.get("taskId") or payload.get("id")
            if isinstance(task_id, Mapping):
                task_id = task_id.get("id")
        if task_id is None or str(task_id) == "":
            raise ValueError(f"Cannot determine task id from payload: {payload!r}")
        return cls(kind=event_kind, task_id=str(task_id))


class ItemOutcome(enum.Enum):
    SYNCED = "synced"
    DELETED = "deleted"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
    FAILED = "failed"


@dataclass
class SweepSummary:
    synced: int = 0
    failed: int = 0
    cleaned: int = 0
    cleanup_failed: int = 0
    skipped_reason: str | None = None
    failed_task_ids: list[str] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return self.failed + self.cleanup_failed

    @property
    def ok(self) -> bool:
        return self.skipped_reason is None and self.errors == 0

    def aggregate(self) -> dict[str, int]:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "cleaned": self.cleaned,
            "cleanup_failed": self.cleanup_failed,
            "errors": self.errors,
        }

    def message(self) -> str:
        if self.synced == 0 and self.failed == 0 and self.cleaned == 0 and self.cleanup_failed == 0:
            return "No scheduled tasks to sync"
        msg = f"{self.synced} tasks synced, {self.failed} failed"
        if self.cleaned or self.cleanup_failed:
            msg += f"; {self.cleaned} stale events removed"
            if self.cleanup_failed:
                msg += f", {self.cleanup_failed} removals failed"
        return msg


class Reconciler:
    def __init__(
        self,
        store: MappingStore,
        inventory: TaskInventory,
        client_factory: ClientFactory,
        notifier: Notifier | None = None,
        *,
        request_spacing: float = MIN_REQUEST_SPACING_SEC,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if request_spacing < MIN_REQUEST_SPACING_SEC:
            raise ValueError(
                f"request_spacing must be at least {MIN_REQUEST_SPACING_SEC}s (got {request_spacing})"
            )
        self.store = store
        self.inventory = inventory
        self.client_factory = client_factory
        self.notifier: Notifier = notifier or LogNotifier()
        self.request_spacing = request_spacing
        self._sleep = sleep or time.sleep
        self._client: RemoteStore | None = None
        self._client_settings: CalendarSettings | None = None
        self._request_issued = False

    # -------------
    # Remote client lifecycle (rebuilt when settings are replaced)
    # -------------

    @property
    def client(self) -> RemoteStore:
        settings = self.store.config
        if self._client is None or self._client_settings is not settings:
            self.close()
            self._client = self.client_factory(settings)
            self._client_settings = settings
        return self._client

    def close(self) -> None:
        if self._client is not None:
            closer = getattr(self._client, "close", None)
            if callable(closer):
                closer()
        self._client = None
        self._client_settings = None

    # -------------
    # Building blocks (raise on failure)
    # -------------

    def push(self, task: Task) -> str:
        """Upsert the task's event and record the mapping; returns the resource id."""
        event = task_to_event(task)
        self.client.upsert(event.resource_id, event.document)
        self._record(task.id, event.resource_id)
        return event.resource_id

    def remove(self, task_id: str) -> str:
        """Delete the task's event (mapped or derived id) and drop the mapping entry."""
        resource_id = self.store.get(task_id) or resource_id_for(task_id)
        self.client.delete(resource_id)
        self._forget(task_id, resource_id)
        return resource_id

    def _record(self, task_id: str, resource_id: str) -> None:
        try:
            self.store.put(task_id, resource_id)
        except PersistenceFailure:
            log.error(
                "state-diverged op=put task=%s resource=%s; remote event exists but is not mapped",
                task_id,
                resource_id,
            )
            raise

    def _forget(self, task_id: str, resource_id: str) -> None:
        try:
            self.store.remove(task_id)
        except PersistenceFailure:
            log.error(
                "state-diverged op=remove task=%s resource=%s; remote event is gone but still mapped",
                task_id,
                resource_id,
            )
            raise

    # -------------
    # Single-item protocol
    # -------------

    def handle(self, event: TaskEvent) -> ItemOutcome:
        if event.kind is EventKind.DELETE:
            return self.on_task_delete(event.task_id)
        if event.kind is EventKind.COMPLETE:
            return self.on_task_complete(event.task_id)
        return self.on_task_update(event.task_id)

    def on_task_update(self, task_id: str) -> ItemOutcome:
        task = self.inventory.find_by_id(task_id)
        if task is None:
            log.warning("task-not-found event=update %s", TaskNotFound(task_id))
            return ItemOutcome.NOT_FOUND
        return self.reconcile_task(task)

    def on_task_complete(self, task_id: str) -> ItemOutcome:
        task = self.inventory.find_by_id(task_id)
        if task is None:
            log.warning("task-not-found event=complete %s", TaskNotFound(task_id))
            return ItemOutcome.NOT_FOUND
        return self.reconcile_task(task)

    def on_task_delete(self, task_id: str) -> ItemOutcome:
        task = self.inventory.find_by_id(task_id)
        if task is not None:
            # Still in the inventory (e.g. restored); its current state decides
            return self.reconcile_task(task)
        if not self.store.config.enabled:
            log.debug("calendar-disabled skip=delete task=%s", task_id)
            return ItemOutcome.DISABLED
        try:
            self.remove(task_id)
        except (RemoteError, PersistenceFailure) as exc:
            log.warning("task-delete-failed task=%s err=%s", task_id, exc)
            self.notifier.notify(f"Failed to remove task from calendar: {exc}", Severity.ERROR)
            return ItemOutcome.FAILED
        log.info("task-deleted task=%s", task_id)
        self.notifier.notify("Task removed from calendar", Severity.SUCCESS)
        return ItemOutcome.DELETED

    def reconcile_task(self, task: Task) -> ItemOutcome:
        if not self.store.config.enabled:
            log.debug("calendar-disabled skip=reconcile task=%s", task.id)
            return ItemOutcome.DISABLED
        decision = classify(task, self.store.config)
        log.debug("task-classified task=%s decision=%s", task.id, decision.value)
        if decision is SyncDecision.IGNORE:
            return ItemOutcome.IGNORED

        try:
            if decision is SyncDecision.SYNC:
                self.push(task)
            else:
                self.remove(task.id)
        except (RemoteError, PersistenceFailure) as exc:
            log.warning("task-%s-failed task=%s err=%s", decision.value, task.id, exc)
            self.notifier.notify(f'Failed to sync "{task.title}": {exc}', Severity.ERROR)
            return ItemOutcome.FAILED
        except Exception as exc:
            log.exception("task-%s-error task=%s", decision.value, task.id)
            self.notifier.notify(f'Failed to sync "{task.title}": {exc}', Severity.ERROR)
            return ItemOutcome.FAILED

        if decision is SyncDecision.SYNC:
            log.info("task-synced task=%s", task.id)
            self.notifier.notify(f'"{task.title}" synced to calendar', Severity.SUCCESS)
            return ItemOutcome.SYNCED
        log.info("task-unscheduled task=%s", task.id)
        self.notifier.notify(f'Event for "{task.title}" removed', Severity.SUCCESS)
        return ItemOutcome.DELETED

    # -------------
    # Full sweep
    # -------------

    def _pace(self) -> None:
        if self._request_issued:
            self._sleep(self.request_spacing)
        self._request_issued = True

    def sweep(self) -> SweepSummary:
        settings = self.store.config
        if not settings.enabled:
            self.notifier.notify("Calendar sync is disabled; enable it in the settings", Severity.ERROR)
            return SweepSummary(skipped_reason="disabled")
        if not settings.is_complete():
            self.notifier.notify(
                "Calendar settings are incomplete (URL, username and password are required)",
                Severity.ERROR,
            )
            return SweepSummary(skipped_reason="incomplete-settings")

        tasks = self.inventory.list()
        by_id = {t.id: t for t in tasks}
        log.info("sweep-start tasks=%d mapped=%d", len(tasks), len(self.store))

        summary = SweepSummary()
        self._request_issued = False

        for task_id, resource_id in self.store.all():
            task = by_id.get(task_id)
            if task is None or classify(task, settings) is SyncDecision.SYNC:
                continue
            self._pace()
            try:
                self.client.delete(resource_id)
                self._forget(task_id, resource_id)
                summary.cleaned += 1
                log.info("sweep-orphan-removed task=%s resource=%s", task_id, resource_id)
            except Exception:
                summary.cleanup_failed += 1
                log.exception("sweep-orphan-failed task=%s resource=%s", task_id, resource_id)

        for task in tasks:
            if classify(task, settings) is not SyncDecision.SYNC:
                continue
            self._pace()
            try:
                self.push(task)
                summary.synced += 1
            except Exception:
                summary.failed += 1
                summary.failed_task_ids.append(task.id)
                log.exception("sweep-sync-failed task=%s", task.id)

        log.info("sweep-done %s", summary.aggregate())
        self.notifier.notify(
            summary.message(), Severity.SUCCESS if summary.errors == 0 else Severity.ERROR
        )
        return summary
