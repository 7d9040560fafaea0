from datetime import UTC, datetime

import pytest
from conftest import ENABLED, FakeRemote, scheduled, unscheduled

from t2cal.config import CalendarSettings
from t2cal.errors import PersistenceFailure
from t2cal.inventory import InMemoryInventory
from t2cal.models import Task
from t2cal.notify import RecordingNotifier, Severity
from t2cal.sync.reconciler import (
    EventKind,
    ItemOutcome,
    Reconciler,
    TaskEvent,
)


def _reconciler(store, tasks, remote, notifier=None, sleeps=None) -> Reconciler:
    return Reconciler(
        store,
        InMemoryInventory(tasks),
        lambda settings: remote,
        notifier or RecordingNotifier(),
        sleep=(sleeps.append if sleeps is not None else lambda s: None),
    )


# -------------
# Event payloads
# -------------


@pytest.mark.parametrize(
    "payload",
    ["abc", {"taskId": "abc"}, {"id": "abc"}, {"taskId": {"id": "abc"}}, Task(id="abc")],
)
def test_task_event_accepts_host_payload_shapes(payload) -> None:
    event = TaskEvent.from_payload("update", payload)
    assert event == TaskEvent(EventKind.UPDATE, "abc")


def test_task_event_rejects_payload_without_id() -> None:
    with pytest.raises(ValueError):
        TaskEvent.from_payload(EventKind.DELETE, {"title": "nope"})


# -------------
# Single-item protocol
# -------------


def test_update_pushes_and_maps(reconciler, remote, store, notifier) -> None:
    outcome = reconciler.on_task_update("t1")

    assert outcome is ItemOutcome.SYNCED
    assert remote.calls == [("PUT", "sp-task-t1")]
    assert "UID:sp-task-t1" in remote.resources["sp-task-t1"]
    assert store.get("t1") == "sp-task-t1"
    assert notifier.messages[-1][1] is Severity.SUCCESS


def test_update_twice_is_idempotent(reconciler, remote, store) -> None:
    reconciler.on_task_update("t1")
    reconciler.on_task_update("t1")

    assert list(remote.resources) == ["sp-task-t1"]
    assert dict(store.all()) == {"t1": "sp-task-t1"}


def test_update_refetches_task_snapshot(store, remote) -> None:
    inventory = InMemoryInventory([scheduled("t1")])
    rec = Reconciler(store, inventory, lambda s: remote, RecordingNotifier(), sleep=lambda s: None)
    rec.on_task_update("t1")

    # Schedule removed in the inventory; the event only carries the id
    inventory.replace(unscheduled("t1"))
    outcome = rec.handle(TaskEvent.from_payload("update", {"taskId": "t1"}))

    assert outcome is ItemOutcome.DELETED
    assert remote.calls[-1] == ("DELETE", "sp-task-t1")
    assert store.get("t1") is None


def test_update_for_unknown_task_is_ignored(reconciler, remote) -> None:
    assert reconciler.on_task_update("missing") is ItemOutcome.NOT_FOUND
    assert remote.calls == []


def test_delete_event_uses_mapped_resource_id(store, remote) -> None:
    store.put("gone", "legacy-uid")
    rec = _reconciler(store, [], remote)

    assert rec.on_task_delete("gone") is ItemOutcome.DELETED
    assert remote.calls == [("DELETE", "legacy-uid")]
    assert store.get("gone") is None


def test_delete_event_without_mapping_derives_resource_id(store, remote) -> None:
    rec = _reconciler(store, [], remote)
    assert rec.handle(TaskEvent(EventKind.DELETE, "never-pushed")) is ItemOutcome.DELETED
    assert remote.calls == [("DELETE", "sp-task-never-pushed")]


def test_complete_keeps_event_by_default(store, remote) -> None:
    done = scheduled("t1", is_done=True)
    store.put("t1", "sp-task-t1")
    rec = _reconciler(store, [done], remote)

    assert rec.handle(TaskEvent(EventKind.COMPLETE, "t1")) is ItemOutcome.IGNORED
    assert remote.calls == []
    assert store.get("t1") == "sp-task-t1"


def test_complete_deletes_when_configured(store, remote) -> None:
    store.replace_config(ENABLED.model_copy(update={"delete_completed_tasks": True}))
    store.put("t1", "sp-task-t1")
    rec = _reconciler(store, [scheduled("t1", is_done=True)], remote)

    assert rec.on_task_complete("t1") is ItemOutcome.DELETED
    assert remote.calls == [("DELETE", "sp-task-t1")]
    assert store.get("t1") is None


def test_remote_failure_is_notified_and_mapping_untouched(store) -> None:
    remote = FakeRemote(fail_on={"sp-task-t1"})
    notifier = RecordingNotifier()
    store.put("t1", "sp-task-t1")
    rec = _reconciler(store, [unscheduled("t1")], remote, notifier)

    assert rec.on_task_update("t1") is ItemOutcome.FAILED
    assert store.get("t1") == "sp-task-t1"
    assert len(notifier.messages) == 1
    assert notifier.messages[0][1] is Severity.ERROR


def test_persistence_failure_after_push_is_reported(store, remote, monkeypatch) -> None:
    notifier = RecordingNotifier()
    rec = _reconciler(store, [scheduled("t1")], remote, notifier)

    def _boom(payload: str) -> None:
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(store.state, "save_blob", _boom)

    assert rec.on_task_update("t1") is ItemOutcome.FAILED
    assert "sp-task-t1" in remote.resources
    assert store.get("t1") is None
    assert notifier.messages[-1][1] is Severity.ERROR


def test_client_rebuilt_after_settings_replaced(store, remote) -> None:
    built: list[CalendarSettings] = []

    def factory(settings: CalendarSettings) -> FakeRemote:
        built.append(settings)
        return remote

    rec = Reconciler(store, InMemoryInventory([scheduled("t1")]), factory, RecordingNotifier())
    rec.on_task_update("t1")
    rec.on_task_update("t1")
    assert len(built) == 1

    store.replace_config(ENABLED.model_copy(update={"username": "other"}))
    rec.on_task_update("t1")
    assert len(built) == 2
    assert built[-1].username == "other"


def test_spacing_below_minimum_is_rejected(store, remote) -> None:
    with pytest.raises(ValueError):
        Reconciler(store, InMemoryInventory(), lambda s: remote, request_spacing=0.1)


# -------------
# Full sweep
# -------------


def test_sweep_pushes_every_scheduled_task_with_spacing(reconciler, remote, store, notifier, sleeps) -> None:
    summary = reconciler.sweep()

    assert summary.synced == 3 and summary.failed == 0
    assert summary.ok
    assert sorted(remote.resources) == ["sp-task-t1", "sp-task-t2", "sp-task-t3"]
    assert len(store) == 3
    assert sleeps == [0.3, 0.3]
    assert notifier.messages == [("3 tasks synced, 0 failed", Severity.SUCCESS)]


def test_sweep_isolates_failures(store, sleeps) -> None:
    remote = FakeRemote(fail_on={"sp-task-b"})
    notifier = RecordingNotifier()
    rec = _reconciler(store, [scheduled("a"), scheduled("b"), scheduled("c")], remote, notifier, sleeps)

    summary = rec.sweep()

    assert [c[1] for c in remote.calls] == ["sp-task-a", "sp-task-b", "sp-task-c"]
    assert (summary.synced, summary.failed) == (2, 1)
    assert summary.failed_task_ids == ["b"]
    assert not summary.ok
    assert store.get("b") is None
    assert notifier.messages == [("2 tasks synced, 1 failed", Severity.ERROR)]


def test_sweep_cleans_orphans_then_is_a_no_op(store, sleeps) -> None:
    remote = FakeRemote()
    remote.resources["sp-task-old"] = "doc"
    store.put("old", "sp-task-old")
    rec = _reconciler(store, [unscheduled("old")], remote, sleeps=sleeps)

    first = rec.sweep()
    assert first.cleaned == 1
    assert remote.calls == [("DELETE", "sp-task-old")]
    assert "sp-task-old" not in remote.resources
    assert store.get("old") is None

    remote.calls.clear()
    second = rec.sweep()
    assert second.aggregate() == {
        "synced": 0, "failed": 0, "cleaned": 0, "cleanup_failed": 0, "errors": 0
    }
    assert remote.calls == []


def test_sweep_leaves_mappings_of_missing_tasks(store, remote) -> None:
    store.put("vanished", "sp-task-vanished")
    rec = _reconciler(store, [], remote)

    rec.sweep()

    assert remote.calls == []
    assert store.get("vanished") == "sp-task-vanished"


def test_sweep_removes_completed_task_events(store, remote) -> None:
    store.put("done", "sp-task-done")
    rec = _reconciler(store, [scheduled("done", is_done=True), scheduled("open")], remote)

    summary = rec.sweep()

    assert (summary.cleaned, summary.synced) == (1, 1)
    assert store.get("done") is None
    assert store.get("open") == "sp-task-open"


def test_sweep_counts_failed_cleanup(store) -> None:
    remote = FakeRemote(fail_on={"sp-task-x"})
    store.put("x", "sp-task-x")
    rec = _reconciler(store, [unscheduled("x")], remote)

    summary = rec.sweep()

    assert summary.cleanup_failed == 1
    assert store.get("x") == "sp-task-x"


def test_sweep_skipped_when_disabled(store, remote) -> None:
    store.replace_config(ENABLED.model_copy(update={"enabled": False}))
    notifier = RecordingNotifier()
    rec = _reconciler(store, [scheduled("t1")], remote, notifier)

    summary = rec.sweep()

    assert summary.skipped_reason == "disabled"
    assert remote.calls == []
    assert notifier.messages[0][1] is Severity.ERROR


def test_sweep_skipped_when_settings_incomplete(store, remote) -> None:
    store.replace_config(CalendarSettings(enabled=True, calendar_url="https://dav.example.com/c/"))
    rec = _reconciler(store, [scheduled("t1")], remote)

    assert rec.sweep().skipped_reason == "incomplete-settings"
    assert remote.calls == []


def test_sweep_with_nothing_scheduled(store, remote) -> None:
    notifier = RecordingNotifier()
    rec = _reconciler(store, [unscheduled("idea")], remote, notifier)

    summary = rec.sweep()

    assert summary.ok
    assert notifier.messages == [("No scheduled tasks to sync", Severity.SUCCESS)]


def test_sweep_timestamps_are_utc(store, remote) -> None:
    when = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    rec = _reconciler(store, [scheduled("t1", scheduled_at=when)], remote)
    rec.sweep()
    assert "DTSTART:20260301T120000Z" in remote.resources["sp-task-t1"]


def test_single_item_paths_skip_while_disabled(store, remote) -> None:
    store.replace_config(ENABLED.model_copy(update={"enabled": False}))
    store.put("old", "sp-task-old")
    notifier = RecordingNotifier()
    rec = _reconciler(store, [scheduled("t1"), unscheduled("old")], remote, notifier)

    assert rec.on_task_update("t1") is ItemOutcome.DISABLED
    assert rec.on_task_update("old") is ItemOutcome.DISABLED
    assert rec.on_task_delete("gone") is ItemOutcome.DISABLED

    assert remote.calls == []
    assert dict(store.all()) == {"old": "sp-task-old"}
    assert notifier.messages == []
