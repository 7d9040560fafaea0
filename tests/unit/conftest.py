from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from t2cal.config import CalendarSettings
from t2cal.errors import RemoteRejected
from t2cal.inventory import InMemoryInventory
from t2cal.models import Task
from t2cal.notify import RecordingNotifier
from t2cal.state import MappingStore, State
from t2cal.sync.reconciler import Reconciler


class FakeRemote:
    """In-memory stand-in for the CalDAV server."""

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.resources: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on = fail_on or set()

    def upsert(self, resource_id: str, document: str) -> None:
        self.calls.append(("PUT", resource_id))
        if resource_id in self.fail_on:
            raise RemoteRejected("PUT", resource_id, 500, "server error")
        self.resources[resource_id] = document

    def delete(self, resource_id: str) -> None:
        self.calls.append(("DELETE", resource_id))
        if resource_id in self.fail_on:
            raise RemoteRejected("DELETE", resource_id, 500, "server error")
        self.resources.pop(resource_id, None)


ENABLED = CalendarSettings(
    enabled=True,
    calendar_url="https://dav.example.com/calendars/me/tasks/",
    username="me",
    password="secret",
)


def scheduled(task_id: str, **kwargs) -> Task:
    return Task(
        id=task_id,
        title=kwargs.pop("title", f"Task {task_id}"),
        scheduled_at=kwargs.pop("scheduled_at", datetime(2026, 1, 3, 9, 0, tzinfo=UTC)),
        **kwargs,
    )


def unscheduled(task_id: str, **kwargs) -> Task:
    return Task(id=task_id, title=kwargs.pop("title", f"Task {task_id}"), **kwargs)


@pytest.fixture
def state(tmp_path) -> State:
    st = State(str(tmp_path / "state.sqlite"))
    yield st
    st.close()


@pytest.fixture
def store(state: State) -> MappingStore:
    ms = MappingStore.load(state)
    ms.replace_config(ENABLED)
    return ms


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def inventory() -> InMemoryInventory:
    return InMemoryInventory(
        [
            scheduled("t1"),
            Task(
                id="t2",
                title="Due",
                due_at=datetime(2026, 1, 4, 15, 30, tzinfo=UTC),
                estimated_duration=timedelta(minutes=30),
            ),
            Task(id="t3", title="Day", due_day=date(2026, 1, 3)),
        ]
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def reconciler(store, inventory, remote, notifier, sleeps) -> Reconciler:
    return Reconciler(
        store,
        inventory,
        lambda settings: remote,
        notifier,
        sleep=sleeps.append,
    )
