"""Error hierarchy shared by the CalDAV client, state store and reconciler.

- RemoteUnavailable: transport failure (DNS, connect, timeout, TLS)
- RemoteRejected: server answered with a non-success status
- PersistenceFailure: config/mapping blob could not be written
- TaskNotFound: an event referenced a task id absent from the inventory
"""

from __future__ import annotations

__all__ = [
    "PersistenceFailure",
    "RemoteError",
    "RemoteRejected",
    "RemoteUnavailable",
    "T2CalError",
    "TaskNotFound",
]


class T2CalError(RuntimeError):
    pass


class RemoteError(T2CalError):
    pass


class RemoteUnavailable(RemoteError):
    pass


class RemoteRejected(RemoteError):
    def __init__(self, method: str, url: str, status_code: int, body: str = "") -> None:
        self.method = method
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"{method} failed for {url}: {status_code} {body[:200]}".rstrip())


class PersistenceFailure(T2CalError):
    pass


class TaskNotFound(T2CalError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")
