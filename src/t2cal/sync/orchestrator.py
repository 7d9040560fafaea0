"""Top-level run orchestration for the CLI.

Responsibilities
- Build dependencies from AppConfig (state, mapping store, inventory, CalDAV client factory)
- Enforce single-run lock using a filesystem lock file (one writer for the state database)
- Drive a sweep or a single task event and map the result to an exit code

Exit codes
- 0: success
- 2: partial (some items failed, or the sweep was skipped by settings)
- 3: fatal (could not start/run)
"""

from __future__ import annotations

import errno
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from types import TracebackType

from ..caldav.client import CalDAVClient, RemoteStore
from ..config import AppConfig, CalendarSettings
from ..inventory import JsonTaskInventory, TaskInventory
from ..notify import LogNotifier, Notifier
from ..state import MappingStore, State
from ..utils.http import RetryConfig
from .reconciler import ItemOutcome, Reconciler, SweepSummary, TaskEvent

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 2
EXIT_FATAL = 3


class FileLock:
    """Simple non-blocking PID file lock using O_CREAT|O_EXCL.

    Lock is removed on explicit release; stale locks from dead processes are taken over.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._fd: int | None = None

    def _create(self) -> None:
        self._fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        os.write(self._fd, str(os.getpid()).encode("utf-8"))
        os.fsync(self._fd)

    def acquire(self) -> None:
        try:
            self._create()
        except OSError as e:
            if e.errno != errno.EEXIST:
                raise
            if self._is_stale_lock():
                log.warning("lock-stale-removed path=%s", self.path)
                try:
                    os.unlink(self.path)
                    self._create()
                    return
                except OSError:
                    # Another process may have taken the lock in between
                    pass
            raise RuntimeError(f"Another instance is running (lock exists at {self.path})") from e

    def _is_stale_lock(self) -> bool:
        try:
            with open(self.path, encoding="utf-8") as f:
                pid_str = f.read().strip()
        except (FileNotFoundError, PermissionError):
            return True
        if not pid_str.isdigit():
            return True
        try:
            os.kill(int(pid_str), 0)
        except OSError:
            return True
        return False

    def release(self) -> None:
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class Orchestrator:
    def __init__(
        self,
        cfg: AppConfig,
        *,
        notifier: Notifier | None = None,
        inventory: TaskInventory | None = None,
    ) -> None:
        self.cfg = cfg
        self.notifier: Notifier = notifier or LogNotifier()
        self._inventory = inventory

    def _build_state(self) -> State:
        return State(self.cfg.state.db_path)

    def _build_inventory(self) -> TaskInventory:
        if self._inventory is not None:
            return self._inventory
        return JsonTaskInventory(self.cfg.inventory.tasks_file)

    def client_factory(self, settings: CalendarSettings) -> RemoteStore:
        retry_cfg = RetryConfig(
            max_retries=self.cfg.sync.max_retries,
            backoff_initial_sec=self.cfg.sync.backoff_initial_sec,
        )
        return CalDAVClient(settings, timeout=self.cfg.sync.timeout_sec, retry=retry_cfg)

    @contextmanager
    def session(self) -> Iterator[Reconciler]:
        """Lock, load state and yield a ready Reconciler; everything is released on exit."""
        with FileLock(self.cfg.runtime.lock_path):
            state = self._build_state()
            try:
                store = MappingStore.load(state)
                reconciler = Reconciler(
                    store,
                    self._build_inventory(),
                    self.client_factory,
                    self.notifier,
                    request_spacing=self.cfg.sync.request_spacing_sec,
                )
                try:
                    yield reconciler
                finally:
                    reconciler.close()
            finally:
                state.close()

    def run_sweep(self) -> tuple[int, SweepSummary]:
        """Run one full sweep; returns exit code and summary."""
        try:
            with self.session() as reconciler:
                summary = reconciler.sweep()
        except Exception:
            log.exception("sweep-fatal")
            return EXIT_FATAL, SweepSummary(skipped_reason="fatal")
        return (EXIT_OK if summary.ok else EXIT_PARTIAL), summary

    def run_event(self, event: TaskEvent) -> tuple[int, ItemOutcome]:
        """Run the single-item protocol for one host event."""
        try:
            with self.session() as reconciler:
                outcome = reconciler.handle(event)
        except Exception:
            log.exception("event-fatal kind=%s task=%s", event.kind.value, event.task_id)
            return EXIT_FATAL, ItemOutcome.FAILED
        return (EXIT_PARTIAL if outcome is ItemOutcome.FAILED else EXIT_OK), outcome
