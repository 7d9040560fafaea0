"""Persisted state: calendar settings and the task → resource mapping.

Both live in ONE blob so a save can never leave settings and mapping out of step:

  {"config": {"enabled": true, "calendar_url": "...", ...},
   "mapping": {"<task id>": "sp-task-<task id>", ...}}

The blob is a single JSON string stored in a one-row SQLite table; each save is a
single upsert inside one transaction, so readers see either the old or the new
blob, never a mix.

Example
  from t2cal.state import MappingStore, State
  store = MappingStore.load(State("/data/t2cal.sqlite"))
  store.put("task-1", "sp-task-task-1")
  print(store.get("task-1"))
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import stat
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .config import CalendarSettings
from .errors import PersistenceFailure

__all__ = [
    "MappingStore",
    "PersistedData",
    "State",
]

log = logging.getLogger(__name__)

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
DEFAULT_SLOT = "plugin-data"


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).strftime(ISO_FORMAT)


def _default_settings() -> CalendarSettings:
    return CalendarSettings()


class PersistedData(BaseModel):
    config: CalendarSettings = Field(default_factory=_default_settings)
    mapping: dict[str, str] = Field(default_factory=dict)


class State:
    """SQLite-backed single-slot blob store.

    Safe to use from a single process; not thread-safe.
    """

    def __init__(self, db_path: str, slot: str = DEFAULT_SLOT) -> None:
        self.db_path = db_path
        self.slot = slot
        self._conn: sqlite3.Connection | None = self._connect(db_path)
        self._init_schema()

    def __enter__(self) -> State:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------
    # Connection
    # -------------

    def _connect(self, db_path: str) -> sqlite3.Connection:
        path = Path(db_path)
        if path.parent and not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(path), timeout=30.0)
        conn.row_factory = sqlite3.Row

        # The blob holds calendar credentials: owner read/write only
        try:
            if path.exists() and not os.access(path, os.W_OK):
                log.warning("state-db-not-writable path=%s", path)
            else:
                path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        except OSError as e:
            log.warning("state-db-chmod-failed path=%s err=%s", path, e)

        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=FULL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceFailure(f"State database {self.db_path} is closed")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _init_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS synced_data (
              slot TEXT PRIMARY KEY,
              payload TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    # -------------
    # Blob
    # -------------

    def load_blob(self) -> str | None:
        cur = self.conn.execute("SELECT payload FROM synced_data WHERE slot = ?;", (self.slot,))
        row = cur.fetchone()
        return row["payload"] if row else None

    def save_blob(self, payload: str) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO synced_data(slot, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(slot) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at;
                    """,
                    (self.slot, payload, _utc_now_iso()),
                )
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"Could not persist state to {self.db_path}: {exc}") from exc


class MappingStore:
    """Calendar settings plus the task → resource mapping, persisted together.

    Every mutation is followed by a full persist. When the persist fails the
    in-memory change is rolled back and PersistenceFailure is raised, so memory
    never holds state the database does not.
    """

    def __init__(
        self,
        state: State,
        config: CalendarSettings | None = None,
        mapping: dict[str, str] | None = None,
    ) -> None:
        self.state = state
        self._config = config or CalendarSettings()
        self._mapping: dict[str, str] = dict(mapping or {})

    @classmethod
    def load(cls, state: State) -> MappingStore:
        """Load from the state blob; missing or unreadable data falls back to defaults."""
        try:
            raw = state.load_blob()
        except sqlite3.Error as exc:
            log.error("state-load-failed db=%s err=%s; using defaults", state.db_path, exc)
            return cls(state)
        if not raw:
            log.info("state-empty db=%s; using defaults", state.db_path)
            return cls(state)
        try:
            data = PersistedData.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            log.warning("state-corrupt db=%s err=%s; using defaults", state.db_path, exc)
            return cls(state)
        log.info("state-loaded mappings=%d enabled=%s", len(data.mapping), data.config.enabled)
        return cls(state, data.config, data.mapping)

    # -------------
    # Persistence
    # -------------

    def to_data(self) -> PersistedData:
        return PersistedData(config=self._config, mapping=dict(self._mapping))

    def dumps(self) -> str:
        return self.to_data().model_dump_json()

    def save(self) -> None:
        self.state.save_blob(self.dumps())

    def _commit(self, previous_config: CalendarSettings, previous_mapping: dict[str, str]) -> None:
        try:
            self.save()
        except PersistenceFailure:
            self._config = previous_config
            self._mapping = previous_mapping
            raise

    # -------------
    # Config
    # -------------

    @property
    def config(self) -> CalendarSettings:
        return self._config

    def get_config(self) -> CalendarSettings:
        return self._config

    def replace_config(self, config: CalendarSettings) -> None:
        previous = self._config
        self._config = config
        self._commit(previous, dict(self._mapping))

    # -------------
    # Mapping
    # -------------

    def get(self, task_id: str) -> str | None:
        return self._mapping.get(task_id)

    def put(self, task_id: str, resource_id: str) -> None:
        if self._mapping.get(task_id) == resource_id:
            return
        previous = dict(self._mapping)
        self._mapping[task_id] = resource_id
        self._commit(self._config, previous)

    def remove(self, task_id: str) -> bool:
        if task_id not in self._mapping:
            return False
        previous = dict(self._mapping)
        del self._mapping[task_id]
        self._commit(self._config, previous)
        return True

    def all(self) -> Iterator[tuple[str, str]]:
        # Snapshot so callers may mutate while iterating
        return iter(list(self._mapping.items()))

    def __len__(self) -> int:
        return len(self._mapping)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._mapping

    def clear_mapping(self) -> None:
        previous = dict(self._mapping)
        self._mapping = {}
        self._commit(self._config, previous)

    def reset(self) -> None:
        """Reset settings and mapping to defaults in one save."""
        previous_config, previous_mapping = self._config, dict(self._mapping)
        self._config = CalendarSettings()
        self._mapping = {}
        self._commit(previous_config, previous_mapping)
