"""Configuration loader for t2cal.

This module provides:
- Typed runtime config models (pydantic BaseModel)
- `CalendarSettings`: the user-facing calendar settings persisted next to the mapping
- Precedence-aware loader: file (YAML) < ENV (T2CAL__*) < CLI overrides
- Minimal coercion for ENV values (bool/int/float/list)

The runtime config (`AppConfig`) says where things live and how fast to talk to
the server. The calendar settings (URL, credentials, enabled, delete policy) are
owned by the settings channel and stored in the state database; see `t2cal.state`.

ENV format (nested via delimiter):
  T2CAL__state__db_path=/data/t2cal.sqlite
  T2CAL__inventory__tasks_file=/data/tasks.json
  T2CAL__sync__request_spacing_sec=0.5
  T2CAL__logging__level=DEBUG

Example:
  cfg = load_config("/data/config.yaml", cli_overrides={"logging": {"level": "DEBUG"}})
  print(cfg.state.db_path)
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping, MutableMapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# ----------------------------
# Calendar settings (persisted with the mapping)
# ----------------------------


class CalendarSettings(BaseModel):
    enabled: bool = False
    calendar_url: str = ""
    username: str = ""
    password: str = ""
    delete_completed_tasks: bool = False

    @field_validator("calendar_url")
    @classmethod
    def _validate_calendar_url(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            return v
        # Require explicit scheme to avoid misconfig
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("calendar_url must start with http:// or https://")
        # Resource URLs are built as <calendar_url><resource_id>.ics
        return v if v.endswith("/") else f"{v}/"

    def is_complete(self) -> bool:
        return bool(self.calendar_url and self.username and self.password)

    def redacted(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "calendar_url": self.calendar_url,
            "username": self.username,
            "has_password": bool(self.password),
            "delete_completed_tasks": self.delete_completed_tasks,
        }


# ----------------------------
# Pydantic models (typed runtime config)
# ----------------------------


class StateConfig(BaseModel):
    db_path: str = "/data/t2cal.sqlite"


class InventoryConfig(BaseModel):
    tasks_file: str = "/data/tasks.json"


class SyncConfig(BaseModel):
    # Minimum spacing between remote requests during a sweep (server rate limits)
    request_spacing_sec: float = Field(0.3, ge=0.3, le=60)
    # Attempts per HTTP request; 1 disables transport-level retries
    max_retries: int = Field(1, ge=1, le=10)
    backoff_initial_sec: float = Field(1.0, gt=0, le=60)
    timeout_sec: float = Field(30.0, gt=0, le=300)
    # Period for `t2cal watch`
    interval_sec: float = Field(900.0, ge=30, le=86400)


class LoggingConfig(BaseModel):
    # Allow using alias "json" in config/env while avoiding BaseModel.json clash
    model_config = ConfigDict(populate_by_name=True)
    level: str = "INFO"
    as_json: bool = Field(False, alias="json")

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        lv = (v or "INFO").upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if lv not in allowed:
            raise ValueError(f"logging.level must be one of {sorted(allowed)}")
        return lv


class RuntimeConfig(BaseModel):
    lock_path: str = "/tmp/t2cal.lock"


def _default_state_config() -> StateConfig:
    return StateConfig()


def _default_inventory_config() -> InventoryConfig:
    return InventoryConfig()


def _default_sync_config() -> SyncConfig:
    return SyncConfig()


def _default_logging_config() -> LoggingConfig:
    return LoggingConfig(json=False)


def _default_runtime_config() -> RuntimeConfig:
    return RuntimeConfig()


class AppConfig(BaseModel):
    state: StateConfig = Field(default_factory=_default_state_config)
    inventory: InventoryConfig = Field(default_factory=_default_inventory_config)
    sync: SyncConfig = Field(default_factory=_default_sync_config)
    logging: LoggingConfig = Field(default_factory=_default_logging_config)
    runtime: RuntimeConfig = Field(default_factory=_default_runtime_config)


__all__ = [
    "AppConfig",
    "CalendarSettings",
    "InventoryConfig",
    "LoggingConfig",
    "RuntimeConfig",
    "StateConfig",
    "SyncConfig",
    "load_config",
    "merge_dicts",
    "read_env_config",
    "read_yaml_config",
]


# ----------------------------
# Utilities
# ----------------------------


_BOOL_TRUE = {"1", "true", "yes", "on", "y", "t"}
_BOOL_FALSE = {"0", "false", "no", "off", "n", "f"}

_LIST_SPLIT_RE = re.compile(r"\s*,\s*")


def _coerce_value(val: str) -> Any:
    """Best-effort coercion for ENV values."""
    s = val.strip()

    ls = s.lower()
    if ls in _BOOL_TRUE:
        return True
    if ls in _BOOL_FALSE:
        return False

    if re.fullmatch(r"[+-]?\d+", s):
        return int(s)
    if re.fullmatch(r"[+-]?\d+\.\d*", s):
        return float(s)

    if "," in s:
        return [p for p in _LIST_SPLIT_RE.split(s) if p != ""]

    return s


def merge_dicts(
    base: MutableMapping[str, Any], override: Mapping[str, Any]
) -> MutableMapping[str, Any]:
    """Deep-merge override into base (mutates base). Lists/atoms are replaced."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, Mapping):
            merge_dicts(base[k], v)
        else:
            base[k] = v
    return base


def read_yaml_config(path: Path | None) -> dict[str, Any]:
    if not path:
        return {}
    p = Path(path).resolve()
    if not p.exists():
        return {}
    with p.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping in {p}")
    return data


def read_env_config(prefix: str = "T2CAL__", nested_delim: str = "__") -> dict[str, Any]:
    """Build nested dict from environment variables.

    Keys must start with `prefix` (default 'T2CAL__'); nested keys split by `nested_delim`.
    """
    if not prefix.endswith(nested_delim):
        raise ValueError("prefix must end with the nested_delim (default 'T2CAL__' and '__').")

    result: dict[str, Any] = {}
    plen = len(prefix)
    for key, raw in os.environ.items():
        if not key.startswith(prefix):
            continue
        path_parts = key[plen:].split(nested_delim)
        cursor = result
        for part in path_parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path_parts[-1]] = _coerce_value(raw)
    return result


# ----------------------------
# Loader (precedence: file < env < cli_overrides)
# ----------------------------


def load_config(
    file_path: str | Path | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
    env_prefix: str = "T2CAL__",
    env_nested_delim: str = "__",
) -> AppConfig:
    """Load AppConfig with precedence: file < env < CLI overrides."""
    merged: dict[str, Any] = {}

    merge_dicts(merged, read_yaml_config(Path(file_path) if file_path else None))
    merge_dicts(merged, read_env_config(prefix=env_prefix, nested_delim=env_nested_delim))

    if cli_overrides:
        if not isinstance(cli_overrides, Mapping):
            raise TypeError("cli_overrides must be a mapping (nested dict-like).")
        merge_dicts(merged, cli_overrides)

    try:
        return AppConfig.model_validate(merged)
    except ValidationError as ve:
        raise ValueError(f"Invalid configuration: {ve}") from ve
