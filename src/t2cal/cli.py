"""CLI entrypoint for t2cal.

Commands
- sync:      one full sweep (orphan cleanup + push of every scheduled task)
- watch:     repeat the sweep every `sync.interval_sec` seconds
- event:     run the single-item protocol for a host task event (update/delete/complete)
- status:    show calendar settings (password redacted) and the mapping
- inspect:   show one task, its classification and resource id
- prune:     drop mappings of tasks that no longer exist (dry-run unless --yes)
- configure: replace the calendar settings
- reset:     clear the mapping, or settings and mapping together

Notes
- Configuration precedence: CLI > ENV (T2CAL__) > YAML file, see config loader.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import typer

from .admin import AdminTools
from .config import AppConfig, CalendarSettings, load_config
from .errors import TaskNotFound
from .logging import setup_logging
from .notify import EchoNotifier
from .sync.orchestrator import EXIT_FATAL, EXIT_OK, Orchestrator
from .sync.reconciler import EventKind, TaskEvent

app = typer.Typer(add_completion=False, help="One-way sync of scheduled tasks to a CalDAV calendar")

ConfigOption = typer.Option(
    None, "--config", "-c", help="Path to YAML config file.", show_default=False
)
VerboseOption = typer.Option(
    False, "--verbose", "-v", help="Set log level to DEBUG (overrides config.logging.level)."
)


def _load(config: Path | None, verbose: bool, extra: dict[str, Any] | None = None) -> AppConfig:
    overrides: dict[str, Any] = dict(extra or {})
    if verbose:
        overrides.setdefault("logging", {})["level"] = "DEBUG"
    try:
        cfg = load_config(file_path=str(config) if config else None, cli_overrides=overrides)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=EXIT_FATAL) from exc
    setup_logging(level=cfg.logging.level, json=cfg.logging.as_json)
    return cfg


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


@app.command(help="Run one full sweep of all tasks.")
def sync(config: Path | None = ConfigOption, verbose: bool = VerboseOption) -> None:
    cfg = _load(config, verbose)
    exit_code, summary = Orchestrator(cfg, notifier=EchoNotifier()).run_sweep()
    agg = summary.aggregate()
    typer.echo(
        "t2cal sync summary: "
        f"synced={agg['synced']} failed={agg['failed']} "
        f"cleaned={agg['cleaned']} cleanup_failed={agg['cleanup_failed']}"
    )
    raise typer.Exit(code=exit_code)


@app.command(help="Run sweeps periodically.")
def watch(
    config: Path | None = ConfigOption,
    interval: float | None = typer.Option(
        None, "--interval", min=30, help="Seconds between sweeps (overrides sync.interval_sec).",
        show_default=False,
    ),
    iterations: int | None = typer.Option(
        None, "--iterations", min=1, help="Stop after this many sweeps.", show_default=False
    ),
    verbose: bool = VerboseOption,
) -> None:
    extra = {"sync": {"interval_sec": interval}} if interval is not None else None
    cfg = _load(config, verbose, extra)
    orch = Orchestrator(cfg, notifier=EchoNotifier())
    runs = 0
    exit_code = EXIT_OK
    while True:
        exit_code, _summary = orch.run_sweep()
        runs += 1
        if iterations is not None and runs >= iterations:
            break
        time.sleep(cfg.sync.interval_sec)
    raise typer.Exit(code=exit_code)


@app.command(help="Handle one task event: KIND is update, delete or complete.")
def event(
    kind: EventKind = typer.Argument(..., case_sensitive=False),
    task_id: str = typer.Argument(...),
    config: Path | None = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    cfg = _load(config, verbose)
    exit_code, outcome = Orchestrator(cfg, notifier=EchoNotifier()).run_event(
        TaskEvent.from_payload(kind, task_id)
    )
    typer.echo(f"t2cal event {kind.value} {task_id}: {outcome.value}")
    raise typer.Exit(code=exit_code)


@app.command(help="Show calendar settings and mapping.")
def status(
    config: Path | None = ConfigOption,
    show_mapping: bool = typer.Option(False, "--mapping", help="List every mapping entry."),
    verbose: bool = VerboseOption,
) -> None:
    cfg = _load(config, verbose)
    with Orchestrator(cfg).session() as reconciler:
        tools = AdminTools(reconciler)
        mapping = tools.show_mapping()
        data: dict[str, Any] = {"config": tools.show_config(), "mapped": len(mapping)}
        if show_mapping:
            data["mapping"] = mapping
    _echo_json(data)


@app.command(help="Show one task and how it would be synced.")
def inspect(
    task_id: str = typer.Argument(...),
    config: Path | None = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    cfg = _load(config, verbose)
    with Orchestrator(cfg).session() as reconciler:
        try:
            details = AdminTools(reconciler).task_details(task_id)
        except TaskNotFound as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=1) from exc
    _echo_json(details)


@app.command(help="Drop mappings of tasks that no longer exist.")
def prune(
    config: Path | None = ConfigOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Proceed without dry-run."),
    verbose: bool = VerboseOption,
) -> None:
    cfg = _load(config, verbose)
    with Orchestrator(cfg).session() as reconciler:
        tools = AdminTools(reconciler)
        if not yes:
            orphans = tools.find_orphaned_mappings()
            typer.echo(f"Dry-run prune: {len(orphans)} orphaned mapping(s). Use --yes to remove.")
            for task_id in orphans:
                typer.echo(f"  {task_id}")
            return
        removed = tools.cleanup_orphaned_mappings()
    typer.echo(f"Removed {len(removed)} orphaned mapping(s).")


@app.command(help="Replace the calendar settings. Unspecified options keep their current value.")
def configure(
    config: Path | None = ConfigOption,
    url: str | None = typer.Option(None, "--url", help="Calendar collection URL.", show_default=False),
    username: str | None = typer.Option(None, "--username", show_default=False),
    password: str | None = typer.Option(
        None, "--password", envvar="T2CAL_CALENDAR_PASSWORD", show_default=False
    ),
    enabled: bool | None = typer.Option(None, "--enable/--disable", show_default=False),
    delete_completed: bool | None = typer.Option(
        None,
        "--delete-completed/--keep-completed",
        help="Remove events of completed tasks.",
        show_default=False,
    ),
    verbose: bool = VerboseOption,
) -> None:
    cfg = _load(config, verbose)
    with Orchestrator(cfg).session() as reconciler:
        current = reconciler.store.get_config()
        candidate = current.model_dump()
        for key, value in (
            ("calendar_url", url),
            ("username", username),
            ("password", password),
            ("enabled", enabled),
            ("delete_completed_tasks", delete_completed),
        ):
            if value is not None:
                candidate[key] = value
        try:
            settings = CalendarSettings.model_validate(candidate)
        except ValueError as exc:
            typer.echo(f"Invalid settings: {exc}", err=True)
            raise typer.Exit(code=1) from exc
        reconciler.store.replace_config(settings)
        typer.echo("Calendar settings saved")
        _echo_json(settings.redacted())


@app.command(help="Reset the mapping, or settings and mapping together.")
def reset(
    config: Path | None = ConfigOption,
    mapping_only: bool = typer.Option(False, "--mapping-only", help="Keep calendar settings."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Confirm the reset."),
    verbose: bool = VerboseOption,
) -> None:
    if not yes:
        typer.echo("Refusing to reset without --yes.", err=True)
        raise typer.Exit(code=1)
    cfg = _load(config, verbose)
    with Orchestrator(cfg).session() as reconciler:
        tools = AdminTools(reconciler)
        if mapping_only:
            tools.reset_mapping()
            typer.echo("Mapping reset")
        else:
            tools.reset_all()
            typer.echo("Settings and mapping reset")


if __name__ == "__main__":  # pragma: no cover
    app()
