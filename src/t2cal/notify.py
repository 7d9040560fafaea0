"""User-visible notification sinks."""

from __future__ import annotations

import enum
import logging
from typing import Protocol

import typer

__all__ = ["EchoNotifier", "LogNotifier", "Notifier", "RecordingNotifier", "Severity"]

log = logging.getLogger(__name__)


class Severity(enum.Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Severity.SUCCESS: logging.INFO,
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class Notifier(Protocol):
    def notify(self, message: str, severity: Severity) -> None: ...


class LogNotifier:
    def notify(self, message: str, severity: Severity) -> None:
        log.log(_LOG_LEVELS[severity], "notify severity=%s msg=%s", severity.value, message)


class EchoNotifier:
    """Prints notifications for the CLI; errors go to stderr."""

    def notify(self, message: str, severity: Severity) -> None:
        typer.echo(f"[{severity.value}] {message}", err=severity is Severity.ERROR)


class RecordingNotifier:
    """Keeps notifications in memory for later inspection."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, Severity]] = []

    def notify(self, message: str, severity: Severity) -> None:
        self.messages.append((message, severity))
