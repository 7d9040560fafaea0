"""Task → ICS VEVENT mapping.

Rules
- UID = "sp-task-" + task.id; the same value names the remote resource.
- Timed task (scheduled_at or due_at): DTSTART = scheduled_at ?? due_at,
  DTEND = DTSTART + estimated duration (1 hour when unset). Both in UTC ("...Z").
- Day-only task (due_day): DTSTART;VALUE=DATE and DTEND;VALUE=DATE on that same date.
- SUMMARY from title, DESCRIPTION from notes (omitted when empty). TEXT values are
  escaped by icalendar (\\ ; , and newline); CRLF and lone CR become one newline.
- STATUS:CONFIRMED and TRANSP:OPAQUE are fixed.

Property order is fixed (UID, DTSTAMP, DTSTART, DTEND, SUMMARY, DESCRIPTION,
STATUS, TRANSP); the calendar is serialized in insertion order (sorted=False).

Public API
- resource_id_for(task_id) -> str
- task_to_event(task, now=None) -> RemoteEvent
- task_to_ics(task, now=None) -> str
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from icalendar import Calendar, Event  # type: ignore

from ..models import RemoteEvent, Task
from ..utils.timeutil import to_utc

__all__ = [
    "DEFAULT_DURATION",
    "PRODID",
    "RESOURCE_PREFIX",
    "resource_id_for",
    "task_to_event",
    "task_to_ics",
]

RESOURCE_PREFIX = "sp-task-"
PRODID = "-//t2cal//Task CalDAV Sync//EN"
DEFAULT_DURATION = timedelta(hours=1)


def resource_id_for(task_id: str) -> str:
    return f"{RESOURCE_PREFIX}{task_id}"


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _build_calendar(vevent: Event) -> Calendar:
    cal = Calendar()
    cal.add("version", "2.0")
    cal.add("prodid", PRODID)
    cal.add_component(vevent)
    return cal


def task_to_event(task: Task, now: datetime | None = None) -> RemoteEvent:
    """Encode a task classified as SYNC into a RemoteEvent."""
    stamped_at = to_utc(now) if now else datetime.now(tz=UTC)
    stamped_at = stamped_at.replace(microsecond=0)
    resource_id = resource_id_for(task.id)

    ve = Event()
    ve.add("uid", resource_id)
    ve.add("dtstamp", stamped_at)

    start: datetime | None = None
    end: datetime | None = None
    timestamp = task.scheduled_at or task.due_at
    if timestamp is not None:
        start = to_utc(timestamp).replace(microsecond=0)
        end = start + (task.estimated_duration or DEFAULT_DURATION)
        ve.add("dtstart", start)
        ve.add("dtend", end)
    elif task.due_day is not None:
        ve.add("dtstart", task.due_day)
        ve.add("dtend", task.due_day)
    else:
        raise ValueError(f"Task {task.id} has no scheduled time, due time or due day.")

    ve.add("summary", _normalize_newlines(task.title or ""))
    if task.notes:
        ve.add("description", _normalize_newlines(task.notes))
    ve.add("status", "CONFIRMED")
    ve.add("transp", "OPAQUE")

    document = _build_calendar(ve).to_ical(sorted=False).decode("utf-8")
    return RemoteEvent(
        resource_id=resource_id,
        summary=task.title or "",
        description=task.notes or None,
        stamped_at=stamped_at,
        start=start,
        end=end,
        all_day=task.due_day if start is None else None,
        document=document,
    )


def task_to_ics(task: Task, now: datetime | None = None) -> str:
    return task_to_event(task, now=now).document
