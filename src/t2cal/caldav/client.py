"""CalDAV resource client.

Each task maps to one resource: <calendar_url><resource_id>.ics
- upsert(resource_id, ics_text): PUT the whole resource (create or replace)
- delete(resource_id): DELETE; 404 counts as success (already absent)

Both operations return immediately without any HTTP request when the calendar
settings are disabled.

Security
- Do not log full ICS content; keep logs to resource ids and status codes.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from ..config import CalendarSettings
from ..errors import RemoteRejected, RemoteUnavailable
from ..utils.http import RetryConfig, create_client, request_with_retries

__all__ = ["CalDAVClient", "RemoteStore"]


log = logging.getLogger(__name__)

ICS_CONTENT_TYPE = "text/calendar; charset=utf-8"


class RemoteStore(Protocol):
    def upsert(self, resource_id: str, document: str) -> None: ...

    def delete(self, resource_id: str) -> None: ...


class CalDAVClient:
    def __init__(
        self,
        settings: CalendarSettings,
        *,
        timeout: float = 30.0,
        verify: bool | str = True,
        retry: RetryConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client from calendar settings.

        Args:
            settings: calendar_url (e.g. https://dav.example.com/calendars/me/tasks/),
                username/password for HTTP Basic, enabled flag
        """
        self.settings = settings
        self.retry = retry or RetryConfig()
        self.client = create_client(
            auth=httpx.BasicAuth(settings.username, settings.password),
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    def __enter__(self) -> CalDAVClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def resource_url(self, resource_id: str) -> str:
        return f"{self.settings.calendar_url}{resource_id}.ics"

    def upsert(self, resource_id: str, document: str) -> None:
        """Create or replace the resource with `document`."""
        if not self.enabled:
            log.debug("caldav-disabled skip=put resource=%s", resource_id)
            return
        url = self.resource_url(resource_id)
        resp = self._send(
            "PUT",
            url,
            headers={"Content-Type": ICS_CONTENT_TYPE},
            data=document.encode("utf-8"),
        )
        if not resp.is_success:
            log.warning("caldav-put-rejected resource=%s status=%s", resource_id, resp.status_code)
            raise RemoteRejected("PUT", url, resp.status_code, resp.text)
        log.debug("caldav-put-ok resource=%s status=%s", resource_id, resp.status_code)

    def delete(self, resource_id: str) -> None:
        """Remove the resource; a resource that is already gone is not an error."""
        if not self.enabled:
            log.debug("caldav-disabled skip=delete resource=%s", resource_id)
            return
        url = self.resource_url(resource_id)
        resp = self._send("DELETE", url)
        if resp.status_code == 404:
            log.debug("caldav-delete-absent resource=%s", resource_id)
            return
        if not resp.is_success:
            log.warning(
                "caldav-delete-rejected resource=%s status=%s", resource_id, resp.status_code
            )
            raise RemoteRejected("DELETE", url, resp.status_code, resp.text)
        log.debug("caldav-delete-ok resource=%s status=%s", resource_id, resp.status_code)

    # -----------------
    # Helpers
    # -----------------

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        data: bytes | None = None,
    ) -> httpx.Response:
        try:
            return request_with_retries(
                self.client,
                method,
                url,
                headers=headers,
                data=data,
                retry=self.retry,
                expected=(200, 201, 204) if method == "PUT" else (200, 204, 404),
            )
        except httpx.HTTPError as exc:
            log.warning("caldav-unavailable method=%s url=%s err=%s", method, url, exc)
            raise RemoteUnavailable(f"{method} {url} failed: {exc}") from exc
