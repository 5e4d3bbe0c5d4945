"""Google Calendar provider (REST API v3)."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from flask import current_app

from homestay.domains.calendar.constants import EVENT_STATUS_CANCELLED
from homestay.domains.calendar.errors import GoogleCalendarError, TokenRefreshError
from homestay.domains.calendar.models import CalendarConnection
from homestay.domains.calendar.schemas import ProviderCalendar
from homestay.domains.calendar.services.providers.base import ProviderEventPage, shift_months
from homestay.extensions import db

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

PAGE_SIZE = 250
# Guards against a server that keeps returning page tokens.
MAX_PAGES = 100


def refresh_access_token(connection: CalendarConnection) -> CalendarConnection:
    """
    Refresh an expired access token.

    Raises:
        TokenRefreshError: If refresh fails; the connection is deactivated.
    """
    if not connection.can_refresh:
        connection.is_active = False
        connection.error_message = "No refresh token available"
        db.session.commit()
        raise TokenRefreshError(None, "No refresh token available")

    config = current_app.config
    payload = {
        "client_id": config["GOOGLE_CLIENT_ID"],
        "client_secret": config["GOOGLE_CLIENT_SECRET"],
        "grant_type": "refresh_token",
        "refresh_token": connection.refresh_token,
    }

    try:
        resp = requests.post(GOOGLE_TOKEN_URL, data=payload, timeout=config["PROVIDER_TIMEOUT_SECONDS"])
        resp.raise_for_status()
        data = resp.json()
        access_token = data["access_token"]
        expires_in = int(data.get("expires_in", 3600))
    except (requests.RequestException, ValueError, KeyError, TypeError) as e:
        logger.error(f"Token refresh failed for connection {connection.id}: {e}")
        connection.error_message = str(e)[:512]
        connection.is_active = False
        db.session.commit()
        raise TokenRefreshError(None, f"Failed to refresh token: {e}") from e

    connection.access_token = access_token
    connection.expires_at = datetime.utcnow() + timedelta(seconds=expires_in)
    connection.error_message = None
    db.session.commit()
    return connection


def get_valid_access_token(connection: CalendarConnection) -> str:
    """Return a usable access token, refreshing it when expired."""
    if not connection.is_active:
        raise TokenRefreshError(None, "Calendar connection is inactive")
    if connection.is_expired or not connection.access_token:
        connection = refresh_access_token(connection)
    return connection.access_token


def _parse_date_time(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_date(raw: Optional[str]) -> Optional[datetime]:
    # All-day dates are read as UTC midnight.
    if not raw:
        return None
    try:
        parsed = date.fromisoformat(raw)
    except ValueError:
        return None
    return datetime(parsed.year, parsed.month, parsed.day)


def normalize_google_event(item: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a Google event resource to a provider event payload.

    Google all-day end dates are exclusive. A non-positive duration is widened
    to one day for all-day events and one hour for timed events.
    """
    if item.get("status") == EVENT_STATUS_CANCELLED:
        return {"external_id": item.get("id") or "", "status": EVENT_STATUS_CANCELLED}

    start_data = item.get("start") or {}
    end_data = item.get("end") or {}
    all_day = "date" in start_data

    if all_day:
        start = _parse_date(start_data.get("date"))
        end = _parse_date(end_data.get("date"))
        minimum = timedelta(days=1)
    else:
        start = _parse_date_time(start_data.get("dateTime"))
        end = _parse_date_time(end_data.get("dateTime"))
        minimum = timedelta(hours=1)

    if start is not None and (end is None or end <= start):
        end = start + minimum

    location = item.get("location")
    recurrence = item.get("recurrence") or []
    rrule = next((line[len("RRULE:"):] for line in recurrence if line.startswith("RRULE:")), None)

    return {
        "external_id": item.get("id") or "",
        "title": (item.get("summary") or "Untitled Event")[:255],
        "start": start,
        "end": end,
        "all_day": all_day,
        "recurrence_rule": rrule,
        "recurrence_id": item.get("recurringEventId"),
        "status": item.get("status") or "confirmed",
        "updated": _parse_date_time(item.get("updated")),
        "timezone": start_data.get("timeZone"),
        "description": item.get("description"),
        "location": location[:512] if location else None,
    }


class GoogleCalendarProvider:
    """
    Reads calendars and events with a bearer token.

    Full syncs cover SYNC_PAST_MONTHS back to SYNC_FUTURE_MONTHS ahead;
    incremental syncs replay the stored sync token.
    """

    def __init__(self, access_token: str, source_id: Optional[str] = None, timeout: Optional[int] = None) -> None:
        config = current_app.config
        self.access_token = access_token
        self.source_id = source_id
        self.timeout = timeout or config["PROVIDER_TIMEOUT_SECONDS"]
        self.past_months = config["SYNC_PAST_MONTHS"]
        self.future_months = config["SYNC_FUTURE_MONTHS"]

    def _get(self, path: str, params: Dict[str, Any]) -> requests.Response:
        try:
            return requests.get(
                f"{GOOGLE_CALENDAR_API}{path}",
                headers={"Authorization": f"Bearer {self.access_token}"},
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Google Calendar request failed for {path}: {e}")
            raise GoogleCalendarError(self.source_id, f"Failed to reach Google Calendar: {e}") from e

    def _error(self, resp: requests.Response, action: str) -> GoogleCalendarError:
        logger.error(f"Google Calendar {action} failed ({resp.status_code}): {resp.text[:200]}")
        if resp.status_code in (401, 403):
            return GoogleCalendarError(self.source_id, "Google Calendar access was denied")
        if resp.status_code == 404:
            return GoogleCalendarError(self.source_id, "Google calendar not found")
        return GoogleCalendarError(self.source_id, f"Failed to {action} ({resp.status_code})")

    def _payload(self, resp: requests.Response, action: str) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            logger.error(f"Google Calendar {action} returned invalid JSON: {e}")
            raise GoogleCalendarError(self.source_id, f"Failed to {action}: invalid response") from e
        if not isinstance(data, dict):
            raise GoogleCalendarError(self.source_id, f"Failed to {action}: invalid response")
        return data

    def list_calendars(self) -> List[ProviderCalendar]:
        resp = self._get("/users/me/calendarList", {})
        if resp.status_code != 200:
            raise self._error(resp, "fetch calendars")

        try:
            calendars = [
                ProviderCalendar(
                    id=item["id"],
                    name=item.get("summary") or item["id"],
                    color=item.get("backgroundColor"),
                    is_primary=bool(item.get("primary")),
                )
                for item in self._payload(resp, "fetch calendars").get("items", [])
            ]
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise GoogleCalendarError(self.source_id, "Failed to fetch calendars: malformed calendar entry") from e
        calendars.sort(key=lambda c: (not c.is_primary, c.name.lower()))
        return calendars

    def list_events(self, calendar_id: str, since_cursor: Optional[str] = None) -> ProviderEventPage:
        """
        List events, incrementally when `since_cursor` holds a sync token.

        Without a token (or when Google expired it with 410) the listing is a
        full snapshot of the sync window.
        """
        events: List[Dict[str, Any]] = []
        next_sync_token: Optional[str] = None
        page_token: Optional[str] = None
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        window_start = window_end = None
        if not since_cursor:
            now = datetime.utcnow()
            window_start = shift_months(now, -self.past_months)
            window_end = shift_months(now, self.future_months)

        for _ in range(MAX_PAGES):
            params: Dict[str, Any] = {"maxResults": PAGE_SIZE, "singleEvents": "true"}
            if since_cursor:
                params["syncToken"] = since_cursor
            else:
                params["timeMin"] = window_start.isoformat() + "Z"
                params["timeMax"] = window_end.isoformat() + "Z"
            if page_token:
                params["pageToken"] = page_token

            resp = self._get(path, params)
            if resp.status_code == 410 and since_cursor:
                logger.info(f"Sync token expired for calendar {calendar_id}, performing full sync")
                return self.list_events(calendar_id, None)
            if resp.status_code != 200:
                raise self._error(resp, "fetch events")

            data = self._payload(resp, "fetch events")
            items = data.get("items") or []
            if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
                raise GoogleCalendarError(self.source_id, "Failed to fetch events: malformed event list")
            events.extend(normalize_google_event(item) for item in items)
            page_token = data.get("nextPageToken")
            next_sync_token = data.get("nextSyncToken") or next_sync_token
            if not page_token:
                break
        else:
            raise GoogleCalendarError(self.source_id, "Too many result pages from Google Calendar")

        return ProviderEventPage(
            events=events,
            next_cursor=next_sync_token,
            full_snapshot=not since_cursor,
            window_start=window_start,
            window_end=window_end,
        )


__all__ = [
    "GoogleCalendarProvider",
    "get_valid_access_token",
    "normalize_google_event",
    "refresh_access_token",
]
